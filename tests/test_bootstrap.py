import sqlite3
from pathlib import Path

import pytest

import presenter.config as config_module
from presenter.bootstrap import BootstrapError, Bootstrapper
from presenter.config import AppConfig


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    storage_root = tmp_path / "storage"
    database_file = storage_root / "presenter.db"

    config = AppConfig(
        storage_root=storage_root,
        database_file=database_file,
        bundled_root=tmp_path / "data",
    )

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    bootstrapper = Bootstrapper(config)

    with pytest.raises(BootstrapError) as excinfo:
        bootstrapper.initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_creates_schema(tmp_path: Path) -> None:
    config = AppConfig(
        storage_root=tmp_path / "storage",
        database_file=tmp_path / "storage" / "presenter.db",
        bundled_root=tmp_path / "missing-data",
    )

    Bootstrapper(config).initialize()
    # Running twice must be harmless.
    Bootstrapper(config).initialize()

    connection = sqlite3.connect(config.database_file)
    try:
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    finally:
        connection.close()

    assert {"resources", "projection_snapshots"} <= tables
