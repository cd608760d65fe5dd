"""Configuration loading utilities for the Presenter Tools service."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".presenter_tools_write_check"

DEFAULT_NETWORK_TIMEOUT = 30.0


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The helper attempts to create ``preferred`` and returns it when writable. If
    the preferred location is unavailable, each candidate in ``fallbacks`` is
    tried in order. The first writable fallback is returned along with a flag
    indicating that a fallback was used. When no candidate can be prepared the
    original ``preferred`` path is returned.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class ResourceDefinition:
    """Catalog entry describing where a content pack can be obtained."""

    id: str
    kind: str
    label: str
    mirrors: Tuple[str, ...] = ()
    bundled_file: Optional[str] = None

    @classmethod
    def from_mapping(cls, resource_id: str, mapping: Mapping[str, Any]) -> "ResourceDefinition":
        kind = str(mapping.get("kind", "")).strip().lower()
        if kind not in {"scripture", "hymnal"}:
            raise ValueError(f"Resource '{resource_id}' has unsupported kind '{kind}'")
        mirrors = mapping.get("mirrors") or ()
        if isinstance(mirrors, str):
            mirrors = (mirrors,)
        bundled_file = mapping.get("bundled")
        return cls(
            id=resource_id,
            kind=kind,
            label=str(mapping.get("label") or resource_id),
            mirrors=tuple(str(url) for url in mirrors if str(url).strip()),
            bundled_file=str(bundled_file) if bundled_file else None,
        )


@dataclass(frozen=True)
class AppConfig:
    """Simple container describing runtime paths and the resource catalog."""

    storage_root: Path
    database_file: Path
    bundled_root: Path
    network_timeout: float = DEFAULT_NETWORK_TIMEOUT
    resources: Dict[str, ResourceDefinition] = field(default_factory=dict)

    @property
    def settings_file(self) -> Path:
        """Location of the persisted operator settings."""

        return (self.storage_root / "settings.json").resolve()

    def get_resource(self, resource_id: str) -> Optional[ResourceDefinition]:
        return self.resources.get(resource_id)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".presenter_tools" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if _ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        if not _ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            if fallback_database != database_file and _ensure_writable_directory(
                fallback_database.parent
            ):
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database
            else:
                LOGGER.warning(
                    "Database location '%s' is not writable and no fallback is available.",
                    database_file,
                )

        # Bundled datasets are read-only, so no writability check here.
        bundled_root = (base_path / mapping.get("bundled_root", "data")).resolve()

        try:
            network_timeout = float(mapping.get("network_timeout", DEFAULT_NETWORK_TIMEOUT))
        except (TypeError, ValueError):
            network_timeout = DEFAULT_NETWORK_TIMEOUT
        if network_timeout <= 0:
            network_timeout = DEFAULT_NETWORK_TIMEOUT

        resources: Dict[str, ResourceDefinition] = {}
        for resource_id, entry in (mapping.get("resources") or {}).items():
            if not isinstance(entry, Mapping):
                LOGGER.warning("Ignoring malformed resource definition '%s'", resource_id)
                continue
            resources[str(resource_id)] = ResourceDefinition.from_mapping(str(resource_id), entry)

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            bundled_root=bundled_root,
            network_timeout=network_timeout,
            resources=resources,
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "ResourceDefinition", "load_config"]
