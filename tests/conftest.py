from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from presenter.bootstrap import Bootstrapper
from presenter.config import AppConfig


MIRROR_A = "https://mirror-a.test/bible.json"
MIRROR_B = "https://mirror-b.test/bible.json"


def build_scripture_payload(book_count: int = 6) -> List[Dict[str, Any]]:
    """Return a thiagobodruk-style list with *book_count* small books."""

    books = []
    for index in range(book_count):
        books.append(
            {
                "abbrev": f"b{index}",
                "name": f"Book {index}",
                "chapters": [
                    [f"Book {index} chapter 1 verse {verse}" for verse in range(1, 4)],
                    [f"Book {index} chapter 2 verse {verse}" for verse in range(1, 3)],
                ],
            }
        )
    return books


def build_hymnal_payload(count: int) -> Dict[str, Any]:
    return {
        "hinos": [
            {"numero": number, "titulo": f"{number} - Hymn {number}", "letra": f"Verse of {number}"}
            for number in range(1, count + 1)
        ]
    }


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "hymnal.json").write_text(
        json.dumps(
            [
                {"numero": 1, "titulo": "1 - First Hymn", "letra": "One<br>line\n\nSecond stanza"},
                {"numero": 2, "titulo": "2 - Second Hymn", "letra": "Only stanza"},
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/presenter.db",
            "bundled_root": "data",
            "network_timeout": 5,
            "resources": {
                "bible_test": {
                    "kind": "scripture",
                    "label": "Test Bible",
                    "mirrors": [MIRROR_A, MIRROR_B],
                },
                "hymnal": {
                    "kind": "hymnal",
                    "label": "Test Hymnal",
                    "bundled": "hymnal.json",
                },
            },
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config
