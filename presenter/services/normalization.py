"""Normalization of heterogeneous content-pack payloads into canonical packs.

Mirrors publish the same content in different shapes. A payload is first
classified into exactly one source shape:

``DirectList``
    the payload itself is the list of records;
``NamedListField``
    an object carrying the list under a well-known field (``hinos``, ``books``…);
``IndexedById``
    an object whose values are the records, keyed by number or abbreviation.

Each shape then feeds its records through one record normalizer per pack kind.
Canonical packs serialize back into a ``DirectList`` that normalizes to itself,
which is how cached payloads are validated on read.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml


class SchemaError(ValueError):
    """Raised when a payload cannot be normalized into any valid record."""


class PayloadParseError(ValueError):
    """Raised when a payload is neither JSON nor a lenient JSON-like literal."""


KIND_SCRIPTURE = "scripture"
KIND_HYMNAL = "hymnal"

# Below these sizes a bundled or cached pack is treated as a placeholder.
MINIMUM_PACK_SIZES: Dict[str, int] = {KIND_SCRIPTURE: 5, KIND_HYMNAL: 100}

LIST_FIELDS: Tuple[str, ...] = ("hinos", "hymns", "books", "livros", "items", "data")

DEFAULT_HYMN_TITLE = "Sem título"
CHORUS_LABEL = "[Coro]"

_BREAK_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)
_LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class Hymn:
    number: int
    title: str
    lyrics: str

    def to_payload(self) -> Dict[str, Any]:
        return {"number": self.number, "title": self.title, "lyrics": self.lyrics}


@dataclass(frozen=True)
class ScriptureBook:
    abbrev: str
    name: str
    chapters: Tuple[Tuple[str, ...], ...]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "abbrev": self.abbrev,
            "name": self.name,
            "chapters": [list(chapter) for chapter in self.chapters],
        }


PackItem = Union[Hymn, ScriptureBook]


@dataclass(frozen=True)
class ResourcePack:
    """Normalized, immutable content pack."""

    id: str
    kind: str
    items: Tuple[PackItem, ...]

    def __len__(self) -> int:
        return len(self.items)

    def is_substantial(self) -> bool:
        """Return ``True`` when the pack is larger than a placeholder dataset."""

        return len(self.items) > MINIMUM_PACK_SIZES.get(self.kind, 0)

    def to_payload(self) -> List[Dict[str, Any]]:
        return [item.to_payload() for item in self.items]

    def find_hymn(self, number: int) -> Optional[Hymn]:
        for item in self.items:
            if isinstance(item, Hymn) and item.number == number:
                return item
        return None


@dataclass(frozen=True)
class DirectList:
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class NamedListField:
    field: str
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class IndexedById:
    entries: Tuple[Tuple[str, Any], ...]


SourceShape = Union[DirectList, NamedListField, IndexedById]


def parse_payload(text: str) -> Any:
    """Parse *text* as JSON, falling back to a lenient JSON-like literal."""

    cleaned = text.lstrip("\ufeff").strip()
    if not cleaned:
        raise PayloadParseError("Empty payload")
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    # Flow-style YAML accepts unquoted keys, single quotes and loose spacing.
    lenient = cleaned.rstrip(";").strip()
    try:
        data = yaml.safe_load(lenient)
    except yaml.YAMLError as error:
        raise PayloadParseError(f"Payload is not structured data: {error}") from error
    if not isinstance(data, (list, dict)):
        raise PayloadParseError("Payload is not a list or object literal")
    return data


def classify_payload(data: Any, *, list_fields: Sequence[str] = LIST_FIELDS) -> SourceShape:
    """Return the source shape of *data* or raise :class:`SchemaError`."""

    if isinstance(data, list):
        return DirectList(items=tuple(data))
    if isinstance(data, Mapping):
        for field_name in list_fields:
            candidate = data.get(field_name)
            if isinstance(candidate, list):
                return NamedListField(field=field_name, items=tuple(candidate))
        entries = tuple((str(key), value) for key, value in data.items() if isinstance(value, Mapping))
        if entries:
            return IndexedById(entries=entries)
        raise SchemaError("Object payload has neither a list field nor record values")
    raise SchemaError(f"Unsupported payload type {type(data).__name__}")


def _records_with_keys(shape: SourceShape) -> List[Tuple[Optional[str], Any]]:
    if isinstance(shape, DirectList):
        return [(None, item) for item in shape.items]
    if isinstance(shape, NamedListField):
        return [(None, item) for item in shape.items]
    if isinstance(shape, IndexedById):
        return list(shape.entries)
    raise SchemaError(f"Unknown source shape {shape!r}")  # pragma: no cover


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)


def _first_text(record: Mapping[str, Any], *fields: str) -> str:
    for field_name in fields:
        value = _text(record.get(field_name)).strip()
        if value:
            return value
    return ""


def _leading_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # NaN and Infinity survive both json.loads and yaml.safe_load.
        if not math.isfinite(value):
            return None
        return int(value)
    match = _LEADING_INT_PATTERN.match(_text(value))
    if match is None:
        return None
    return int(match.group(1))


def _convert_breaks(fragment: str) -> str:
    return _BREAK_PATTERN.sub("\n", fragment)


def _numeric_key(key: Any) -> Tuple[int, float, str]:
    number = _leading_int(key)
    if number is None:
        return (1, 0.0, str(key))
    return (0, float(number), str(key))


def _strip_number_prefix(title: str) -> str:
    if " - " not in title:
        return title
    head, _, rest = title.partition(" - ")
    if _leading_int(head) is None:
        return title
    return rest


def _assemble_verses(verses: Any, chorus: str) -> str:
    if isinstance(verses, Mapping):
        ordered = [verses[key] for key in sorted(verses.keys(), key=_numeric_key)]
    elif isinstance(verses, list):
        ordered = list(verses)
    else:
        return ""
    chorus_text = f"{CHORUS_LABEL}\n{_convert_breaks(chorus)}" if chorus else ""
    parts: List[str] = []
    for verse in ordered:
        parts.append(_convert_breaks(_text(verse)))
        if chorus_text:
            parts.append(chorus_text)
    return "\n\n".join(parts)


def normalize_hymn(record: Any, key: Optional[str] = None) -> Optional[Hymn]:
    """Return a :class:`Hymn` for *record*, or ``None`` when it is unusable."""

    if not isinstance(record, Mapping):
        return None

    title = _strip_number_prefix(_first_text(record, "titulo", "title", "hino") or DEFAULT_HYMN_TITLE)

    lyrics = _convert_breaks(_first_text(record, "letra", "lyrics", "text"))
    if not lyrics and record.get("verses"):
        lyrics = _assemble_verses(record.get("verses"), _text(record.get("coro")).strip())

    number: Optional[int] = None
    for field_name in ("numero", "number"):
        number = _leading_int(record.get(field_name))
        if number is not None:
            break
    if number is None:
        for field_name in ("hino", "titulo", "title"):
            combined = _text(record.get(field_name))
            if " - " in combined:
                number = _leading_int(combined.partition(" - ")[0])
                if number is not None:
                    break
    if number is None and key is not None:
        number = _leading_int(key)

    if number is None or number <= 0 or not lyrics.strip():
        return None
    return Hymn(number=number, title=title.strip(), lyrics=lyrics)


def _normalize_chapters(raw: Any) -> Optional[Tuple[Tuple[str, ...], ...]]:
    if isinstance(raw, Mapping):
        raw = [raw[key] for key in sorted(raw.keys(), key=_numeric_key)]
    if not isinstance(raw, list):
        return None
    chapters: List[Tuple[str, ...]] = []
    for chapter in raw:
        if isinstance(chapter, Mapping):
            chapter = [chapter[key] for key in sorted(chapter.keys(), key=_numeric_key)]
        if not isinstance(chapter, list):
            return None
        chapters.append(tuple(_text(verse).strip() for verse in chapter))
    return tuple(chapters)


def normalize_book(record: Any, key: Optional[str] = None) -> Optional[ScriptureBook]:
    """Return a :class:`ScriptureBook` for *record*, or ``None`` when it is unusable."""

    if not isinstance(record, Mapping):
        return None
    chapters = _normalize_chapters(record.get("chapters", record.get("capitulos")))
    if not chapters:
        return None
    abbrev = _first_text(record, "abbrev", "abreviacao") or (key or "")
    name = _first_text(record, "name", "nome", "book") or abbrev.upper()
    if not name:
        return None
    return ScriptureBook(abbrev=abbrev, name=name, chapters=chapters)


_RECORD_NORMALIZERS: Dict[str, Callable[[Any, Optional[str]], Optional[PackItem]]] = {
    KIND_HYMNAL: normalize_hymn,
    KIND_SCRIPTURE: normalize_book,
}


def normalize_pack(resource_id: str, kind: str, data: Any) -> ResourcePack:
    """Normalize raw *data* into a canonical :class:`ResourcePack`.

    Raises :class:`SchemaError` when the payload shape is unknown or when no
    record survives normalization.
    """

    normalizer = _RECORD_NORMALIZERS.get(kind)
    if normalizer is None:
        raise SchemaError(f"Unsupported resource kind '{kind}'")

    shape = classify_payload(data)
    items: List[PackItem] = []
    for key, record in _records_with_keys(shape):
        item = normalizer(record, key)
        if item is not None:
            items.append(item)

    if kind == KIND_HYMNAL:
        unique: Dict[int, Hymn] = {}
        for hymn in items:
            unique.setdefault(hymn.number, hymn)  # type: ignore[union-attr]
        items = sorted(unique.values(), key=lambda hymn: hymn.number)

    if not items:
        raise SchemaError(f"Payload for '{resource_id}' contains no valid {kind} records")
    return ResourcePack(id=resource_id, kind=kind, items=tuple(items))


__all__ = [
    "CHORUS_LABEL",
    "DirectList",
    "Hymn",
    "IndexedById",
    "KIND_HYMNAL",
    "KIND_SCRIPTURE",
    "MINIMUM_PACK_SIZES",
    "NamedListField",
    "PayloadParseError",
    "ResourcePack",
    "SchemaError",
    "ScriptureBook",
    "classify_payload",
    "normalize_book",
    "normalize_hymn",
    "normalize_pack",
    "parse_payload",
]
