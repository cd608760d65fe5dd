"""Helpers used by content modules to project one unit of an ordered sequence."""

from __future__ import annotations

import re
from typing import Callable, List, Sequence, Union

from .normalization import Hymn, ScriptureBook
from .projection import NavigationHandlers, ProjectionState, ProjectionStore, ProjectionType


_SLIDE_SEPARATOR = re.compile(r"\n\s*\n")

ReferenceSource = Union[str, Callable[[int], str]]


def split_stanzas(lyrics: str) -> List[str]:
    """Split hymn lyrics into stanzas on blank lines."""

    if not lyrics:
        return []
    normalized = lyrics.replace("\r\n", "\n")
    return [stanza for stanza in normalized.split("\n\n") if stanza.strip()]


def split_slides(text: str) -> List[str]:
    """Split pasted free text into slides on lines that hold only whitespace."""

    if not text:
        return []
    return [slide for slide in _SLIDE_SEPARATOR.split(text.replace("\r\n", "\n")) if slide.strip()]


def verse_reference(book: ScriptureBook, chapter_index: int, verse_number: int) -> str:
    return f"{book.name} {chapter_index + 1}:{verse_number}"


def hymn_reference(hymn: Hymn) -> str:
    return f"{hymn.number}. {hymn.title}"


def project_unit(
    store: ProjectionStore,
    units: Sequence[str],
    index: int,
    *,
    projection_type: ProjectionType,
    reference: ReferenceSource = "",
) -> None:
    """Project ``units[index]`` and install handlers for its neighbours.

    The handlers call back into this function, so following ``advance`` keeps
    replacing the pair until the last unit, where ``advance`` is ``None``.
    """

    if not 0 <= index < len(units):
        raise IndexError(f"Unit {index} is outside a sequence of {len(units)}")

    label = reference(index) if callable(reference) else reference
    store.set_projection(
        ProjectionState(type=projection_type, content=units[index], reference=label)
    )

    def _goto(target: int) -> Callable[[], None]:
        def _navigate() -> None:
            project_unit(
                store,
                units,
                target,
                projection_type=projection_type,
                reference=reference,
            )

        return _navigate

    store.set_navigation_handlers(
        NavigationHandlers(
            advance=_goto(index + 1) if index < len(units) - 1 else None,
            retreat=_goto(index - 1) if index > 0 else None,
        )
    )


def project_verse(
    store: ProjectionStore, book: ScriptureBook, chapter_index: int, verse_index: int
) -> None:
    verses = list(book.chapters[chapter_index])
    project_unit(
        store,
        verses,
        verse_index,
        projection_type=ProjectionType.TEXT,
        reference=lambda position: verse_reference(book, chapter_index, position + 1),
    )


def project_stanza(store: ProjectionStore, hymn: Hymn, stanza_index: int) -> None:
    project_unit(
        store,
        split_stanzas(hymn.lyrics),
        stanza_index,
        projection_type=ProjectionType.LYRIC,
        reference=hymn_reference(hymn),
    )


def project_slide(store: ProjectionStore, text: str, slide_index: int, *, title: str = "") -> None:
    project_unit(
        store,
        split_slides(text),
        slide_index,
        projection_type=ProjectionType.LYRIC,
        reference=title,
    )


__all__ = [
    "hymn_reference",
    "project_slide",
    "project_stanza",
    "project_unit",
    "project_verse",
    "split_slides",
    "split_stanzas",
    "verse_reference",
]
