"""Structured events read by the debug console.

Every event is an ordinary log record on the ``presenter_tools.events`` logger
whose ``extra`` carries the event type, a short message, a flat mapping of
details and an optional duration. The console groups records by those fields.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


EVENT_LOGGER = logging.getLogger("presenter_tools.events")

DB_QUERY = "DB_QUERY"
RESOURCE_FETCH = "RESOURCE_FETCH"
SYNC_PUBLISH = "SYNC_PUBLISH"
APP_EVENT = "APP_EVENT"

MAX_DETAIL_LENGTH = 200


def clean_detail(value: Any) -> Any:
    """Reduce *value* to something the console can show as one cell, or ``None``."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, enum.Enum):
        return clean_detail(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return clean_details(value) or None
    if isinstance(value, (list, tuple, set, frozenset)):
        text = ", ".join(str(item) for item in value)
    else:
        text = str(value if not isinstance(value, Path) else value.as_posix())
    text = text.strip()
    if not text:
        return None
    if len(text) > MAX_DETAIL_LENGTH:
        return text[:MAX_DETAIL_LENGTH] + "…"
    return text


def clean_details(values: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, raw in (values or {}).items():
        if not key:
            continue
        value = clean_detail(raw)
        if value is not None:
            cleaned[str(key)] = value
    return cleaned


def emit_event(
    event_type: str,
    message: str,
    *,
    details: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
) -> None:
    cleaned = clean_details(details)
    text = f"[{event_type}] {message}"
    if cleaned:
        text += " (" + ", ".join(f"{key}={value}" for key, value in cleaned.items()) + ")"
    extra: Dict[str, Any] = {"event_type": event_type, "event_message": message, "event_details": cleaned}
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, text, extra=extra)


def emit_resource_event(
    stage: str,
    *,
    resource_id: str,
    details: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    """Record one tier or mirror attempt of an acquisition."""

    emit_event(
        RESOURCE_FETCH,
        stage,
        details={"resource": resource_id, **(details or {})},
        duration_ms=duration_ms,
        level=level,
    )


def emit_sync_event(message: str, *, details: Optional[Mapping[str, Any]] = None) -> None:
    emit_event(SYNC_PUBLISH, message, details=details, level=logging.DEBUG)


__all__ = [
    "APP_EVENT",
    "DB_QUERY",
    "EVENT_LOGGER",
    "RESOURCE_FETCH",
    "SYNC_PUBLISH",
    "clean_detail",
    "clean_details",
    "emit_event",
    "emit_resource_event",
    "emit_sync_event",
]
