from __future__ import annotations

import logging
from collections import UserDict, deque
from types import MappingProxyType

import pytest

from presenter.services.events import emit_event
from presenter.web.server import DebugLogHandler


@pytest.fixture
def handler() -> DebugLogHandler:
    return DebugLogHandler()


def test_build_key_handles_nested_unhashable_structures(handler: DebugLogHandler) -> None:
    details = {
        "attrs": MappingProxyType({
            "numbers": [1, 2, 3],
            "details": {"enabled": True, "thresholds": {"low", "high"}},
        }),
        "extra": UserDict({"history": deque(({"event": "start"}, {"event": "stop"}))}),
        "meta": {"ids": [1, {"sub": ("a", "b")}]},
    }

    key = handler._build_key("TEST", "message", details)

    hash(key)


def test_build_key_is_order_insensitive(handler: DebugLogHandler) -> None:
    key_a = handler._build_key("TEST", "message", {"values": {"b": 2, "a": 1}})
    key_b = handler._build_key("TEST", "message", {"values": {"a": 1, "b": 2}})

    assert key_a == key_b


def _record(message: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("presenter.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_repeated_events_collapse_into_one_entry(handler: DebugLogHandler) -> None:
    for duration, request_id in ((10.0, "first"), (30.0, "second")):
        handler.emit(
            _record(
                "[DB_QUERY] resources.get",
                event_message="resources.get",
                event_type="DB_QUERY",
                event_details={"table": "resources"},
                event_duration_ms=duration,
                request_id=request_id,
            )
        )

    entries = handler.collect()

    assert len(entries) == 1
    assert entries[0]["message"] == "resources.get"
    assert entries[0]["details"] == {"table": "resources"}
    assert entries[0]["count"] == 2
    assert entries[0]["average_duration_ms"] == 20.0
    assert entries[0]["max_duration_ms"] == 30.0
    assert entries[0]["request_id"] == "second"
    assert handler.last_id == 2


def test_slow_fetch_is_flagged_as_warning(handler: DebugLogHandler) -> None:
    handler.emit(
        _record(
            "mirror succeeded",
            event_message="mirror succeeded",
            event_type="RESOURCE_FETCH",
            event_details={"resource": "bible_nvi"},
            event_duration_ms=9000.0,
        )
    )

    assert handler.collect()[0]["severity"] == "warning"


def test_failed_query_is_flagged_as_error(handler: DebugLogHandler) -> None:
    handler.emit(
        _record(
            "resources.put",
            event_message="resources.put",
            event_type="DB_QUERY",
            event_details={"status": "error"},
            event_duration_ms=1.0,
        )
    )

    assert handler.collect()[0]["severity"] == "error"


def test_plain_records_use_logger_name_as_type(handler: DebugLogHandler) -> None:
    handler.emit(_record("Resuming projection state from revision %s"))

    entry = handler.collect()[0]

    assert entry["event_type"] == "presenter.test"
    assert "details" not in entry
    assert "severity" not in entry


def test_collect_after_marker(handler: DebugLogHandler) -> None:
    handler.emit(_record("first"))
    marker = handler.last_id
    handler.emit(_record("second"))

    assert [entry["message"] for entry in handler.collect(after=marker)] == ["second"]


def test_capacity_drops_oldest_entries() -> None:
    handler = DebugLogHandler(capacity=2)
    for message in ("one", "two", "three"):
        handler.emit(_record(message))

    assert [entry["message"] for entry in handler.collect()] == ["two", "three"]


def test_emitted_events_reach_the_handler(handler: DebugLogHandler) -> None:
    logger = logging.getLogger("presenter.test.events")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    try:
        emit_event(
            "SYNC_PUBLISH",
            "published",
            details={"revision": 3, "type": "TEXT", "ignored": "   "},
            logger=logger,
        )
    finally:
        logger.removeHandler(handler)

    entry = handler.collect()[0]
    assert entry["event_type"] == "SYNC_PUBLISH"
    assert entry["message"] == "published"
    assert entry["details"] == {"revision": 3, "type": "TEXT"}
