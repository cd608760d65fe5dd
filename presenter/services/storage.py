"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig
from .events import DB_QUERY


@dataclass
class CacheEntry:
    key: str
    payload: Any
    stored_at: datetime


@dataclass
class CacheSummary:
    key: str
    stored_at: datetime
    size_bytes: int


@dataclass
class SnapshotRecord:
    channel: str
    revision: int
    payload: Dict[str, Any]
    updated_at: datetime


LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return datetime.fromtimestamp(0, tz=timezone.utc)


class _SQLiteStore:
    """Shared connection and instrumentation helpers for the SQLite stores."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:  # pragma: no cover - instrumentation only
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                DB_QUERY,
                action,
                details=filtered,
                duration_ms=duration_ms,
            )

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | Tuple[Any, ...] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters) if parameters is not None else ()
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        try:
            with connection:
                yield connection
        finally:
            connection.close()


class ResourceStore(_SQLiteStore):
    """Durable key/value store holding normalized content packs.

    One row per logical resource id. Writes replace the previous row in a single
    statement, so readers never observe a partially written pack.
    """

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._connect() as connection:
            row = self._execute(
                connection,
                "SELECT key, payload, stored_at FROM resources WHERE key = ?",
                (key,),
                action="resources.get",
                table="resources",
            ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload"])
        except (TypeError, ValueError):
            LOGGER.warning("Discarding unreadable cache entry for '%s'", key)
            return None
        return CacheEntry(key=row["key"], payload=payload, stored_at=_parse_timestamp(row["stored_at"]))

    def put(self, key: str, payload: Any) -> CacheEntry:
        stored_at = _utcnow()
        encoded = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        with self._connect() as connection:
            self._execute(
                connection,
                """
                INSERT INTO resources (key, payload, stored_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    payload = excluded.payload,
                    stored_at = excluded.stored_at
                """,
                (key, encoded, stored_at.isoformat()),
                action="resources.put",
                table="resources",
            )
        LOGGER.debug("Stored %s bytes for resource '%s'", len(encoded), key)
        return CacheEntry(key=key, payload=payload, stored_at=stored_at)

    def delete(self, key: str) -> bool:
        with self._connect() as connection:
            cursor = self._execute(
                connection,
                "DELETE FROM resources WHERE key = ?",
                (key,),
                action="resources.delete",
                table="resources",
            )
            return cursor.rowcount > 0

    def list_entries(self) -> List[CacheSummary]:
        with self._connect() as connection:
            rows = self._execute(
                connection,
                "SELECT key, stored_at, LENGTH(payload) AS size FROM resources ORDER BY key",
                action="resources.list",
                table="resources",
            ).fetchall()
        return [
            CacheSummary(
                key=row["key"],
                stored_at=_parse_timestamp(row["stored_at"]),
                size_bytes=int(row["size"] or 0),
            )
            for row in rows
        ]


class SnapshotStore(_SQLiteStore):
    """Durable last-value store backing the cross-surface sync channel."""

    def load(self, channel: str) -> Optional[SnapshotRecord]:
        with self._connect() as connection:
            row = self._execute(
                connection,
                "SELECT channel, revision, payload, updated_at FROM projection_snapshots"
                " WHERE channel = ?",
                (channel,),
                action="projection_snapshots.load",
                table="projection_snapshots",
            ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload"])
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring unreadable projection snapshot for '%s'", channel)
            return None
        if not isinstance(payload, dict):
            return None
        return SnapshotRecord(
            channel=row["channel"],
            revision=int(row["revision"]),
            payload=payload,
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    def save(self, channel: str, revision: int, payload: Dict[str, Any]) -> None:
        encoded = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        with self._connect() as connection:
            self._execute(
                connection,
                """
                INSERT INTO projection_snapshots (channel, revision, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(channel) DO UPDATE SET
                    revision = excluded.revision,
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (channel, int(revision), encoded, _utcnow().isoformat()),
                action="projection_snapshots.save",
                table="projection_snapshots",
            )


__all__ = [
    "CacheEntry",
    "CacheSummary",
    "ResourceStore",
    "SnapshotRecord",
    "SnapshotStore",
]
