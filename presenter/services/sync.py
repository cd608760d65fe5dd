"""Replication of projection state from the control surface to projector surfaces.

Every publish stores the complete state as the durable last value and then
notifies live subscribers. A projector surface that attaches late reads the
durable value first, so it shows the current state even if nothing changes
afterwards. Each message carries a revision number; replicas ignore anything
that is not newer than what they already applied, which makes duplicate
delivery and the hydration/notification race harmless.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .events import emit_sync_event
from .projection import ProjectionSnapshot, ProjectionType
from .storage import SnapshotStore


LOGGER = logging.getLogger(__name__)

DEFAULT_CHANNEL = "projection"
REFERENCE_FONT_RATIO = 0.45


@dataclass(frozen=True)
class SyncMessage:
    revision: int
    snapshot: ProjectionSnapshot

    def to_wire(self) -> Dict[str, Any]:
        message = self.snapshot.to_message()
        message["revision"] = self.revision
        return message

    @classmethod
    def from_wire(cls, message: Dict[str, Any]) -> "SyncMessage":
        return cls(
            revision=int(message.get("revision") or 0),
            snapshot=ProjectionSnapshot.from_message(message),
        )


Listener = Callable[[SyncMessage], Any]


class Subscription:
    """Handle returned by :meth:`SyncChannel.attach`; call :meth:`close` to detach."""

    def __init__(self, channel: "SyncChannel", listener: Listener) -> None:
        self._channel = channel
        self._listener = listener
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._channel._remove_listener(self._listener)
            self.closed = True


class SyncChannel:
    """Durable last-value store plus ordered change notification."""

    def __init__(self, store: SnapshotStore, *, channel: str = DEFAULT_CHANNEL) -> None:
        self._store = store
        self._channel = channel
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._latest: Optional[SyncMessage] = self._load()
        self._revision = self._latest.revision if self._latest is not None else 0

    @property
    def revision(self) -> int:
        return self._revision

    def latest(self) -> Optional[SyncMessage]:
        """Return the durable snapshot, falling back to the last published value."""

        stored = self._load()
        if stored is None:
            return self._latest
        if self._latest is not None and self._latest.revision > stored.revision:
            return self._latest
        return stored

    def publish(self, snapshot: ProjectionSnapshot) -> SyncMessage:
        with self._lock:
            self._revision += 1
            message = SyncMessage(revision=self._revision, snapshot=snapshot)
            self._latest = message
            try:
                self._store.save(self._channel, message.revision, snapshot.to_message())
            except sqlite3.Error:
                LOGGER.exception("Could not persist projection snapshot %s", message.revision)
            listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(message)
                except Exception:  # noqa: BLE001 - a broken surface must not stop the others
                    LOGGER.exception("Projection listener failed for revision %s", message.revision)
        emit_sync_event(
            "published",
            details={
                "revision": message.revision,
                "type": snapshot.projection.type.value,
                "blackout": snapshot.blackout,
                "listeners": len(listeners),
            },
        )
        return message

    def attach(self, listener: Listener) -> Subscription:
        """Hydrate *listener* from the durable snapshot, then subscribe it."""

        with self._lock:
            current = self.latest()
            if current is not None:
                listener(current)
            self._listeners.append(listener)
        return Subscription(self, listener)

    async def stream(self, *, keepalive: Optional[float] = None) -> AsyncIterator[Optional[SyncMessage]]:
        """Yield the durable snapshot followed by every later publish, in order.

        With *keepalive* set, ``None`` is yielded whenever that many seconds
        pass without a publish.
        """

        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[SyncMessage]" = asyncio.Queue()

        def _enqueue(message: SyncMessage) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                queue.put_nowait(message)
            else:
                loop.call_soon_threadsafe(queue.put_nowait, message)

        # Subscribing happens before the durable read, so a publish that lands
        # in between is queued rather than lost.
        with self._lock:
            self._listeners.append(_enqueue)
        try:
            current = self.latest()
            if current is not None:
                yield current
            while True:
                if keepalive is None:
                    yield await queue.get()
                    continue
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield None
        finally:
            self._remove_listener(_enqueue)

    def _remove_listener(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def _load(self) -> Optional[SyncMessage]:
        try:
            record = self._store.load(self._channel)
        except sqlite3.Error:
            LOGGER.exception("Could not read projection snapshot")
            return None
        if record is None:
            return None
        try:
            snapshot = ProjectionSnapshot.from_message(record.payload)
        except (TypeError, ValueError) as error:
            LOGGER.warning("Ignoring malformed projection snapshot: %s", error)
            return None
        return SyncMessage(revision=record.revision, snapshot=snapshot)


@dataclass(frozen=True)
class RenderedFrame:
    """What a projector surface puts on screen for a given state."""

    mode: str
    content: str = ""
    reference: str = ""
    font_size: float = 0.0
    reference_font_size: float = 0.0
    background_image: Optional[str] = None


class ProjectorReplica:
    """Read-only local view held by one projector surface."""

    def __init__(self) -> None:
        self._message: Optional[SyncMessage] = None

    @property
    def revision(self) -> int:
        return self._message.revision if self._message is not None else 0

    @property
    def snapshot(self) -> Optional[ProjectionSnapshot]:
        return self._message.snapshot if self._message is not None else None

    def apply(self, message: SyncMessage) -> bool:
        """Apply *message* unless it is not newer than the current state."""

        if self._message is not None and message.revision <= self._message.revision:
            return False
        self._message = message
        return True

    def attach(self, channel: SyncChannel) -> Subscription:
        return channel.attach(self.apply)

    def render(self) -> RenderedFrame:
        snapshot = self.snapshot
        if snapshot is None:
            return RenderedFrame(mode="idle")
        settings = snapshot.settings
        if snapshot.blackout:
            return RenderedFrame(mode="blackout", background_image=settings.background_image)
        projection = snapshot.projection
        if projection.type is ProjectionType.IDLE:
            return RenderedFrame(mode="idle", background_image=settings.background_image)
        return RenderedFrame(
            mode="content",
            content=projection.content,
            reference=projection.reference,
            font_size=settings.font_size,
            reference_font_size=settings.font_size * REFERENCE_FONT_RATIO,
            background_image=settings.background_image,
        )


__all__ = [
    "DEFAULT_CHANNEL",
    "ProjectorReplica",
    "RenderedFrame",
    "Subscription",
    "SyncChannel",
    "SyncMessage",
]
