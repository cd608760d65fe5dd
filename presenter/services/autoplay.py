"""Timer that advances the active sequence on the control surface."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, Optional

from .projection import ProjectionStore


LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
END_OF_SEQUENCE_NOTICE = "End of presentation"


class AutoPlayer:
    """Call the current ``advance`` handler on a fixed interval.

    The handler pair is read from the store on every tick, never captured at
    start, because each advance installs a new pair. When no ``advance``
    handler is present the player stops and records an end-of-sequence notice.
    """

    def __init__(self, store: ProjectionStore, *, interval: float = DEFAULT_INTERVAL_SECONDS) -> None:
        self._store = store
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()
        self.notice: Optional[str] = None
        self.ticks = 0

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        if value <= 0:
            raise ValueError("Autoplay interval must be positive")
        self._interval = value

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Start playing; return ``False`` when there is nothing to advance to."""

        async with self._lock:
            if self.running:
                return True
            if self._store.navigation_handlers.advance is None:
                self.notice = END_OF_SEQUENCE_NOTICE
                return False
            self.notice = None
            loop = asyncio.get_running_loop()
            self._task = loop.create_task(self._run(), name="autoplay")
            LOGGER.info("Autoplay started with a %.1fs interval", self._interval)
            return True

    async def stop(self) -> None:
        async with self._lock:
            task = self._task
            self._task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            LOGGER.info("Autoplay stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval": self._interval,
            "notice": self.notice,
            "ticks": self.ticks,
        }

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                advanced = self._store.advance()
            except Exception:  # noqa: BLE001 - surface handler failure and stop
                LOGGER.exception("Autoplay advance handler failed")
                self.notice = "Autoplay stopped after an error"
                return
            if advanced:
                self.ticks += 1
            if self._store.navigation_handlers.advance is None:
                self.notice = END_OF_SEQUENCE_NOTICE
                LOGGER.info("Autoplay reached the end of the sequence")
                return


__all__ = ["AutoPlayer", "DEFAULT_INTERVAL_SECONDS", "END_OF_SEQUENCE_NOTICE"]
