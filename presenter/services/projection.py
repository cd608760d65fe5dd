"""Authoritative projection state for the control surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional


LOGGER = logging.getLogger(__name__)

DEFAULT_FONT_SIZE = 64.0


class ProjectionType(str, Enum):
    IDLE = "IDLE"
    TEXT = "TEXT"
    LYRIC = "LYRIC"


@dataclass(frozen=True)
class ProjectionState:
    type: ProjectionType = ProjectionType.IDLE
    content: str = ""
    reference: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.type, ProjectionType):
            object.__setattr__(self, "type", ProjectionType(self.type))
        if self.type is ProjectionType.IDLE and (self.content or self.reference):
            raise ValueError("An idle projection cannot carry content or a reference")

    @classmethod
    def idle(cls) -> "ProjectionState":
        return cls()


@dataclass(frozen=True)
class DisplaySettings:
    font_size: float = DEFAULT_FONT_SIZE
    background_image: Optional[str] = None

    def __post_init__(self) -> None:
        if self.font_size <= 0:
            raise ValueError("Font size must be positive")


@dataclass(frozen=True)
class NavigationHandlers:
    """Next/previous operations installed by the active content module.

    Holds behaviour, not data, so it never leaves the control surface.
    """

    advance: Optional[Callable[[], Any]] = None
    retreat: Optional[Callable[[], Any]] = None


NO_NAVIGATION = NavigationHandlers()


@dataclass(frozen=True)
class ProjectionSnapshot:
    """The replicated part of the store: projection, settings and blackout."""

    projection: ProjectionState
    settings: DisplaySettings
    blackout: bool

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.projection.type.value,
            "content": self.projection.content,
            "reference": self.projection.reference,
            "fontSize": self.settings.font_size,
            "backgroundImage": self.settings.background_image,
            "blackout": self.blackout,
        }

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ProjectionSnapshot":
        projection_type = ProjectionType(str(message.get("type") or ProjectionType.IDLE.value))
        if projection_type is ProjectionType.IDLE:
            projection = ProjectionState.idle()
        else:
            projection = ProjectionState(
                type=projection_type,
                content=str(message.get("content") or ""),
                reference=str(message.get("reference") or ""),
            )
        background = message.get("backgroundImage")
        return cls(
            projection=projection,
            settings=DisplaySettings(
                font_size=float(message.get("fontSize") or DEFAULT_FONT_SIZE),
                background_image=str(background) if background else None,
            ),
            blackout=bool(message.get("blackout", False)),
        )


Publisher = Callable[[ProjectionSnapshot], Any]


class ProjectionStore:
    """Single writer of what is projected, how, and whether it is blacked out.

    Writes are synchronous. Each write to the projection, the display settings
    or the blackout flag is handed to the publisher; navigation handlers stay
    local to this store.
    """

    def __init__(
        self,
        *,
        settings: Optional[DisplaySettings] = None,
        publisher: Optional[Publisher] = None,
        initial: Optional[ProjectionSnapshot] = None,
    ) -> None:
        self._projection = ProjectionState.idle()
        self._settings = settings or DisplaySettings()
        self._blackout = False
        if initial is not None:
            self._projection = initial.projection
            self._settings = initial.settings
            self._blackout = initial.blackout
        self._handlers = NO_NAVIGATION
        self._publisher = publisher

    @property
    def current_projection(self) -> ProjectionState:
        return self._projection

    @property
    def settings(self) -> DisplaySettings:
        return self._settings

    @property
    def blackout(self) -> bool:
        return self._blackout

    @property
    def navigation_handlers(self) -> NavigationHandlers:
        return self._handlers

    def snapshot(self) -> ProjectionSnapshot:
        return ProjectionSnapshot(
            projection=self._projection,
            settings=self._settings,
            blackout=self._blackout,
        )

    def set_projection(self, state: ProjectionState) -> None:
        self._projection = state
        LOGGER.debug("Projection set to %s %r", state.type.value, state.reference)
        self._publish()

    def clear_projection(self) -> None:
        self._projection = ProjectionState.idle()
        self._handlers = NO_NAVIGATION
        LOGGER.debug("Projection cleared")
        self._publish()

    def toggle_blackout(self) -> bool:
        self._blackout = not self._blackout
        self._publish()
        return self._blackout

    def set_display_settings(self, settings: DisplaySettings) -> None:
        self._settings = settings
        self._publish()

    def update_display_settings(self, **changes: Any) -> DisplaySettings:
        self.set_display_settings(replace(self._settings, **changes))
        return self._settings

    def set_navigation_handlers(self, handlers: Optional[NavigationHandlers]) -> None:
        self._handlers = handlers or NO_NAVIGATION

    def advance(self) -> bool:
        """Run the current advance handler; return ``False`` when there is none."""

        handler = self._handlers.advance
        if handler is None:
            return False
        handler()
        return True

    def retreat(self) -> bool:
        """Run the current retreat handler; return ``False`` when there is none."""

        handler = self._handlers.retreat
        if handler is None:
            return False
        handler()
        return True

    def _publish(self) -> None:
        if self._publisher is None:
            return
        self._publisher(self.snapshot())


__all__ = [
    "DEFAULT_FONT_SIZE",
    "DisplaySettings",
    "NO_NAVIGATION",
    "NavigationHandlers",
    "ProjectionSnapshot",
    "ProjectionState",
    "ProjectionStore",
    "ProjectionType",
    "Publisher",
]
