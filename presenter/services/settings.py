"""Persistence helpers for operator display settings."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ..config import AppConfig
from .autoplay import DEFAULT_INTERVAL_SECONDS
from .projection import DEFAULT_FONT_SIZE, DisplaySettings


LOGGER = logging.getLogger(__name__)


@dataclass
class PresenterSettings:
    """Container for customisable operator options."""

    font_size: float = DEFAULT_FONT_SIZE
    background_image: Optional[str] = None
    autoplay_interval_seconds: float = DEFAULT_INTERVAL_SECONDS

    def display_settings(self) -> DisplaySettings:
        return DisplaySettings(font_size=self.font_size, background_image=self.background_image)


class SettingsStore:
    """Load and store :class:`PresenterSettings` alongside other persisted data."""

    def __init__(self, config: AppConfig) -> None:
        self._path = config.settings_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PresenterSettings:
        if not self._path.exists():
            return PresenterSettings()

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Settings file %s is corrupt; using defaults", self._path)
            return PresenterSettings()
        if not isinstance(payload, dict):
            return PresenterSettings()

        settings = PresenterSettings()
        for field, value in payload.items():
            if hasattr(settings, field):
                setattr(settings, field, value)
        if not isinstance(settings.font_size, (int, float)) or settings.font_size <= 0:
            settings.font_size = DEFAULT_FONT_SIZE
        if (
            not isinstance(settings.autoplay_interval_seconds, (int, float))
            or settings.autoplay_interval_seconds <= 0
        ):
            settings.autoplay_interval_seconds = DEFAULT_INTERVAL_SECONDS
        return settings

    def save(self, settings: PresenterSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = asdict(settings)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


__all__ = ["PresenterSettings", "SettingsStore"]
