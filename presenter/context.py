"""Process-wide application context wiring the core services together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import AppConfig
from .services.acquisition import ResourceAcquisitionPipeline
from .services.autoplay import AutoPlayer
from .services.projection import ProjectionStore
from .services.resources import BundledDatasets, ResourceLibrary
from .services.settings import SettingsStore
from .services.storage import ResourceStore, SnapshotStore
from .services.sync import SyncChannel


LOGGER = logging.getLogger(__name__)


@dataclass
class PresenterContext:
    """Everything a surface-facing component needs, constructed once at start-up."""

    config: AppConfig
    resource_store: ResourceStore
    snapshot_store: SnapshotStore
    channel: SyncChannel
    projection: ProjectionStore
    library: ResourceLibrary
    settings_store: SettingsStore
    autoplay: AutoPlayer


def build_context(
    config: AppConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PresenterContext:
    resource_store = ResourceStore(config)
    snapshot_store = SnapshotStore(config)
    channel = SyncChannel(snapshot_store)

    settings_store = SettingsStore(config)
    presenter_settings = settings_store.load()
    display_settings = presenter_settings.display_settings()

    # Resume the last replicated state so a restart does not blank the projector.
    latest = channel.latest()
    initial = latest.snapshot if latest is not None else None
    projection = ProjectionStore(
        settings=display_settings,
        publisher=channel.publish,
        initial=initial,
    )
    if latest is not None:
        LOGGER.info("Resuming projection state from revision %s", latest.revision)
        # settings.json wins; replicate it so attached projectors catch up.
        if latest.snapshot.settings != display_settings:
            projection.set_display_settings(display_settings)

    pipeline = ResourceAcquisitionPipeline(
        resource_store,
        timeout=config.network_timeout,
        transport=transport,
    )
    library = ResourceLibrary(config, pipeline, BundledDatasets(config.bundled_root))

    return PresenterContext(
        config=config,
        resource_store=resource_store,
        snapshot_store=snapshot_store,
        channel=channel,
        projection=projection,
        library=library,
        settings_store=settings_store,
        autoplay=AutoPlayer(projection, interval=presenter_settings.autoplay_interval_seconds),
    )


__all__ = ["PresenterContext", "build_context"]
