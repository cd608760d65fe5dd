"""Tiered acquisition of content packs: bundled data, durable cache, mirrors."""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import httpx

from .events import emit_resource_event
from .normalization import (
    PayloadParseError,
    ResourcePack,
    SchemaError,
    normalize_pack,
    parse_payload,
)
from .storage import ResourceStore


LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "PresenterTools/1.0"


class AcquisitionError(Exception):
    """Base class for acquisition failures."""


class TransportError(AcquisitionError):
    """A mirror was unreachable or answered with a non-success status."""


class ParseError(AcquisitionError):
    """A mirror answered with a body that is not structured data."""


class ResourceUnavailable(AcquisitionError):
    """Every tier was exhausted and no fallback data exists."""

    def __init__(self, resource_id: str, message: Optional[str] = None) -> None:
        self.resource_id = resource_id
        super().__init__(
            message or f"Resource '{resource_id}' is unavailable: offline and no local copy exists"
        )


class AcquisitionStatus(str, Enum):
    BUNDLED = "bundled"
    CACHED = "cached"
    NETWORK = "network"
    OFFLINE_FALLBACK = "offline-fallback"


@dataclass(frozen=True)
class AcquisitionResult:
    pack: ResourcePack
    status: AcquisitionStatus
    source: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.status is AcquisitionStatus.OFFLINE_FALLBACK


class ResourceAcquisitionPipeline:
    """Resolve a content pack through bundled data, the durable store and mirrors.

    Mirrors are attempted strictly one after another in the given order. A
    failing mirror is never retried; the next one is tried instead.
    """

    def __init__(
        self,
        store: ResourceStore,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._transport = transport
        self._user_agent = user_agent

    async def acquire(
        self,
        resource_id: str,
        source_urls: Sequence[str],
        bundled: Optional[ResourcePack] = None,
        *,
        kind: str,
        force_network: bool = False,
    ) -> AcquisitionResult:
        if bundled is not None and bundled.kind != kind:
            LOGGER.warning(
                "Ignoring bundled data for '%s': kind %s does not match %s",
                resource_id,
                bundled.kind,
                kind,
            )
            bundled = None

        cached: Optional[ResourcePack] = None
        if not force_network:
            if bundled is not None and bundled.is_substantial():
                emit_resource_event("bundled", resource_id=resource_id, details={"items": len(bundled)})
                return AcquisitionResult(pack=bundled, status=AcquisitionStatus.BUNDLED)

            cached = self._read_cache(resource_id, kind)
            if cached is not None and cached.is_substantial():
                emit_resource_event("cached", resource_id=resource_id, details={"items": len(cached)})
                return AcquisitionResult(pack=cached, status=AcquisitionStatus.CACHED)

        if source_urls:
            result = await self._acquire_from_mirrors(resource_id, kind, source_urls)
            if result is not None:
                return result
        else:
            LOGGER.info("No mirrors configured for '%s'", resource_id)

        fallback, fallback_source = bundled, "bundled"
        if force_network:
            # A forced refresh that fails keeps the last good download.
            cached = self._read_cache(resource_id, kind)
            if cached is not None:
                fallback, fallback_source = cached, "cache"
        if fallback is None:
            emit_resource_event(
                "unavailable",
                resource_id=resource_id,
                details={"mirrors": len(source_urls)},
                level=logging.ERROR,
            )
            raise ResourceUnavailable(resource_id)

        emit_resource_event(
            "offline fallback",
            resource_id=resource_id,
            details={"items": len(fallback), "source": fallback_source},
            level=logging.WARNING,
        )
        return AcquisitionResult(
            pack=fallback, status=AcquisitionStatus.OFFLINE_FALLBACK, source=fallback_source
        )

    def _read_cache(self, resource_id: str, kind: str) -> Optional[ResourcePack]:
        try:
            entry = self._store.get(resource_id)
        except sqlite3.Error as error:
            LOGGER.warning("Could not read cached '%s': %s", resource_id, error)
            return None
        if entry is None:
            return None
        try:
            return normalize_pack(resource_id, kind, entry.payload)
        except SchemaError as error:
            LOGGER.warning("Ignoring malformed cached '%s': %s", resource_id, error)
            return None

    async def _acquire_from_mirrors(
        self, resource_id: str, kind: str, source_urls: Sequence[str]
    ) -> Optional[AcquisitionResult]:
        headers = {"User-Agent": self._user_agent}
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers=headers,
            follow_redirects=True,
        ) as client:
            for position, url in enumerate(source_urls, start=1):
                start = time.perf_counter()
                try:
                    pack = await self._fetch(client, resource_id, kind, url)
                except (TransportError, ParseError, SchemaError) as error:
                    emit_resource_event(
                        "mirror failed",
                        resource_id=resource_id,
                        details={
                            "url": url,
                            "attempt": position,
                            "error": f"{error.__class__.__name__}: {error}",
                        },
                        duration_ms=(time.perf_counter() - start) * 1000.0,
                        level=logging.WARNING,
                    )
                    continue

                emit_resource_event(
                    "mirror succeeded",
                    resource_id=resource_id,
                    details={"url": url, "attempt": position, "items": len(pack)},
                    duration_ms=(time.perf_counter() - start) * 1000.0,
                )
                self._persist(pack)
                return AcquisitionResult(pack=pack, status=AcquisitionStatus.NETWORK, source=url)
        return None

    async def _fetch(
        self, client: httpx.AsyncClient, resource_id: str, kind: str, url: str
    ) -> ResourcePack:
        try:
            response = await client.get(url)
        except httpx.HTTPError as error:
            raise TransportError(f"{url}: {error}") from error
        if not response.is_success:
            raise TransportError(f"{url}: HTTP {response.status_code}")

        try:
            data = parse_payload(response.content.decode("utf-8-sig"))
        except (UnicodeDecodeError, PayloadParseError) as error:
            raise ParseError(f"{url}: {error}") from error
        return normalize_pack(resource_id, kind, data)

    def _persist(self, pack: ResourcePack) -> None:
        try:
            self._store.put(pack.id, pack.to_payload())
        except sqlite3.Error as error:
            LOGGER.warning("Could not cache '%s': %s", pack.id, error)


__all__ = [
    "AcquisitionError",
    "AcquisitionResult",
    "AcquisitionStatus",
    "ParseError",
    "ResourceAcquisitionPipeline",
    "ResourceUnavailable",
    "SchemaError",
    "TransportError",
]
