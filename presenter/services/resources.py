"""Resource catalog access: bundled datasets and the per-session pack library."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import AppConfig, ResourceDefinition
from .acquisition import AcquisitionResult, ResourceAcquisitionPipeline
from .normalization import PayloadParseError, ResourcePack, SchemaError, normalize_pack, parse_payload


LOGGER = logging.getLogger(__name__)


class UnknownResourceError(KeyError):
    """Raised when a resource id is not part of the configured catalog."""


class BundledDatasets:
    """Load the datasets shipped with the application, once per resource."""

    def __init__(self, bundled_root: Path) -> None:
        self._root = bundled_root
        self._cache: Dict[str, Optional[ResourcePack]] = {}

    def load(self, definition: ResourceDefinition) -> Optional[ResourcePack]:
        if definition.id in self._cache:
            return self._cache[definition.id]
        pack = self._read(definition)
        self._cache[definition.id] = pack
        return pack

    def _read(self, definition: ResourceDefinition) -> Optional[ResourcePack]:
        if not definition.bundled_file:
            return None
        path = self._root / definition.bundled_file
        if not path.is_file():
            LOGGER.debug("No bundled dataset for '%s' at %s", definition.id, path)
            return None
        try:
            data = parse_payload(path.read_text(encoding="utf-8-sig"))
            return normalize_pack(definition.id, definition.kind, data)
        except (OSError, UnicodeDecodeError, PayloadParseError, SchemaError) as error:
            LOGGER.warning("Ignoring malformed bundled dataset %s: %s", path, error)
            return None


class ResourceLibrary:
    """Hold one acquired pack per resource id for the lifetime of the process.

    Packs are immutable once acquired. A forced re-acquisition replaces the
    stored result when it completes; if two run at once the later finisher wins.
    """

    def __init__(
        self,
        config: AppConfig,
        pipeline: ResourceAcquisitionPipeline,
        bundled: BundledDatasets,
    ) -> None:
        self._config = config
        self._pipeline = pipeline
        self._bundled = bundled
        self._loaded: Dict[str, AcquisitionResult] = {}

    def definition(self, resource_id: str) -> ResourceDefinition:
        definition = self._config.get_resource(resource_id)
        if definition is None:
            raise UnknownResourceError(resource_id)
        return definition

    async def get(self, resource_id: str, *, force: bool = False) -> AcquisitionResult:
        definition = self.definition(resource_id)
        if not force:
            existing = self._loaded.get(resource_id)
            if existing is not None:
                return existing

        result = await self._pipeline.acquire(
            definition.id,
            definition.mirrors,
            self._bundled.load(definition),
            kind=definition.kind,
            force_network=force,
        )
        self._loaded[resource_id] = result
        LOGGER.info(
            "Resource '%s' ready from %s (%s items)",
            resource_id,
            result.status.value,
            len(result.pack),
        )
        return result

    def describe(self) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        for definition in self._config.resources.values():
            result = self._loaded.get(definition.id)
            entries.append(
                {
                    "id": definition.id,
                    "kind": definition.kind,
                    "label": definition.label,
                    "mirrors": len(definition.mirrors),
                    "bundled": self._bundled.load(definition) is not None,
                    "status": result.status.value if result is not None else None,
                    "count": len(result.pack) if result is not None else 0,
                }
            )
        return entries


__all__ = ["BundledDatasets", "ResourceLibrary", "UnknownResourceError"]
