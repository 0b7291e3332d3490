"""
Metadata cache owned by PricingService.

Entries are keyed by (workbook upload time, mapping hash, override layer
hash); any change to one of them misses. invalidate() drops everything and is
called on upload, mapping save, override save and reanalysis. API handlers
run in a threadpool, so every access holds the cache lock.
"""
import hashlib
import json
import logging
import threading
from typing import Callable, Optional

from ..blueprint.models import BlueprintOverrides
from ..engine.models import LineOverride, PricingMetadata
from ..workbook.mapping import WorkbookMapping, mapping_key

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


def _digest(payload) -> str:
    text = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


def metadata_cache_key(
    uploaded_at: Optional[str],
    mapping: WorkbookMapping,
    overrides: Optional[BlueprintOverrides] = None,
    line_overrides: Optional[list[LineOverride]] = None,
) -> CacheKey:
    layer = {
        "blueprint": overrides.to_dict() if overrides else None,
        "lines": [override.to_dict() for override in line_overrides or []],
    }
    return (uploaded_at or "", mapping_key(mapping), _digest(layer))


class MetadataCache:
    """Single-entry metadata cache plus the workbook binary it was built from."""

    def __init__(self):
        self._lock = threading.RLock()
        self._key: Optional[CacheKey] = None
        self._metadata: Optional[PricingMetadata] = None
        self._binary_version: Optional[str] = None
        self._binary: Optional[bytes] = None

    def get(self, key: CacheKey) -> Optional[PricingMetadata]:
        with self._lock:
            if self._metadata is not None and self._key == key:
                return self._metadata
            return None

    def get_or_build(self, key: CacheKey, builder: Callable[[], PricingMetadata]) -> PricingMetadata:
        with self._lock:
            cached = self.get(key)
            if cached is not None:
                return cached
            logger.info("Rebuilding pricing metadata (workbook %s, mapping %s)", key[0] or "-", key[1])
            metadata = builder()
            self._key = key
            self._metadata = metadata
            return metadata

    def binary(self, version: Optional[str], loader: Callable[[], Optional[bytes]]) -> Optional[bytes]:
        """Workbook bytes for an upload version, loaded once per version."""
        with self._lock:
            if self._binary is None or self._binary_version != version:
                self._binary = loader()
                self._binary_version = version
            return self._binary

    def invalidate(self) -> None:
        logger.info("Pricing metadata cache invalidated")
        with self._lock:
            self._key = None
            self._metadata = None
            self._binary_version = None
            self._binary = None
