"""
SKU capability cache.

Maps (region, size) to the (cores, memory) capability pair of a VM size. The
catalog of a region is fetched on first use and kept for the rest of the run;
entries are never evicted or refreshed.

Usage:
    cache = SkuCapabilityCache(fetch_catalog=lambda region: [...])
    capability = cache.resolve("eastus", "Standard_D2s_v3")
    if capability is None:
        ...  # size not available in that region
"""
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .models import SizeCapability

logger = logging.getLogger(__name__)

# A catalog entry as returned by the fetcher: {'size_id', 'cores', 'memory_gb'}
CatalogEntry = Mapping[str, Any]
CatalogFetcher = Callable[[str], Iterable[CatalogEntry]]

# Marker for a size listed more than once with conflicting values
_INCONSISTENT = object()


def _parse_entry(entry: CatalogEntry) -> Optional[SizeCapability]:
    """Convert a raw catalog entry, None when it is malformed."""
    size_id = entry.get('size_id')
    if not size_id:
        return None
    try:
        cores = int(float(entry.get('cores')))  # type: ignore[arg-type]
        memory_gb = float(entry.get('memory_gb'))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if cores < 0 or memory_gb < 0:
        return None
    return SizeCapability(size_id=str(size_id), cores=cores, memory_gb=memory_gb)


def index_catalog(entries: Iterable[CatalogEntry]) -> Dict[str, Any]:
    """
    Index a region's catalog by lower-cased size id.

    Malformed entries are skipped. A size listed twice with different values
    is marked inconsistent and will not resolve.
    """
    index: Dict[str, Any] = {}
    skipped = 0
    for entry in entries:
        capability = _parse_entry(entry)
        if capability is None:
            skipped += 1
            continue
        key = capability.size_id.lower()
        existing = index.get(key)
        if existing is None:
            index[key] = capability
        elif existing is not _INCONSISTENT and (
            existing.cores != capability.cores or existing.memory_gb != capability.memory_gb
        ):
            logger.debug(f"Inconsistent catalog entries for size {capability.size_id}")
            index[key] = _INCONSISTENT
    if skipped:
        logger.debug(f"Skipped {skipped} malformed catalog entries")
    return index


class SkuCapabilityCache:
    """
    Per-region, lazily-populated size capability lookup.

    Population of a region is guarded by a per-region lock, so the single
    fetch for a region completes before any read of that region. A region is
    only published once its catalog is fully indexed. A failed fetch publishes
    no catalog; its error is kept and raised again for every later lookup in
    that region, so a region is fetched at most once per run.
    """

    def __init__(self, fetch_catalog: CatalogFetcher):
        self._fetch_catalog = fetch_catalog
        self._regions: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, Exception] = {}
        self._region_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self.fetch_count = 0

    def _region_lock(self, region: str) -> threading.Lock:
        with self._lock:
            lock = self._region_locks.get(region)
            if lock is None:
                lock = self._region_locks[region] = threading.Lock()
            return lock

    def _catalog(self, region: str) -> Dict[str, Any]:
        key = (region or "").lower()
        catalog = self._regions.get(key)
        if catalog is not None:
            return catalog

        with self._region_lock(key):
            catalog = self._regions.get(key)
            if catalog is None:
                failure = self._failures.get(key)
                if failure is not None:
                    raise failure
                logger.info(f"Fetching VM size catalog for region {key or '<none>'}")
                with self._lock:
                    self.fetch_count += 1
                try:
                    catalog = index_catalog(self._fetch_catalog(key))
                except Exception as e:
                    self._failures[key] = e
                    raise
                self._regions[key] = catalog
                logger.debug(f"Indexed {len(catalog)} VM sizes for region {key}")
        return catalog

    def resolve(self, region: str, size_id: str) -> Optional[SizeCapability]:
        """Capability of a size in a region, None when not available."""
        catalog = self._catalog(region)
        capability = catalog.get((size_id or "").lower())
        if capability is None or capability is _INCONSISTENT:
            logger.debug(f"Size {size_id} not available in region {region}")
            return None
        return capability

    def warm(self, regions: Iterable[str]) -> None:
        """Populate every given region up front, before concurrent reads."""
        for region in sorted({(r or "").lower() for r in regions}):
            self._catalog(region)

    @property
    def regions(self) -> List[str]:
        """Regions populated so far."""
        return sorted(self._regions)

    def __contains__(self, region: str) -> bool:
        return (region or "").lower() in self._regions
