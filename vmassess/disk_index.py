"""
Identifier-keyed lookup over the managed disks of a subscription.
"""
import logging
from typing import Dict, Iterable, Optional

from .constants import UNMANAGED_TIER
from .models import Disk

logger = logging.getLogger(__name__)


class DiskIndex:
    """Built once per subscription pass, read-only afterwards."""

    def __init__(self, disks: Optional[Dict[str, Disk]] = None):
        self._disks: Dict[str, Disk] = disks or {}

    @classmethod
    def build(cls, disks: Iterable[Disk]) -> 'DiskIndex':
        index: Dict[str, Disk] = {}
        for disk in disks:
            if not disk.disk_id:
                continue
            # Azure ids are case-insensitive; VM references often differ in case
            index.setdefault(disk.disk_id.lower(), disk)
        logger.debug(f"Indexed {len(index)} disks")
        return cls(index)

    def lookup(self, disk_id: Optional[str]) -> Optional[Disk]:
        """The indexed disk, None for unmanaged or foreign references."""
        if not disk_id:
            return None
        return self._disks.get(disk_id.lower())

    def tier_for(self, disk_id: Optional[str]) -> str:
        disk = self.lookup(disk_id)
        if disk is None:
            return UNMANAGED_TIER
        return disk.tier

    def __len__(self) -> int:
        return len(self._disks)
