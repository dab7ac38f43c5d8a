"""
Report assembly: per-subscription batches and run-wide summaries.
"""
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Sequence

from .models import Diagnostic, EnrichedVmRecord, ReportBatch, Subscription


def assemble_report(
    subscription: Subscription,
    records: Iterable[EnrichedVmRecord],
    diagnostics: Iterable[Diagnostic] = ()
) -> ReportBatch:
    """Collect a subscription's records in VM enumeration order."""
    return ReportBatch(
        subscription=subscription,
        records=tuple(records),
        diagnostics=tuple(diagnostics),
    )


@dataclass
class SizeSummary:
    """Aggregated footprint of one VM size across a run."""
    vm_size: str
    vm_count: int = 0
    total_cores: int = 0
    total_memory_gb: float = 0.0
    total_disk_gb: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


def summarize_by_size(batches: Sequence[ReportBatch]) -> List[SizeSummary]:
    """
    Aggregate records of all batches by VM size.

    Sizes without capability data contribute their VM count and disks only.
    """
    summaries: Dict[str, SizeSummary] = {}

    for batch in batches:
        for record in batch.records:
            key = record.vm_size or 'unknown'
            if key not in summaries:
                summaries[key] = SizeSummary(vm_size=key)

            summary = summaries[key]
            summary.vm_count += 1
            summary.total_disk_gb += record.total_disk_gb
            if isinstance(record.cores, int):
                summary.total_cores += record.cores
            if isinstance(record.memory_gb, (int, float)):
                summary.total_memory_gb += record.memory_gb

    return sorted(summaries.values(), key=lambda s: (-s.vm_count, s.vm_size))
