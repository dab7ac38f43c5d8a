"""
Assessment runner.

Drives one pass per subscription: fetch the resource collections once, index
them, enrich every VM, assemble the batch. Failures are contained at the
narrowest scope that can absorb them: a VM step, a subscription pass, or the
whole run.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from .constants import SCOPE_RUN, SCOPE_SUBSCRIPTION, SUBSCRIPTION_STATE_ENABLED
from .disk_index import DiskIndex
from .enrich import enrich_vm
from .models import (
    Diagnostic,
    Disk,
    NetworkInterface,
    PublicAddress,
    ReportBatch,
    Subscription,
    VirtualMachine,
)
from .report import assemble_report
from .sku_cache import SkuCapabilityCache
from .utils import AuthError, ProgressTracker, RunError, parallel_map

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceFetchers:
    """Per-subscription enumerations consumed by the engine, keyed by subscription id."""
    list_vms: Callable[[str], List[VirtualMachine]]
    list_disks: Callable[[str], List[Disk]]
    list_network_interfaces: Callable[[str], List[NetworkInterface]]
    list_public_addresses: Callable[[str], List[PublicAddress]]


@dataclass
class AssessmentRun:
    """Outcome of a run: finished batches plus subscription and run diagnostics."""
    batches: List[ReportBatch] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    aborted: bool = False

    @property
    def failed_subscription_ids(self) -> List[str]:
        return [d.target_id for d in self.diagnostics if d.scope == SCOPE_SUBSCRIPTION]

    def all_diagnostics(self) -> List[Diagnostic]:
        """Run diagnostics followed by every batch's VM diagnostics."""
        result = list(self.diagnostics)
        for batch in self.batches:
            result.extend(batch.diagnostics)
        return result


def select_subscriptions(
    subscriptions: Sequence[Subscription],
    requested: Optional[Iterable[str]] = None
) -> List[Subscription]:
    """
    Pick the subscriptions to assess.

    Requested values match a subscription id or display name (case-insensitive);
    without a request every enabled subscription is selected.

    Raises:
        RunError: If nothing is selected
    """
    requested = [r for r in (requested or []) if r]
    if not requested:
        selected = [s for s in subscriptions if s.state == SUBSCRIPTION_STATE_ENABLED]
        if not selected:
            raise RunError("No enabled Azure subscriptions found. Check permissions.")
        return selected

    selected = []
    for value in requested:
        wanted = value.lower()
        match = next(
            (s for s in subscriptions
             if s.subscription_id.lower() == wanted or s.display_name.lower() == wanted),
            None
        )
        if match is None:
            raise RunError(f"Subscription {value} not found")
        if match not in selected:
            selected.append(match)
    return selected


def filter_regions(vms: List[VirtualMachine], regions: Optional[Iterable[str]]) -> List[VirtualMachine]:
    region_filter = {r.strip().lower() for r in (regions or []) if r and r.strip()}
    if not region_filter:
        return vms
    filtered = [vm for vm in vms if vm.region and vm.region.lower() in region_filter]
    logger.info(f"Filtered to {len(filtered)} VMs in regions: {', '.join(sorted(region_filter))} (from {len(vms)} total)")
    return filtered


def assess_subscription(
    subscription: Subscription,
    fetchers: ResourceFetchers,
    sku_cache: SkuCapabilityCache,
    parallel_vms: int = 1,
    regions: Optional[Iterable[str]] = None
) -> ReportBatch:
    """
    Run one subscription pass.

    Args:
        subscription: The subscription to assess
        fetchers: Resource enumerations
        sku_cache: Run-wide size capability cache
        parallel_vms: Number of VMs enriched concurrently (1 = serial)
        regions: Optional region filter applied to the VM collection

    Returns:
        The subscription's batch, one record per VM in enumeration order

    Raises:
        Exception: Whatever a fetcher raises while enumerating a collection
    """
    sub_id = subscription.subscription_id
    logger.info(f"Assessing subscription: {subscription.display_name} ({sub_id})")

    vms = filter_regions(fetchers.list_vms(sub_id), regions)
    disk_index = DiskIndex.build(fetchers.list_disks(sub_id))
    network_interfaces = fetchers.list_network_interfaces(sub_id)
    public_addresses = fetchers.list_public_addresses(sub_id)

    if parallel_vms > 1 and len(vms) > 1:
        # Populate every region before concurrent reads begin
        try:
            sku_cache.warm(vm.region for vm in vms)
        except Exception as e:
            logger.warning(f"Failed to pre-load VM size catalogs: {e}")

    def enrich(vm: VirtualMachine):
        diagnostics: List[Diagnostic] = []
        record = enrich_vm(
            vm, disk_index, sku_cache, network_interfaces, public_addresses,
            subscription=subscription, diagnostics=diagnostics
        )
        return record, diagnostics

    results = parallel_map(enrich, vms, parallel_workers=parallel_vms)

    records = [record for record, _ in results]
    diagnostics = [d for _, vm_diagnostics in results for d in vm_diagnostics]
    if diagnostics:
        logger.warning(f"{len(diagnostics)} enrichment step(s) failed in subscription {subscription.display_name}")
    logger.info(f"Assessed {len(records)} VMs in subscription {subscription.display_name}")

    return assemble_report(subscription, records, diagnostics)


def run_assessment(
    subscriptions: Sequence[Subscription],
    fetchers: ResourceFetchers,
    sku_cache: SkuCapabilityCache,
    parallel_vms: int = 1,
    regions: Optional[Iterable[str]] = None,
    abort: Optional[threading.Event] = None,
    tracker: Optional[ProgressTracker] = None
) -> AssessmentRun:
    """
    Assess each subscription in turn.

    A failing subscription is reported and skipped. Once abort is set no new
    subscription pass is started; finished batches are kept.
    """
    run = AssessmentRun()
    regions = list(regions or [])

    for position, subscription in enumerate(subscriptions):
        if abort is not None and abort.is_set():
            skipped = [s.subscription_id for s in subscriptions[position:]]
            logger.warning(f"Assessment aborted, skipping {len(skipped)} remaining subscription(s)")
            run.diagnostics.append(Diagnostic(
                SCOPE_RUN, "", 'abort', f"Not assessed: {', '.join(skipped)}"
            ))
            run.aborted = True
            break

        sub_id = subscription.subscription_id
        if tracker:
            tracker.start_subscription(sub_id, subscription.display_name)

        try:
            batch = assess_subscription(
                subscription, fetchers, sku_cache,
                parallel_vms=parallel_vms, regions=regions
            )
        except AuthError as e:
            logger.error(f"Authentication/authorization error for subscription {sub_id} ({subscription.display_name}): {e}")
            logger.error("Check that you have correct permissions for this subscription.")
            run.diagnostics.append(Diagnostic(SCOPE_SUBSCRIPTION, sub_id, 'auth', str(e)))
            if tracker:
                tracker.complete_subscription(failed=True)
            continue
        except Exception as e:
            logger.error(f"Failed to assess subscription {sub_id} ({subscription.display_name}): {e}")
            run.diagnostics.append(Diagnostic(SCOPE_SUBSCRIPTION, sub_id, 'enumerate', str(e)))
            if tracker:
                tracker.complete_subscription(failed=True)
            continue

        run.batches.append(batch)
        if tracker:
            tracker.add_vms(batch.vm_count, batch.total_disk_gb)
            tracker.complete_subscription()

    if run.failed_subscription_ids:
        logger.warning(f"Assessment failed for {len(run.failed_subscription_ids)} subscription(s)")

    return run
