"""
VM enrichment correlator.

Joins a virtual machine with its disks, network interfaces, public addresses
and size capability into one EnrichedVmRecord. Each resolution step is
guarded: a failing step is reported as a VM-scoped Diagnostic, its fields keep
their placeholder values, and the record is still produced.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .constants import NOT_AVAILABLE, SCOPE_VM
from .disk_index import DiskIndex
from .models import (
    Diagnostic,
    DiskReference,
    EnrichedVmRecord,
    NetworkInterface,
    PublicAddress,
    Subscription,
    VirtualMachine,
)
from .resource_id import resource_name, split_subnet_id
from .sku_cache import SkuCapabilityCache

logger = logging.getLogger(__name__)

T = TypeVar('T')

_EMPTY_NETWORK: Dict[str, Any] = {
    'vnet': "",
    'subnet': "",
    'private_ip': "",
    'public_ip': "",
    'nsg': "",
    'nic_count': 0,
}


def _guarded(
    stage: str,
    vm: VirtualMachine,
    diagnostics: List[Diagnostic],
    step: Callable[[], T],
    fallback: T
) -> T:
    """Run one resolution step, recording a diagnostic instead of raising."""
    try:
        return step()
    except Exception as e:
        logger.warning(f"Failed to resolve {stage} for VM {vm.name}: {e}")
        diagnostics.append(Diagnostic(scope=SCOPE_VM, target_id=vm.vm_id, stage=stage, message=str(e)))
        return fallback


# =============================================================================
# Resolution Steps
# =============================================================================

def resolve_capability(vm: VirtualMachine, sku_cache: SkuCapabilityCache) -> Tuple[Any, Any]:
    """(cores, memory_gb) of the VM's size, N/A placeholders when unknown."""
    capability = sku_cache.resolve(vm.region, vm.vm_size)
    if capability is None:
        return NOT_AVAILABLE, NOT_AVAILABLE
    return capability.cores, capability.memory_gb


def _declared_size(ref: DiskReference, disk_index: DiskIndex) -> float:
    if ref.size_gb is not None:
        return float(ref.size_gb)
    # Managed disk references may omit the size; fall back to the disk itself
    disk = disk_index.lookup(ref.disk_id)
    return float(disk.size_gb) if disk else 0.0


def _disk_label(ref: DiskReference) -> str:
    if ref.name:
        return ref.name
    name = resource_name(ref.disk_id)
    if name:
        return name
    return f"lun{ref.lun}" if ref.lun is not None else "disk"


def resolve_disks(vm: VirtualMachine, disk_index: DiskIndex) -> Tuple[int, float, str, Tuple[str, ...]]:
    """
    Resolve disk tiers and aggregate capacity.

    Returns (disk_count, total_disk_gb, os_disk_tier, data_disk_tiers) where
    data_disk_tiers keeps the VM's own data disk order. References that do not
    resolve get the unmanaged tier but still count towards the total.
    """
    os_tier = disk_index.tier_for(vm.os_disk.disk_id)
    total_gb = _declared_size(vm.os_disk, disk_index)

    annotations = []
    for ref in vm.data_disks:
        size_gb = _declared_size(ref, disk_index)
        tier = disk_index.tier_for(ref.disk_id)
        total_gb += size_gb
        annotations.append(f"{_disk_label(ref)}, {size_gb:g} GiB, {tier}")

    return 1 + len(vm.data_disks), round(total_gb, 2), os_tier, tuple(annotations)


def select_interface(
    vm: VirtualMachine,
    network_interfaces: Sequence[NetworkInterface]
) -> Tuple[Optional[NetworkInterface], int]:
    """
    Pick the interface reported for a VM.

    One record is produced per VM: the primary interface wins, otherwise the
    first attached interface in fetch order. Also returns how many matched.
    """
    vm_key = vm.vm_id.lower()
    attached = [nic for nic in network_interfaces if nic.vm_id and nic.vm_id.lower() == vm_key]
    if not attached:
        return None, 0
    primary = next((nic for nic in attached if nic.primary), attached[0])
    return primary, len(attached)


def match_public_address(
    nic: NetworkInterface,
    public_addresses: Sequence[PublicAddress]
) -> Optional[PublicAddress]:
    """First public address, in fetch order, bound to the interface's IP configuration."""
    if not nic.ip_configuration_id:
        return None
    config_key = nic.ip_configuration_id.lower()
    for address in public_addresses:
        if address.ip_configuration_id and address.ip_configuration_id.lower() == config_key:
            return address
    return None


def resolve_network(
    vm: VirtualMachine,
    network_interfaces: Sequence[NetworkInterface],
    public_addresses: Sequence[PublicAddress]
) -> Dict[str, Any]:
    nic, nic_count = select_interface(vm, network_interfaces)
    if nic is None:
        logger.debug(f"No network interface attached to VM {vm.name}")
        return dict(_EMPTY_NETWORK)

    vnet, subnet = split_subnet_id(nic.subnet_id)
    address = match_public_address(nic, public_addresses)
    nsg = ';'.join(resource_name(nsg_id, nsg_id) for nsg_id in nic.security_group_ids)

    return {
        'vnet': vnet,
        'subnet': subnet,
        'private_ip': nic.private_ip or "",
        'public_ip': address.ip_address if address and address.ip_address else "",
        'nsg': nsg,
        'nic_count': nic_count,
    }


# =============================================================================
# Correlator
# =============================================================================

def enrich_vm(
    vm: VirtualMachine,
    disk_index: DiskIndex,
    sku_cache: SkuCapabilityCache,
    network_interfaces: Sequence[NetworkInterface],
    public_addresses: Sequence[PublicAddress],
    subscription: Optional[Subscription] = None,
    diagnostics: Optional[List[Diagnostic]] = None
) -> EnrichedVmRecord:
    """
    Build the enriched record of one VM.

    Args:
        vm: The virtual machine snapshot
        disk_index: Disks of the VM's subscription
        sku_cache: Shared size capability cache
        network_interfaces: Attached interfaces of the subscription
        public_addresses: Public addresses of the subscription, in fetch order
        subscription: Owning subscription, copied into the record
        diagnostics: List receiving VM-scoped failure reports

    Returns:
        The record; always produced, whatever failed to resolve
    """
    if diagnostics is None:
        diagnostics = []

    cores, memory_gb = _guarded(
        'capability', vm, diagnostics,
        lambda: resolve_capability(vm, sku_cache),
        (NOT_AVAILABLE, NOT_AVAILABLE)
    )
    disk_count, total_disk_gb, os_disk_tier, data_disk_tiers = _guarded(
        'disks', vm, diagnostics,
        lambda: resolve_disks(vm, disk_index),
        (1 + len(vm.data_disks), 0.0, "", ())
    )
    network = _guarded(
        'network', vm, diagnostics,
        lambda: resolve_network(vm, network_interfaces, public_addresses),
        dict(_EMPTY_NETWORK)
    )

    return EnrichedVmRecord(
        vm_id=vm.vm_id,
        vm_name=vm.name,
        resource_group=vm.resource_group,
        region=vm.region,
        vm_size=vm.vm_size,
        os_type=vm.os_type,
        cores=cores,
        memory_gb=memory_gb,
        disk_count=disk_count,
        total_disk_gb=total_disk_gb,
        os_disk_tier=os_disk_tier,
        data_disk_tiers=data_disk_tiers,
        power_state=vm.power_state or "",
        subscription_id=subscription.subscription_id if subscription else "",
        subscription_name=subscription.display_name if subscription else "",
        **network
    )
