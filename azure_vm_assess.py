#!/usr/bin/env python3
"""
VM Assess - Azure Virtual Machine Assessment

Enumerates the virtual machines of Azure subscriptions together with their
disks, network interfaces, public IP addresses and size capabilities, and
writes one enriched inventory row per VM.

Usage:
    python3 azure_vm_assess.py
    python3 azure_vm_assess.py --subscription <subscription-id-or-name>
    python3 azure_vm_assess.py --regions eastus,westeurope --parallel-vms 8
    python3 azure_vm_assess.py --output https://mystorageaccount.blob.core.windows.net/assessments/
"""
import argparse
import logging
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.subscription import SubscriptionClient

from vmassess.assessment import (
    AssessmentRun,
    ResourceFetchers,
    run_assessment,
    select_subscriptions,
)
from vmassess.config import generate_sample_config, load_config
from vmassess.constants import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_OUTPUT,
    DEFAULT_PARALLEL_VMS,
    DEFAULT_RETRY_ATTEMPTS,
    INVENTORY_FILE_PREFIX,
    POWER_STATE_PREFIX,
    PROVIDER_AZURE,
    RUN_DIR_PREFIX,
    SKU_CAPABILITY_CORES,
    SKU_CAPABILITY_MEMORY,
    SKU_RESOURCE_TYPE_VM,
    SUMMARY_FILE_NAME,
)
from vmassess.models import (
    RECORD_FIELDS,
    Disk,
    DiskReference,
    NetworkInterface,
    PublicAddress,
    Subscription,
    VirtualMachine,
)
from vmassess.report import summarize_by_size
from vmassess.resource_id import resource_group_of
from vmassess.sku_cache import SkuCapabilityCache
from vmassess.utils import (
    ProgressTracker,
    RunError,
    check_and_raise_auth_error,
    generate_run_id,
    get_timestamp,
    is_blob_url,
    print_summary_table,
    retry_with_backoff,
    safe_filename,
    setup_logging,
    write_csv,
    write_json,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Authentication & Subscriptions
# =============================================================================

def get_credential():
    """Get Azure credential. In Cloud Shell, uses managed identity."""
    return DefaultAzureCredential()


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS)
def get_subscriptions(credential) -> List[Subscription]:
    """Get all accessible subscriptions."""
    subscription_client = SubscriptionClient(credential)
    subscriptions = []

    try:
        for sub in subscription_client.subscriptions.list():
            subscriptions.append(Subscription(
                subscription_id=sub.subscription_id,
                display_name=sub.display_name or sub.subscription_id,
                tenant_id=getattr(sub, 'tenant_id', None) or '',
                state=_enum_value(sub.state),
            ))
    except Exception as e:
        check_and_raise_auth_error(e, "list subscriptions")
        raise

    return subscriptions


# =============================================================================
# SDK Object Conversion
# =============================================================================

def _enum_value(value: Any) -> str:
    """Plain string of an SDK enum member such as SubscriptionState.ENABLED."""
    return getattr(value, 'value', value) or ''


def _disk_reference(disk: Any) -> DiskReference:
    """Convert an OS or data disk entry of a VM storage profile."""
    if disk is None:
        return DiskReference()
    managed_disk = getattr(disk, 'managed_disk', None)
    size = getattr(disk, 'disk_size_gb', None)
    return DiskReference(
        disk_id=getattr(managed_disk, 'id', None) or '',
        name=getattr(disk, 'name', None) or '',
        size_gb=float(size) if size is not None else None,
        lun=getattr(disk, 'lun', None),
    )


def _power_state(instance_view: Any) -> Optional[str]:
    """Running state from an instance view, e.g. 'running' or 'deallocated'."""
    for status in getattr(instance_view, 'statuses', None) or []:
        code = getattr(status, 'code', None) or ''
        if code.startswith(POWER_STATE_PREFIX):
            return code[len(POWER_STATE_PREFIX):]
    return None


def vm_from_sdk(vm: Any, power_state: Optional[str] = None) -> VirtualMachine:
    storage = vm.storage_profile
    os_disk = storage.os_disk if storage else None
    os_type = getattr(os_disk, 'os_type', None)

    return VirtualMachine(
        vm_id=vm.id,
        name=vm.name,
        resource_group=resource_group_of(vm.id),
        region=vm.location or '',
        vm_size=vm.hardware_profile.vm_size if vm.hardware_profile else 'unknown',
        os_type=_enum_value(os_type) or 'unknown',
        os_disk=_disk_reference(os_disk),
        data_disks=tuple(_disk_reference(dd) for dd in (storage.data_disks or [])) if storage else (),
        power_state=power_state,
    )


def nic_from_sdk(nic: Any) -> NetworkInterface:
    configs = list(nic.ip_configurations or [])
    config = next((c for c in configs if getattr(c, 'primary', False)), configs[0] if configs else None)

    subnet = getattr(config, 'subnet', None)
    nsg = getattr(nic, 'network_security_group', None)
    vm_ref = getattr(nic, 'virtual_machine', None)

    return NetworkInterface(
        nic_id=nic.id,
        name=nic.name or '',
        vm_id=getattr(vm_ref, 'id', None),
        primary=bool(getattr(nic, 'primary', False)),
        ip_configuration_id=getattr(config, 'id', None) or '',
        subnet_id=getattr(subnet, 'id', None) or '',
        private_ip=getattr(config, 'private_ip_address', None) or '',
        security_group_ids=(nsg.id,) if nsg is not None and getattr(nsg, 'id', None) else (),
    )


def public_address_from_sdk(pip: Any) -> PublicAddress:
    ip_config = getattr(pip, 'ip_configuration', None)
    return PublicAddress(
        public_ip_id=pip.id,
        name=pip.name or '',
        ip_configuration_id=getattr(ip_config, 'id', None) or '',
        ip_address=getattr(pip, 'ip_address', None) or '',
    )


def catalog_entry_from_sdk(sku: Any) -> Dict[str, Any]:
    capabilities = {
        getattr(cap, 'name', None): getattr(cap, 'value', None)
        for cap in (getattr(sku, 'capabilities', None) or [])
    }
    return {
        'size_id': sku.name,
        'cores': capabilities.get(SKU_CAPABILITY_CORES),
        'memory_gb': capabilities.get(SKU_CAPABILITY_MEMORY),
    }


# =============================================================================
# Resource Fetchers
# =============================================================================

def fetch_power_state(compute_client, vm: Any) -> Optional[str]:
    """Running state of one VM, None when the status query fails."""
    try:
        view = compute_client.virtual_machines.instance_view(resource_group_of(vm.id), vm.name)
        return _power_state(view)
    except Exception as e:
        logger.warning(f"Failed to get status of VM {vm.name}: {e}")
        return None


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS)
def fetch_vms(credential, subscription_id: str, include_status: bool = True) -> List[VirtualMachine]:
    """Enumerate the subscription's VMs, with their running state."""
    vms = []
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)

        for vm in compute_client.virtual_machines.list_all():
            if not vm.id:
                continue
            power_state = fetch_power_state(compute_client, vm) if include_status else None
            vms.append(vm_from_sdk(vm, power_state))
    except Exception as e:
        check_and_raise_auth_error(e, "list VMs")
        raise

    logger.info(f"Found {len(vms)} Azure VMs")
    return vms


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS)
def fetch_disks(credential, subscription_id: str) -> List[Disk]:
    """Enumerate the subscription's managed disks."""
    disks = []
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)

        for disk in compute_client.disks.list():
            if not disk.id:
                continue
            disks.append(Disk(
                disk_id=disk.id,
                name=disk.name or '',
                tier=_enum_value(disk.sku.name if disk.sku else None) or 'unknown',
                size_gb=float(disk.disk_size_gb or 0),
            ))
    except Exception as e:
        check_and_raise_auth_error(e, "list Disks")
        raise

    logger.info(f"Found {len(disks)} Azure Managed Disks")
    return disks


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS)
def fetch_network_interfaces(credential, subscription_id: str) -> List[NetworkInterface]:
    """Enumerate network interfaces attached to a VM."""
    nics = []
    try:
        network_client = NetworkManagementClient(credential, subscription_id)

        for nic in network_client.network_interfaces.list_all():
            if not nic.id or not getattr(nic, 'virtual_machine', None):
                continue  # Detached interfaces are not part of the inventory
            nics.append(nic_from_sdk(nic))
    except Exception as e:
        check_and_raise_auth_error(e, "list Network Interfaces")
        raise

    logger.info(f"Found {len(nics)} attached network interfaces")
    return nics


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS)
def fetch_public_addresses(credential, subscription_id: str) -> List[PublicAddress]:
    """Enumerate public IP addresses."""
    addresses = []
    try:
        network_client = NetworkManagementClient(credential, subscription_id)

        for pip in network_client.public_ip_addresses.list_all():
            if not pip.id:
                continue
            addresses.append(public_address_from_sdk(pip))
    except Exception as e:
        check_and_raise_auth_error(e, "list Public IP Addresses")
        raise

    logger.info(f"Found {len(addresses)} public IP addresses")
    return addresses


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS)
def fetch_region_catalog(credential, subscription_id: str, region: str) -> List[Dict[str, Any]]:
    """VM size catalog of one region from the resource SKU API."""
    entries = []
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)

        for sku in compute_client.resource_skus.list(filter=f"location eq '{region}'"):
            if getattr(sku, 'resource_type', None) != SKU_RESOURCE_TYPE_VM:
                continue
            entries.append(catalog_entry_from_sdk(sku))
    except Exception as e:
        check_and_raise_auth_error(e, f"list VM sizes in {region}")
        raise

    logger.debug(f"Found {len(entries)} VM sizes in {region}")
    return entries


def build_fetchers(credential) -> ResourceFetchers:
    return ResourceFetchers(
        list_vms=partial(fetch_vms, credential),
        list_disks=partial(fetch_disks, credential),
        list_network_interfaces=partial(fetch_network_interfaces, credential),
        list_public_addresses=partial(fetch_public_addresses, credential),
    )


def build_sku_cache(credential, subscription_id: str) -> SkuCapabilityCache:
    """Run-wide cache; the catalog is read through the given subscription."""
    fetch: Callable[[str], Iterable[Dict[str, Any]]] = partial(fetch_region_catalog, credential, subscription_id)
    return SkuCapabilityCache(fetch_catalog=fetch)


# =============================================================================
# Output
# =============================================================================

def build_summary(run: AssessmentRun, run_id: str, timestamp: str) -> Dict[str, Any]:
    summaries = summarize_by_size(run.batches)
    return {
        'run_id': run_id,
        'timestamp': timestamp,
        'provider': PROVIDER_AZURE,
        'aborted': run.aborted,
        'subscriptions': [batch.summary() for batch in run.batches],
        'failed_subscriptions': run.failed_subscription_ids,
        'total_vms': sum(batch.vm_count for batch in run.batches),
        'total_disk_gb': sum(batch.total_disk_gb for batch in run.batches),
        'sizes': [s.to_dict() for s in summaries],
        'diagnostics': [d.to_dict() for d in run.all_diagnostics()],
    }


def write_outputs(run: AssessmentRun, output_base: str, run_id: str, timestamp: str) -> str:
    """Write per-subscription CSVs and the run summary; returns the run directory."""
    dir_ts = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
    run_dir = f"{output_base.rstrip('/')}/{RUN_DIR_PREFIX}_{dir_ts}"
    if not is_blob_url(run_dir):
        os.makedirs(run_dir, exist_ok=True)

    for batch in run.batches:
        sub = batch.subscription
        filename = f"{INVENTORY_FILE_PREFIX}_{safe_filename(sub.display_name)}_{sub.subscription_id[:8]}.csv"
        write_csv(batch.rows(), f"{run_dir}/{filename}", fieldnames=RECORD_FIELDS)

    write_json(build_summary(run, run_id, timestamp), f"{run_dir}/{SUMMARY_FILE_NAME}")
    return run_dir


# =============================================================================
# Main
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='VM Assess - Azure Virtual Machine Assessment')
    parser.add_argument(
        '--subscription',
        action='append',
        help='Subscription ID or display name to assess (repeatable, default: all enabled)'
    )
    parser.add_argument('--regions', help='Comma-separated list of regions to filter (e.g., eastus,westus2)')
    parser.add_argument('--output', help=f'Output directory or blob URL (default: {DEFAULT_OUTPUT})')
    parser.add_argument('--log-level', help=f'Logging level (default: {DEFAULT_LOG_LEVEL})')
    parser.add_argument('--config', help='Path to a YAML config file')
    parser.add_argument(
        '--parallel-vms',
        type=int,
        help='Number of VMs enriched in parallel per subscription (default: 1, serial)'
    )
    parser.add_argument(
        '--skip-status',
        action='store_true',
        help='Skip the per-VM running status query (faster for large subscriptions)'
    )
    parser.add_argument(
        '--generate-config',
        action='store_true',
        help='Print a sample config file and exit'
    )
    return parser.parse_args(argv)


def _apply_defaults(args: argparse.Namespace) -> None:
    if not args.output:
        args.output = DEFAULT_OUTPUT
    if not args.log_level:
        args.log_level = DEFAULT_LOG_LEVEL
    if not args.parallel_vms:
        args.parallel_vms = DEFAULT_PARALLEL_VMS
    if isinstance(args.regions, str):
        args.regions = [r.strip() for r in args.regions.split(',') if r.strip()]


def _install_abort_handler(abort: threading.Event) -> None:
    """First Ctrl-C stops new subscription passes; the second one interrupts."""
    def handler(signum, frame):
        if abort.is_set():
            raise KeyboardInterrupt
        print("\nAbort requested - finishing the current subscription...")
        abort.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, handler)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return

    try:
        load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    _apply_defaults(args)

    log_dir = None if is_blob_url(args.output) else args.output
    setup_logging(args.log_level, output_dir=log_dir)

    try:
        credential = get_credential()
    except Exception as e:
        logger.error(f"Failed to authenticate with Azure: {e}")
        logger.error("Check your Azure credentials are configured correctly.")
        sys.exit(1)

    try:
        try:
            all_subscriptions = get_subscriptions(credential)
        except Exception as e:
            raise RunError(f"Failed to list Azure subscriptions: {e}") from e
        subscriptions = select_subscriptions(all_subscriptions, args.subscription)
    except RunError as e:
        logger.error(str(e))
        logger.error("Check your credentials have subscription read access.")
        sys.exit(1)

    logger.info(f"Found {len(subscriptions)} subscription(s) to assess")

    fetchers = build_fetchers(credential)
    if args.skip_status:
        fetchers = ResourceFetchers(
            list_vms=partial(fetch_vms, credential, include_status=False),
            list_disks=fetchers.list_disks,
            list_network_interfaces=fetchers.list_network_interfaces,
            list_public_addresses=fetchers.list_public_addresses,
        )
    sku_cache = build_sku_cache(credential, subscriptions[0].subscription_id)

    abort = threading.Event()
    _install_abort_handler(abort)

    with ProgressTracker("Azure VM", total_subscriptions=len(subscriptions)) as tracker:
        run = run_assessment(
            subscriptions, fetchers, sku_cache,
            parallel_vms=args.parallel_vms,
            regions=args.regions,
            abort=abort,
            tracker=tracker,
        )

    if not run.batches:
        logger.error("No subscription could be assessed")
        sys.exit(1)

    run_id = generate_run_id()
    run_dir = write_outputs(run, args.output, run_id, get_timestamp())

    print(f"\nRun ID: {run_id}")
    print(f"VM size catalogs fetched: {sku_cache.fetch_count} region(s)")
    print_summary_table([s.to_dict() for s in summarize_by_size(run.batches)])
    print(f"Output: {run_dir}/")


if __name__ == '__main__':
    main()
