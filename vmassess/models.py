"""
Data models for the VM assessment engine.

Every entity is a frozen snapshot built once from fetched data; nothing is
field-assigned after construction.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .constants import NOT_AVAILABLE

# Column order of the exported inventory rows
RECORD_FIELDS = [
    'subscription_id',
    'subscription_name',
    'vm_id',
    'vm_name',
    'resource_group',
    'region',
    'vm_size',
    'os_type',
    'cores',
    'memory_gb',
    'disk_count',
    'total_disk_gb',
    'os_disk_tier',
    'data_disk_tiers',
    'vnet',
    'subnet',
    'private_ip',
    'public_ip',
    'nsg',
    'nic_count',
    'power_state',
]


@dataclass(frozen=True)
class Subscription:
    """An Azure subscription, the root scope of a pass."""
    subscription_id: str
    display_name: str = ""
    tenant_id: str = ""
    state: str = "Enabled"


@dataclass(frozen=True)
class DiskReference:
    """A VM's pointer to one of its disks."""
    disk_id: str = ""  # Empty for unmanaged (VHD) disks
    name: str = ""
    size_gb: Optional[float] = None  # Declared size on the VM
    lun: Optional[int] = None


@dataclass(frozen=True)
class VirtualMachine:
    vm_id: str
    name: str
    resource_group: str
    region: str
    vm_size: str
    os_type: str = ""
    os_disk: DiskReference = field(default_factory=DiskReference)
    data_disks: Tuple[DiskReference, ...] = ()
    power_state: Optional[str] = None  # None when the status query failed


@dataclass(frozen=True)
class Disk:
    disk_id: str
    name: str = ""
    tier: str = ""
    size_gb: float = 0.0


@dataclass(frozen=True)
class SizeCapability:
    size_id: str
    cores: int
    memory_gb: float


@dataclass(frozen=True)
class NetworkInterface:
    nic_id: str
    name: str = ""
    vm_id: Optional[str] = None
    primary: bool = False
    ip_configuration_id: str = ""
    subnet_id: str = ""
    private_ip: str = ""
    security_group_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PublicAddress:
    public_ip_id: str
    name: str = ""
    ip_configuration_id: str = ""
    ip_address: str = ""


@dataclass(frozen=True)
class Diagnostic:
    """
    A non-fatal failure report.

    scope is one of "vm", "subscription" or "run"; target_id names the VM or
    subscription the failure belongs to.
    """
    scope: str
    target_id: str
    stage: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'scope': self.scope,
            'target_id': self.target_id,
            'stage': self.stage,
            'message': self.message,
        }


@dataclass(frozen=True)
class EnrichedVmRecord:
    """One output row per virtual machine."""
    vm_id: str
    vm_name: str
    resource_group: str
    region: str
    vm_size: str
    os_type: str
    cores: Union[int, str] = NOT_AVAILABLE
    memory_gb: Union[float, str] = NOT_AVAILABLE
    disk_count: int = 0
    total_disk_gb: float = 0.0
    os_disk_tier: str = ""
    data_disk_tiers: Tuple[str, ...] = ()
    vnet: str = ""
    subnet: str = ""
    private_ip: str = ""
    public_ip: str = ""
    nsg: str = ""
    nic_count: int = 0
    power_state: str = ""
    subscription_id: str = ""
    subscription_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Flat row with a fixed column set, ready for CSV/JSON."""
        row = {name: getattr(self, name) for name in RECORD_FIELDS}
        row['data_disk_tiers'] = '; '.join(self.data_disk_tiers)
        return row


@dataclass(frozen=True)
class ReportBatch:
    """Enriched records of one subscription, in VM enumeration order."""
    subscription: Subscription
    records: Tuple[EnrichedVmRecord, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def vm_count(self) -> int:
        return len(self.records)

    @property
    def total_disk_gb(self) -> float:
        return sum(r.total_disk_gb for r in self.records)

    def rows(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.records]

    def summary(self) -> Dict[str, Any]:
        """Per-subscription summary entry for the run summary file."""
        return {
            'subscription_id': self.subscription.subscription_id,
            'subscription_name': self.subscription.display_name,
            'vm_count': self.vm_count,
            'total_disk_gb': self.total_disk_gb,
            'diagnostic_count': len(self.diagnostics),
        }
