"""
Parsing of hierarchical Azure resource identifiers.

    /subscriptions/<sub>/resourceGroups/<rg>/providers/<namespace>/<type>/<name>[/<type>/<name>...]

A path is parsed into a ResourcePath; anything that does not follow this shape
yields None instead of raising.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from .constants import UNPARSEABLE_PATH


@dataclass(frozen=True)
class ResourcePath:
    """A parsed resource id: scope plus the chain of (type, name) segments."""
    subscription_id: str
    resource_group: Optional[str]
    provider: Optional[str]
    segments: Tuple[Tuple[str, str], ...] = ()

    @property
    def name(self) -> str:
        """Name of the innermost resource."""
        return self.segments[-1][1] if self.segments else ""

    @property
    def resource_type(self) -> str:
        """Type of the innermost resource, e.g. 'subnets'."""
        return self.segments[-1][0] if self.segments else ""

    def name_of(self, res_type: str) -> Optional[str]:
        """Name of the segment of the given type, e.g. 'virtualNetworks'."""
        wanted = res_type.lower()
        for seg_type, seg_name in self.segments:
            if seg_type.lower() == wanted:
                return seg_name
        return None


def parse_resource_id(resource_id: Optional[str]) -> Optional[ResourcePath]:
    """Parse a resource id; returns None when the path has an unexpected shape."""
    if not resource_id or not resource_id.startswith('/'):
        return None

    parts = resource_id.strip('/').split('/')
    if len(parts) < 2 or parts[0].lower() != 'subscriptions' or not parts[1]:
        return None

    subscription_id = parts[1]
    rest = parts[2:]

    resource_group = None
    if rest and rest[0].lower() == 'resourcegroups':
        if len(rest) < 2 or not rest[1]:
            return None
        resource_group = rest[1]
        rest = rest[2:]

    provider = None
    if rest:
        if rest[0].lower() != 'providers' or len(rest) < 2:
            return None
        provider = rest[1]
        rest = rest[2:]
        # type/name pairs must follow the namespace
        if not rest or len(rest) % 2:
            return None

    segments = tuple(zip(rest[0::2], rest[1::2]))
    if any(not seg_type or not seg_name for seg_type, seg_name in segments):
        return None

    return ResourcePath(
        subscription_id=subscription_id,
        resource_group=resource_group,
        provider=provider,
        segments=segments,
    )


def resource_name(resource_id: Optional[str], default: str = "") -> str:
    """Innermost resource name, or default when the id does not parse."""
    path = parse_resource_id(resource_id)
    if path is None or not path.name:
        return default
    return path.name


def resource_group_of(resource_id: Optional[str]) -> str:
    """Resource group of a resource id, 'unknown' when absent."""
    path = parse_resource_id(resource_id)
    if path is None or not path.resource_group:
        return 'unknown'
    return path.resource_group


def split_subnet_id(subnet_id: Optional[str]) -> Tuple[str, str]:
    """
    Return (virtual network, subnet) names of a subnet resource id.

    An empty id yields ("", ""); an id that is not a subnet path yields the
    unparseable placeholder for both names.
    """
    if not subnet_id:
        return "", ""

    path = parse_resource_id(subnet_id)
    if path is None or path.resource_type.lower() != 'subnets':
        return UNPARSEABLE_PATH, UNPARSEABLE_PATH

    vnet = path.name_of('virtualNetworks')
    subnet = path.name_of('subnets')
    if not vnet or not subnet:
        return UNPARSEABLE_PATH, UNPARSEABLE_PATH
    return vnet, subnet
