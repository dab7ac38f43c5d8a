"""
Tests for vmassess/resource_id.py.

Covers:
- parse_resource_id on resource, child resource and scope-only ids
- Rejection of ids with an unexpected shape
- resource_name / resource_group_of helpers
- split_subnet_id including the unparseable placeholder
"""
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vmassess.constants import UNPARSEABLE_PATH
from vmassess.resource_id import (
    parse_resource_id,
    resource_group_of,
    resource_name,
    split_subnet_id,
)

SUBNET_ID = (
    "/subscriptions/sub123/resourceGroups/rg-net/providers/Microsoft.Network"
    "/virtualNetworks/vnet-hub/subnets/snet-app"
)
VM_ID = "/subscriptions/sub123/resourceGroups/rg-test/providers/Microsoft.Compute/virtualMachines/vm-001"


class TestParseResourceId:
    """Tests for parse_resource_id."""

    def test_parse_vm_id(self):
        """Test parsing a top-level resource."""
        path = parse_resource_id(VM_ID)
        assert path.subscription_id == "sub123"
        assert path.resource_group == "rg-test"
        assert path.provider == "Microsoft.Compute"
        assert path.resource_type == "virtualMachines"
        assert path.name == "vm-001"

    def test_resource_type_of_child(self):
        assert parse_resource_id(SUBNET_ID).resource_type == "subnets"
        assert parse_resource_id("/subscriptions/sub123").resource_type == ""

    def test_parse_child_resource(self):
        """Test parsing a nested resource keeps the segment chain."""
        path = parse_resource_id(SUBNET_ID)
        assert path.segments == (("virtualNetworks", "vnet-hub"), ("subnets", "snet-app"))
        assert path.name_of("virtualnetworks") == "vnet-hub"
        assert path.name_of("subnets") == "snet-app"
        assert path.name_of("networkSecurityGroups") is None

    def test_parse_resource_group_scope(self):
        """Test a resource group id parses without a provider."""
        path = parse_resource_id("/subscriptions/sub123/resourceGroups/rg-test")
        assert path.resource_group == "rg-test"
        assert path.provider is None
        assert path.name == ""

    def test_lowercase_keywords(self):
        """Test ids with lower-cased keywords, as some APIs return them."""
        path = parse_resource_id(VM_ID.replace("resourceGroups", "resourcegroups"))
        assert path.resource_group == "rg-test"

    @pytest.mark.parametrize("resource_id", [
        None,
        "",
        "invalid-id",
        "subscriptions/sub123",
        "/tenants/abc",
        "/subscriptions//resourceGroups/rg",
        "/subscriptions/sub123/resourceGroups",
        "/subscriptions/sub123/resourceGroups/rg/providers",
        "/subscriptions/sub123/resourceGroups/rg/providers/Microsoft.Network/virtualNetworks",
        "/subscriptions/sub123/resourceGroups/rg/locks/mylock",
    ])
    def test_unexpected_shape_returns_none(self, resource_id):
        """Test malformed ids return None instead of raising."""
        assert parse_resource_id(resource_id) is None


class TestHelpers:
    """Tests for the name helpers."""

    def test_resource_name(self):
        assert resource_name(VM_ID) == "vm-001"

    def test_resource_name_default(self):
        assert resource_name("garbage", "fallback") == "fallback"

    def test_resource_group_of(self):
        """Test extracting resource group from resource ID."""
        assert resource_group_of(VM_ID) == "rg-test"

    def test_resource_group_of_invalid(self):
        """Test extracting resource group from invalid ID."""
        assert resource_group_of("invalid-id") == "unknown"


class TestSplitSubnetId:
    """Tests for split_subnet_id."""

    def test_split_subnet(self):
        assert split_subnet_id(SUBNET_ID) == ("vnet-hub", "snet-app")

    def test_empty_subnet(self):
        """Test a missing subnet gives empty names, not the placeholder."""
        assert split_subnet_id("") == ("", "")
        assert split_subnet_id(None) == ("", "")

    def test_malformed_subnet(self):
        """Test a malformed path gives the unparseable placeholder."""
        assert split_subnet_id("vnet-hub/snet-app") == (UNPARSEABLE_PATH, UNPARSEABLE_PATH)

    def test_non_subnet_path(self):
        """Test a well-formed id of another type is also unparseable."""
        assert split_subnet_id(VM_ID) == (UNPARSEABLE_PATH, UNPARSEABLE_PATH)

    def test_subnet_child_resource_is_unparseable(self):
        """Test an id nested below a subnet is not taken for the subnet itself."""
        child = f"{SUBNET_ID}/serviceAssociationLinks/link1"
        assert split_subnet_id(child) == (UNPARSEABLE_PATH, UNPARSEABLE_PATH)
