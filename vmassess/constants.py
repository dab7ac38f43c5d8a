"""
Constants for the VM assessment engine.

This module defines the placeholder strings and defaults shared across the
codebase so every component produces the same sentinel values.
"""

# =============================================================================
# Placeholder Values
# =============================================================================

# Capability data for a size absent from the region's catalog
NOT_AVAILABLE = "N/A"

# Tier of a disk reference that does not resolve in the disk index
UNMANAGED_TIER = "unmanaged"

# Network names taken from a resource path of unexpected shape
UNPARSEABLE_PATH = "unparseable"

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_PARALLEL_VMS = 1
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_OUTPUT = "."

# =============================================================================
# Azure Resource Catalog
# =============================================================================

PROVIDER_AZURE = "azure"

# Resource SKU entries describing VM sizes
SKU_RESOURCE_TYPE_VM = "virtualMachines"

# Capability names on a resource SKU entry
SKU_CAPABILITY_CORES = "vCPUs"
SKU_CAPABILITY_MEMORY = "MemoryGB"

# Instance view status prefix carrying the running state
POWER_STATE_PREFIX = "PowerState/"

SUBSCRIPTION_STATE_ENABLED = "Enabled"

# =============================================================================
# Diagnostic Scopes
# =============================================================================

SCOPE_VM = "vm"
SCOPE_SUBSCRIPTION = "subscription"
SCOPE_RUN = "run"

# =============================================================================
# Output Naming
# =============================================================================

RUN_DIR_PREFIX = "vm_assessment"
INVENTORY_FILE_PREFIX = "vm_inventory"
SUMMARY_FILE_NAME = "vm_assessment_summary.json"
LOG_FILE_PREFIX = "vma_log"
