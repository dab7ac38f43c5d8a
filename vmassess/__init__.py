"""
VM Assess shared library: inventory correlation and enrichment engine.
"""
from . import constants
from .assessment import (
    AssessmentRun,
    ResourceFetchers,
    assess_subscription,
    run_assessment,
    select_subscriptions,
)
from .constants import NOT_AVAILABLE, UNMANAGED_TIER, UNPARSEABLE_PATH
from .disk_index import DiskIndex
from .enrich import enrich_vm
from .models import (
    RECORD_FIELDS,
    Diagnostic,
    Disk,
    DiskReference,
    EnrichedVmRecord,
    NetworkInterface,
    PublicAddress,
    ReportBatch,
    SizeCapability,
    Subscription,
    VirtualMachine,
)
from .report import SizeSummary, assemble_report, summarize_by_size
from .resource_id import ResourcePath, parse_resource_id, split_subnet_id
from .sku_cache import SkuCapabilityCache
from .utils import AuthError, RunError

__all__ = [
    # Constants
    'constants',
    'NOT_AVAILABLE',
    'UNMANAGED_TIER',
    'UNPARSEABLE_PATH',
    # Models
    'RECORD_FIELDS',
    'Subscription',
    'VirtualMachine',
    'DiskReference',
    'Disk',
    'SizeCapability',
    'NetworkInterface',
    'PublicAddress',
    'EnrichedVmRecord',
    'ReportBatch',
    'Diagnostic',
    # Engine
    'SkuCapabilityCache',
    'DiskIndex',
    'enrich_vm',
    'assemble_report',
    'SizeSummary',
    'summarize_by_size',
    'ResourcePath',
    'parse_resource_id',
    'split_subnet_id',
    # Runner
    'ResourceFetchers',
    'AssessmentRun',
    'assess_subscription',
    'run_assessment',
    'select_subscriptions',
    # Errors
    'AuthError',
    'RunError',
]
