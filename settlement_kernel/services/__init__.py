"""Services for the settlement kernel (write side)."""

from settlement_kernel.services.adjustment_manager import AdjustmentManager
from settlement_kernel.services.bundle_builder import BundleBuilder
from settlement_kernel.services.bundle_details_service import BundleDetailsService
from settlement_kernel.services.bundle_lock import flush_bundle, lock_bundle
from settlement_kernel.services.directory import Directory, DirectoryService
from settlement_kernel.services.lifecycle_service import LifecycleService
from settlement_kernel.services.order_ledger import OrderLedger, SqlOrderLedger
from settlement_kernel.services.sequence_service import SequenceService

__all__ = [
    "AdjustmentManager",
    "BundleBuilder",
    "BundleDetailsService",
    "Directory",
    "DirectoryService",
    "LifecycleService",
    "OrderLedger",
    "SequenceService",
    "SqlOrderLedger",
    "flush_bundle",
    "lock_bundle",
]
