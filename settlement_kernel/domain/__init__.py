"""
Pure domain layer for the settlement kernel.

No ORM, no sessions, no I/O (the SystemClock excepted).
"""

from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    AdjustmentInput,
    AdjustmentLine,
    AdjustmentResult,
    AdjustmentScope,
    AdjustmentType,
    BundleDetail,
    BundleFilter,
    BundleInfo,
    BundleItemInfo,
    BundleStatus,
    BundleSummaryInfo,
    BundleTotals,
    CompanyInfo,
    CompanySnapshot,
    ItemInput,
    ItemLine,
    ManagerInfo,
    ManagerSnapshot,
    OrderChargeInfo,
    OrderChargeStatus,
    Page,
    Pagination,
    PaymentInfo,
    PaymentMethod,
    PeriodType,
    Side,
    SortSpec,
    WaitingOrderFilter,
    WaitingOrderInfo,
    WaitingOrderSummary,
)
from settlement_kernel.domain.lifecycle import (
    VALID_TRANSITIONS,
    can_transition,
    is_editable,
    is_terminal,
)
from settlement_kernel.domain.tax import TaxPolicy
from settlement_kernel.domain.totals import compute_totals

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AdjustmentInfo",
    "AdjustmentInput",
    "AdjustmentLine",
    "AdjustmentResult",
    "AdjustmentScope",
    "AdjustmentType",
    "BundleDetail",
    "BundleFilter",
    "BundleInfo",
    "BundleItemInfo",
    "BundleStatus",
    "BundleSummaryInfo",
    "BundleTotals",
    "CompanyInfo",
    "CompanySnapshot",
    "ItemInput",
    "ItemLine",
    "ManagerInfo",
    "ManagerSnapshot",
    "OrderChargeInfo",
    "OrderChargeStatus",
    "Page",
    "Pagination",
    "PaymentInfo",
    "PaymentMethod",
    "PeriodType",
    "Side",
    "SortSpec",
    "WaitingOrderFilter",
    "WaitingOrderInfo",
    "WaitingOrderSummary",
    "VALID_TRANSITIONS",
    "can_transition",
    "is_editable",
    "is_terminal",
    "TaxPolicy",
    "compute_totals",
]
