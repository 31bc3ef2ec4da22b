"""ORM models for the settlement kernel."""

from settlement_kernel.models.bundle import (
    BundleAdjustment,
    BundleItem,
    ItemAdjustment,
    SettlementBundle,
)
from settlement_kernel.models.directory import Company, Manager
from settlement_kernel.models.order_charge import OrderCharge
from settlement_kernel.models.sequence import SequenceCounter

__all__ = [
    "SettlementBundle",
    "BundleItem",
    "BundleAdjustment",
    "ItemAdjustment",
    "Company",
    "Manager",
    "OrderCharge",
    "SequenceCounter",
]
