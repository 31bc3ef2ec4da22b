"""Selectors for the settlement kernel (read side)."""

from settlement_kernel.selectors.bundle_selector import BundleSelector
from settlement_kernel.selectors.waiting_selector import WaitingOrderSelector

__all__ = [
    "BundleSelector",
    "WaitingOrderSelector",
]
