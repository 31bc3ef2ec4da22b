"""
Totals calculator -- pure recomputation of a bundle's three stored totals.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    bundle builder at creation and by the adjustment manager after every
    adjustment change.

Invariants enforced:
    - total_amount = sum(item.base_amount)
                     + sum(signed item adjustment amounts)
                     + sum(signed bundle adjustment amounts)
    - total_tax_amount is the same sum over per-line taxes.
    - total_amount_with_tax = total_amount + total_tax_amount.
    - Totals are always recomputed from scratch, never incrementally, so
      repeated calls over the same rows return equal results.
"""

from decimal import Decimal
from typing import Iterable

from settlement_kernel.domain.dtos import AdjustmentLine, BundleTotals, ItemLine
from settlement_kernel.domain.tax import TaxPolicy

ZERO = Decimal("0")


def compute_totals(
    items: Iterable[ItemLine],
    bundle_adjustments: Iterable[AdjustmentLine],
    tax_policy: TaxPolicy,
    tax_exempt: bool = False,
) -> BundleTotals:
    """
    Compute bundle totals from its lines.

    Args:
        items: Items with their item-scoped adjustments.
        bundle_adjustments: Bundle-scoped adjustments.
        tax_policy: Rate and rounding used for every line.
        tax_exempt: If True every line tax is zero.

    Returns:
        BundleTotals, quantized to the policy's quantum.
    """
    amount = ZERO
    tax = ZERO

    for item in items:
        amount += item.base_amount
        tax += tax_policy.tax_for(item.base_amount, tax_exempt)
        for adj in item.adjustments:
            amount += adj.signed_amount
            tax += tax_policy.tax_for(adj.signed_amount, tax_exempt)

    for adj in bundle_adjustments:
        amount += adj.signed_amount
        tax += tax_policy.tax_for(adj.signed_amount, tax_exempt)

    return BundleTotals.of(
        total_amount=tax_policy.quantize(amount),
        total_tax_amount=tax_policy.quantize(tax),
    )


def adjustment_tax(
    line: AdjustmentLine, tax_policy: TaxPolicy, tax_exempt: bool = False
) -> Decimal:
    """Tax stored on an adjustment row (positive magnitude, like its amount)."""
    return tax_policy.tax_for(line.amount, tax_exempt)
