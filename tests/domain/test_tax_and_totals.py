"""
Pure tests for the tax policy and the totals calculator.

No database; everything here is a function of its arguments.
"""

from decimal import ROUND_HALF_EVEN, Decimal

import pytest

from settlement_kernel.domain.dtos import (
    AdjustmentLine,
    AdjustmentType,
    BundleTotals,
    ItemLine,
)
from settlement_kernel.domain.tax import TaxPolicy
from settlement_kernel.domain.totals import adjustment_tax, compute_totals

D = Decimal


def _items(*amounts: str) -> list[ItemLine]:
    return [ItemLine(base_amount=D(a)) for a in amounts]


class TestTaxPolicy:
    def test_default_rate_is_ten_percent(self):
        assert TaxPolicy().tax_for(D("600.00")) == D("60.00")

    def test_rounds_half_up_per_line(self):
        assert TaxPolicy().tax_for(D("0.05")) == D("0.01")
        assert TaxPolicy().tax_for(D("0.04")) == D("0.00")

    def test_negative_amount_taxed_symmetrically(self):
        policy = TaxPolicy()
        assert policy.tax_for(D("-0.05")) == -policy.tax_for(D("0.05"))

    def test_exempt_is_zero(self):
        assert TaxPolicy().tax_for(D("123.45"), exempt=True) == D("0.00")

    def test_from_percent(self):
        policy = TaxPolicy.from_percent(5, rounding=ROUND_HALF_EVEN)
        assert policy.rate == D("0.05")
        assert policy.tax_for(D("10.50")) == D("0.52")

    @pytest.mark.parametrize("rate", [D("-0.01"), D("1.01")])
    def test_rate_out_of_range_rejected(self, rate):
        with pytest.raises(ValueError):
            TaxPolicy(rate=rate)

    def test_non_positive_quantum_rejected(self):
        with pytest.raises(ValueError):
            TaxPolicy(quantum=D("0"))


class TestComputeTotals:
    def test_three_orders(self):
        totals = compute_totals(_items("100", "200", "300"), [], TaxPolicy())
        assert totals.total_amount == D("600.00")
        assert totals.total_tax_amount == D("60.00")
        assert totals.total_amount_with_tax == D("660.00")

    def test_bundle_surcharge(self):
        totals = compute_totals(
            _items("100", "200", "300"),
            [AdjustmentLine(AdjustmentType.SURCHARGE, D("50"))],
            TaxPolicy(),
        )
        assert totals == BundleTotals(D("650.00"), D("65.00"), D("715.00"))

    def test_discount_subtracts(self):
        totals = compute_totals(
            _items("100"),
            [AdjustmentLine(AdjustmentType.DISCOUNT, D("30"))],
            TaxPolicy(),
        )
        assert totals == BundleTotals(D("70.00"), D("7.00"), D("77.00"))

    def test_item_adjustments_count(self):
        item = ItemLine(
            base_amount=D("100"),
            adjustments=(
                AdjustmentLine(AdjustmentType.SURCHARGE, D("20")),
                AdjustmentLine(AdjustmentType.DISCOUNT, D("5")),
            ),
        )
        totals = compute_totals([item], [], TaxPolicy())
        assert totals.total_amount == D("115.00")
        assert totals.total_tax_amount == D("11.50")

    def test_tax_is_sum_of_rounded_line_taxes(self):
        # 0.05 twice: per-line rounding gives 0.02, rounding the sum would give 0.01
        totals = compute_totals(_items("0.05", "0.05"), [], TaxPolicy())
        assert totals.total_tax_amount == D("0.02")

    def test_tax_exempt_bundle(self):
        totals = compute_totals(
            _items("100", "200"),
            [AdjustmentLine(AdjustmentType.SURCHARGE, D("50"))],
            TaxPolicy(),
            tax_exempt=True,
        )
        assert totals == BundleTotals(D("350.00"), D("0.00"), D("350.00"))

    def test_negative_total_is_reported_not_clamped(self):
        totals = compute_totals(
            _items("10"),
            [AdjustmentLine(AdjustmentType.DISCOUNT, D("25"))],
            TaxPolicy(),
        )
        assert totals.total_amount == D("-15.00")
        assert totals.total_amount_with_tax == totals.total_amount + totals.total_tax_amount

    def test_recompute_is_deterministic(self):
        items = _items("19.99", "0.01", "1234.56")
        adjustments = [AdjustmentLine(AdjustmentType.DISCOUNT, D("3.33"))]
        first = compute_totals(items, adjustments, TaxPolicy())
        second = compute_totals(items, adjustments, TaxPolicy())
        assert first == second

    def test_empty_bundle_is_zero(self):
        totals = compute_totals([], [], TaxPolicy())
        assert totals == BundleTotals(D("0.00"), D("0.00"), D("0.00"))


class TestBundleTotals:
    def test_inconsistent_totals_rejected(self):
        with pytest.raises(ValueError, match="Inconsistent totals"):
            BundleTotals(D("100"), D("10"), D("111"))

    def test_of_derives_with_tax(self):
        assert BundleTotals.of(D("100"), D("10")).total_amount_with_tax == D("110")

    @pytest.mark.parametrize(
        "amount, tax, negative",
        [
            ("0.00", "0.00", False),
            ("0.03", "-0.01", True),
            ("-0.01", "0.00", True),
            ("100.00", "10.00", False),
        ],
    )
    def test_is_negative(self, amount, tax, negative):
        assert BundleTotals.of(D(amount), D(tax)).is_negative is negative


def test_adjustment_tax_is_positive_magnitude():
    line = AdjustmentLine(AdjustmentType.DISCOUNT, D("50"))
    assert adjustment_tax(line, TaxPolicy()) == D("5.00")
    assert adjustment_tax(line, TaxPolicy(), tax_exempt=True) == D("0.00")
