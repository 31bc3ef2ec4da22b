"""
Input shape checks shared by the builder, the adjustment manager and the
detail editor.

Pure functions: they look at values only, never at the database, so they
run before any lock is taken.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from settlement_kernel.domain.dtos import AdjustmentType, PaymentMethod, PeriodType, Side
from settlement_kernel.exceptions import (
    InvalidAdjustmentTypeError,
    InvalidAmountError,
    InvalidPeriodError,
    ValidationError,
)

MONEY_QUANTUM = Decimal("0.01")
MAX_MONEY = Decimal("999999999999.99")
MAX_DESCRIPTION = 200


def require_positive_amount(field: str, value: Any) -> Decimal:
    """
    Return ``value`` as a Decimal if it is a positive, finite amount with at
    most two decimal places.

    Floats are refused outright; money travels as Decimal or string.
    """
    if isinstance(value, (float, bool)) or value is None:
        raise InvalidAmountError(field, repr(value))
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(field, repr(value)) from None
    if not amount.is_finite() or amount <= 0 or amount > MAX_MONEY:
        raise InvalidAmountError(field, str(value))
    if amount != amount.quantize(MONEY_QUANTUM):
        raise InvalidAmountError(field, str(value))
    return amount.quantize(MONEY_QUANTUM)


def parse_adjustment_type(value: Any) -> AdjustmentType:
    try:
        return AdjustmentType(value)
    except ValueError:
        raise InvalidAdjustmentTypeError(str(value)) from None


def parse_side(value: Any) -> Side:
    try:
        return Side(value)
    except ValueError:
        raise ValidationError(f"Unknown side: {value}") from None


def parse_period_type(value: Any) -> PeriodType:
    try:
        return PeriodType(value)
    except ValueError:
        raise ValidationError(f"Unknown period type: {value}") from None


def parse_payment_method(value: Any) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(f"Unknown payment method: {value}") from None


def check_description(value: str | None) -> str | None:
    if value is not None and len(value) > MAX_DESCRIPTION:
        raise ValidationError(
            f"Description exceeds {MAX_DESCRIPTION} characters ({len(value)})"
        )
    return value


def check_period(period_from: date | None, period_to: date | None) -> None:
    if period_from is not None and period_to is not None and period_from > period_to:
        raise InvalidPeriodError(period_from.isoformat(), period_to.isoformat())
