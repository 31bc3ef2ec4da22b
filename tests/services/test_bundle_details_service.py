"""BundleDetailsService: edits of memo, payment details and period."""

from datetime import date, datetime, timezone

import pytest

from settlement_kernel.domain.dtos import PaymentMethod, PeriodType
from settlement_kernel.exceptions import (
    BundleNotEditableError,
    InvalidPeriodError,
    ReadOnlyFieldError,
    ValidationError,
)


def test_updates_memo_and_payment(details, make_bundle, test_actor_id):
    bundle = make_bundle("100")

    info = details.update_details(
        bundle.id,
        {"memo": "Call before transfer", "payment_method": "cash", "bank_account": None},
        actor_id=test_actor_id,
    )

    assert info.memo == "Call before transfer"
    assert info.payment_info.payment_method is PaymentMethod.CASH
    assert info.payment_info.bank_account is None
    assert info.updated_by_id == test_actor_id
    assert info.version == bundle.version + 1


def test_period_accepts_iso_strings(details, make_bundle):
    bundle = make_bundle("100")
    info = details.update_details(
        bundle.id,
        {"period_type": "arrival", "period_from": "2024-03-01", "period_to": "2024-03-31"},
    )
    assert info.period_type is PeriodType.ARRIVAL
    assert info.period_from == date(2024, 3, 1)
    assert info.period_to == date(2024, 3, 31)


def test_period_checked_against_stored_value(details, make_bundle):
    bundle = make_bundle("100", period_from=date(2024, 3, 1), period_to=date(2024, 3, 31))
    with pytest.raises(InvalidPeriodError):
        details.update_details(bundle.id, {"period_to": date(2024, 2, 1)})


@pytest.mark.parametrize(
    "field", ["status", "total_amount", "company_snapshot", "invoice_no", "side", "version"]
)
def test_read_only_fields_refused(details, make_bundle, field):
    bundle = make_bundle("100")
    with pytest.raises(ReadOnlyFieldError) as exc_info:
        details.update_details(bundle.id, {"memo": "ok", field: "x"})
    assert exc_info.value.fields == [field]
    assert exc_info.value.code == "READ_ONLY_FIELD"


def test_bad_values(details, make_bundle):
    bundle = make_bundle("100")
    with pytest.raises(ValidationError):
        details.update_details(bundle.id, {"payment_method": "crypto"})
    with pytest.raises(ValidationError):
        details.update_details(bundle.id, {"payment_method": None})
    with pytest.raises(ValidationError):
        details.update_details(bundle.id, {"bank_code": "12345678901"})
    with pytest.raises(ValidationError):
        details.update_details(bundle.id, {"period_from": "yesterday"})


def test_unchanged_values_do_not_bump_version(details, make_bundle):
    bundle = make_bundle("100", memo="same")
    info = details.update_details(bundle.id, {"memo": "same"})
    assert info.version == bundle.version


def test_paid_bundle_not_editable(details, lifecycle, make_bundle):
    bundle = make_bundle("100")
    lifecycle.issue(bundle.id, invoice_no="INV-1")
    lifecycle.mark_paid(bundle.id, datetime(2024, 2, 1, tzinfo=timezone.utc))

    with pytest.raises(BundleNotEditableError):
        details.update_details(bundle.id, {"memo": "too late"})
