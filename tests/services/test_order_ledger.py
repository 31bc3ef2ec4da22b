"""SqlOrderLedger: the only writer of order charge settlement state."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement_kernel.domain.dtos import OrderChargeStatus, Side
from settlement_kernel.exceptions import OrderAlreadySettledError, OrderNotFoundError
from settlement_kernel.models.order_charge import OrderCharge


def _charge_ids_of(session, bundle_id) -> list:
    return list(
        session.execute(
            select(OrderCharge.id).where(OrderCharge.bundle_id == bundle_id)
        ).scalars()
    )


def test_record_and_read(ledger, shipper):
    charge = ledger.record_charge(
        order_id="ORD-1", side=Side.SALES, company_id=shipper.id, amount=Decimal("120.50")
    )
    [loaded] = ledger.get_orders_by_ids([charge.id])
    assert loaded.status is OrderChargeStatus.UNSETTLED
    assert loaded.amount == Decimal("120.50")
    assert loaded.side is Side.SALES
    assert loaded.bundle_id is None


def test_missing_ids(ledger, make_charge, shipper):
    known = make_charge(shipper)
    missing = uuid4()
    with pytest.raises(OrderNotFoundError) as exc_info:
        ledger.get_orders_by_ids([known.id, missing])
    assert exc_info.value.order_charge_ids == [str(missing)]


def test_mark_settled_reports_conflicting_ids(session, ledger, make_charge, make_bundle, shipper):
    target = make_bundle("100")
    other = make_bundle("50")
    [taken] = _charge_ids_of(session, other.id)
    free = make_charge(shipper)

    with pytest.raises(OrderAlreadySettledError) as exc_info:
        ledger.mark_settled([free.id, taken], target.id)
    assert exc_info.value.order_charge_ids == [str(taken)]


def test_mark_settled_counts_distinct_ids(ledger, make_charge, make_bundle, shipper):
    bundle = make_bundle("100")
    free = make_charge(shipper)
    assert ledger.mark_settled([free.id, free.id], bundle.id) == 1
    [loaded] = ledger.get_orders_by_ids([free.id])
    assert loaded.bundle_id == bundle.id


def test_release_returns_charges(session, ledger, make_bundle):
    bundle = make_bundle("100", "200")
    assert ledger.release(bundle.id) == 2
    assert ledger.release(bundle.id) == 0
    assert _charge_ids_of(session, bundle.id) == []
