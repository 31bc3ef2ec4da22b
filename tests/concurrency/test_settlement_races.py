"""
Concurrent bundle writers against a real database.

Each worker runs in its own thread with its own connection and
transaction.  A barrier releases the workers together so the race is
real; the database lock then decides the winner.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement_kernel.db.engine import session_scope
from settlement_kernel.domain.dtos import BundleStatus, ItemInput, OrderChargeStatus, Side
from settlement_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    OrderAlreadySettledError,
)
from settlement_kernel.models.bundle import BundleItem, SettlementBundle
from settlement_kernel.models.order_charge import OrderCharge
from settlement_kernel.services import (
    AdjustmentManager,
    BundleBuilder,
    DirectoryService,
    LifecycleService,
    SqlOrderLedger,
)

pytestmark = [pytest.mark.slow_locks]

WORKERS = 4


def _setup(charge_count: int = 1):
    """Commit a shipper, a manager and ``charge_count`` waiting charges."""
    with session_scope() as session:
        directory = DirectoryService(session)
        shipper = directory.register_company("Hanbit Logistics", business_number="123-45-67890")
        manager = directory.register_manager("Lee Jiwoo")
        ledger = SqlOrderLedger(session)
        charges = [
            ledger.record_charge(
                order_id=f"ORD-RACE-{n}",
                side=Side.SALES,
                company_id=shipper.id,
                amount=Decimal("100.00"),
            )
            for n in range(charge_count)
        ]
    return shipper, manager, charges


def _race(worker, count: int = WORKERS):
    barrier = Barrier(count)

    def _run(n):
        barrier.wait()
        try:
            return ("ok", worker(n))
        except Exception as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(_run, range(count)))


class TestNoDoubleSettlement:
    def test_one_bundle_wins_a_shared_order(self, clean_db):
        shipper, manager, (charge,) = _setup()

        def create(_n):
            with session_scope() as session:
                return BundleBuilder(session).create_bundle(
                    side=Side.SALES,
                    counterparty_id=shipper.id,
                    manager_id=manager.id,
                    period_type="departure",
                    period_from=None,
                    period_to=None,
                    items=[ItemInput(order_charge_id=charge.id, base_amount=charge.amount)],
                    actor_id=uuid4(),
                )

        results = _race(create)

        winners = [value for outcome, value in results if outcome == "ok"]
        losers = [value for outcome, value in results if outcome == "error"]
        assert len(winners) == 1
        assert len(losers) == WORKERS - 1
        assert all(isinstance(exc, OrderAlreadySettledError) for exc in losers)

        with session_scope() as session:
            stored = session.get(OrderCharge, charge.id)
            assert stored.status == OrderChargeStatus.SETTLED
            assert stored.bundle_id == winners[0].id
            bundle_count = session.execute(select(SettlementBundle.id)).scalars().all()
            item_count = session.execute(select(BundleItem.id)).scalars().all()
        assert len(bundle_count) == 1
        assert len(item_count) == 1

    def test_overlapping_selections(self, clean_db):
        shipper, manager, charges = _setup(charge_count=3)
        selections = [charges[0:2], charges[1:3]]

        def create(n):
            with session_scope() as session:
                return BundleBuilder(session).create_bundle(
                    side=Side.SALES,
                    counterparty_id=shipper.id,
                    manager_id=manager.id,
                    period_type="departure",
                    period_from=None,
                    period_to=None,
                    items=[
                        ItemInput(order_charge_id=c.id, base_amount=c.amount)
                        for c in selections[n]
                    ],
                )

        results = _race(create, count=2)

        outcomes = sorted(outcome for outcome, _ in results)
        assert outcomes == ["error", "ok"]
        error = next(value for outcome, value in results if outcome == "error")
        assert isinstance(error, OrderAlreadySettledError)
        assert str(charges[1].id) in error.order_charge_ids


class TestVersionedEdits:
    def test_stale_version_loses(self, clean_db):
        shipper, manager, (charge,) = _setup()
        with session_scope() as session:
            bundle = BundleBuilder(session).create_bundle(
                side=Side.SALES,
                counterparty_id=shipper.id,
                manager_id=manager.id,
                period_type="departure",
                period_from=None,
                period_to=None,
                items=[ItemInput(order_charge_id=charge.id, base_amount=charge.amount)],
            )

        def surcharge(_n):
            with session_scope() as session:
                return AdjustmentManager(session).add_bundle_adjustment(
                    bundle.id, "surcharge", "10", expected_version=bundle.version
                )

        results = _race(surcharge, count=2)

        outcomes = sorted(outcome for outcome, _ in results)
        assert outcomes == ["error", "ok"]
        error = next(value for outcome, value in results if outcome == "error")
        assert isinstance(error, ConcurrentModificationError)

        with session_scope() as session:
            stored = session.get(SettlementBundle, bundle.id)
            assert stored.version == bundle.version + 1
            assert stored.total_amount == Decimal("110.00")

    def test_unversioned_edits_serialize(self, clean_db):
        shipper, manager, (charge,) = _setup()
        with session_scope() as session:
            bundle = BundleBuilder(session).create_bundle(
                side=Side.SALES,
                counterparty_id=shipper.id,
                manager_id=manager.id,
                period_type="departure",
                period_from=None,
                period_to=None,
                items=[ItemInput(order_charge_id=charge.id, base_amount=charge.amount)],
            )

        def surcharge(_n):
            with session_scope() as session:
                return AdjustmentManager(session).add_bundle_adjustment(
                    bundle.id, "surcharge", "10"
                )

        results = _race(surcharge)

        assert all(outcome == "ok" for outcome, _ in results)
        with session_scope() as session:
            stored = session.get(SettlementBundle, bundle.id)
            assert stored.total_amount == Decimal("100.00") + 10 * WORKERS
            assert stored.total_tax_amount == Decimal("10.00") + WORKERS
            assert stored.version == bundle.version + WORKERS


def _draft_bundle():
    shipper, manager, (charge,) = _setup()
    with session_scope() as session:
        bundle = BundleBuilder(session).create_bundle(
            side=Side.SALES,
            counterparty_id=shipper.id,
            manager_id=manager.id,
            period_type="departure",
            period_from=None,
            period_to=None,
            items=[ItemInput(order_charge_id=charge.id, base_amount=charge.amount)],
        )
    return bundle, charge


class TestLifecycleRaces:
    def test_issue_and_cancel_on_one_version(self, clean_db):
        bundle, charge = _draft_bundle()

        def act(n):
            with session_scope() as session:
                lifecycle = LifecycleService(session)
                if n == 0:
                    return lifecycle.issue(
                        bundle.id, invoice_no="INV-RACE-1", expected_version=bundle.version
                    )
                return lifecycle.cancel(
                    bundle.id, reason="duplicate", expected_version=bundle.version
                )

        results = _race(act, count=2)

        outcomes = sorted(outcome for outcome, _ in results)
        assert outcomes == ["error", "ok"]
        winner = next(value for outcome, value in results if outcome == "ok")
        error = next(value for outcome, value in results if outcome == "error")
        assert isinstance(error, ConcurrentModificationError)

        with session_scope() as session:
            stored = session.get(SettlementBundle, bundle.id)
            order = session.get(OrderCharge, charge.id)
            assert stored.status == winner.status.value
            assert stored.version == bundle.version + 1
            if winner.status is BundleStatus.CANCELED:
                assert order.status == OrderChargeStatus.UNSETTLED
                assert order.bundle_id is None
            else:
                assert order.bundle_id == bundle.id

    def test_pay_and_cancel_an_issued_bundle(self, clean_db):
        bundle, charge = _draft_bundle()
        with session_scope() as session:
            LifecycleService(session).issue(bundle.id, invoice_no="INV-RACE-2")

        def act(n):
            with session_scope() as session:
                lifecycle = LifecycleService(session)
                if n == 0:
                    return lifecycle.mark_paid(
                        bundle.id, deposit_received_at=datetime(2024, 2, 10, tzinfo=timezone.utc)
                    )
                return lifecycle.cancel(bundle.id, reason="customer dispute")

        results = _race(act, count=2)

        outcomes = sorted(outcome for outcome, _ in results)
        assert outcomes == ["error", "ok"]
        winner = next(value for outcome, value in results if outcome == "ok")
        error = next(value for outcome, value in results if outcome == "error")
        assert isinstance(error, InvalidTransitionError)
        assert winner.status in (BundleStatus.PAID, BundleStatus.CANCELED)

        with session_scope() as session:
            stored = session.get(SettlementBundle, bundle.id)
            order = session.get(OrderCharge, charge.id)
            assert stored.status == winner.status.value
            if winner.status is BundleStatus.PAID:
                assert order.status == OrderChargeStatus.SETTLED
                assert order.bundle_id == bundle.id
            else:
                assert order.status == OrderChargeStatus.UNSETTLED
                assert order.bundle_id is None
