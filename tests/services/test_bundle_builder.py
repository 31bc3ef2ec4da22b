"""
BundleBuilder: creation, snapshots, validation and atomicity.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from settlement_kernel.domain.dtos import (
    AdjustmentInput,
    AdjustmentType,
    BundleStatus,
    ItemInput,
    OrderChargeStatus,
    PaymentInfo,
    PaymentMethod,
    PeriodType,
    Side,
)
from settlement_kernel.exceptions import (
    CompanyNotFoundError,
    CounterpartyMismatchError,
    DuplicateOrderError,
    EmptyBundleError,
    InvalidAmountError,
    InvalidPeriodError,
    ManagerNotFoundError,
    NegativeTotalError,
    OrderAlreadySettledError,
    OrderNotFoundError,
    ValidationError,
)
from settlement_kernel.models.bundle import BundleAdjustment, BundleItem, SettlementBundle
from settlement_kernel.services import BundleBuilder, SqlOrderLedger

D = Decimal


def _create(builder, company, manager, items, **kwargs):
    kwargs.setdefault("side", Side.SALES)
    kwargs.setdefault("period_type", PeriodType.DEPARTURE)
    kwargs.setdefault("period_from", date(2024, 1, 1))
    kwargs.setdefault("period_to", date(2024, 1, 31))
    return builder.create_bundle(
        counterparty_id=company.id,
        manager_id=manager.id,
        items=items,
        **kwargs,
    )


class TestCreateBundle:
    def test_three_orders(self, builder, shipper, manager, make_charge, items_for, ledger):
        charges = [make_charge(shipper, a) for a in ("100", "200", "300")]

        info = _create(builder, shipper, manager, items_for(*charges))

        assert info.status is BundleStatus.DRAFT
        assert info.order_count == 3
        assert info.total_amount == D("600.00")
        assert info.total_tax_amount == D("60.00")
        assert info.total_amount_with_tax == D("660.00")
        assert info.version == 1

        after = ledger.get_orders_by_ids([c.id for c in charges])
        assert all(o.status is OrderChargeStatus.SETTLED for o in after)
        assert all(o.bundle_id == info.id for o in after)

    def test_initial_adjustments(self, builder, shipper, manager, make_charge, items_for):
        charges = [make_charge(shipper, a) for a in ("100", "200", "300")]

        info = _create(
            builder,
            shipper,
            manager,
            items_for(*charges),
            adjustments=[AdjustmentInput(AdjustmentType.SURCHARGE, D("50"), "Night pickup")],
        )

        assert info.total_amount == D("650.00")
        assert info.total_tax_amount == D("65.00")
        assert info.total_amount_with_tax == D("715.00")

    @pytest.mark.parametrize(
        "amounts, amount, tax, with_tax",
        [
            (("0.30",), "0.30", "0.03", "0.33"),
            (("12.34", "1.10", "0.30"), "13.74", "1.37", "15.11"),
            (("0.07", "0.19"), "0.26", "0.03", "0.29"),
        ],
    )
    def test_odd_cent_totals_persist(
        self, session, builder, shipper, manager, make_charge, items_for, amounts, amount, tax, with_tax
    ):
        charges = [make_charge(shipper, a) for a in amounts]
        info = _create(builder, shipper, manager, items_for(*charges))
        session.commit()
        session.expire_all()

        stored = session.get(SettlementBundle, info.id)
        assert stored.total_amount == D(amount)
        assert stored.total_tax_amount == D(tax)
        assert stored.total_amount_with_tax == D(with_tax)
        assert stored.total_amount_with_tax == stored.total_amount + stored.total_tax_amount

    def test_snapshots_and_default_payment(self, builder, shipper, manager, make_charge, items_for):
        info = _create(builder, shipper, manager, items_for(make_charge(shipper)))

        assert info.company_snapshot.name == "Hanbit Logistics"
        assert info.company_snapshot.business_number == "123-45-67890"
        assert info.company_snapshot.ceo_name == "Kim Minji"
        assert info.manager_snapshot.name == "Lee Jiwoo"
        assert info.manager_snapshot.email == "jiwoo.lee@example.com"
        assert info.payment_info.payment_method is PaymentMethod.BANK_TRANSFER
        assert info.payment_info.bank_account == shipper.bank_account

    def test_snapshot_survives_directory_rename(
        self, builder, directory, shipper, manager, make_charge, items_for
    ):
        info = _create(builder, shipper, manager, items_for(make_charge(shipper)))
        directory.rename_company(shipper.id, "Hanbit Global")

        bundle = builder.session.get(SettlementBundle, info.id)
        builder.session.refresh(bundle)
        assert bundle.company_snapshot["name"] == "Hanbit Logistics"

    def test_explicit_payment_info_and_memo(self, builder, shipper, manager, make_charge, items_for):
        info = _create(
            builder,
            shipper,
            manager,
            items_for(make_charge(shipper)),
            payment_info=PaymentInfo(payment_method=PaymentMethod.CASH),
            memo="January run",
        )
        assert info.payment_info.payment_method is PaymentMethod.CASH
        assert info.payment_info.bank_account is None
        assert info.memo == "January run"

    def test_base_amount_may_differ_from_charge(self, builder, shipper, manager, make_charge):
        charge = make_charge(shipper, "100")
        info = _create(
            builder, shipper, manager, [ItemInput(order_charge_id=charge.id, base_amount=D("90"))]
        )
        assert info.total_amount == D("90.00")

    def test_tax_exempt(self, builder, shipper, manager, make_charge, items_for):
        info = _create(
            builder, shipper, manager, items_for(make_charge(shipper, "100")), tax_exempt=True
        )
        assert info.tax_exempt is True
        assert info.total_tax_amount == D("0.00")
        assert info.total_amount_with_tax == D("100.00")

    def test_purchase_side(self, builder, carrier, manager, make_charge, items_for):
        charge = make_charge(carrier, "80", side=Side.PURCHASE)
        info = _create(builder, carrier, manager, items_for(charge), side="purchase")
        assert info.side is Side.PURCHASE

    def test_records_actor(self, builder, shipper, manager, make_charge, items_for, test_actor_id):
        info = _create(
            builder, shipper, manager, items_for(make_charge(shipper)), actor_id=test_actor_id
        )
        assert info.created_by_id == test_actor_id

    def test_logs_bundle_created(self, builder, shipper, manager, make_charge, items_for, captured_logs):
        info = _create(builder, shipper, manager, items_for(make_charge(shipper, "100")))

        records = [r for r in captured_logs() if r["message"] == "bundle_created"]
        assert len(records) == 1
        assert records[0]["bundle_id"] == str(info.id)
        assert records[0]["order_count"] == 1
        assert records[0]["total_amount_with_tax"] == "110.00"


class TestCreateBundleValidation:
    def test_empty_selection(self, builder, shipper, manager):
        with pytest.raises(EmptyBundleError):
            _create(builder, shipper, manager, [])

    def test_duplicate_ids(self, builder, shipper, manager, make_charge, items_for):
        charge = make_charge(shipper)
        with pytest.raises(DuplicateOrderError) as exc_info:
            _create(builder, shipper, manager, items_for(charge, charge))
        assert exc_info.value.order_charge_ids == [str(charge.id)]

    @pytest.mark.parametrize("amount", ["0", "-5", "1.001"])
    def test_bad_base_amount(self, builder, shipper, manager, make_charge, amount):
        charge = make_charge(shipper)
        with pytest.raises(InvalidAmountError):
            _create(
                builder, shipper, manager, [ItemInput(charge.id, D(amount))]
            )

    def test_bad_adjustment_amount(self, builder, shipper, manager, make_charge, items_for):
        with pytest.raises(InvalidAmountError):
            _create(
                builder,
                shipper,
                manager,
                items_for(make_charge(shipper)),
                adjustments=[AdjustmentInput(AdjustmentType.DISCOUNT, D("0"))],
            )

    def test_period_from_after_period_to(self, builder, shipper, manager, make_charge, items_for):
        with pytest.raises(InvalidPeriodError):
            _create(
                builder,
                shipper,
                manager,
                items_for(make_charge(shipper)),
                period_from=date(2024, 2, 1),
                period_to=date(2024, 1, 1),
            )

    def test_unknown_side(self, builder, shipper, manager, make_charge, items_for):
        with pytest.raises(ValidationError):
            _create(builder, shipper, manager, items_for(make_charge(shipper)), side="both")

    def test_other_counterparty(self, builder, shipper, carrier, manager, make_charge, items_for):
        foreign = make_charge(carrier)
        with pytest.raises(CounterpartyMismatchError) as exc_info:
            _create(builder, shipper, manager, items_for(make_charge(shipper), foreign))
        assert exc_info.value.order_charge_ids == [str(foreign.id)]

    def test_other_side(self, builder, shipper, manager, make_charge, items_for):
        purchase = make_charge(shipper, side=Side.PURCHASE)
        with pytest.raises(CounterpartyMismatchError):
            _create(builder, shipper, manager, items_for(purchase))

    def test_unknown_order(self, builder, shipper, manager):
        with pytest.raises(OrderNotFoundError):
            _create(builder, shipper, manager, [ItemInput(uuid4(), D("10"))])

    def test_unknown_company(self, builder, shipper, manager, make_charge, items_for):
        charge = make_charge(shipper)
        with pytest.raises(CompanyNotFoundError):
            builder.create_bundle(
                side=Side.SALES,
                counterparty_id=uuid4(),
                manager_id=manager.id,
                period_type=PeriodType.DEPARTURE,
                period_from=None,
                period_to=None,
                items=items_for(charge),
            )

    def test_unknown_manager(self, builder, shipper, make_charge, items_for):
        with pytest.raises(ManagerNotFoundError):
            builder.create_bundle(
                side=Side.SALES,
                counterparty_id=shipper.id,
                manager_id=uuid4(),
                period_type=PeriodType.DEPARTURE,
                period_from=None,
                period_to=None,
                items=items_for(make_charge(shipper)),
            )

    def test_negative_total(self, builder, shipper, manager, make_charge, items_for):
        with pytest.raises(NegativeTotalError):
            _create(
                builder,
                shipper,
                manager,
                items_for(make_charge(shipper, "10")),
                adjustments=[AdjustmentInput(AdjustmentType.DISCOUNT, D("20"))],
            )

    def test_negative_tax_with_positive_amount(
        self, session, builder, shipper, manager, make_charge, items_for
    ):
        charges = [make_charge(shipper, "0.04"), make_charge(shipper, "0.04")]
        with pytest.raises(NegativeTotalError) as exc_info:
            _create(
                builder,
                shipper,
                manager,
                items_for(*charges),
                adjustments=[AdjustmentInput(AdjustmentType.DISCOUNT, D("0.05"))],
            )
        assert exc_info.value.total_amount == "0.03"
        assert exc_info.value.total_tax_amount == "-0.01"
        assert session.execute(select(func.count(SettlementBundle.id))).scalar_one() == 0

    def test_unknown_payment_method(self, session, builder, shipper, manager, make_charge, items_for):
        with pytest.raises(ValidationError, match="payment method"):
            _create(
                builder,
                shipper,
                manager,
                items_for(make_charge(shipper)),
                payment_info=PaymentInfo(payment_method="cheque"),
            )
        assert session.execute(select(func.count(SettlementBundle.id))).scalar_one() == 0

    def test_payment_method_given_as_string(self, builder, shipper, manager, make_charge, items_for):
        info = _create(
            builder,
            shipper,
            manager,
            items_for(make_charge(shipper)),
            payment_info=PaymentInfo(payment_method="cash"),
        )
        assert info.payment_info.payment_method is PaymentMethod.CASH


class TestNoDoubleSettlement:
    def test_already_settled_order(self, builder, shipper, manager, make_charge, items_for):
        shared = make_charge(shipper)
        _create(builder, shipper, manager, items_for(shared))

        with pytest.raises(OrderAlreadySettledError) as exc_info:
            _create(builder, shipper, manager, items_for(make_charge(shipper), shared))
        assert exc_info.value.order_charge_ids == [str(shared.id)]
        assert exc_info.value.kind == "conflict"

    def test_failed_create_writes_nothing(
        self, session, builder, shipper, manager, make_charge, items_for, ledger
    ):
        shared = make_charge(shipper)
        fresh = make_charge(shipper)
        first = _create(builder, shipper, manager, items_for(shared))
        session.commit()

        with pytest.raises(OrderAlreadySettledError):
            _create(builder, shipper, manager, items_for(fresh, shared))
        session.rollback()

        assert session.execute(select(func.count(SettlementBundle.id))).scalar_one() == 1
        assert session.execute(select(func.count(BundleItem.id))).scalar_one() == 1
        fresh_now, shared_now = (
            ledger.get_orders_by_ids([fresh.id])[0],
            ledger.get_orders_by_ids([shared.id])[0],
        )
        assert fresh_now.status is OrderChargeStatus.UNSETTLED
        assert shared_now.bundle_id == first.id

    def test_active_order_index_backstops_stale_reads(
        self, session, builder, shipper, manager, make_charge, items_for
    ):
        """A charge flipped back to UNSETTLED while its item is still active is refused."""
        from sqlalchemy import update

        from settlement_kernel.models.order_charge import OrderCharge

        charge = make_charge(shipper)
        _create(builder, shipper, manager, items_for(charge))
        session.execute(
            update(OrderCharge)
            .where(OrderCharge.id == charge.id)
            .values(status=OrderChargeStatus.UNSETTLED.value, bundle_id=None)
        )

        with pytest.raises(OrderAlreadySettledError):
            _create(builder, shipper, manager, items_for(charge))


class _LedgerFailingOnConsume(SqlOrderLedger):
    """Refuses consumption after the bundle rows are already flushed."""

    def __init__(self, session):
        super().__init__(session)
        self.items_seen = None

    def mark_settled(self, ids, bundle_id):
        self.items_seen = self.session.execute(
            select(func.count(BundleItem.id)).where(BundleItem.bundle_id == bundle_id)
        ).scalar_one()
        raise OrderAlreadySettledError(sorted(str(i) for i in ids))


class TestCreateAtomicity:
    def test_consumption_failure_rolls_back_flushed_rows(
        self, session, tax_policy, shipper, manager, make_charge, items_for, ledger
    ):
        charges = [make_charge(shipper, a) for a in ("120.00", "80.00")]
        session.commit()
        failing = _LedgerFailingOnConsume(session)
        builder = BundleBuilder(session, tax_policy=tax_policy, order_ledger=failing)

        with pytest.raises(OrderAlreadySettledError):
            _create(
                builder,
                shipper,
                manager,
                items_for(*charges),
                adjustments=[AdjustmentInput(AdjustmentType.SURCHARGE, D("15.00"))],
            )
        assert failing.items_seen == 2
        session.rollback()

        assert session.execute(select(func.count(SettlementBundle.id))).scalar_one() == 0
        assert session.execute(select(func.count(BundleItem.id))).scalar_one() == 0
        assert session.execute(select(func.count(BundleAdjustment.id))).scalar_one() == 0
        after = ledger.get_orders_by_ids([c.id for c in charges])
        assert all(o.status is OrderChargeStatus.UNSETTLED for o in after)
        assert all(o.bundle_id is None for o in after)
