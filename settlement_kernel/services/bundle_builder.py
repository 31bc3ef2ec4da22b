"""
BundleBuilder -- atomic creation of a settlement bundle.

Responsibility:
    Validates a selection of waiting order charges, snapshots the
    counterparty and manager, computes totals and persists the bundle, its
    items and its initial adjustments while consuming the selected charges.

Architecture position:
    Kernel > Services -- imperative shell.  Uses the pure totals calculator
    (domain/totals.py), the OrderLedger and Directory adapters, and flushes
    within the caller's transaction.

Invariants enforced:
    - No double settlement: an order charge is consumed by at most one live
      bundle.  Three independent checks back this up, in order: the locked
      status read, the partial unique index on active items, and the
      conditional UPDATE in OrderLedger.mark_settled.
    - Atomicity: any failure raises, and the caller's ``session_scope``
      rolls back the bundle, its items, its adjustments and every order
      state change together.
    - Consumption happens after item insertion.

Failure modes:
    - ValidationError (and subclasses): empty selection, duplicate ids,
      non-positive amounts, bad period, charges of another side or
      counterparty, negative resulting total.
    - NotFoundError: unknown counterparty, manager or order charge.
    - ConflictError (OrderAlreadySettledError): a charge is already
      consumed, including by a concurrent build.

Audit relevance:
    Logs ``bundle_created`` with bundle id, side, counterparty, order count
    and totals; ``created_by_id`` on the bundle records the actor.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError

from settlement_kernel.domain.dtos import (
    AdjustmentInput,
    AdjustmentLine,
    BundleInfo,
    BundleStatus,
    ItemInput,
    ItemLine,
    OrderChargeStatus,
    PaymentInfo,
    PaymentMethod,
    PeriodType,
    Side,
)
from settlement_kernel.domain.tax import TaxPolicy
from settlement_kernel.domain.totals import adjustment_tax, compute_totals
from settlement_kernel.domain.validation import (
    check_description,
    check_period,
    parse_adjustment_type,
    parse_payment_method,
    parse_period_type,
    parse_side,
    require_positive_amount,
)
from settlement_kernel.exceptions import (
    CounterpartyMismatchError,
    DuplicateOrderError,
    EmptyBundleError,
    NegativeTotalError,
    OrderAlreadySettledError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.bundle import (
    BundleAdjustment,
    BundleItem,
    SettlementBundle,
)
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.directory import Directory, DirectoryService
from settlement_kernel.services.order_ledger import OrderLedger, SqlOrderLedger

logger = get_logger("services.bundle_builder")

_ACTIVE_ORDER_INDEX_MARKERS = (
    "uq_bundle_item_active_order",
    "settlement_bundle_items.order_charge_id",
)


@dataclass(frozen=True)
class _ValidatedRequest:
    side: Side
    period_type: PeriodType
    items: tuple[ItemInput, ...]
    adjustments: tuple[AdjustmentInput, ...]
    payment_info: PaymentInfo | None


def _validate_request(
    side,
    period_type,
    period_from: date | None,
    period_to: date | None,
    items: Sequence[ItemInput],
    adjustments: Sequence[AdjustmentInput],
    payment_info: PaymentInfo | None = None,
) -> _ValidatedRequest:
    """Shape checks that need no database state."""
    if not items:
        raise EmptyBundleError()

    seen: set[UUID] = set()
    duplicates: list[str] = []
    for item in items:
        if item.order_charge_id in seen:
            duplicates.append(str(item.order_charge_id))
        seen.add(item.order_charge_id)
    if duplicates:
        raise DuplicateOrderError(sorted(set(duplicates)))

    clean_items = tuple(
        ItemInput(
            order_charge_id=item.order_charge_id,
            base_amount=require_positive_amount(
                f"items[{i}].base_amount", item.base_amount
            ),
        )
        for i, item in enumerate(items)
    )
    clean_adjustments = tuple(
        AdjustmentInput(
            type=parse_adjustment_type(adj.type),
            amount=require_positive_amount(f"adjustments[{i}].amount", adj.amount),
            description=check_description(adj.description),
        )
        for i, adj in enumerate(adjustments)
    )
    check_period(period_from, period_to)

    clean_payment = None
    if payment_info is not None:
        clean_payment = PaymentInfo(
            payment_method=parse_payment_method(payment_info.payment_method),
            bank_code=payment_info.bank_code,
            bank_account=payment_info.bank_account,
            bank_account_holder=payment_info.bank_account_holder,
        )

    return _ValidatedRequest(
        side=parse_side(side),
        period_type=parse_period_type(period_type),
        items=clean_items,
        adjustments=clean_adjustments,
        payment_info=clean_payment,
    )


def _is_active_order_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _ACTIVE_ORDER_INDEX_MARKERS)


class BundleBuilder(BaseService[SettlementBundle]):
    """
    Creates settlement bundles.

    Contract:
        ``create_bundle`` either persists a complete DRAFT bundle and marks
        every selected charge SETTLED, or raises.  It flushes but never
        commits.

    Guarantees:
        - order_count == len(items).
        - Totals equal compute_totals() over the persisted rows.
        - Snapshots are taken from the directory exactly once.

    Non-goals:
        - Does NOT decide base amounts; the caller supplies them (usually
          the charge amount shown in the waiting list).
    """

    def __init__(
        self,
        session,
        tax_policy: TaxPolicy | None = None,
        order_ledger: OrderLedger | None = None,
        directory: Directory | None = None,
    ):
        super().__init__(session)
        self._tax_policy = tax_policy or TaxPolicy()
        self._ledger = order_ledger or SqlOrderLedger(session)
        self._directory = directory or DirectoryService(session)

    def create_bundle(
        self,
        side: Side | str,
        counterparty_id: UUID,
        manager_id: UUID,
        period_type: PeriodType | str,
        period_from: date | None,
        period_to: date | None,
        items: Sequence[ItemInput],
        adjustments: Sequence[AdjustmentInput] = (),
        payment_info: PaymentInfo | None = None,
        actor_id: UUID | None = None,
        tax_exempt: bool = False,
        memo: str | None = None,
    ) -> BundleInfo:
        """
        Build and persist a bundle from a selection of waiting order charges.

        Args:
            side: SALES (shipper invoice) or PURCHASE (carrier payout).
            counterparty_id: Company the bundle settles with.
            manager_id: Responsible back-office user.
            period_type: Which order date the period refers to.
            period_from: Start of the settlement period (inclusive).
            period_to: End of the settlement period (inclusive).
            items: Selected order charges with their base amounts.
            adjustments: Initial bundle-level surcharges/discounts.
            payment_info: Payment method and bank details.  Defaults to
                bank transfer to the counterparty's registered account.
            actor_id: Acting user, recorded as created_by_id.
            tax_exempt: If True no tax is charged on any line.
            memo: Free-form note.

        Returns:
            BundleInfo of the new DRAFT bundle.
        """
        request = _validate_request(
            side, period_type, period_from, period_to, items, adjustments, payment_info
        )
        bundle_id = uuid4()

        with LogContext.bind(
            bundle_id=str(bundle_id),
            side=request.side.value,
            actor_id=str(actor_id) if actor_id else None,
        ):
            t0 = time.monotonic()
            info = self._do_create(
                bundle_id=bundle_id,
                request=request,
                counterparty_id=counterparty_id,
                manager_id=manager_id,
                period_from=period_from,
                period_to=period_to,
                payment_info=request.payment_info,
                actor_id=actor_id,
                tax_exempt=tax_exempt,
                memo=memo,
            )
            logger.info(
                "bundle_created",
                extra={
                    "company_id": str(counterparty_id),
                    "order_count": info.order_count,
                    "total_amount": str(info.total_amount),
                    "total_tax_amount": str(info.total_tax_amount),
                    "total_amount_with_tax": str(info.total_amount_with_tax),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return info

    def _do_create(
        self,
        bundle_id: UUID,
        request: _ValidatedRequest,
        counterparty_id: UUID,
        manager_id: UUID,
        period_from: date | None,
        period_to: date | None,
        payment_info: PaymentInfo | None,
        actor_id: UUID | None,
        tax_exempt: bool,
        memo: str | None,
    ) -> BundleInfo:
        company = self._directory.get_company(counterparty_id)
        manager = self._directory.get_manager(manager_id)

        order_ids = [item.order_charge_id for item in request.items]
        orders = self._ledger.get_orders_by_ids(order_ids, for_update=True)

        mismatched = sorted(
            str(o.id)
            for o in orders
            if o.side is not request.side or o.company_id != counterparty_id
        )
        if mismatched:
            raise CounterpartyMismatchError(
                mismatched, str(counterparty_id), request.side.value
            )

        already_settled = sorted(
            str(o.id) for o in orders if o.status is OrderChargeStatus.SETTLED
        )
        if already_settled:
            logger.warning(
                "orders_already_settled",
                extra={"order_charge_ids": already_settled},
            )
            raise OrderAlreadySettledError(already_settled)

        adjustment_lines = [
            AdjustmentLine(type=a.type, amount=a.amount) for a in request.adjustments
        ]
        totals = compute_totals(
            items=[ItemLine(base_amount=i.base_amount) for i in request.items],
            bundle_adjustments=adjustment_lines,
            tax_policy=self._tax_policy,
            tax_exempt=tax_exempt,
        )
        if totals.is_negative:
            raise NegativeTotalError(
                str(bundle_id), str(totals.total_amount), str(totals.total_tax_amount)
            )

        payment = payment_info or PaymentInfo(
            payment_method=PaymentMethod.BANK_TRANSFER,
            bank_code=company.bank_code,
            bank_account=company.bank_account,
            bank_account_holder=company.bank_account_holder,
        )

        bundle = SettlementBundle(
            id=bundle_id,
            side=request.side.value,
            company_id=company.id,
            company_snapshot=company.snapshot().to_dict(),
            manager_id=manager.id,
            manager_snapshot=manager.snapshot().to_dict(),
            payment_method=payment.payment_method.value,
            bank_code=payment.bank_code,
            bank_account=payment.bank_account,
            bank_account_holder=payment.bank_account_holder,
            period_type=request.period_type.value,
            period_from=period_from,
            period_to=period_to,
            status=BundleStatus.DRAFT.value,
            tax_exempt=tax_exempt,
            total_amount=totals.total_amount,
            total_tax_amount=totals.total_tax_amount,
            total_amount_with_tax=totals.total_amount_with_tax,
            order_count=len(request.items),
            memo=memo,
            created_by_id=actor_id,
            updated_by_id=actor_id,
        )
        self.session.add(bundle)
        self.session.flush()

        for item in request.items:
            self.session.add(
                BundleItem(
                    bundle_id=bundle.id,
                    order_charge_id=item.order_charge_id,
                    base_amount=item.base_amount,
                    created_by_id=actor_id,
                )
            )
        try:
            self.session.flush()
        except IntegrityError as exc:
            if _is_active_order_violation(exc):
                logger.warning("active_order_index_conflict")
                raise OrderAlreadySettledError(sorted(str(i) for i in order_ids)) from exc
            raise

        for adj, line in zip(request.adjustments, adjustment_lines):
            self.session.add(
                BundleAdjustment(
                    bundle_id=bundle.id,
                    type=adj.type.value,
                    description=adj.description,
                    amount=adj.amount,
                    tax_amount=adjustment_tax(line, self._tax_policy, tax_exempt),
                    created_by_id=actor_id,
                )
            )
        self.session.flush()

        self._ledger.mark_settled(order_ids, bundle.id)

        return BundleInfo.from_model(bundle)
