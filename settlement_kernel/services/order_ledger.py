"""
OrderLedger -- adapter over the order system's charge table.

Responsibility:
    The only code that changes an order charge's settlement state.  The
    bundle builder consumes charges through ``mark_settled``; the lifecycle
    service returns them to the waiting pool through ``release``.

Architecture position:
    Kernel > Services -- imperative shell.  ``OrderLedger`` is the inbound
    protocol; ``SqlOrderLedger`` implements it over ``order_charges``.

Invariants enforced:
    - Consumption is a single conditional UPDATE ``WHERE status =
      'unsettled'``; the affected row count must equal the number of
      requested ids or the whole call fails with OrderAlreadySettledError.
    - Reads used for consumption decisions take row locks in primary-key
      order (``SELECT ... FOR UPDATE``) on PostgreSQL, so two builders
      touching overlapping orders cannot deadlock.

Failure modes:
    - OrderNotFoundError: an id does not exist.
    - OrderAlreadySettledError: an id was consumed by a concurrent build.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol, Sequence
from uuid import UUID

from sqlalchemy import select, update

from settlement_kernel.db.base import utcnow
from settlement_kernel.domain.dtos import OrderChargeInfo, OrderChargeStatus, Side
from settlement_kernel.exceptions import OrderAlreadySettledError, OrderNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.order_charge import OrderCharge
from settlement_kernel.services.base import BaseService

logger = get_logger("services.order_ledger")


class OrderLedger(Protocol):
    """Inbound interface the engine needs from the order system."""

    def get_orders_by_ids(
        self, ids: Sequence[UUID], for_update: bool = False
    ) -> list[OrderChargeInfo]: ...

    def mark_settled(self, ids: Sequence[UUID], bundle_id: UUID) -> int: ...

    def release(self, bundle_id: UUID) -> int: ...


def _to_dto(charge: OrderCharge) -> OrderChargeInfo:
    return OrderChargeInfo(
        id=charge.id,
        order_id=charge.order_id,
        side=Side(charge.side),
        company_id=charge.company_id,
        amount=charge.amount,
        status=OrderChargeStatus(charge.status),
        bundle_id=charge.bundle_id,
        description=charge.description,
        service_date=charge.service_date,
    )


class SqlOrderLedger(BaseService[OrderCharge]):
    """
    OrderLedger backed by the ``order_charges`` table.

    Guarantees:
        - mark_settled is all-or-nothing: on a short row count nothing
          is left half-consumed once the caller's transaction rolls back.
    """

    def record_charge(
        self,
        order_id: str,
        side: Side,
        company_id: UUID,
        amount: Decimal,
        description: str | None = None,
        service_date: date | None = None,
        actor_id: UUID | None = None,
    ) -> OrderChargeInfo:
        """Register a completed order's charge in the waiting pool."""
        charge = OrderCharge(
            order_id=order_id,
            side=Side(side).value,
            company_id=company_id,
            amount=amount,
            description=description,
            service_date=service_date,
            status=OrderChargeStatus.UNSETTLED.value,
            created_by_id=actor_id,
        )
        self.session.add(charge)
        self.session.flush()
        logger.debug(
            "order_charge_recorded",
            extra={"order_charge_id": str(charge.id), "side": charge.side},
        )
        return _to_dto(charge)

    def get_orders_by_ids(
        self, ids: Sequence[UUID], for_update: bool = False
    ) -> list[OrderChargeInfo]:
        """
        Load order charges by id, in id order.

        Raises:
            OrderNotFoundError: If any id does not exist.
        """
        wanted = sorted(set(ids), key=str)
        stmt = (
            select(OrderCharge)
            .where(OrderCharge.id.in_(wanted))
            .order_by(OrderCharge.id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=OrderCharge)
        charges = self.session.execute(stmt).unique().scalars().all()

        found = {c.id for c in charges}
        missing = [str(i) for i in wanted if i not in found]
        if missing:
            raise OrderNotFoundError(missing)
        return [_to_dto(c) for c in charges]

    def mark_settled(self, ids: Sequence[UUID], bundle_id: UUID) -> int:
        """
        Flip order charges from UNSETTLED to SETTLED under ``bundle_id``.

        Returns:
            Number of consumed charges (always ``len(set(ids))``).

        Raises:
            OrderAlreadySettledError: If any charge was not UNSETTLED.
        """
        wanted = list(dict.fromkeys(ids))
        result = self.session.execute(
            update(OrderCharge)
            .where(
                OrderCharge.id.in_(wanted),
                OrderCharge.status == OrderChargeStatus.UNSETTLED.value,
            )
            .values(
                status=OrderChargeStatus.SETTLED.value,
                bundle_id=bundle_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != len(wanted):
            taken = self._not_owned_by(wanted, bundle_id)
            logger.warning(
                "orders_consumption_conflict",
                extra={
                    "bundle_id": str(bundle_id),
                    "requested": len(wanted),
                    "consumed": result.rowcount,
                    "conflicting": taken,
                },
            )
            raise OrderAlreadySettledError(taken)

        logger.info(
            "orders_consumed",
            extra={"bundle_id": str(bundle_id), "order_count": len(wanted)},
        )
        return len(wanted)

    def release(self, bundle_id: UUID) -> int:
        """
        Return every charge consumed by ``bundle_id`` to the waiting pool.

        Returns:
            Number of released charges.
        """
        result = self.session.execute(
            update(OrderCharge)
            .where(
                OrderCharge.bundle_id == bundle_id,
                OrderCharge.status == OrderChargeStatus.SETTLED.value,
            )
            .values(
                status=OrderChargeStatus.UNSETTLED.value,
                bundle_id=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="evaluate")
        )
        logger.info(
            "orders_released",
            extra={"bundle_id": str(bundle_id), "order_count": result.rowcount},
        )
        return result.rowcount

    def _not_owned_by(self, ids: Iterable[UUID], bundle_id: UUID) -> list[str]:
        rows = self.session.execute(
            select(OrderCharge.id).where(
                OrderCharge.id.in_(list(ids)),
                OrderCharge.bundle_id != bundle_id,
                OrderCharge.status == OrderChargeStatus.SETTLED.value,
            )
        ).scalars().all()
        return sorted(str(r) for r in rows)
