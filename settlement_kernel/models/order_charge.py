"""
Module: settlement_kernel.models.order_charge
Responsibility: ORM persistence for order charges -- one row per completed
    shipment order per side (shipper-billed sales charge or carrier-paid
    purchase charge).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py (enums) only.

Invariants enforced:
    - At most one charge per (order_id, side) (uq_order_charge_order_side).
    - ``status`` is UNSETTLED while the charge sits in the waiting pool and
      SETTLED while an active bundle item references it.  ``bundle_id``
      names that bundle and is NULL otherwise.  Both are only changed by
      services/order_ledger.py through conditional UPDATEs.

Failure modes:
    - IntegrityError on a duplicate (order_id, side).
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import MONEY, TrackedBase, UUIDString
from settlement_kernel.domain.dtos import OrderChargeStatus, Side

if TYPE_CHECKING:
    from settlement_kernel.models.directory import Company


class OrderCharge(TrackedBase):
    """
    A billable (sales) or payable (purchase) charge of a single order.

    Contract:
        Selectable by a new bundle only while ``status == UNSETTLED``.

    Non-goals:
        - Order capture, dispatch and pricing are owned by the order system;
          this table is the settlement engine's view of their output.
    """

    __tablename__ = "order_charges"

    __table_args__ = (
        UniqueConstraint("order_id", "side", name="uq_order_charge_order_side"),
        Index("idx_order_charge_pool", "side", "status", "company_id"),
        Index("idx_order_charge_service_date", "service_date"),
        Index("idx_order_charge_bundle", "bundle_id"),
    )

    # External order reference
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)

    side: Mapped[Side] = mapped_column(String(20), nullable=False)

    # Shipper for sales, carrier for purchase
    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Pickup date; drives waiting-order date filters
    service_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[OrderChargeStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderChargeStatus.UNSETTLED,
    )

    bundle_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_bundles.id"),
        nullable=True,
    )

    company: Mapped["Company"] = relationship()

    @property
    def is_settled(self) -> bool:
        return self.status == OrderChargeStatus.SETTLED

    def __repr__(self) -> str:
        return f"<OrderCharge {self.order_id}/{self.side}: {self.amount} ({self.status})>"
