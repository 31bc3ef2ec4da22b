"""
Module: settlement_kernel.models.bundle
Responsibility: ORM persistence for settlement bundles and their children:
    SettlementBundle, BundleItem, BundleAdjustment and ItemAdjustment.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py (enums) only.  MUST NOT import from services/, selectors/
    or outer layers.

Invariants enforced:
    - An order charge appears in at most one *active* bundle item: partial
      unique index on ``order_charge_id`` WHERE ``released_at IS NULL``.
    - ``version`` is the mapper's version_id_col; every UPDATE of a bundle
      row is conditional on the version the session loaded, so a lost
      update raises StaleDataError.
    - Totals are stored as Numeric(14, 2); ``total_amount_with_tax ==
      total_amount + total_tax_amount`` is guarded by a CHECK constraint
      compared in whole cents, since SQLite stores Numeric as REAL.
    - Snapshots, side and counterparty are written once (ORM guard in
      db/immutability.py).
    - Bundles are never deleted; cancellation is a status transition.

Failure modes:
    - IntegrityError on the active-order index when an order charge is
      already in another live bundle.
    - StaleDataError when a concurrent transaction bumped ``version``.

Audit relevance:
    ``created_by_id``/``updated_by_id`` on bundles and ``created_by_id`` on
    adjustments record the acting user.  Released items stay in the table
    with ``released_at`` set, so a canceled bundle keeps its full history.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import MONEY, TrackedBase, UUIDString
from settlement_kernel.domain.dtos import (
    AdjustmentType,
    BundleStatus,
    PaymentMethod,
    PeriodType,
    Side,
)

if TYPE_CHECKING:
    from settlement_kernel.models.order_charge import OrderCharge

ZERO = Decimal("0")


class SettlementBundle(TrackedBase):
    """
    A batch of order charges for one counterparty on one side.

    Contract:
        Created in DRAFT by the bundle builder together with its items.
        Status moves only through services/lifecycle_service.py; totals
        move only through the builder and the adjustment manager.

    Guarantees:
        - order_count equals the number of items created with the bundle.
        - version increments on every UPDATE of the row.

    Non-goals:
        - Does NOT recompute totals itself (see domain/totals.py).
    """

    __tablename__ = "settlement_bundles"

    __table_args__ = (
        CheckConstraint(
            "round(total_amount_with_tax * 100) = "
            "round((total_amount + total_tax_amount) * 100)",
            name="ck_bundle_totals_consistent",
        ),
        Index("idx_bundle_side_status", "side", "status"),
        Index("idx_bundle_company", "company_id"),
        Index("idx_bundle_created_at", "created_at"),
        Index("idx_bundle_period", "period_from", "period_to"),
    )

    side: Mapped[Side] = mapped_column(String(20), nullable=False)

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    # {name, business_number, ceo_name} at creation time
    company_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    manager_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("managers.id"),
        nullable=False,
    )

    # {name, email, phone} at creation time
    manager_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )

    bank_code: Mapped[str | None] = mapped_column(String(10), nullable=True)

    bank_account: Mapped[str | None] = mapped_column(String(50), nullable=True)

    bank_account_holder: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )

    period_type: Mapped[PeriodType] = mapped_column(
        String(20),
        nullable=False,
        default=PeriodType.DEPARTURE,
    )

    period_from: Mapped[date | None] = mapped_column(Date, nullable=True)

    period_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[BundleStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BundleStatus.DRAFT,
    )

    tax_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    total_tax_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )

    total_amount_with_tax: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )

    invoice_no: Mapped[str | None] = mapped_column(String(50), nullable=True)

    invoice_issued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    deposit_received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    canceled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Optimistic lock
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[list["BundleItem"]] = relationship(
        back_populates="bundle",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    adjustments: Mapped[list["BundleAdjustment"]] = relationship(
        back_populates="bundle",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<SettlementBundle {self.id} {self.side}/{self.status} "
            f"total={self.total_amount_with_tax} v{self.version}>"
        )


class BundleItem(TrackedBase):
    """
    One order charge inside a bundle.

    Contract:
        ``base_amount`` is the amount agreed when the bundle was built and
        never changes.  Items are never deleted; cancelling the bundle stamps
        ``released_at`` and frees the order charge for a new bundle.
    """

    __tablename__ = "settlement_bundle_items"

    __table_args__ = (
        Index(
            "uq_bundle_item_active_order",
            "order_charge_id",
            unique=True,
            postgresql_where=text("released_at IS NULL"),
            sqlite_where=text("released_at IS NULL"),
        ),
        Index("idx_bundle_item_bundle", "bundle_id"),
    )

    bundle_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_bundles.id", ondelete="CASCADE"),
        nullable=False,
    )

    order_charge_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("order_charges.id"),
        nullable=False,
    )

    base_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    bundle: Mapped[SettlementBundle] = relationship(back_populates="items")

    order_charge: Mapped["OrderCharge"] = relationship()

    adjustments: Mapped[list["ItemAdjustment"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.released_at is None

    def __repr__(self) -> str:
        return f"<BundleItem {self.id} order_charge={self.order_charge_id} {self.base_amount}>"


class BundleAdjustment(TrackedBase):
    """A surcharge or discount applied to the bundle as a whole."""

    __tablename__ = "settlement_bundle_adjustments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bundle_adjustment_amount_positive"),
        Index("idx_bundle_adjustment_bundle", "bundle_id"),
    )

    bundle_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_bundles.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[AdjustmentType] = mapped_column(String(20), nullable=False)

    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Positive magnitude; the type carries the sign
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    bundle: Mapped[SettlementBundle] = relationship(back_populates="adjustments")


class ItemAdjustment(TrackedBase):
    """A surcharge or discount applied to a single bundle item."""

    __tablename__ = "settlement_item_adjustments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_item_adjustment_amount_positive"),
        Index("idx_item_adjustment_item", "bundle_item_id"),
    )

    bundle_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_bundle_items.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[AdjustmentType] = mapped_column(String(20), nullable=False)

    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    item: Mapped[BundleItem] = relationship(back_populates="adjustments")
