"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the closed enums and the immutable data structures that flow
    between the REST surface, the services, the pure totals calculator and
    the selectors: request inputs (ItemInput, AdjustmentInput, PaymentInfo),
    snapshots (CompanySnapshot, ManagerSnapshot), calculator lines
    (ItemLine, AdjustmentLine, BundleTotals) and read models (BundleInfo,
    BundleDetail, BundleSummaryInfo, WaitingOrderInfo, Page).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies.  from_model() class methods exist as boundary
    converters but are only invoked from the service and selector layers.

Invariants enforced:
    - Snapshots are frozen value objects; they are written once when a
      bundle is created and never re-fetched.
    - BundleTotals.total_amount_with_tax == total_amount + total_tax_amount
      (checked in __post_init__).
    - Statuses, sides, period types and adjustment types are closed enums.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from math import ceil
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import UUID

if TYPE_CHECKING:
    from settlement_kernel.models.bundle import (
        BundleAdjustment as BundleAdjustmentModel,
    )
    from settlement_kernel.models.bundle import (
        BundleItem as BundleItemModel,
    )
    from settlement_kernel.models.bundle import (
        ItemAdjustment as ItemAdjustmentModel,
    )
    from settlement_kernel.models.bundle import (
        SettlementBundle as SettlementBundleModel,
    )

T = TypeVar("T")


# =============================================================================
# Closed enums
# =============================================================================


class Side(str, Enum):
    """
    Which side of a shipment a charge belongs to.

    Contract:
        SALES is billed to the shipper; PURCHASE is paid to the carrier.
        A bundle and every order charge in it share exactly one side.
    """

    SALES = "sales"
    PURCHASE = "purchase"


class OrderChargeStatus(str, Enum):
    """Settlement state of an order charge in the order ledger."""

    UNSETTLED = "unsettled"
    SETTLED = "settled"


class BundleStatus(str, Enum):
    """
    Settlement bundle lifecycle status.

    Contract:
        DRAFT -> ISSUED -> PAID; DRAFT|ISSUED -> CANCELED.
        PAID and CANCELED are terminal (see domain/lifecycle.py).
    """

    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    CANCELED = "canceled"


class PeriodType(str, Enum):
    """Which order date the bundle period refers to."""

    DEPARTURE = "departure"
    ARRIVAL = "arrival"
    ETC = "etc"


class AdjustmentType(str, Enum):
    """
    Adjustment variant.

    Contract:
        Amounts are stored as positive magnitudes; SURCHARGE adds and
        DISCOUNT subtracts when totals are computed.
    """

    SURCHARGE = "surcharge"
    DISCOUNT = "discount"

    @property
    def sign(self) -> int:
        return 1 if self is AdjustmentType.SURCHARGE else -1


class AdjustmentScope(str, Enum):
    BUNDLE = "bundle"
    ITEM = "item"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    ETC = "etc"


# =============================================================================
# Snapshots and directory records
# =============================================================================


@dataclass(frozen=True)
class CompanySnapshot:
    """
    Counterparty details copied onto a bundle at creation.

    Contract:
        Written once.  Later edits to the company directory never change a
        bundle's snapshot.
    """

    name: str
    business_number: str | None = None
    ceo_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "business_number": self.business_number,
            "ceo_name": self.ceo_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompanySnapshot:
        return cls(
            name=data["name"],
            business_number=data.get("business_number"),
            ceo_name=data.get("ceo_name"),
        )


@dataclass(frozen=True)
class ManagerSnapshot:
    """Responsible manager details copied onto a bundle at creation."""

    name: str
    email: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManagerSnapshot:
        return cls(
            name=data["name"],
            email=data.get("email"),
            phone=data.get("phone"),
        )


@dataclass(frozen=True)
class CompanyInfo:
    """Company record as returned by the directory adapter."""

    id: UUID
    name: str
    business_number: str | None = None
    ceo_name: str | None = None
    bank_code: str | None = None
    bank_account: str | None = None
    bank_account_holder: str | None = None

    def snapshot(self) -> CompanySnapshot:
        return CompanySnapshot(
            name=self.name,
            business_number=self.business_number,
            ceo_name=self.ceo_name,
        )


@dataclass(frozen=True)
class ManagerInfo:
    """Manager record as returned by the directory adapter."""

    id: UUID
    name: str
    email: str | None = None
    phone: str | None = None
    company_id: UUID | None = None

    def snapshot(self) -> ManagerSnapshot:
        return ManagerSnapshot(name=self.name, email=self.email, phone=self.phone)


@dataclass(frozen=True)
class OrderChargeInfo:
    """Order charge as returned by the order ledger adapter."""

    id: UUID
    order_id: str
    side: Side
    company_id: UUID
    amount: Decimal
    status: OrderChargeStatus
    bundle_id: UUID | None = None
    description: str | None = None
    service_date: date | None = None


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class PaymentInfo:
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_code: str | None = None
    bank_account: str | None = None
    bank_account_holder: str | None = None


@dataclass(frozen=True)
class ItemInput:
    """One order charge selected for a bundle, with its base amount."""

    order_charge_id: UUID
    base_amount: Decimal


@dataclass(frozen=True)
class AdjustmentInput:
    """A requested surcharge or discount (amount is a positive magnitude)."""

    type: AdjustmentType
    amount: Decimal
    description: str | None = None


# =============================================================================
# Totals calculator lines
# =============================================================================


@dataclass(frozen=True)
class AdjustmentLine:
    type: AdjustmentType
    amount: Decimal

    @property
    def signed_amount(self) -> Decimal:
        return self.amount * self.type.sign


@dataclass(frozen=True)
class ItemLine:
    base_amount: Decimal
    adjustments: tuple[AdjustmentLine, ...] = ()


@dataclass(frozen=True)
class BundleTotals:
    """
    The three stored totals of a bundle.

    Guarantees:
        - total_amount_with_tax == total_amount + total_tax_amount.
    """

    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal

    def __post_init__(self) -> None:
        if self.total_amount + self.total_tax_amount != self.total_amount_with_tax:
            raise ValueError(
                f"Inconsistent totals: {self.total_amount} + "
                f"{self.total_tax_amount} != {self.total_amount_with_tax}"
            )

    @classmethod
    def of(cls, total_amount: Decimal, total_tax_amount: Decimal) -> BundleTotals:
        return cls(
            total_amount=total_amount,
            total_tax_amount=total_tax_amount,
            total_amount_with_tax=total_amount + total_tax_amount,
        )

    @property
    def is_negative(self) -> bool:
        """Either the net amount or the summed line tax is below zero."""
        return self.total_amount < 0 or self.total_tax_amount < 0


# =============================================================================
# Read models
# =============================================================================


@dataclass(frozen=True)
class AdjustmentInfo:
    id: UUID
    scope: AdjustmentScope
    parent_id: UUID
    type: AdjustmentType
    amount: Decimal
    tax_amount: Decimal
    description: str | None
    created_by_id: UUID | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_model(
        cls, model: BundleAdjustmentModel | ItemAdjustmentModel
    ) -> AdjustmentInfo:
        from settlement_kernel.models.bundle import BundleAdjustment

        if isinstance(model, BundleAdjustment):
            scope, parent_id = AdjustmentScope.BUNDLE, model.bundle_id
        else:
            scope, parent_id = AdjustmentScope.ITEM, model.bundle_item_id
        return cls(
            id=model.id,
            scope=scope,
            parent_id=parent_id,
            type=AdjustmentType(model.type),
            amount=model.amount,
            tax_amount=model.tax_amount,
            description=model.description,
            created_by_id=model.created_by_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class BundleItemInfo:
    """
    One bundle item with the order details it was built from.

    ``order_sales_id`` / ``order_purchase_id`` expose ``order_charge_id``
    under the side-specific name; the other one is always None.
    """

    id: UUID
    bundle_id: UUID
    side: Side
    order_charge_id: UUID
    order_id: str | None
    description: str | None
    service_date: date | None
    base_amount: Decimal
    released_at: datetime | None
    adjustments: tuple[AdjustmentInfo, ...] = ()

    @property
    def order_sales_id(self) -> UUID | None:
        return self.order_charge_id if self.side is Side.SALES else None

    @property
    def order_purchase_id(self) -> UUID | None:
        return self.order_charge_id if self.side is Side.PURCHASE else None

    @classmethod
    def from_model(cls, model: BundleItemModel, side: Side) -> BundleItemInfo:
        order = model.order_charge
        return cls(
            id=model.id,
            bundle_id=model.bundle_id,
            side=side,
            order_charge_id=model.order_charge_id,
            order_id=order.order_id if order is not None else None,
            description=order.description if order is not None else None,
            service_date=order.service_date if order is not None else None,
            base_amount=model.base_amount,
            released_at=model.released_at,
            adjustments=tuple(
                AdjustmentInfo.from_model(a)
                for a in sorted(model.adjustments, key=_created_key)
            ),
        )


@dataclass(frozen=True)
class BundleInfo:
    """Full bundle header as persisted."""

    id: UUID
    side: Side
    company_id: UUID
    company_snapshot: CompanySnapshot
    manager_id: UUID
    manager_snapshot: ManagerSnapshot
    payment_info: PaymentInfo
    period_type: PeriodType
    period_from: date | None
    period_to: date | None
    status: BundleStatus
    tax_exempt: bool
    totals: BundleTotals
    order_count: int
    version: int
    invoice_no: str | None = None
    invoice_issued_at: datetime | None = None
    deposit_received_at: datetime | None = None
    settled_at: datetime | None = None
    canceled_at: datetime | None = None
    cancel_reason: str | None = None
    memo: str | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def total_amount(self) -> Decimal:
        return self.totals.total_amount

    @property
    def total_tax_amount(self) -> Decimal:
        return self.totals.total_tax_amount

    @property
    def total_amount_with_tax(self) -> Decimal:
        return self.totals.total_amount_with_tax

    @classmethod
    def from_model(cls, model: SettlementBundleModel) -> BundleInfo:
        return cls(
            id=model.id,
            side=Side(model.side),
            company_id=model.company_id,
            company_snapshot=CompanySnapshot.from_dict(model.company_snapshot),
            manager_id=model.manager_id,
            manager_snapshot=ManagerSnapshot.from_dict(model.manager_snapshot),
            payment_info=PaymentInfo(
                payment_method=PaymentMethod(model.payment_method),
                bank_code=model.bank_code,
                bank_account=model.bank_account,
                bank_account_holder=model.bank_account_holder,
            ),
            period_type=PeriodType(model.period_type),
            period_from=model.period_from,
            period_to=model.period_to,
            status=BundleStatus(model.status),
            tax_exempt=model.tax_exempt,
            totals=BundleTotals(
                total_amount=model.total_amount,
                total_tax_amount=model.total_tax_amount,
                total_amount_with_tax=model.total_amount_with_tax,
            ),
            order_count=model.order_count,
            version=model.version,
            invoice_no=model.invoice_no,
            invoice_issued_at=model.invoice_issued_at,
            deposit_received_at=model.deposit_received_at,
            settled_at=model.settled_at,
            canceled_at=model.canceled_at,
            cancel_reason=model.cancel_reason,
            memo=model.memo,
            created_by_id=model.created_by_id,
            updated_by_id=model.updated_by_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class BundleDetail:
    """Bundle header plus items (with their adjustments) and bundle adjustments."""

    bundle: BundleInfo
    items: tuple[BundleItemInfo, ...]
    adjustments: tuple[AdjustmentInfo, ...]


@dataclass(frozen=True)
class BundleSummaryInfo:
    """One row of the bundle listing."""

    id: UUID
    side: Side
    status: BundleStatus
    company_id: UUID
    company_name: str
    business_number: str | None
    manager_name: str
    period_type: PeriodType
    period_from: date | None
    period_to: date | None
    order_count: int
    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal
    invoice_no: str | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, model: SettlementBundleModel) -> BundleSummaryInfo:
        company = CompanySnapshot.from_dict(model.company_snapshot)
        manager = ManagerSnapshot.from_dict(model.manager_snapshot)
        return cls(
            id=model.id,
            side=Side(model.side),
            status=BundleStatus(model.status),
            company_id=model.company_id,
            company_name=company.name,
            business_number=company.business_number,
            manager_name=manager.name,
            period_type=PeriodType(model.period_type),
            period_from=model.period_from,
            period_to=model.period_to,
            order_count=model.order_count,
            total_amount=model.total_amount,
            total_tax_amount=model.total_tax_amount,
            total_amount_with_tax=model.total_amount_with_tax,
            invoice_no=model.invoice_no,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class WaitingOrderInfo:
    """An unsettled order charge eligible for bundling."""

    order_charge_id: UUID
    order_id: str
    side: Side
    company_id: UUID
    company_name: str
    business_number: str | None
    amount: Decimal
    description: str | None
    service_date: date | None
    created_at: datetime | None


@dataclass(frozen=True)
class WaitingOrderSummary:
    """Per-counterparty aggregate of a prospective selection."""

    company_id: UUID
    company_name: str
    business_number: str | None
    order_count: int
    total_amount: Decimal


@dataclass(frozen=True)
class AdjustmentResult:
    """
    Outcome of an adjustment operation.

    ``adjustment`` is None after a removal or a bare recompute.
    """

    adjustment: AdjustmentInfo | None
    totals: BundleTotals


# =============================================================================
# Listing parameters
# =============================================================================


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class SortSpec:
    field: str = "created_at"
    direction: str = "desc"


@dataclass(frozen=True)
class WaitingOrderFilter:
    company_id: UUID | None = None
    company_name: str | None = None
    business_number: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    search: str | None = None


@dataclass(frozen=True)
class BundleFilter:
    """
    Bundle listing filters.

    ``date_field`` selects what the start/end range applies to: ``period``
    (period_from/period_to overlap) or ``created`` (created_at).
    """

    side: Side | None = None
    company_id: UUID | None = None
    company_name: str | None = None
    business_number: str | None = None
    status: BundleStatus | None = None
    date_field: str = "period"
    start_date: date | None = None
    end_date: date | None = None
    search: str | None = None


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a listing.  ``total`` counts rows matching the same filters."""

    items: tuple[T, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return ceil(self.total / self.page_size)


def _created_key(model: Any) -> tuple:
    return (model.created_at is None, model.created_at, str(model.id))
