"""
Pydantic request and response models for the settlement REST surface.

Money travels as Decimal in requests and as a string in responses, never
as a float.  Request models forbid unknown fields; enum-valued inputs are
accepted as plain strings and parsed by the kernel so that an unknown value
surfaces with the kernel's error code.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    AdjustmentResult,
    BundleDetail,
    BundleInfo,
    BundleItemInfo,
    BundleSummaryInfo,
    BundleTotals,
    Page,
    PaymentMethod,
    WaitingOrderInfo,
    WaitingOrderSummary,
)

T = TypeVar("T")


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _Response(BaseModel):
    """Decimals serialize to JSON strings (pydantic default)."""


# ============================================================================
# Requests
# ============================================================================


class ItemIn(_Request):
    order_charge_id: UUID
    base_amount: Decimal = Field(description="Positive amount, at most 2 decimals")


class AdjustmentIn(_Request):
    type: str = Field(description="surcharge or discount")
    amount: Decimal = Field(description="Positive magnitude; the type carries the sign")
    description: Optional[str] = None


class PaymentInfoIn(_Request):
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_code: Optional[str] = None
    bank_account: Optional[str] = None
    bank_account_holder: Optional[str] = None


class CreateBundleRequest(_Request):
    side: str = Field(description="sales or purchase")
    counterparty_id: UUID
    manager_id: UUID
    period_type: str = "departure"
    period_from: Optional[date] = None
    period_to: Optional[date] = None
    items: list[ItemIn]
    adjustments: list[AdjustmentIn] = Field(default_factory=list)
    payment_info: Optional[PaymentInfoIn] = None
    tax_exempt: bool = False
    memo: Optional[str] = None


class AdjustmentCreateRequest(AdjustmentIn):
    expected_version: Optional[int] = None


class AdjustmentUpdateRequest(_Request):
    """Omitted fields keep their value; an explicit null description clears it."""

    type: Optional[str] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    expected_version: Optional[int] = None


class TransitionRequest(_Request):
    target: str = Field(description="issued, paid or canceled")
    invoice_no: Optional[str] = None
    issued_at: Optional[datetime] = None
    deposit_received_at: Optional[datetime] = None
    reason: Optional[str] = None
    expected_version: Optional[int] = None


# ============================================================================
# Responses
# ============================================================================


class TotalsOut(_Response):
    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal

    @classmethod
    def from_dto(cls, totals: BundleTotals) -> TotalsOut:
        return cls(
            total_amount=totals.total_amount,
            total_tax_amount=totals.total_tax_amount,
            total_amount_with_tax=totals.total_amount_with_tax,
        )


class AdjustmentOut(_Response):
    id: UUID
    scope: str
    parent_id: UUID
    type: str
    amount: Decimal
    tax_amount: Decimal
    description: Optional[str]
    created_by_id: Optional[UUID]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_dto(cls, adj: AdjustmentInfo) -> AdjustmentOut:
        return cls(
            id=adj.id,
            scope=adj.scope.value,
            parent_id=adj.parent_id,
            type=adj.type.value,
            amount=adj.amount,
            tax_amount=adj.tax_amount,
            description=adj.description,
            created_by_id=adj.created_by_id,
            created_at=adj.created_at,
            updated_at=adj.updated_at,
        )


class AdjustmentResultOut(_Response):
    adjustment: Optional[AdjustmentOut]
    totals: TotalsOut

    @classmethod
    def from_dto(cls, result: AdjustmentResult) -> AdjustmentResultOut:
        return cls(
            adjustment=(
                AdjustmentOut.from_dto(result.adjustment)
                if result.adjustment is not None
                else None
            ),
            totals=TotalsOut.from_dto(result.totals),
        )


class ItemOut(_Response):
    id: UUID
    bundle_id: UUID
    order_charge_id: UUID
    order_sales_id: Optional[UUID]
    order_purchase_id: Optional[UUID]
    order_id: Optional[str]
    description: Optional[str]
    service_date: Optional[date]
    base_amount: Decimal
    released_at: Optional[datetime]
    adjustments: list[AdjustmentOut]

    @classmethod
    def from_dto(cls, item: BundleItemInfo) -> ItemOut:
        return cls(
            id=item.id,
            bundle_id=item.bundle_id,
            order_charge_id=item.order_charge_id,
            order_sales_id=item.order_sales_id,
            order_purchase_id=item.order_purchase_id,
            order_id=item.order_id,
            description=item.description,
            service_date=item.service_date,
            base_amount=item.base_amount,
            released_at=item.released_at,
            adjustments=[AdjustmentOut.from_dto(a) for a in item.adjustments],
        )


class BundleOut(_Response):
    id: UUID
    side: str
    status: str
    version: int
    company_id: UUID
    company_snapshot: dict
    manager_id: UUID
    manager_snapshot: dict
    payment_method: str
    bank_code: Optional[str]
    bank_account: Optional[str]
    bank_account_holder: Optional[str]
    period_type: str
    period_from: Optional[date]
    period_to: Optional[date]
    tax_exempt: bool
    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal
    order_count: int
    invoice_no: Optional[str]
    invoice_issued_at: Optional[datetime]
    deposit_received_at: Optional[datetime]
    settled_at: Optional[datetime]
    canceled_at: Optional[datetime]
    cancel_reason: Optional[str]
    memo: Optional[str]
    created_by_id: Optional[UUID]
    updated_by_id: Optional[UUID]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_dto(cls, info: BundleInfo) -> BundleOut:
        return cls(
            id=info.id,
            side=info.side.value,
            status=info.status.value,
            version=info.version,
            company_id=info.company_id,
            company_snapshot=info.company_snapshot.to_dict(),
            manager_id=info.manager_id,
            manager_snapshot=info.manager_snapshot.to_dict(),
            payment_method=info.payment_info.payment_method.value,
            bank_code=info.payment_info.bank_code,
            bank_account=info.payment_info.bank_account,
            bank_account_holder=info.payment_info.bank_account_holder,
            period_type=info.period_type.value,
            period_from=info.period_from,
            period_to=info.period_to,
            tax_exempt=info.tax_exempt,
            total_amount=info.total_amount,
            total_tax_amount=info.total_tax_amount,
            total_amount_with_tax=info.total_amount_with_tax,
            order_count=info.order_count,
            invoice_no=info.invoice_no,
            invoice_issued_at=info.invoice_issued_at,
            deposit_received_at=info.deposit_received_at,
            settled_at=info.settled_at,
            canceled_at=info.canceled_at,
            cancel_reason=info.cancel_reason,
            memo=info.memo,
            created_by_id=info.created_by_id,
            updated_by_id=info.updated_by_id,
            created_at=info.created_at,
            updated_at=info.updated_at,
        )


class BundleDetailOut(_Response):
    bundle: BundleOut
    items: list[ItemOut]
    adjustments: list[AdjustmentOut]

    @classmethod
    def from_dto(cls, detail: BundleDetail) -> BundleDetailOut:
        return cls(
            bundle=BundleOut.from_dto(detail.bundle),
            items=[ItemOut.from_dto(i) for i in detail.items],
            adjustments=[AdjustmentOut.from_dto(a) for a in detail.adjustments],
        )


class BundleSummaryOut(_Response):
    id: UUID
    side: str
    status: str
    company_id: UUID
    company_name: str
    business_number: Optional[str]
    manager_name: str
    period_type: str
    period_from: Optional[date]
    period_to: Optional[date]
    order_count: int
    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal
    invoice_no: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_dto(cls, row: BundleSummaryInfo) -> BundleSummaryOut:
        return cls(
            id=row.id,
            side=row.side.value,
            status=row.status.value,
            company_id=row.company_id,
            company_name=row.company_name,
            business_number=row.business_number,
            manager_name=row.manager_name,
            period_type=row.period_type.value,
            period_from=row.period_from,
            period_to=row.period_to,
            order_count=row.order_count,
            total_amount=row.total_amount,
            total_tax_amount=row.total_tax_amount,
            total_amount_with_tax=row.total_amount_with_tax,
            invoice_no=row.invoice_no,
            created_at=row.created_at,
        )


class WaitingOrderOut(_Response):
    order_charge_id: UUID
    order_id: str
    side: str
    company_id: UUID
    company_name: str
    business_number: Optional[str]
    amount: Decimal
    description: Optional[str]
    service_date: Optional[date]
    created_at: Optional[datetime]

    @classmethod
    def from_dto(cls, row: WaitingOrderInfo) -> WaitingOrderOut:
        return cls(
            order_charge_id=row.order_charge_id,
            order_id=row.order_id,
            side=row.side.value,
            company_id=row.company_id,
            company_name=row.company_name,
            business_number=row.business_number,
            amount=row.amount,
            description=row.description,
            service_date=row.service_date,
            created_at=row.created_at,
        )


class WaitingSummaryOut(_Response):
    company_id: UUID
    company_name: str
    business_number: Optional[str]
    order_count: int
    total_amount: Decimal

    @classmethod
    def from_dto(cls, row: WaitingOrderSummary) -> WaitingSummaryOut:
        return cls(
            company_id=row.company_id,
            company_name=row.company_name,
            business_number=row.business_number,
            order_count=row.order_count,
            total_amount=row.total_amount,
        )


class PageOut(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def from_page(cls, page: Page, convert) -> PageOut:
        return cls(
            items=[convert(item) for item in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
        )


class ErrorOut(BaseModel):
    error: str = Field(description="Machine-readable error code")
    kind: str = Field(description="validation, not_found, conflict, invalid_state, timeout")
    message: str
    details: dict = Field(default_factory=dict)
