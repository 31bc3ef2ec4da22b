"""
Settlement REST endpoints.

ENDPOINTS:
    POST   /bundles                                           create a bundle
    GET    /bundles                                           list bundles
    GET    /bundles/{id}                                      bundle detail
    PATCH  /bundles/{id}                                      edit memo/payment/period
    GET    /bundles/{id}/items                                order list
    GET    /bundles/{id}/adjustments                          bundle adjustments
    POST   /bundles/{id}/adjustments                          add bundle adjustment
    PATCH  /bundles/{id}/adjustments/{adj_id}                 edit bundle adjustment
    DELETE /bundles/{id}/adjustments/{adj_id}                 remove bundle adjustment
    GET    /bundles/{id}/items/{item_id}/adjustments          item adjustments
    POST   /bundles/{id}/items/{item_id}/adjustments          add item adjustment
    PATCH  /bundles/{id}/items/{item_id}/adjustments/{adj_id} edit item adjustment
    DELETE /bundles/{id}/items/{item_id}/adjustments/{adj_id} remove item adjustment
    POST   /bundles/{id}/transition                           issue / pay / cancel
    GET    /waiting-orders                                    waiting pool
    GET    /waiting-orders/summary                            selection summary

Endpoints are plain ``def`` functions; FastAPI runs them on its worker
thread pool, and each one owns exactly one transaction.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query

from settlement_api.dependencies import (
    ActorContext,
    UnitOfWork,
    get_config,
    get_unit_of_work,
    require_actor,
)
from settlement_api.schemas import (
    AdjustmentCreateRequest,
    AdjustmentOut,
    AdjustmentResultOut,
    AdjustmentUpdateRequest,
    BundleDetailOut,
    BundleOut,
    BundleSummaryOut,
    CreateBundleRequest,
    ErrorOut,
    ItemOut,
    PageOut,
    TransitionRequest,
    WaitingOrderOut,
    WaitingSummaryOut,
)
from settlement_config.schema import SettlementConfig
from settlement_kernel.domain.dtos import (
    AdjustmentInput,
    BundleFilter,
    BundleStatus,
    ItemInput,
    Pagination,
    PaymentInfo,
    SortSpec,
    WaitingOrderFilter,
)
from settlement_kernel.domain.validation import parse_side
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.selectors import BundleSelector, WaitingOrderSelector
from settlement_kernel.services import (
    AdjustmentManager,
    BundleBuilder,
    BundleDetailsService,
    LifecycleService,
)
from settlement_kernel.services.adjustment_manager import UNSET

_ERRORS = {
    400: {"model": ErrorOut, "description": "Validation error"},
    404: {"model": ErrorOut, "description": "Not found"},
    409: {"model": ErrorOut, "description": "Conflict"},
    422: {"model": ErrorOut, "description": "Invalid state"},
    503: {"model": ErrorOut, "description": "Transaction timeout"},
}

bundles_router = APIRouter(prefix="/bundles", tags=["Bundles"], responses=_ERRORS)
waiting_router = APIRouter(prefix="/waiting-orders", tags=["Waiting orders"], responses=_ERRORS)


def _pagination(config: SettlementConfig, page: int, page_size: Optional[int]) -> Pagination:
    return Pagination(
        page=page,
        page_size=page_size if page_size is not None else config.listing.default_page_size,
    )


def _parse_status(value: Optional[str]) -> Optional[BundleStatus]:
    if value is None:
        return None
    try:
        return BundleStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown bundle status: {value}") from None


def _lifecycle(session, config: SettlementConfig) -> LifecycleService:
    numbering = config.invoice.format if config.invoice.auto_number else None
    return LifecycleService(session, invoice_numbering=numbering)


# ============================================================================
# Bundles
# ============================================================================


@bundles_router.post("", status_code=201, response_model=BundleOut, summary="Create a bundle")
def create_bundle(
    body: CreateBundleRequest,
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> BundleOut:
    """
    Build a DRAFT bundle from waiting order charges and consume them.

    409 when any selected charge is already in another bundle; nothing is
    written in that case.
    """
    payment = None
    if body.payment_info is not None:
        payment = PaymentInfo(
            payment_method=body.payment_info.payment_method,
            bank_code=body.payment_info.bank_code,
            bank_account=body.payment_info.bank_account,
            bank_account_holder=body.payment_info.bank_account_holder,
        )
    with uow() as session:
        info = BundleBuilder(session, tax_policy=config.tax_policy).create_bundle(
            side=body.side,
            counterparty_id=body.counterparty_id,
            manager_id=body.manager_id,
            period_type=body.period_type,
            period_from=body.period_from,
            period_to=body.period_to,
            items=[ItemInput(i.order_charge_id, i.base_amount) for i in body.items],
            adjustments=[
                AdjustmentInput(a.type, a.amount, a.description) for a in body.adjustments
            ],
            payment_info=payment,
            actor_id=actor.actor_id,
            tax_exempt=body.tax_exempt,
            memo=body.memo,
        )
    return BundleOut.from_dto(info)


@bundles_router.get("", response_model=PageOut[BundleSummaryOut], summary="List bundles")
def list_bundles(
    side: Optional[str] = None,
    company_id: Optional[UUID] = None,
    company_name: Optional[str] = None,
    business_number: Optional[str] = None,
    status: Optional[str] = None,
    date_field: str = "period",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    sort: str = "created_at",
    order: str = "desc",
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> PageOut[BundleSummaryOut]:
    filters = BundleFilter(
        side=parse_side(side) if side is not None else None,
        company_id=company_id,
        company_name=company_name,
        business_number=business_number,
        status=_parse_status(status),
        date_field=date_field,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    with uow() as session:
        result = BundleSelector(session, config.listing.max_page_size).list_bundles(
            filters, _pagination(config, page, page_size), SortSpec(sort, order)
        )
    return PageOut[BundleSummaryOut].from_page(result, BundleSummaryOut.from_dto)


@bundles_router.get("/{bundle_id}", response_model=BundleDetailOut, summary="Bundle detail")
def get_bundle(
    bundle_id: UUID,
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> BundleDetailOut:
    with uow() as session:
        detail = BundleSelector(session).get_bundle(bundle_id)
    return BundleDetailOut.from_dto(detail)


@bundles_router.patch("/{bundle_id}", response_model=BundleOut, summary="Edit bundle details")
def update_bundle(
    bundle_id: UUID,
    changes: dict[str, Any] = Body(...),
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> BundleOut:
    """
    Edit memo, payment method, bank fields or period.

    Any other key is refused with READ_ONLY_FIELD.  ``expected_version``
    may be included for compare-and-set.
    """
    changes = dict(changes)
    expected_version = changes.pop("expected_version", None)
    if expected_version is not None and not isinstance(expected_version, int):
        raise ValidationError("expected_version must be an integer")
    with uow() as session:
        info = BundleDetailsService(session).update_details(
            bundle_id, changes, actor_id=actor.actor_id, expected_version=expected_version
        )
    return BundleOut.from_dto(info)


@bundles_router.get("/{bundle_id}/items", response_model=list[ItemOut], summary="Bundle order list")
def list_bundle_items(
    bundle_id: UUID,
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> list[ItemOut]:
    with uow() as session:
        items = BundleSelector(session).list_bundle_items(bundle_id)
    return [ItemOut.from_dto(i) for i in items]


@bundles_router.post("/{bundle_id}/transition", response_model=BundleOut, summary="Issue, pay or cancel")
def transition_bundle(
    bundle_id: UUID,
    body: TransitionRequest,
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> BundleOut:
    with uow() as session:
        info = _lifecycle(session, config).transition(
            bundle_id,
            body.target,
            actor_id=actor.actor_id,
            expected_version=body.expected_version,
            invoice_no=body.invoice_no,
            issued_at=body.issued_at,
            deposit_received_at=body.deposit_received_at,
            reason=body.reason,
        )
    return BundleOut.from_dto(info)


# ----------------------------------------------------------------------------
# Bundle adjustments
# ----------------------------------------------------------------------------


@bundles_router.get("/{bundle_id}/adjustments", response_model=list[AdjustmentOut])
def list_bundle_adjustments(
    bundle_id: UUID,
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> list[AdjustmentOut]:
    with uow() as session:
        rows = BundleSelector(session).list_bundle_adjustments(bundle_id)
    return [AdjustmentOut.from_dto(a) for a in rows]


@bundles_router.post("/{bundle_id}/adjustments", status_code=201, response_model=AdjustmentResultOut)
def add_bundle_adjustment(
    bundle_id: UUID,
    body: AdjustmentCreateRequest,
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> AdjustmentResultOut:
    with uow() as session:
        result = AdjustmentManager(session, config.tax_policy).add_bundle_adjustment(
            bundle_id,
            body.type,
            body.amount,
            body.description,
            actor_id=actor.actor_id,
            expected_version=body.expected_version,
        )
    return AdjustmentResultOut.from_dto(result)


@bundles_router.patch("/{bundle_id}/adjustments/{adjustment_id}", response_model=AdjustmentResultOut)
def edit_bundle_adjustment(
    bundle_id: UUID,
    adjustment_id: UUID,
    body: AdjustmentUpdateRequest,
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> AdjustmentResultOut:
    description = body.description if "description" in body.model_fields_set else UNSET
    with uow() as session:
        result = AdjustmentManager(session, config.tax_policy).edit_bundle_adjustment(
            bundle_id,
            adjustment_id,
            adjustment_type=body.type,
            amount=body.amount,
            description=description,
            actor_id=actor.actor_id,
            expected_version=body.expected_version,
        )
    return AdjustmentResultOut.from_dto(result)


@bundles_router.delete("/{bundle_id}/adjustments/{adjustment_id}", response_model=AdjustmentResultOut)
def remove_bundle_adjustment(
    bundle_id: UUID,
    adjustment_id: UUID,
    expected_version: Optional[int] = Query(None),
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> AdjustmentResultOut:
    with uow() as session:
        result = AdjustmentManager(session, config.tax_policy).remove_bundle_adjustment(
            bundle_id,
            adjustment_id,
            actor_id=actor.actor_id,
            expected_version=expected_version,
        )
    return AdjustmentResultOut.from_dto(result)


# ----------------------------------------------------------------------------
# Item adjustments
# ----------------------------------------------------------------------------


@bundles_router.get("/{bundle_id}/items/{item_id}/adjustments", response_model=list[AdjustmentOut])
def list_item_adjustments(
    bundle_id: UUID,
    item_id: UUID,
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> list[AdjustmentOut]:
    with uow() as session:
        rows = BundleSelector(session).list_item_adjustments(item_id, bundle_id=bundle_id)
    return [AdjustmentOut.from_dto(a) for a in rows]


@bundles_router.post(
    "/{bundle_id}/items/{item_id}/adjustments",
    status_code=201,
    response_model=AdjustmentResultOut,
)
def add_item_adjustment(
    bundle_id: UUID,
    item_id: UUID,
    body: AdjustmentCreateRequest,
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> AdjustmentResultOut:
    with uow() as session:
        result = AdjustmentManager(session, config.tax_policy).add_item_adjustment(
            bundle_id,
            item_id,
            body.type,
            body.amount,
            body.description,
            actor_id=actor.actor_id,
            expected_version=body.expected_version,
        )
    return AdjustmentResultOut.from_dto(result)


@bundles_router.patch(
    "/{bundle_id}/items/{item_id}/adjustments/{adjustment_id}",
    response_model=AdjustmentResultOut,
)
def edit_item_adjustment(
    bundle_id: UUID,
    item_id: UUID,
    adjustment_id: UUID,
    body: AdjustmentUpdateRequest,
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> AdjustmentResultOut:
    description = body.description if "description" in body.model_fields_set else UNSET
    with uow() as session:
        result = AdjustmentManager(session, config.tax_policy).edit_item_adjustment(
            bundle_id,
            item_id,
            adjustment_id,
            adjustment_type=body.type,
            amount=body.amount,
            description=description,
            actor_id=actor.actor_id,
            expected_version=body.expected_version,
        )
    return AdjustmentResultOut.from_dto(result)


@bundles_router.delete(
    "/{bundle_id}/items/{item_id}/adjustments/{adjustment_id}",
    response_model=AdjustmentResultOut,
)
def remove_item_adjustment(
    bundle_id: UUID,
    item_id: UUID,
    adjustment_id: UUID,
    expected_version: Optional[int] = Query(None),
    actor: ActorContext = Depends(require_actor),
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> AdjustmentResultOut:
    with uow() as session:
        result = AdjustmentManager(session, config.tax_policy).remove_item_adjustment(
            bundle_id,
            item_id,
            adjustment_id,
            actor_id=actor.actor_id,
            expected_version=expected_version,
        )
    return AdjustmentResultOut.from_dto(result)


# ============================================================================
# Waiting orders
# ============================================================================


@waiting_router.get("", response_model=PageOut[WaitingOrderOut], summary="Waiting order charges")
def list_waiting_orders(
    side: str,
    company_id: Optional[UUID] = None,
    company_name: Optional[str] = None,
    business_number: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    sort: str = "created_at",
    order: str = "desc",
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: SettlementConfig = Depends(get_config),
) -> PageOut[WaitingOrderOut]:
    filters = WaitingOrderFilter(
        company_id=company_id,
        company_name=company_name,
        business_number=business_number,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    with uow() as session:
        result = WaitingOrderSelector(
            session, config.listing.max_page_size
        ).list_waiting_orders(
            side, filters, _pagination(config, page, page_size), SortSpec(sort, order)
        )
    return PageOut[WaitingOrderOut].from_page(result, WaitingOrderOut.from_dto)


@waiting_router.get("/summary", response_model=list[WaitingSummaryOut], summary="Selection summary")
def summarize_waiting_orders(
    side: str,
    order_charge_ids: list[UUID] = Query(...),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> list[WaitingSummaryOut]:
    with uow() as session:
        rows = WaitingOrderSelector(session).summarize_waiting_orders(side, order_charge_ids)
    return [WaitingSummaryOut.from_dto(r) for r in rows]
