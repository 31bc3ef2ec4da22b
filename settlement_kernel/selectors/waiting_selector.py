"""
Module: settlement_kernel.selectors.waiting_selector
Responsibility: Read-only access to the waiting pool, the UNSETTLED order
    charges a new bundle may be built from.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only UNSETTLED charges of the requested side are ever listed.
      A canceled bundle's charges reappear here once the cancellation
      commits.
    - Ordering is deterministic: whitelisted sort column, then id.

Failure modes:
    - ValidationError for bad paging, sort or an empty summary selection.
"""

from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import Select, func, or_, select

from settlement_kernel.domain.dtos import (
    OrderChargeStatus,
    Page,
    Pagination,
    Side,
    SortSpec,
    WaitingOrderFilter,
    WaitingOrderInfo,
    WaitingOrderSummary,
)
from settlement_kernel.domain.validation import check_period, parse_side
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.models.directory import Company
from settlement_kernel.models.order_charge import OrderCharge
from settlement_kernel.selectors.base import BaseSelector, like_pattern

_SORT_COLUMNS = {
    "created_at": OrderCharge.created_at,
    "service_date": OrderCharge.service_date,
    "amount": OrderCharge.amount,
    "order_id": OrderCharge.order_id,
    "company_name": Company.name,
}


class WaitingOrderSelector(BaseSelector[OrderCharge]):
    """
    Selector for the waiting pool.

    Contract:
        ``list_waiting_orders`` pages WaitingOrderInfo rows joined with the
        current company directory; ``summarize_waiting_orders`` aggregates a
        prospective selection per counterparty.
    """

    def _base(self, side: Side) -> Select:
        return (
            select(OrderCharge, Company.name, Company.business_number)
            .join(Company, Company.id == OrderCharge.company_id)
            .where(
                OrderCharge.side == side.value,
                OrderCharge.status == OrderChargeStatus.UNSETTLED.value,
            )
        )

    @staticmethod
    def _apply_filters(stmt: Select, filters: WaitingOrderFilter) -> Select:
        if filters.company_id is not None:
            stmt = stmt.where(OrderCharge.company_id == filters.company_id)
        if filters.company_name:
            stmt = stmt.where(
                Company.name.ilike(like_pattern(filters.company_name), escape="\\")
            )
        if filters.business_number:
            stmt = stmt.where(Company.business_number == filters.business_number)
        if filters.start_date is not None:
            stmt = stmt.where(OrderCharge.service_date >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(OrderCharge.service_date <= filters.end_date)
        if filters.search:
            pattern = like_pattern(filters.search)
            stmt = stmt.where(
                or_(
                    Company.name.ilike(pattern, escape="\\"),
                    Company.business_number.ilike(pattern, escape="\\"),
                    OrderCharge.order_id.ilike(pattern, escape="\\"),
                )
            )
        return stmt

    def list_waiting_orders(
        self,
        side: Side | str,
        filters: WaitingOrderFilter | None = None,
        pagination: Pagination | None = None,
        sort: SortSpec | None = None,
    ) -> Page[WaitingOrderInfo]:
        """
        One page of UNSETTLED order charges of ``side``.

        Args:
            side: SALES or PURCHASE.
            filters: Counterparty, name substring, business number,
                service-date range and free-text search.
            pagination: Page number and size (defaults 1 / 20).
            sort: Whitelisted field and direction (default created_at desc).
        """
        side = parse_side(side)
        filters = filters or WaitingOrderFilter()
        pagination = pagination or Pagination()
        sort = sort or SortSpec()
        self._check_pagination(pagination)
        check_period(filters.start_date, filters.end_date)

        stmt = self._apply_filters(self._base(side), filters)
        total = self._count(stmt)

        rows = self.session.execute(
            self._order_by(stmt, sort, _SORT_COLUMNS, OrderCharge.id)
            .offset(pagination.offset)
            .limit(pagination.page_size)
        ).all()

        return Page(
            items=tuple(
                WaitingOrderInfo(
                    order_charge_id=charge.id,
                    order_id=charge.order_id,
                    side=Side(charge.side),
                    company_id=charge.company_id,
                    company_name=name,
                    business_number=business_number,
                    amount=charge.amount,
                    description=charge.description,
                    service_date=charge.service_date,
                    created_at=charge.created_at,
                )
                for charge, name, business_number in rows
            ),
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    def summarize_waiting_orders(
        self, side: Side | str, order_charge_ids: Sequence[UUID]
    ) -> list[WaitingOrderSummary]:
        """
        Per-counterparty order counts and amount sums for a selection.

        Ids that are not waiting charges of ``side`` are ignored.  Rows are
        ordered by company name.
        """
        side = parse_side(side)
        if not order_charge_ids:
            raise ValidationError("At least one order charge id is required")

        rows = self.session.execute(
            select(
                Company.id,
                Company.name,
                Company.business_number,
                func.count(OrderCharge.id),
                func.coalesce(func.sum(OrderCharge.amount), 0),
            )
            .select_from(OrderCharge)
            .join(Company, Company.id == OrderCharge.company_id)
            .where(
                OrderCharge.id.in_(list(set(order_charge_ids))),
                OrderCharge.side == side.value,
                OrderCharge.status == OrderChargeStatus.UNSETTLED.value,
            )
            .group_by(Company.id, Company.name, Company.business_number)
            .order_by(Company.name, Company.id)
        ).all()

        return [
            WaitingOrderSummary(
                company_id=company_id,
                company_name=name,
                business_number=business_number,
                order_count=count,
                total_amount=Decimal(str(amount)).quantize(Decimal("0.01")),
            )
            for company_id, name, business_number, count, amount in rows
        ]
