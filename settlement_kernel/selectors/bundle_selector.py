"""
Module: settlement_kernel.selectors.bundle_selector
Responsibility: Read-only access to settlement bundles: the paged bundle
    listing, the bundle detail view and its item and adjustment lists.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Counterparty name and business number filters match the snapshot
      taken at creation, not the current directory row, so renaming a
      company never moves old bundles in or out of a search.
    - Ordering is deterministic: whitelisted sort column, then id.
    - Items and adjustments are returned in creation order.

Failure modes:
    - BundleNotFoundError / BundleItemNotFoundError for unknown ids in the
      detail reads.
    - ValidationError for bad paging, sort, date field or date range.
"""

from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import selectinload

from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    BundleDetail,
    BundleFilter,
    BundleInfo,
    BundleItemInfo,
    BundleStatus,
    BundleSummaryInfo,
    Page,
    Pagination,
    Side,
    SortSpec,
)
from settlement_kernel.domain.validation import check_period
from settlement_kernel.exceptions import (
    BundleItemNotFoundError,
    BundleNotFoundError,
    ValidationError,
)
from settlement_kernel.models.bundle import (
    BundleAdjustment,
    BundleItem,
    ItemAdjustment,
    SettlementBundle,
)
from settlement_kernel.selectors.base import BaseSelector, like_pattern

_SNAPSHOT_NAME = SettlementBundle.company_snapshot["name"].as_string()
_SNAPSHOT_BUSINESS_NUMBER = SettlementBundle.company_snapshot["business_number"].as_string()

_SORT_COLUMNS = {
    "created_at": SettlementBundle.created_at,
    "updated_at": SettlementBundle.updated_at,
    "period_from": SettlementBundle.period_from,
    "period_to": SettlementBundle.period_to,
    "status": SettlementBundle.status,
    "invoice_no": SettlementBundle.invoice_no,
    "order_count": SettlementBundle.order_count,
    "total_amount": SettlementBundle.total_amount,
    "total_amount_with_tax": SettlementBundle.total_amount_with_tax,
    "company_name": _SNAPSHOT_NAME,
}

DATE_FIELDS = ("period", "created")


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class BundleSelector(BaseSelector[SettlementBundle]):
    """
    Selector for bundle queries.

    Contract:
        ``list_bundles`` returns BundleSummaryInfo pages; the detail
        methods return BundleDetail, BundleItemInfo and AdjustmentInfo.

    Guarantees:
        - Read-only: No mutations are performed.
        - Eager loading: items, their order charges and all adjustments are
          loaded with selectinload, never lazily per row.
    """

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_filters(stmt: Select, filters: BundleFilter) -> Select:
        if filters.side is not None:
            stmt = stmt.where(SettlementBundle.side == Side(filters.side).value)
        if filters.status is not None:
            stmt = stmt.where(SettlementBundle.status == BundleStatus(filters.status).value)
        if filters.company_id is not None:
            stmt = stmt.where(SettlementBundle.company_id == filters.company_id)
        if filters.company_name:
            stmt = stmt.where(
                _SNAPSHOT_NAME.ilike(like_pattern(filters.company_name), escape="\\")
            )
        if filters.business_number:
            stmt = stmt.where(_SNAPSHOT_BUSINESS_NUMBER == filters.business_number)

        if filters.date_field == "period":
            # Overlap of [period_from, period_to] with [start, end]
            if filters.start_date is not None:
                stmt = stmt.where(SettlementBundle.period_to >= filters.start_date)
            if filters.end_date is not None:
                stmt = stmt.where(SettlementBundle.period_from <= filters.end_date)
        else:
            if filters.start_date is not None:
                stmt = stmt.where(
                    SettlementBundle.created_at >= _start_of_day(filters.start_date)
                )
            if filters.end_date is not None:
                stmt = stmt.where(
                    SettlementBundle.created_at
                    < _start_of_day(filters.end_date + timedelta(days=1))
                )

        if filters.search:
            pattern = like_pattern(filters.search)
            stmt = stmt.where(
                or_(
                    _SNAPSHOT_NAME.ilike(pattern, escape="\\"),
                    _SNAPSHOT_BUSINESS_NUMBER.ilike(pattern, escape="\\"),
                    SettlementBundle.invoice_no.ilike(pattern, escape="\\"),
                )
            )
        return stmt

    def list_bundles(
        self,
        filters: BundleFilter | None = None,
        pagination: Pagination | None = None,
        sort: SortSpec | None = None,
    ) -> Page[BundleSummaryInfo]:
        """
        One page of bundles matching ``filters``.

        Date ranges apply to the settlement period (overlap) when
        ``filters.date_field == "period"`` and to ``created_at`` when it is
        ``"created"``; both bounds are inclusive days.
        """
        filters = filters or BundleFilter()
        pagination = pagination or Pagination()
        sort = sort or SortSpec()
        self._check_pagination(pagination)
        if filters.date_field not in DATE_FIELDS:
            raise ValidationError(
                f"date_field must be one of {', '.join(DATE_FIELDS)}, "
                f"got {filters.date_field}"
            )
        check_period(filters.start_date, filters.end_date)

        stmt = self._apply_filters(select(SettlementBundle), filters)
        total = self._count(stmt)

        bundles = self.session.execute(
            self._order_by(stmt, sort, _SORT_COLUMNS, SettlementBundle.id)
            .offset(pagination.offset)
            .limit(pagination.page_size)
        ).scalars().all()

        return Page(
            items=tuple(BundleSummaryInfo.from_model(b) for b in bundles),
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    # ------------------------------------------------------------------
    # Detail
    # ------------------------------------------------------------------

    def _items(self, bundle_id: UUID) -> list[BundleItem]:
        return self.session.execute(
            select(BundleItem)
            .where(BundleItem.bundle_id == bundle_id)
            .options(
                selectinload(BundleItem.order_charge),
                selectinload(BundleItem.adjustments),
            )
            .order_by(BundleItem.created_at, BundleItem.id)
        ).scalars().all()

    def _bundle(self, bundle_id: UUID) -> SettlementBundle:
        bundle = self.session.get(SettlementBundle, bundle_id)
        if bundle is None:
            raise BundleNotFoundError(str(bundle_id))
        return bundle

    def get_bundle(self, bundle_id: UUID) -> BundleDetail:
        """Bundle header, items with their adjustments, and bundle adjustments."""
        bundle = self._bundle(bundle_id)
        side = Side(bundle.side)
        return BundleDetail(
            bundle=BundleInfo.from_model(bundle),
            items=tuple(
                BundleItemInfo.from_model(item, side) for item in self._items(bundle.id)
            ),
            adjustments=self._bundle_adjustments(bundle.id),
        )

    def list_bundle_items(self, bundle_id: UUID) -> list[BundleItemInfo]:
        """The order list of a bundle, released items included."""
        bundle = self._bundle(bundle_id)
        side = Side(bundle.side)
        return [BundleItemInfo.from_model(item, side) for item in self._items(bundle.id)]

    def _bundle_adjustments(self, bundle_id: UUID) -> tuple[AdjustmentInfo, ...]:
        rows = self.session.execute(
            select(BundleAdjustment)
            .where(BundleAdjustment.bundle_id == bundle_id)
            .order_by(BundleAdjustment.created_at, BundleAdjustment.id)
        ).scalars().all()
        return tuple(AdjustmentInfo.from_model(a) for a in rows)

    def list_bundle_adjustments(self, bundle_id: UUID) -> list[AdjustmentInfo]:
        bundle = self._bundle(bundle_id)
        return list(self._bundle_adjustments(bundle.id))

    def list_item_adjustments(
        self, item_id: UUID, bundle_id: UUID | None = None
    ) -> list[AdjustmentInfo]:
        """
        Adjustments of one bundle item.

        When ``bundle_id`` is given the item must belong to that bundle.
        """
        item = self.session.get(BundleItem, item_id)
        if item is None or (bundle_id is not None and item.bundle_id != bundle_id):
            if bundle_id is not None:
                self._bundle(bundle_id)
            raise BundleItemNotFoundError(
                str(item_id), str(bundle_id) if bundle_id else None
            )
        rows = self.session.execute(
            select(ItemAdjustment)
            .where(ItemAdjustment.bundle_item_id == item.id)
            .order_by(ItemAdjustment.created_at, ItemAdjustment.id)
        ).scalars().all()
        return [AdjustmentInfo.from_model(a) for a in rows]
