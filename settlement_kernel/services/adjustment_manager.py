"""
AdjustmentManager -- surcharges and discounts on existing bundles.

Responsibility:
    Adds, edits and removes bundle-scoped and item-scoped adjustments, and
    recomputes the bundle's stored totals from scratch after every change.

Architecture position:
    Kernel > Services -- imperative shell over domain/totals.py.

Invariants enforced:
    - Only DRAFT and ISSUED bundles accept adjustment changes.
    - The bundle row is locked before any read used for recomputation, so
      two concurrent adjustments never compute totals from the same stale
      snapshot.
    - Totals are recomputed from all persisted rows, never incrementally.
      Recomputing twice without changes yields identical totals and does
      not touch the row.
    - A change that would drive the bundle total below zero is refused.

Failure modes:
    - BundleNotFoundError / BundleItemNotFoundError / AdjustmentNotFoundError
      when an id is unknown or does not belong to the addressed parent.
    - InvalidAmountError / InvalidAdjustmentTypeError on bad input.
    - BundleNotEditableError on a PAID or CANCELED bundle.
    - NegativeTotalError when discounts exceed the bundle.
    - ConcurrentModificationError on a version mismatch.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    AdjustmentLine,
    AdjustmentResult,
    AdjustmentScope,
    AdjustmentType,
    BundleStatus,
    BundleTotals,
    ItemLine,
)
from settlement_kernel.domain.lifecycle import is_editable
from settlement_kernel.domain.tax import TaxPolicy
from settlement_kernel.domain.totals import adjustment_tax, compute_totals
from settlement_kernel.domain.validation import (
    check_description,
    parse_adjustment_type,
    require_positive_amount,
)
from settlement_kernel.exceptions import (
    AdjustmentNotFoundError,
    BundleItemNotFoundError,
    BundleNotEditableError,
    NegativeTotalError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.bundle import (
    BundleAdjustment,
    BundleItem,
    ItemAdjustment,
    SettlementBundle,
)
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.bundle_lock import flush_bundle, lock_bundle

logger = get_logger("services.adjustment_manager")


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class AdjustmentManager(BaseService[SettlementBundle]):
    """
    Manages bundle and item adjustments.

    Contract:
        Every public method locks the bundle, applies one change, recomputes
        totals and flushes.  Each returns an AdjustmentResult carrying the
        affected adjustment (None on removal) and the new totals.
    """

    def __init__(self, session, tax_policy: TaxPolicy | None = None):
        super().__init__(session)
        self._tax_policy = tax_policy or TaxPolicy()

    # ------------------------------------------------------------------
    # Bundle-scoped
    # ------------------------------------------------------------------

    def add_bundle_adjustment(
        self,
        bundle_id: UUID,
        adjustment_type: AdjustmentType | str,
        amount,
        description: str | None = None,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> AdjustmentResult:
        """Add a surcharge or discount to the bundle as a whole."""
        adj_type = parse_adjustment_type(adjustment_type)
        value = require_positive_amount("amount", amount)
        check_description(description)

        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, expected_version)
            adjustment = BundleAdjustment(
                bundle_id=bundle.id,
                type=adj_type.value,
                description=description,
                amount=value,
                tax_amount=self._tax_on(bundle, adj_type, value),
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
            self.session.add(adjustment)
            self.session.flush()

            totals = self._recompute(bundle, actor_id)
            logger.info(
                "adjustment_added",
                extra={
                    "scope": AdjustmentScope.BUNDLE.value,
                    "adjustment_id": str(adjustment.id),
                    "adjustment_type": adj_type.value,
                    "amount": str(value),
                },
            )
            return AdjustmentResult(AdjustmentInfo.from_model(adjustment), totals)

    def edit_bundle_adjustment(
        self,
        bundle_id: UUID,
        adjustment_id: UUID,
        adjustment_type: AdjustmentType | str | None = None,
        amount=None,
        description: str | None = UNSET,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> AdjustmentResult:
        """
        Change type, amount and/or description of a bundle adjustment.

        Omitted arguments keep their current value; ``description=None``
        clears the description.
        """
        adj_type = parse_adjustment_type(adjustment_type) if adjustment_type is not None else None
        value = require_positive_amount("amount", amount) if amount is not None else None
        if description is not UNSET:
            check_description(description)

        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, expected_version)
            adjustment = self.session.get(BundleAdjustment, adjustment_id)
            if adjustment is None or adjustment.bundle_id != bundle.id:
                raise AdjustmentNotFoundError(str(adjustment_id), AdjustmentScope.BUNDLE.value)

            self._apply_edit(bundle, adjustment, adj_type, value, description, actor_id)
            totals = self._recompute(bundle, actor_id)
            logger.info(
                "adjustment_edited",
                extra={
                    "scope": AdjustmentScope.BUNDLE.value,
                    "adjustment_id": str(adjustment.id),
                },
            )
            return AdjustmentResult(AdjustmentInfo.from_model(adjustment), totals)

    def remove_bundle_adjustment(
        self,
        bundle_id: UUID,
        adjustment_id: UUID,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> AdjustmentResult:
        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, expected_version)
            adjustment = self.session.get(BundleAdjustment, adjustment_id)
            if adjustment is None or adjustment.bundle_id != bundle.id:
                raise AdjustmentNotFoundError(str(adjustment_id), AdjustmentScope.BUNDLE.value)

            bundle.adjustments.remove(adjustment)
            self.session.delete(adjustment)
            self.session.flush()

            totals = self._recompute(bundle, actor_id)
            logger.info(
                "adjustment_removed",
                extra={
                    "scope": AdjustmentScope.BUNDLE.value,
                    "adjustment_id": str(adjustment_id),
                },
            )
            return AdjustmentResult(None, totals)

    # ------------------------------------------------------------------
    # Item-scoped
    # ------------------------------------------------------------------

    def add_item_adjustment(
        self,
        bundle_id: UUID,
        item_id: UUID,
        adjustment_type: AdjustmentType | str,
        amount,
        description: str | None = None,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> AdjustmentResult:
        """Add a surcharge or discount to one bundle item."""
        adj_type = parse_adjustment_type(adjustment_type)
        value = require_positive_amount("amount", amount)
        check_description(description)

        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, expected_version)
            item = self._item_of(bundle, item_id)
            adjustment = ItemAdjustment(
                bundle_item_id=item.id,
                type=adj_type.value,
                description=description,
                amount=value,
                tax_amount=self._tax_on(bundle, adj_type, value),
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
            self.session.add(adjustment)
            self.session.flush()

            totals = self._recompute(bundle, actor_id)
            logger.info(
                "adjustment_added",
                extra={
                    "scope": AdjustmentScope.ITEM.value,
                    "bundle_item_id": str(item.id),
                    "adjustment_id": str(adjustment.id),
                    "adjustment_type": adj_type.value,
                    "amount": str(value),
                },
            )
            return AdjustmentResult(AdjustmentInfo.from_model(adjustment), totals)

    def edit_item_adjustment(
        self,
        bundle_id: UUID,
        item_id: UUID,
        adjustment_id: UUID,
        adjustment_type: AdjustmentType | str | None = None,
        amount=None,
        description: str | None = UNSET,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> AdjustmentResult:
        adj_type = parse_adjustment_type(adjustment_type) if adjustment_type is not None else None
        value = require_positive_amount("amount", amount) if amount is not None else None
        if description is not UNSET:
            check_description(description)

        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, expected_version)
            item = self._item_of(bundle, item_id)
            adjustment = self._item_adjustment_of(item, adjustment_id)

            self._apply_edit(bundle, adjustment, adj_type, value, description, actor_id)
            totals = self._recompute(bundle, actor_id)
            logger.info(
                "adjustment_edited",
                extra={
                    "scope": AdjustmentScope.ITEM.value,
                    "bundle_item_id": str(item.id),
                    "adjustment_id": str(adjustment.id),
                },
            )
            return AdjustmentResult(AdjustmentInfo.from_model(adjustment), totals)

    def remove_item_adjustment(
        self,
        bundle_id: UUID,
        item_id: UUID,
        adjustment_id: UUID,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> AdjustmentResult:
        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, expected_version)
            item = self._item_of(bundle, item_id)
            adjustment = self._item_adjustment_of(item, adjustment_id)

            item.adjustments.remove(adjustment)
            self.session.delete(adjustment)
            self.session.flush()

            totals = self._recompute(bundle, actor_id)
            logger.info(
                "adjustment_removed",
                extra={
                    "scope": AdjustmentScope.ITEM.value,
                    "bundle_item_id": str(item.id),
                    "adjustment_id": str(adjustment_id),
                },
            )
            return AdjustmentResult(None, totals)

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recompute_totals(
        self, bundle_id: UUID, actor_id: UUID | None = None
    ) -> AdjustmentResult:
        """Recompute and store totals from the persisted rows (idempotent)."""
        with LogContext.bind(bundle_id=str(bundle_id)):
            bundle = self._lock_editable(bundle_id, None)
            return AdjustmentResult(None, self._recompute(bundle, actor_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_editable(
        self, bundle_id: UUID, expected_version: int | None
    ) -> SettlementBundle:
        bundle = lock_bundle(self.session, bundle_id, expected_version)
        if not is_editable(bundle.status):
            raise BundleNotEditableError(str(bundle.id), BundleStatus(bundle.status).value)
        return bundle

    def _item_of(self, bundle: SettlementBundle, item_id: UUID) -> BundleItem:
        item = self.session.get(BundleItem, item_id)
        if item is None or item.bundle_id != bundle.id:
            raise BundleItemNotFoundError(str(item_id), str(bundle.id))
        return item

    def _item_adjustment_of(self, item: BundleItem, adjustment_id: UUID) -> ItemAdjustment:
        adjustment = self.session.get(ItemAdjustment, adjustment_id)
        if adjustment is None or adjustment.bundle_item_id != item.id:
            raise AdjustmentNotFoundError(str(adjustment_id), AdjustmentScope.ITEM.value)
        return adjustment

    def _tax_on(self, bundle: SettlementBundle, adj_type: AdjustmentType, amount) -> Any:
        return adjustment_tax(
            AdjustmentLine(type=adj_type, amount=amount),
            self._tax_policy,
            bundle.tax_exempt,
        )

    def _apply_edit(
        self,
        bundle: SettlementBundle,
        adjustment: BundleAdjustment | ItemAdjustment,
        adj_type: AdjustmentType | None,
        amount,
        description,
        actor_id: UUID | None,
    ) -> None:
        if adj_type is not None:
            adjustment.type = adj_type.value
        if amount is not None:
            adjustment.amount = amount
        if description is not UNSET:
            adjustment.description = description
        adjustment.tax_amount = self._tax_on(
            bundle, AdjustmentType(adjustment.type), adjustment.amount
        )
        adjustment.updated_by_id = actor_id
        self.session.flush()

    def _recompute(self, bundle: SettlementBundle, actor_id: UUID | None) -> BundleTotals:
        items = self.session.execute(
            select(BundleItem)
            .where(BundleItem.bundle_id == bundle.id, BundleItem.released_at.is_(None))
            .options(selectinload(BundleItem.adjustments))
            .execution_options(populate_existing=True)
        ).scalars().all()
        bundle_adjustments = self.session.execute(
            select(BundleAdjustment)
            .where(BundleAdjustment.bundle_id == bundle.id)
            .execution_options(populate_existing=True)
        ).scalars().all()

        totals = compute_totals(
            items=[
                ItemLine(
                    base_amount=item.base_amount,
                    adjustments=tuple(
                        AdjustmentLine(type=AdjustmentType(a.type), amount=a.amount)
                        for a in item.adjustments
                    ),
                )
                for item in items
            ],
            bundle_adjustments=[
                AdjustmentLine(type=AdjustmentType(a.type), amount=a.amount)
                for a in bundle_adjustments
            ],
            tax_policy=self._tax_policy,
            tax_exempt=bundle.tax_exempt,
        )
        if totals.is_negative:
            logger.warning(
                "negative_total_rejected",
                extra={
                    "total_amount": str(totals.total_amount),
                    "total_tax_amount": str(totals.total_tax_amount),
                },
            )
            raise NegativeTotalError(
                str(bundle.id), str(totals.total_amount), str(totals.total_tax_amount)
            )

        changed = (
            bundle.total_amount != totals.total_amount
            or bundle.total_tax_amount != totals.total_tax_amount
            or bundle.total_amount_with_tax != totals.total_amount_with_tax
        )
        if changed:
            bundle.total_amount = totals.total_amount
            bundle.total_tax_amount = totals.total_tax_amount
            bundle.total_amount_with_tax = totals.total_amount_with_tax
            bundle.updated_by_id = actor_id
            flush_bundle(self.session, bundle)
            logger.info(
                "bundle_totals_recomputed",
                extra={
                    "total_amount": str(totals.total_amount),
                    "total_tax_amount": str(totals.total_tax_amount),
                    "total_amount_with_tax": str(totals.total_amount_with_tax),
                    "version": bundle.version,
                },
            )
        return totals
