"""
LifecycleService -- status transitions of settlement bundles.

Responsibility:
    Moves bundles through DRAFT -> ISSUED -> PAID and DRAFT|ISSUED ->
    CANCELED, stamping the lifecycle timestamps and, on cancellation,
    returning every consumed order charge to the waiting pool.

Architecture position:
    Kernel > Services -- imperative shell over domain/lifecycle.py (the
    pure transition table).  Uses the OrderLedger adapter for release and
    SequenceService for invoice auto-numbering.

Invariants enforced:
    - Only transitions listed in VALID_TRANSITIONS are performed; PAID and
      CANCELED are terminal.
    - Every transition locks the bundle row first and is written through
      the version column, so two concurrent transitions of one bundle
      cannot both succeed (e.g. issue racing cancel).
    - Cancellation releases the orders and stamps ``released_at`` on every
      item in the same transaction as the status change.

Failure modes:
    - BundleNotFoundError: unknown bundle.
    - InvalidTransitionError: transition not allowed from the current
      status.
    - MissingInvoiceNumberError: issue without a number while
      auto-numbering is off.
    - MissingDepositDateError: mark_paid without a deposit timestamp.
    - ConcurrentModificationError: expected_version mismatch or a stale
      write.

Audit relevance:
    Every successful transition logs ``bundle_transitioned`` with the from
    and to statuses, the new version and the acting user;
    ``updated_by_id`` on the row records the actor.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import BundleInfo, BundleStatus
from settlement_kernel.domain.lifecycle import can_transition
from settlement_kernel.exceptions import (
    InvalidTransitionError,
    MissingDepositDateError,
    MissingInvoiceNumberError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.bundle import BundleItem, SettlementBundle
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.bundle_lock import flush_bundle, lock_bundle
from settlement_kernel.services.order_ledger import OrderLedger, SqlOrderLedger
from settlement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lifecycle")

MAX_INVOICE_NO = 50
MAX_CANCEL_REASON = 500


class LifecycleService(BaseService[SettlementBundle]):
    """
    Drives the bundle state machine.

    Contract:
        Each public method performs one transition and returns the updated
        BundleInfo.  Flushes, never commits.

    Guarantees:
        - ISSUED implies invoice_no and invoice_issued_at are set.
        - PAID implies deposit_received_at and settled_at are set.
        - CANCELED implies canceled_at is set, no item is active and no
          order charge references the bundle.

    Non-goals:
        - Does NOT reopen terminal bundles.  A canceled selection is
          re-bundled by creating a new bundle.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        invoice_numbering: Callable[[int], str] | None = None,
        order_ledger: OrderLedger | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        # None disables auto-numbering
        self._invoice_numbering = invoice_numbering
        self._ledger = order_ledger or SqlOrderLedger(session)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def issue(
        self,
        bundle_id: UUID,
        invoice_no: str | None = None,
        issued_at: datetime | None = None,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> BundleInfo:
        """
        DRAFT -> ISSUED.

        Args:
            bundle_id: Bundle to issue.
            invoice_no: Tax invoice number.  When omitted and
                auto-numbering is enabled, the next value of the invoice
                sequence is formatted with the configured prefix.
            issued_at: Invoice date; defaults to the clock's now.
            actor_id: Acting user.
            expected_version: Optional compare-and-set guard.

        Raises:
            MissingInvoiceNumberError: No number given and auto-numbering
                is disabled.
        """
        if invoice_no is not None:
            invoice_no = invoice_no.strip()
            if len(invoice_no) > MAX_INVOICE_NO:
                raise ValidationError(
                    f"invoice_no exceeds {MAX_INVOICE_NO} characters"
                )

        def apply(bundle: SettlementBundle) -> dict[str, Any]:
            number = invoice_no or None
            if number is None:
                if self._invoice_numbering is None:
                    raise MissingInvoiceNumberError(str(bundle.id))
                number = self._invoice_numbering(
                    SequenceService(self.session).next_value(SequenceService.INVOICE)
                )
            bundle.invoice_no = number
            bundle.invoice_issued_at = issued_at or self._clock.now()
            return {"invoice_no": number}

        return self._transition(
            bundle_id, BundleStatus.ISSUED, apply, actor_id, expected_version
        )

    def mark_paid(
        self,
        bundle_id: UUID,
        deposit_received_at: datetime | None,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> BundleInfo:
        """ISSUED -> PAID.  Financial fields are frozen from here on."""

        def apply(bundle: SettlementBundle) -> dict[str, Any]:
            if deposit_received_at is None:
                raise MissingDepositDateError(str(bundle.id))
            bundle.deposit_received_at = deposit_received_at
            bundle.settled_at = self._clock.now()
            return {}

        return self._transition(
            bundle_id, BundleStatus.PAID, apply, actor_id, expected_version
        )

    def cancel(
        self,
        bundle_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> BundleInfo:
        """
        DRAFT|ISSUED -> CANCELED.

        Returns every order charge of the bundle to the waiting pool and
        stamps ``released_at`` on its items.  The bundle row is kept.
        """
        if reason is not None and len(reason) > MAX_CANCEL_REASON:
            raise ValidationError(
                f"cancel reason exceeds {MAX_CANCEL_REASON} characters"
            )

        def apply(bundle: SettlementBundle) -> dict[str, Any]:
            now = self._clock.now()
            released = self._ledger.release(bundle.id)
            items = self.session.execute(
                select(BundleItem).where(
                    BundleItem.bundle_id == bundle.id,
                    BundleItem.released_at.is_(None),
                )
            ).scalars().all()
            for item in items:
                item.released_at = now
            bundle.canceled_at = now
            bundle.cancel_reason = reason
            return {"released_orders": released, "released_items": len(items)}

        return self._transition(
            bundle_id, BundleStatus.CANCELED, apply, actor_id, expected_version
        )

    def transition(
        self,
        bundle_id: UUID,
        target: BundleStatus | str,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
        **params: Any,
    ) -> BundleInfo:
        """
        Dispatch to issue / mark_paid / cancel by target status.

        ``params`` carries the target-specific arguments: ``invoice_no``
        and ``issued_at`` for ISSUED, ``deposit_received_at`` for PAID,
        ``reason`` for CANCELED.  Unknown targets (including DRAFT) raise
        InvalidTransitionError after the bundle is resolved.
        """
        try:
            status = BundleStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown bundle status: {target}") from None

        if status is BundleStatus.ISSUED:
            return self.issue(
                bundle_id,
                invoice_no=params.get("invoice_no"),
                issued_at=params.get("issued_at"),
                actor_id=actor_id,
                expected_version=expected_version,
            )
        if status is BundleStatus.PAID:
            return self.mark_paid(
                bundle_id,
                deposit_received_at=params.get("deposit_received_at"),
                actor_id=actor_id,
                expected_version=expected_version,
            )
        if status is BundleStatus.CANCELED:
            return self.cancel(
                bundle_id,
                reason=params.get("reason"),
                actor_id=actor_id,
                expected_version=expected_version,
            )

        # Nothing transitions into DRAFT
        bundle = lock_bundle(self.session, bundle_id, expected_version)
        raise InvalidTransitionError(
            str(bundle.id), BundleStatus(bundle.status).value, status.value
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        bundle_id: UUID,
        target: BundleStatus,
        apply,
        actor_id: UUID | None,
        expected_version: int | None,
    ) -> BundleInfo:
        with LogContext.bind(
            bundle_id=str(bundle_id),
            actor_id=str(actor_id) if actor_id else None,
        ):
            t0 = time.monotonic()
            bundle = lock_bundle(self.session, bundle_id, expected_version)
            current = BundleStatus(bundle.status)

            if not can_transition(current, target):
                logger.warning(
                    "bundle_transition_rejected",
                    extra={"from_status": current.value, "to_status": target.value},
                )
                raise InvalidTransitionError(str(bundle.id), current.value, target.value)

            details = apply(bundle)
            bundle.status = target.value
            bundle.updated_by_id = actor_id
            flush_bundle(self.session, bundle)

            logger.info(
                "bundle_transitioned",
                extra={
                    "from_status": current.value,
                    "to_status": target.value,
                    "version": bundle.version,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    **details,
                },
            )
            return BundleInfo.from_model(bundle)
