"""
BundleDetailsService -- edits of the non-financial bundle header fields.

Only memo, payment details and the settlement period may change after
creation, and only while the bundle is DRAFT or ISSUED.  Totals, snapshots,
counterparty, status and lifecycle timestamps have their own owners (the
adjustment manager and the lifecycle service) and are refused here.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping
from uuid import UUID

from settlement_kernel.domain.dtos import BundleInfo, BundleStatus
from settlement_kernel.domain.lifecycle import is_editable
from settlement_kernel.domain.validation import (
    check_period,
    parse_payment_method,
    parse_period_type,
)
from settlement_kernel.exceptions import (
    BundleNotEditableError,
    ReadOnlyFieldError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.bundle import SettlementBundle
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.bundle_lock import flush_bundle, lock_bundle

logger = get_logger("services.bundle_details")

EDITABLE_FIELDS = frozenset({
    "memo",
    "payment_method",
    "bank_code",
    "bank_account",
    "bank_account_holder",
    "period_type",
    "period_from",
    "period_to",
})

_MAX_LENGTHS = {
    "bank_code": 10,
    "bank_account": 50,
    "bank_account_holder": 100,
}


def _normalize(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Validate field names and coerce values; no database access."""
    readonly = sorted(set(changes) - EDITABLE_FIELDS)
    if readonly:
        raise ReadOnlyFieldError(readonly)

    clean: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "payment_method":
            if value is None:
                raise ValidationError("payment_method cannot be cleared")
            clean[key] = parse_payment_method(value).value
        elif key == "period_type":
            if value is None:
                raise ValidationError("period_type cannot be cleared")
            clean[key] = parse_period_type(value).value
        elif key in ("period_from", "period_to"):
            if value is not None and not isinstance(value, date):
                try:
                    value = date.fromisoformat(str(value))
                except ValueError:
                    raise ValidationError(f"{key} is not a date: {value}") from None
            clean[key] = value
        else:
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be a string")
            limit = _MAX_LENGTHS.get(key)
            if limit is not None and value is not None and len(value) > limit:
                raise ValidationError(f"{key} exceeds {limit} characters")
            clean[key] = value
    return clean


class BundleDetailsService(BaseService[SettlementBundle]):
    """
    Edits memo, payment details and period of an editable bundle.

    Contract:
        ``update_details`` applies every change or none.  An empty change
        set is a no-op that still checks the bundle exists and is editable.
    """

    def update_details(
        self,
        bundle_id: UUID,
        changes: Mapping[str, Any],
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> BundleInfo:
        """
        Apply ``changes`` to the bundle header.

        Raises:
            ReadOnlyFieldError: A key outside EDITABLE_FIELDS was given.
            InvalidPeriodError: The resulting period_from is after period_to.
            BundleNotEditableError: The bundle is PAID or CANCELED.
        """
        clean = _normalize(changes)

        with LogContext.bind(
            bundle_id=str(bundle_id),
            actor_id=str(actor_id) if actor_id else None,
        ):
            bundle = lock_bundle(self.session, bundle_id, expected_version)
            if not is_editable(bundle.status):
                raise BundleNotEditableError(
                    str(bundle.id), BundleStatus(bundle.status).value
                )

            check_period(
                clean.get("period_from", bundle.period_from),
                clean.get("period_to", bundle.period_to),
            )

            changed = sorted(k for k, v in clean.items() if getattr(bundle, k) != v)
            if changed:
                for key in changed:
                    setattr(bundle, key, clean[key])
                bundle.updated_by_id = actor_id
                flush_bundle(self.session, bundle)
                logger.info(
                    "bundle_details_updated",
                    extra={"fields": changed, "version": bundle.version},
                )
            return BundleInfo.from_model(bundle)
