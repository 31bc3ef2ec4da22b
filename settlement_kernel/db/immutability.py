"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The services check lifecycle rules before they touch a row.  This module is
the second line: SQLAlchemy mapper events that refuse, at flush time, any
write that would alter settled history, whichever code path issued it.

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |                     |
         |                     +--> ImmutabilityViolationError (flush aborted)
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | Rule
-------------------|-----------------------------------------------------------
SettlementBundle   | side, counterparty, manager and both snapshots never change
                   | All fields frozen once status was PAID or CANCELED
                   | Never deleted
BundleItem         | bundle_id, order_charge_id, base_amount never change
                   | released_at is set at most once
                   | Never deleted
BundleAdjustment   | Insert/update/delete only while the bundle is DRAFT/ISSUED
ItemAdjustment     | Insert/update/delete only while the bundle is DRAFT/ISSUED

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at/updated_by_id are audit metadata and may always change.

2. "Was paid" is read from attribute history, so the transition that SETS
   PAID (or CANCELED) is allowed and every later write is refused.

3. Adjustment guards read the parent status through the flush connection
   instead of lazy-loading relationships inside a flush.

===============================================================================
USAGE
===============================================================================

    from settlement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to plant inconsistent rows may call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm.attributes import get_history

from settlement_kernel.domain.dtos import BundleStatus
from settlement_kernel.domain.lifecycle import is_editable
from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id", "version"})

_BUNDLE_WRITE_ONCE = (
    "side",
    "company_id",
    "company_snapshot",
    "manager_id",
    "manager_snapshot",
    "order_count",
    "tax_exempt",
    "created_at",
    "created_by_id",
)

_ITEM_WRITE_ONCE = ("bundle_id", "order_charge_id", "base_amount", "created_at")

_FINAL_STATUSES = frozenset({BundleStatus.PAID, BundleStatus.CANCELED})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _status_before_update(target) -> BundleStatus:
    status_history = get_history(target, "status")
    if status_history.deleted:
        return BundleStatus(status_history.deleted[0])
    return BundleStatus(target.status)


def _check_bundle_immutability(mapper, connection, target):
    """
    Block writes to write-once bundle fields, and to any field once the
    bundle was already PAID or CANCELED before this flush.
    """
    for key in _BUNDLE_WRITE_ONCE:
        if get_history(target, key).deleted:
            _blocked(
                "SettlementBundle",
                target.id,
                "UPDATE",
                f"Field '{key}' is fixed at creation",
                field=key,
            )

    if _status_before_update(target) not in _FINAL_STATUSES:
        return

    insp = sa_inspect(target)
    for attr in insp.attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "SettlementBundle",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a {BundleStatus(target.status).value} bundle",
                field=attr.key,
            )


def _check_bundle_delete(mapper, connection, target):
    _blocked(
        "SettlementBundle",
        target.id,
        "DELETE",
        "Settlement bundles are never deleted; cancel instead",
    )


def _check_item_immutability(mapper, connection, target):
    for key in _ITEM_WRITE_ONCE:
        if get_history(target, key).deleted:
            _blocked(
                "BundleItem",
                target.id,
                "UPDATE",
                f"Field '{key}' is fixed at creation",
                field=key,
            )

    released = get_history(target, "released_at")
    if released.deleted and released.deleted[0] is not None:
        _blocked(
            "BundleItem",
            target.id,
            "UPDATE",
            "Item was already released",
            field="released_at",
        )


def _check_item_delete(mapper, connection, target):
    _blocked(
        "BundleItem",
        target.id,
        "DELETE",
        "Bundle items are never deleted individually",
    )


def _parent_status_of_bundle_adjustment(connection, target) -> BundleStatus | None:
    from settlement_kernel.models.bundle import SettlementBundle

    status = connection.execute(
        select(SettlementBundle.status).where(SettlementBundle.id == target.bundle_id)
    ).scalar_one_or_none()
    return BundleStatus(status) if status is not None else None


def _parent_status_of_item_adjustment(connection, target) -> BundleStatus | None:
    from settlement_kernel.models.bundle import BundleItem, SettlementBundle

    status = connection.execute(
        select(SettlementBundle.status)
        .join(BundleItem, BundleItem.bundle_id == SettlementBundle.id)
        .where(BundleItem.id == target.bundle_item_id)
    ).scalar_one_or_none()
    return BundleStatus(status) if status is not None else None


def _adjustment_guard(entity_type: str, status_reader, operation: str):
    def _check(mapper, connection, target):
        status = status_reader(connection, target)
        if status is not None and not is_editable(status):
            _blocked(
                entity_type,
                target.id,
                operation,
                f"Adjustments cannot change on a {status.value} bundle",
                bundle_status=status.value,
            )

    _check.__name__ = f"_check_{entity_type.lower()}_{operation.lower()}"
    return _check


_check_bundle_adjustment_insert = _adjustment_guard(
    "BundleAdjustment", _parent_status_of_bundle_adjustment, "INSERT"
)
_check_bundle_adjustment_update = _adjustment_guard(
    "BundleAdjustment", _parent_status_of_bundle_adjustment, "UPDATE"
)
_check_bundle_adjustment_delete = _adjustment_guard(
    "BundleAdjustment", _parent_status_of_bundle_adjustment, "DELETE"
)
_check_item_adjustment_insert = _adjustment_guard(
    "ItemAdjustment", _parent_status_of_item_adjustment, "INSERT"
)
_check_item_adjustment_update = _adjustment_guard(
    "ItemAdjustment", _parent_status_of_item_adjustment, "UPDATE"
)
_check_item_adjustment_delete = _adjustment_guard(
    "ItemAdjustment", _parent_status_of_item_adjustment, "DELETE"
)


def _listeners():
    from settlement_kernel.models.bundle import (
        BundleAdjustment,
        BundleItem,
        ItemAdjustment,
        SettlementBundle,
    )

    return [
        (SettlementBundle, "before_update", _check_bundle_immutability),
        (SettlementBundle, "before_delete", _check_bundle_delete),
        (BundleItem, "before_update", _check_item_immutability),
        (BundleItem, "before_delete", _check_item_delete),
        (BundleAdjustment, "before_insert", _check_bundle_adjustment_insert),
        (BundleAdjustment, "before_update", _check_bundle_adjustment_update),
        (BundleAdjustment, "before_delete", _check_bundle_adjustment_delete),
        (ItemAdjustment, "before_insert", _check_item_adjustment_insert),
        (ItemAdjustment, "before_update", _check_item_adjustment_update),
        (ItemAdjustment, "before_delete", _check_item_adjustment_delete),
    ]


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
