"""
Row-lock and flush helpers shared by every service that mutates an existing
bundle (adjustments, lifecycle transitions, detail edits).

Every such mutation starts with ``lock_bundle`` and ends with
``flush_bundle``: the first serializes writers on the bundle row, the
second turns a lost update caught by the version column into a typed
ConflictError.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from settlement_kernel.exceptions import (
    BundleNotFoundError,
    ConcurrentModificationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.bundle import SettlementBundle

logger = get_logger("services.bundle_lock")


def lock_bundle(
    session: Session,
    bundle_id: UUID,
    expected_version: int | None = None,
) -> SettlementBundle:
    """
    ``SELECT ... FOR UPDATE`` the bundle row and return it fresh.

    Raises:
        BundleNotFoundError: If the bundle does not exist.
        ConcurrentModificationError: If ``expected_version`` is given and
            differs from the stored version.
    """
    bundle = session.execute(
        select(SettlementBundle)
        .where(SettlementBundle.id == bundle_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if bundle is None:
        raise BundleNotFoundError(str(bundle_id))

    if expected_version is not None and bundle.version != expected_version:
        logger.warning(
            "bundle_version_mismatch",
            extra={
                "bundle_id": str(bundle_id),
                "expected_version": expected_version,
                "actual_version": bundle.version,
            },
        )
        raise ConcurrentModificationError(
            str(bundle_id), expected_version, bundle.version
        )
    return bundle


def flush_bundle(session: Session, bundle: SettlementBundle) -> None:
    """Flush pending changes, mapping a stale version to ConflictError."""
    try:
        session.flush()
    except StaleDataError as exc:
        logger.warning(
            "bundle_stale_write",
            extra={"bundle_id": str(bundle.id)},
        )
        raise ConcurrentModificationError(str(bundle.id)) from exc
