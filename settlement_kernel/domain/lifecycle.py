"""
Settlement lifecycle state machine (pure).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The imperative
    side (locking, timestamps, releasing orders) lives in
    services/lifecycle_service.py.

Invariants enforced:
    - DRAFT -> ISSUED -> PAID, DRAFT|ISSUED -> CANCELED.
    - PAID and CANCELED are terminal.
    - Adjustments and detail edits are allowed only in DRAFT and ISSUED.
    - Every BundleStatus member has an entry in VALID_TRANSITIONS; a new
      status that is not mapped fails at import time.
"""

from settlement_kernel.domain.dtos import BundleStatus

VALID_TRANSITIONS: dict[BundleStatus, frozenset[BundleStatus]] = {
    BundleStatus.DRAFT: frozenset({
        BundleStatus.ISSUED, BundleStatus.CANCELED,
    }),
    BundleStatus.ISSUED: frozenset({
        BundleStatus.PAID, BundleStatus.CANCELED,
    }),
    # Terminal states
    BundleStatus.PAID: frozenset(),
    BundleStatus.CANCELED: frozenset(),
}

EDITABLE_STATUSES: frozenset[BundleStatus] = frozenset({
    BundleStatus.DRAFT, BundleStatus.ISSUED,
})

if set(VALID_TRANSITIONS) != set(BundleStatus):
    raise RuntimeError("VALID_TRANSITIONS must map every BundleStatus")


def can_transition(current: BundleStatus | str, target: BundleStatus | str) -> bool:
    """True iff ``current -> target`` is an allowed transition."""
    return BundleStatus(target) in VALID_TRANSITIONS[BundleStatus(current)]


def is_terminal(status: BundleStatus | str) -> bool:
    return not VALID_TRANSITIONS[BundleStatus(status)]


def is_editable(status: BundleStatus | str) -> bool:
    """Adjustments and detail edits are accepted only in these statuses."""
    return BundleStatus(status) in EDITABLE_STATUSES


def allowed_targets(status: BundleStatus | str) -> frozenset[BundleStatus]:
    return VALID_TRANSITIONS[BundleStatus(status)]
