"""Transition table and editability rules of the bundle state machine."""

import pytest

from settlement_kernel.domain.dtos import BundleStatus
from settlement_kernel.domain.lifecycle import (
    VALID_TRANSITIONS,
    allowed_targets,
    can_transition,
    is_editable,
    is_terminal,
)

DRAFT, ISSUED, PAID, CANCELED = (
    BundleStatus.DRAFT,
    BundleStatus.ISSUED,
    BundleStatus.PAID,
    BundleStatus.CANCELED,
)


@pytest.mark.parametrize(
    "current,target",
    [(DRAFT, ISSUED), (DRAFT, CANCELED), (ISSUED, PAID), (ISSUED, CANCELED)],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (DRAFT, PAID),
        (DRAFT, DRAFT),
        (ISSUED, DRAFT),
        (ISSUED, ISSUED),
        (PAID, CANCELED),
        (PAID, ISSUED),
        (CANCELED, DRAFT),
        (CANCELED, ISSUED),
    ],
)
def test_forbidden_transitions(current, target):
    assert not can_transition(current, target)


def test_accepts_string_values():
    assert can_transition("draft", "issued")
    assert not can_transition("paid", "canceled")


def test_terminal_states():
    assert is_terminal(PAID)
    assert is_terminal(CANCELED)
    assert not is_terminal(DRAFT)
    assert not is_terminal(ISSUED)


def test_editable_states():
    assert is_editable(DRAFT)
    assert is_editable(ISSUED)
    assert not is_editable(PAID)
    assert not is_editable(CANCELED)


def test_every_status_is_mapped():
    assert set(VALID_TRANSITIONS) == set(BundleStatus)


def test_allowed_targets():
    assert allowed_targets(DRAFT) == frozenset({ISSUED, CANCELED})
    assert allowed_targets(PAID) == frozenset()


def test_unknown_status_raises_value_error():
    with pytest.raises(ValueError):
        can_transition("archived", "draft")
