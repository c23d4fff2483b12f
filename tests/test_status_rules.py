"""
Tests for the invoice transition table.
"""

import pytest

from invoice_engine.models.invoice import InvoiceStatus
from invoice_engine.services import status_rules
from invoice_engine.services.status_rules import (
    TRANSITIONS,
    can_change_status_manually,
    get_terminal_statuses,
    get_valid_transitions,
    is_terminal,
    is_valid_transition,
    parse_transition_pairs,
)

S = InvoiceStatus


def test_every_status_has_an_entry():
    assert set(TRANSITIONS) == set(InvoiceStatus)


def test_no_self_transitions():
    for status, targets in TRANSITIONS.items():
        assert status not in targets


def test_terminal_statuses():
    assert get_terminal_statuses() == {S.COMPLETED, S.REJECTED, S.CANCELLED}
    assert is_terminal(S.COMPLETED)
    assert not is_terminal(S.ON_HOLD)


def test_happy_path_is_a_chain():
    chain = [S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED, S.IN_PROGRESS, S.PMO_REVIEW, S.COMPLETED]
    for current, nxt in zip(chain, chain[1:]):
        assert is_valid_transition(current, nxt)


def test_pmo_review_is_optional():
    assert is_valid_transition(S.IN_PROGRESS, S.COMPLETED)
    assert is_valid_transition(S.IN_PROGRESS, S.PMO_REVIEW)
    assert not is_valid_transition(S.APPROVED, S.COMPLETED)


def test_cannot_skip_stages():
    assert not is_valid_transition(S.SUBMITTED, S.COMPLETED)
    assert not is_valid_transition(S.SUBMITTED, S.APPROVED)
    assert not is_valid_transition(S.APPROVED, S.SUBMITTED)


@pytest.mark.parametrize("status", [S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED, S.IN_PROGRESS, S.PMO_REVIEW])
def test_active_statuses_can_be_rejected_held_or_cancelled(status):
    assert {S.REJECTED, S.ON_HOLD, S.CANCELLED} <= get_valid_transitions(status)


def test_on_hold_resumes_or_cancels():
    targets = get_valid_transitions(S.ON_HOLD)

    assert S.CANCELLED in targets
    assert S.UNDER_REVIEW in targets
    assert S.COMPLETED not in targets
    assert S.REJECTED not in targets


def test_transitions_accept_plain_ints():
    assert is_valid_transition(0, 1)
    assert get_valid_transitions(5) == frozenset()


def test_manual_change_respects_automation_only_pairs():
    automation_only = {(S.PMO_REVIEW, S.COMPLETED)}

    assert can_change_status_manually(S.PMO_REVIEW, S.REJECTED, automation_only)
    assert not can_change_status_manually(S.PMO_REVIEW, S.COMPLETED, automation_only)
    assert can_change_status_manually(S.PMO_REVIEW, S.COMPLETED)
    assert not can_change_status_manually(S.SUBMITTED, S.COMPLETED)


def test_parse_transition_pairs_mixed_forms():
    pairs = parse_transition_pairs("PmoReview>Completed, 3>4 ,IN_PROGRESS>REJECTED")

    assert pairs == {
        (S.PMO_REVIEW, S.COMPLETED),
        (S.IN_PROGRESS, S.PMO_REVIEW),
        (S.IN_PROGRESS, S.REJECTED),
    }


@pytest.mark.parametrize("value", ["", None, " , "])
def test_parse_transition_pairs_empty(value):
    assert parse_transition_pairs(value) == frozenset()


@pytest.mark.parametrize("value", ["PmoReview", "Submitted>Completed", "Nope>Completed"])
def test_parse_transition_pairs_rejects_bad_input(value):
    with pytest.raises(ValueError):
        parse_transition_pairs(value)


@pytest.mark.parametrize("value,expected", [
    (3, S.IN_PROGRESS),
    ("8", S.ON_HOLD),
    ("ON_HOLD", S.ON_HOLD),
    ("OnHold", S.ON_HOLD),
    ("pmo review", S.PMO_REVIEW),
    (S.CANCELLED, S.CANCELLED),
])
def test_status_parse(value, expected):
    assert InvoiceStatus.parse(value) == expected


@pytest.mark.parametrize("value", [9, -1, "Paid", ""])
def test_status_parse_rejects_unknown(value):
    with pytest.raises(ValueError):
        InvoiceStatus.parse(value)


def test_wire_values_are_stable():
    assert [int(s) for s in InvoiceStatus] == list(range(9))
    assert S.PMO_REVIEW.label == "PmoReview"
    assert status_rules.INITIAL_STATUS == S.SUBMITTED
