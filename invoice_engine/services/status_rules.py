"""
Invoice lifecycle transition rules.

The adjacency table below is the single source of truth for which status
changes are legal. It lists every status, including the terminal ones, so
a missing entry is a bug rather than an implicit "no transitions".

On top of adjacency, some transitions may be reserved for automation
(external triggers) and refused to people. That split is an explicit,
configurable set of (from, to) pairs, empty unless configured.
"""

from typing import Iterable

from loguru import logger

from ..models.invoice import InvoiceStatus

S = InvoiceStatus

_ABORT_TARGETS = (S.REJECTED, S.ON_HOLD, S.CANCELLED)

TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, *_ABORT_TARGETS}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, *_ABORT_TARGETS}),
    S.APPROVED: frozenset({S.IN_PROGRESS, *_ABORT_TARGETS}),
    S.IN_PROGRESS: frozenset({S.PMO_REVIEW, S.COMPLETED, *_ABORT_TARGETS}),
    S.PMO_REVIEW: frozenset({S.COMPLETED, *_ABORT_TARGETS}),
    S.COMPLETED: frozenset(),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
    S.ON_HOLD: frozenset({S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED, S.IN_PROGRESS, S.PMO_REVIEW, S.CANCELLED}),
}

# PmoReview is an optional step: InProgress may complete directly.

INITIAL_STATUS = S.SUBMITTED

Transition = tuple[InvoiceStatus, InvoiceStatus]


def get_valid_transitions(status: InvoiceStatus) -> frozenset[InvoiceStatus]:
    """Statuses reachable from ``status`` in one step."""
    return TRANSITIONS[InvoiceStatus(status)]


def is_terminal(status: InvoiceStatus) -> bool:
    return not TRANSITIONS[InvoiceStatus(status)]


def get_terminal_statuses() -> frozenset[InvoiceStatus]:
    return frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def is_valid_transition(current: InvoiceStatus, requested: InvoiceStatus) -> bool:
    return InvoiceStatus(requested) in TRANSITIONS[InvoiceStatus(current)]


def can_change_status_manually(
    current: InvoiceStatus,
    requested: InvoiceStatus,
    automation_only: Iterable[Transition] = (),
) -> bool:
    """
    True when a person may move an invoice from ``current`` to ``requested``.

    The transition must be in the adjacency table and must not be one of
    the ``automation_only`` pairs.
    """
    current, requested = InvoiceStatus(current), InvoiceStatus(requested)
    return is_valid_transition(current, requested) and (current, requested) not in set(automation_only)


def parse_transition_pairs(value: str | None) -> frozenset[Transition]:
    """
    Parse "PmoReview>Completed, 3>4" into transition pairs.

    Statuses may be given as integers, enum names or labels. Pairs that are
    not in the adjacency table are rejected, since they could never apply.
    """
    pairs = set()
    for chunk in (value or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        source, sep, target = chunk.partition(">")
        if not sep:
            raise ValueError(f"Invalid transition {chunk!r}: expected 'From>To'")
        pair = (InvoiceStatus.parse(source), InvoiceStatus.parse(target))
        if not is_valid_transition(*pair):
            raise ValueError(f"Transition {pair[0].label}>{pair[1].label} is not in the transition table")
        pairs.add(pair)

    if pairs:
        logger.debug(
            "Automation-only transitions configured",
            transitions=sorted(f"{a.label}>{b.label}" for a, b in pairs),
        )
    return frozenset(pairs)
