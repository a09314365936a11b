"""
Submission lifecycle.

DRAFT → SUBMITTED → IN_REVIEW → APPROVED | REJECTED

A decision is also accepted straight from SUBMITTED (a reviewer may decide
without the submission having been opened first). APPROVED and REJECTED are
terminal. Who may trigger a transition is checked by the services; this module
only knows the graph.
"""
from __future__ import annotations

from .exceptions import InvalidStateTransition
from .models import Comment, Submission

Status = Submission.Status

TRANSITIONS: dict[str, frozenset[str]] = {
    Status.DRAFT: frozenset({Status.SUBMITTED}),
    Status.SUBMITTED: frozenset({Status.IN_REVIEW, Status.APPROVED, Status.REJECTED}),
    Status.IN_REVIEW: frozenset({Status.APPROVED, Status.REJECTED}),
    Status.APPROVED: frozenset(),
    Status.REJECTED: frozenset(),
}

REVIEWABLE_STATUSES = frozenset({Status.SUBMITTED, Status.IN_REVIEW})
TERMINAL_STATUSES = frozenset({Status.APPROVED, Status.REJECTED})

DECISION_TARGETS = {
    Comment.Decision.APPROVE: Status.APPROVED,
    Comment.Decision.REJECT: Status.REJECTED,
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransition(f"Cannot move submission from {current} to {target}")


def is_reviewable(status: str) -> bool:
    return status in REVIEWABLE_STATUSES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def ensure_reviewable(status: str) -> None:
    if not is_reviewable(status):
        raise InvalidStateTransition()


def status_for_decision(decision: str) -> str:
    return DECISION_TARGETS[decision]
