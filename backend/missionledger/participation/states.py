from __future__ import annotations

import enum
from typing import Dict, FrozenSet


class ParticipationStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_REVIEW = "PENDING_REVIEW"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELED = "CANCELED"


S = ParticipationStatus

TRANSITIONS: Dict[ParticipationStatus, FrozenSet[ParticipationStatus]] = {
    S.IN_PROGRESS: frozenset({S.PENDING_REVIEW, S.EXPIRED, S.CANCELED}),
    S.PENDING_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.MANUAL_REVIEW, S.CANCELED}),
    S.MANUAL_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.CANCELED}),
    S.APPROVED: frozenset(),
    S.REJECTED: frozenset(),
    S.EXPIRED: frozenset(),
    S.CANCELED: frozenset(),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# a member holding one of these on a mission day cannot claim it again
LIVE = frozenset({S.IN_PROGRESS, S.PENDING_REVIEW, S.MANUAL_REVIEW})

DECIDABLE = frozenset({S.PENDING_REVIEW, S.MANUAL_REVIEW})


def can_transition(current: str, target: str) -> bool:
    return ParticipationStatus(target) in TRANSITIONS[ParticipationStatus(current)]


def sources_for(target: ParticipationStatus) -> FrozenSet[ParticipationStatus]:
    """Every status from which `target` is reachable in one step."""
    return frozenset(s for s, targets in TRANSITIONS.items() if target in targets)


def is_terminal(status: str) -> bool:
    return ParticipationStatus(status) in TERMINAL
