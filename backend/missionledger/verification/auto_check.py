from __future__ import annotations

import enum
from typing import List, Protocol

from missionledger.participation.models import Participation, VerificationEvidence


class AutoVerdict(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    INCONCLUSIVE = "INCONCLUSIVE"


class AutoCheck(Protocol):
    """
    Black-box automatic verification. Runs right after a submission is
    persisted; APPROVE/REJECT go through the same decide() path as staff.
    """

    def evaluate(self, participation: Participation, evidence: List[VerificationEvidence]) -> AutoVerdict: ...


class ManualReviewCheck:
    """Sends every submission to the staff queue."""

    def evaluate(self, participation: Participation, evidence: List[VerificationEvidence]) -> AutoVerdict:
        return AutoVerdict.INCONCLUSIVE
