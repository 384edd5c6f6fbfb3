# missionledger/verification/intake.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from missionledger.db.base import utcnow
from missionledger.outcomes import Outcome
from missionledger.participation.models import Decision, EvidenceType, Participation
from missionledger.participation.service import ParticipationService
from missionledger.participation.states import DECIDABLE, ParticipationStatus
from missionledger.policy.provider import Policy
from missionledger.streaming.messages import participation_event_data
from missionledger.streaming.producer import publish_domain_event
from missionledger.verification.auto_check import AutoCheck, AutoVerdict

log = logging.getLogger("missionledger.verification")

S = ParticipationStatus

MAX_PROOF_TEXT = 2000
MAX_EVIDENCE_ITEMS = 10


@dataclass(frozen=True)
class EvidenceItem:
    file_ref: str  # returned by the blob store, stored verbatim
    mime: Optional[str] = None
    type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def evidence_type_for(item: EvidenceItem) -> str:
    if item.type:
        return EvidenceType(item.type.upper()).value
    mime = (item.mime or "").lower()
    if mime.startswith("video/"):
        return EvidenceType.VIDEO.value
    if mime.startswith("image/"):
        return EvidenceType.IMAGE.value
    return EvidenceType.OTHER.value


class VerificationIntake:
    """
    Evidence submission + decisions.

    Automatic and staff decisions are two producers of the same decide()
    call, so both obey the same terminal-state rules.
    """

    def __init__(self, db: Session, *, policy: Policy, auto_check: Optional[AutoCheck] = None):
        self.db = db
        self.participations = ParticipationService(db, policy=policy)
        self.repo = self.participations.repo
        self.auto_check = auto_check

    def submit_evidence(
        self,
        *,
        participation_id: str,
        member_id: str,
        items: Sequence[EvidenceItem],
        proof_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Participation]:
        now = now or utcnow()

        p = self.repo.get(participation_id)
        if p is None or p.member_id != member_id:
            return Outcome.not_found("participation_not_found")
        if p.status != S.IN_PROGRESS.value:
            return Outcome.invalid(status=p.status)
        if ParticipationService.is_overdue(p, now):
            return Outcome.violation("deadline_passed")

        if not items:
            return Outcome.violation("evidence_required")
        if len(items) > MAX_EVIDENCE_ITEMS:
            return Outcome.violation("too_many_evidence_items", limit=MAX_EVIDENCE_ITEMS)
        if any(not (i.file_ref or "").strip() for i in items):
            return Outcome.violation("file_ref_required")
        try:
            types = [evidence_type_for(i) for i in items]
        except ValueError:
            return Outcome.violation("unknown_evidence_type")

        proof = (proof_text or "").strip()
        if len(proof) > MAX_PROOF_TEXT:
            return Outcome.violation("proof_text_too_long", limit=MAX_PROOF_TEXT)

        try:
            # guarded on status + deadline; the sweeper may have won meanwhile
            moved = self.participations.mark_submitted(p, proof_text=proof or None, now=now)
            if not moved:
                self.db.rollback()
                current = self.repo.get(participation_id)
                if current.status == S.IN_PROGRESS.value:
                    return Outcome.violation("deadline_passed")
                return Outcome.invalid(status=current.status)

            for item, etype in zip(items, types):
                metadata = dict(item.metadata or {})
                if item.mime:
                    metadata.setdefault("mime", item.mime)
                self.repo.add_evidence(
                    participation_id=participation_id,
                    type=etype,
                    file_ref=item.file_ref.strip(),
                    metadata=metadata,
                )

            self.participations.ledger.audit(
                actor_type="member",
                actor_id=member_id,
                action="EVIDENCE_SUBMITTED",
                target_type="Participation",
                target_id=participation_id,
                payload={"items": len(items)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        submitted = self.repo.get(participation_id)
        publish_domain_event("participation.submitted", key=participation_id, data=participation_event_data(submitted))

        if self.auto_check is None:
            return Outcome.success(submitted)
        return self._run_auto_check(submitted, now=now)

    def _run_auto_check(self, p: Participation, *, now: datetime) -> Outcome[Participation]:
        verdict = self.auto_check.evaluate(p, self.repo.evidence(p.id))
        log.info("auto check participation=%s verdict=%s", p.id, verdict.value)

        if verdict is AutoVerdict.INCONCLUSIVE:
            return self.participations.route_to_manual_review(p)

        decision = Decision.APPROVE if verdict is AutoVerdict.APPROVE else Decision.REJECT
        return self.decide(
            participation_id=p.id,
            decision=decision,
            decider_id=None,
            reason=None if decision is Decision.APPROVE else "auto_check_rejected",
            now=now,
        )

    def decide(
        self,
        *,
        participation_id: str,
        decision: Decision | str,
        decider_id: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Participation]:
        now = now or utcnow()
        decision = Decision(decision)
        target = S.APPROVED if decision is Decision.APPROVE else S.REJECTED
        reason = (reason or "").strip() or None

        p = self.repo.get(participation_id)
        if p is None:
            return Outcome.not_found("participation_not_found")

        status = S(p.status)
        if status in (S.APPROVED, S.REJECTED):
            # a decision, once applied, is immutable
            if status is target:
                return Outcome.success(p, replayed=True)
            return Outcome.invalid("already_decided", status=p.status)
        if status not in DECIDABLE:
            return Outcome.invalid(status=p.status)

        if decision is Decision.REJECT and not reason:
            return Outcome.violation("reason_required")

        if decider_id is None:
            auto_outcome = decision.value
        elif status is S.MANUAL_REVIEW:
            auto_outcome = AutoVerdict.INCONCLUSIVE.value
        else:
            auto_outcome = None

        return self.participations.apply_decision(
            p,
            decision=decision,
            decided_by=decider_id,
            reason=reason,
            auto_outcome=auto_outcome,
            now=now,
        )
