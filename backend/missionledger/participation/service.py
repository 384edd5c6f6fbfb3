# missionledger/participation/service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from missionledger.db.base import as_utc, new_id, today_utc, utcnow
from missionledger.ledger.models import LedgerReason
from missionledger.ledger.repository import LedgerRepository
from missionledger.missions.quota import QuotaAllocator, QuotaDecision
from missionledger.outcomes import IntegrityViolation, Outcome
from missionledger.participation.models import Decision, Participation
from missionledger.participation.repository import ParticipationRepository
from missionledger.participation.states import (
    DECIDABLE,
    ParticipationStatus,
    can_transition,
    sources_for,
)
from missionledger.policy.provider import Policy
from missionledger.streaming.messages import participation_event_data
from missionledger.streaming.producer import publish_domain_event

log = logging.getLogger("missionledger.participation")

S = ParticipationStatus


class ParticipationService:
    """
    Owns the participation lifecycle.

    Every public method is one transaction: it commits on success and rolls
    back on any failure path, so a decremented slot without its participation,
    or an APPROVED row without its reward, is never visible.
    """

    def __init__(self, db: Session, *, policy: Policy):
        self.db = db
        self.policy = policy
        self.repo = ParticipationRepository(db)
        self.quota = QuotaAllocator(db)
        self.ledger = LedgerRepository(db)

    # -------------------------
    # CLAIM
    # -------------------------

    def claim(
        self,
        *,
        member_id: str,
        campaign_id: str,
        idempotency_key: str,
        now: Optional[datetime] = None,
    ) -> Outcome[Participation]:
        now = now or utcnow()

        # 1) retried request: hand back the original row, whatever its state
        existing = self.repo.get_by_idempotency_key(idempotency_key)
        if existing:
            return self._replay(existing, member_id)

        # 2) resolve today's mission day (UTC day boundary)
        found = self.quota.find_open_mission_day(campaign_id=campaign_id, today=today_utc(now))
        if not found:
            return Outcome.not_found("mission_not_found")
        day, campaign = found
        day_id = day.id

        # 3) one live slot per member per mission day
        live = self.repo.find_live(member_id=member_id, mission_day_id=day_id)
        if live:
            return Outcome.success(live, replayed=True)

        timeout_ms = self.policy.timeout_ms_for(campaign.mission_type)
        expires_at = now + timedelta(milliseconds=timeout_ms)

        try:
            # 4) guarded decrement; the row lock is held until commit
            if self.quota.try_claim(day_id) is QuotaDecision.EXHAUSTED:
                self.db.rollback()
                # the slot may have gone to an earlier call for this key or member
                prior = self._prior_claim(member_id, idempotency_key, day_id)
                if prior is not None:
                    return prior
                return Outcome.exhausted("quota_exhausted", mission_day_id=day_id)

            # claims for this day are serialized from here; re-read under the lock
            prior = self._prior_claim(member_id, idempotency_key, day_id)
            if prior is not None:
                self.db.rollback()
                return prior

            participation_id = new_id()
            inserted = self.repo.insert_if_new(
                participation_id=participation_id,
                mission_day_id=day_id,
                member_id=member_id,
                idempotency_key=idempotency_key,
                expires_at=expires_at,
            )
            if not inserted:
                # a concurrent request with the same key won; give the slot back
                self.db.rollback()
                winner = self.repo.get_by_idempotency_key(idempotency_key)
                if winner is None:
                    raise IntegrityViolation(f"idempotency key conflict without a row key={idempotency_key}")
                return self._replay(winner, member_id)

            self.ledger.audit(
                actor_type="member",
                actor_id=member_id,
                action="MISSION_CLAIMED",
                target_type="Participation",
                target_id=participation_id,
                payload={"mission_day_id": day_id, "expires_at": expires_at.isoformat()},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        participation = self.repo.get(participation_id)
        log.info("claim granted member=%s mission_day=%s participation=%s", member_id, day_id, participation_id)
        publish_domain_event("participation.claimed", key=participation.id, data=participation_event_data(participation))
        return Outcome.success(participation)

    def _prior_claim(self, member_id: str, idempotency_key: str, mission_day_id: str) -> Optional[Outcome[Participation]]:
        existing = self.repo.get_by_idempotency_key(idempotency_key)
        if existing:
            return self._replay(existing, member_id)
        live = self.repo.find_live(member_id=member_id, mission_day_id=mission_day_id)
        if live:
            return Outcome.success(live, replayed=True)
        return None

    def _replay(self, existing: Participation, member_id: str) -> Outcome[Participation]:
        if existing.member_id != member_id:
            return Outcome.violation("idempotency_key_reused")
        return Outcome.success(existing, replayed=True)

    # -------------------------
    # SUBMISSION (driven by VerificationIntake)
    # -------------------------

    def mark_submitted(
        self,
        participation: Participation,
        *,
        proof_text: Optional[str],
        now: datetime,
    ) -> bool:
        """
        IN_PROGRESS -> PENDING_REVIEW, only while the deadline has not passed.
        Does not commit.
        """
        return self.repo.transition(
            participation,
            from_statuses=[S.IN_PROGRESS],
            to_status=S.PENDING_REVIEW,
            values={"submitted_at": now, "proof_text": proof_text},
            extra_criteria=[Participation.expires_at > now],
        )

    def route_to_manual_review(self, participation: Participation) -> Outcome[Participation]:
        try:
            moved = self.repo.transition(
                participation,
                from_statuses=[S.PENDING_REVIEW],
                to_status=S.MANUAL_REVIEW,
            )
            if not moved:
                self.db.rollback()
                return Outcome.invalid(status=self.repo.get(participation.id).status)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return Outcome.success(participation)

    # -------------------------
    # DECISION
    # -------------------------

    def apply_decision(
        self,
        participation: Participation,
        *,
        decision: Decision,
        decided_by: Optional[str],
        reason: Optional[str],
        auto_outcome: Optional[str],
        now: datetime,
    ) -> Outcome[Participation]:
        """
        PENDING_REVIEW | MANUAL_REVIEW -> APPROVED | REJECTED.

        APPROVED posts the MISSION_REWARD entry in the same transaction as the
        status flip. Losing a race to another decider is reported, not raised.
        """
        target = S.APPROVED if decision is Decision.APPROVE else S.REJECTED
        member_id = participation.member_id
        participation_id = participation.id

        try:
            campaign = self.repo.campaign_for(participation)
            flipped = self.repo.transition(
                participation,
                from_statuses=DECIDABLE,
                to_status=target,
                values={
                    "decided_at": now,
                    "failure_reason": None if target is S.APPROVED else reason,
                },
            )
            if not flipped:
                self.db.rollback()
                current = self.repo.get(participation_id)
                if current.status == target.value:
                    return Outcome.success(current, replayed=True)
                return Outcome.invalid("already_decided", status=current.status)

            self.repo.upsert_result(
                participation_id=participation_id,
                decision=decision.value,
                decided_by=decided_by,
                decided_at=now,
                auto_outcome=auto_outcome,
                reason=reason,
            )

            if target is S.APPROVED and campaign.reward_amount > 0:
                self.ledger.post(
                    member_id=member_id,
                    amount=campaign.reward_amount,
                    reason=LedgerReason.MISSION_REWARD,
                    ref_id=participation_id,
                )

            self.ledger.audit(
                actor_type="staff" if decided_by else "system",
                actor_id=decided_by,
                action="PARTICIPATION_APPROVED" if target is S.APPROVED else "PARTICIPATION_REJECTED",
                target_type="Participation",
                target_id=participation_id,
                payload={"reason": reason, "auto_outcome": auto_outcome},
            )
            self.db.commit()
        except IntegrityViolation as e:
            self.db.rollback()
            log.error("decision aborted participation=%s: %s", participation_id, e)
            raise
        except Exception:
            self.db.rollback()
            raise

        current = self.repo.get(participation_id)
        log.info("participation decided id=%s status=%s by=%s", participation_id, current.status, decided_by or "auto")
        publish_domain_event("participation.decided", key=participation_id, data=participation_event_data(current))
        return Outcome.success(current)

    # -------------------------
    # CANCEL
    # -------------------------

    def cancel(
        self,
        *,
        participation_id: str,
        actor_id: str,
        by_member: bool,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Participation]:
        now = now or utcnow()
        p = self.repo.get(participation_id)
        if p is None or (by_member and p.member_id != actor_id):
            return Outcome.not_found("participation_not_found")

        if p.status == S.CANCELED.value:
            return Outcome.success(p, replayed=True)
        if not can_transition(p.status, S.CANCELED):
            return Outcome.invalid(status=p.status)

        try:
            moved = self.repo.transition(
                p,
                from_statuses=sources_for(S.CANCELED),
                to_status=S.CANCELED,
                values={"decided_at": now, "failure_reason": reason or "canceled"},
            )
            if not moved:
                self.db.rollback()
                current = self.repo.get(participation_id)
                if current.status == S.CANCELED.value:
                    return Outcome.success(current, replayed=True)
                return Outcome.invalid(status=current.status)

            self.ledger.audit(
                actor_type="member" if by_member else "staff",
                actor_id=actor_id,
                action="PARTICIPATION_CANCELED",
                target_type="Participation",
                target_id=participation_id,
                payload={"reason": reason},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        current = self.repo.get(participation_id)
        publish_domain_event("participation.canceled", key=participation_id, data=participation_event_data(current))
        return Outcome.success(current)

    # -------------------------
    # DEADLINE
    # -------------------------

    @staticmethod
    def is_overdue(participation: Participation, now: datetime) -> bool:
        return as_utc(now) >= as_utc(participation.expires_at)
