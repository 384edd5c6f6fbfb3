# missionledger/engine.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from missionledger.core.config import settings
from missionledger.ledger.models import CreditLedgerEntry
from missionledger.ledger.repository import LedgerRepository
from missionledger.missions.models import MissionDay
from missionledger.missions.quota import QuotaAllocator
from missionledger.outcomes import Outcome
from missionledger.participation.models import Decision, Participation
from missionledger.participation.service import ParticipationService
from missionledger.payouts.models import PayoutAccount, PayoutRequest
from missionledger.payouts.reconciler import PayoutReconciler, ReconciliationReport, SettleOutcome
from missionledger.policy.provider import Policy, StoredPolicy
from missionledger.sweeper.worker import ExpirySweeper, SweepResult
from missionledger.verification.auto_check import AutoCheck, ManualReviewCheck
from missionledger.verification.intake import EvidenceItem, VerificationIntake


class MissionLedgerEngine:
    """
    The operations exposed to the API layer, bound to one session.

    Each mutating call is its own transaction. Expected business conditions
    come back as Outcome values; only integrity violations raise.
    """

    def __init__(
        self,
        db: Session,
        *,
        policy: Policy,
        auto_check: Optional[AutoCheck] = None,
        debit_on_approval: bool = False,
    ):
        self.db = db
        self.policy = policy
        self.participations = ParticipationService(db, policy=policy)
        self.intake = VerificationIntake(db, policy=policy, auto_check=auto_check)
        self.payouts = PayoutReconciler(db, policy=policy, debit_on_approval=debit_on_approval)
        self.sweeper = ExpirySweeper(db)
        self.ledger = LedgerRepository(db)
        self.quota = QuotaAllocator(db)

    # participation lifecycle

    def claim(self, *, member_id: str, campaign_id: str, idempotency_key: str,
              now: Optional[datetime] = None) -> Outcome[Participation]:
        return self.participations.claim(
            member_id=member_id, campaign_id=campaign_id, idempotency_key=idempotency_key, now=now
        )

    def submit_evidence(self, *, participation_id: str, member_id: str, items: Sequence[EvidenceItem],
                        proof_text: Optional[str] = None, now: Optional[datetime] = None) -> Outcome[Participation]:
        return self.intake.submit_evidence(
            participation_id=participation_id, member_id=member_id, items=items, proof_text=proof_text, now=now
        )

    def decide(self, *, participation_id: str, decision: Decision | str, decider_id: Optional[str] = None,
               reason: Optional[str] = None, now: Optional[datetime] = None) -> Outcome[Participation]:
        return self.intake.decide(
            participation_id=participation_id, decision=decision, decider_id=decider_id, reason=reason, now=now
        )

    def cancel(self, *, participation_id: str, actor_id: str, by_member: bool,
               reason: Optional[str] = None) -> Outcome[Participation]:
        return self.participations.cancel(
            participation_id=participation_id, actor_id=actor_id, by_member=by_member, reason=reason
        )

    def force_expire(self, now: Optional[datetime] = None) -> int:
        return self.sweeper.force_expire(now)

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self.sweeper.run_once(now)

    def reset_quota(self, *, mission_day_id: str, quota_total: int, actor_id: str) -> Outcome[MissionDay]:
        if quota_total < 0:
            return Outcome.violation("quota_total_negative")
        try:
            day = self.quota.reset_quota(mission_day_id, quota_total=quota_total)
            if day is None:
                self.db.rollback()
                return Outcome.not_found("mission_day_not_found")
            self.ledger.audit(
                actor_type="staff",
                actor_id=actor_id,
                action="MISSION_DAY_QUOTA_RESET",
                target_type="MissionDay",
                target_id=mission_day_id,
                payload={"quota_total": day.quota_total, "quota_remaining": day.quota_remaining},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return Outcome.success(self.db.get(MissionDay, mission_day_id))

    # ledger + payouts

    def balance(self, member_id: str) -> int:
        return self.payouts.balance(member_id)

    def available_balance(self, member_id: str) -> int:
        return self.payouts.available_balance(member_id)

    def ledger_entries(self, member_id: str, *, limit: int = 50, offset: int = 0) -> List[CreditLedgerEntry]:
        return self.ledger.entries(member_id, limit=limit, offset=offset)

    def register_account(self, *, member_id: str, bank_name: str, account_number: str,
                         account_holder_name: Optional[str] = None) -> Outcome[PayoutAccount]:
        return self.payouts.register_account(
            member_id=member_id,
            bank_name=bank_name,
            account_number=account_number,
            account_holder_name=account_holder_name,
        )

    def set_primary(self, *, member_id: str, account_id: str) -> Outcome[PayoutAccount]:
        return self.payouts.set_primary(member_id=member_id, account_id=account_id)

    def request_payout(self, *, member_id: str, account_id: str, amount: int,
                       idempotency_key: str) -> Outcome[PayoutRequest]:
        return self.payouts.request_payout(
            member_id=member_id, account_id=account_id, amount=amount, idempotency_key=idempotency_key
        )

    def settle(self, *, request_id: str, outcome: SettleOutcome | str, actor_id: Optional[str],
               reason: Optional[str] = None) -> Outcome[PayoutRequest]:
        return self.payouts.settle(request_id=request_id, outcome=outcome, actor_id=actor_id, reason=reason)

    def reconcile(self, member_id: str) -> ReconciliationReport:
        return self.payouts.reconcile(member_id)


def engine_for(db: Session) -> MissionLedgerEngine:
    """Engine wired from settings + stored policy, as used by the API and workers."""
    return MissionLedgerEngine(
        db,
        policy=StoredPolicy(db),
        auto_check=ManualReviewCheck() if settings.auto_check_enabled else None,
        debit_on_approval=settings.payout_debit_on_approval,
    )
