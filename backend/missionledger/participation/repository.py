# missionledger/participation/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from missionledger.db.base import utcnow
from missionledger.db.dialect import insert_for
from missionledger.missions.models import Campaign, MissionDay
from missionledger.participation.models import (
    Participation,
    VerificationEvidence,
    VerificationResult,
)
from missionledger.participation.states import LIVE, ParticipationStatus


class ParticipationRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, participation_id: str) -> Optional[Participation]:
        return self.db.get(Participation, participation_id)

    def get_by_idempotency_key(self, key: str) -> Optional[Participation]:
        return (
            self.db.query(Participation)
            .filter(Participation.idempotency_key == key)
            .first()
        )

    def find_live(self, *, member_id: str, mission_day_id: str) -> Optional[Participation]:
        return (
            self.db.query(Participation)
            .filter(Participation.member_id == member_id)
            .filter(Participation.mission_day_id == mission_day_id)
            .filter(Participation.status.in_([s.value for s in LIVE]))
            .order_by(Participation.created_at.asc())
            .first()
        )

    def insert_if_new(
        self,
        *,
        participation_id: str,
        mission_day_id: str,
        member_id: str,
        idempotency_key: str,
        expires_at: datetime,
    ) -> bool:
        """
        Returns True if inserted, False if the idempotency key already exists.
        """
        stmt = insert_for(self.db, Participation).values(
            id=participation_id,
            mission_day_id=mission_day_id,
            member_id=member_id,
            status=ParticipationStatus.IN_PROGRESS.value,
            expires_at=expires_at,
            idempotency_key=idempotency_key,
            created_at=utcnow(),
        ).on_conflict_do_nothing(
            index_elements=["idempotency_key"]
        )
        res = self.db.execute(stmt)
        # rowcount is 1 on insert, 0 on no-op
        return bool(res.rowcount)

    def transition(
        self,
        participation: Participation,
        *,
        from_statuses: Iterable[ParticipationStatus],
        to_status: ParticipationStatus,
        values: Optional[Dict[str, Any]] = None,
        extra_criteria: Iterable = (),
    ) -> bool:
        """
        Compare-and-set on status. Returns False when another writer moved the
        row first (or an extra criterion such as the deadline no longer holds).
        """
        stmt = (
            update(Participation)
            .where(Participation.id == participation.id)
            .where(Participation.status.in_([s.value for s in from_statuses]))
        )
        for criterion in extra_criteria:
            stmt = stmt.where(criterion)
        stmt = stmt.values(status=to_status.value, **(values or {})).execution_options(
            synchronize_session=False
        )

        res = self.db.execute(stmt)
        self.db.expire(participation)
        return res.rowcount == 1

    def expire_overdue(self, *, now: datetime) -> int:
        stmt = (
            update(Participation)
            .where(Participation.status == ParticipationStatus.IN_PROGRESS.value)
            .where(Participation.expires_at <= now)
            .values(status=ParticipationStatus.EXPIRED.value, failure_reason="expired")
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount or 0

    def campaign_for(self, participation: Participation) -> Campaign:
        return (
            self.db.query(Campaign)
            .join(MissionDay, MissionDay.campaign_id == Campaign.id)
            .filter(MissionDay.id == participation.mission_day_id)
            .one()
        )

    # -------------------------
    # EVIDENCE / RESULT
    # -------------------------

    def add_evidence(
        self,
        *,
        participation_id: str,
        type: str,
        file_ref: str,
        metadata: Dict[str, Any],
    ) -> VerificationEvidence:
        row = VerificationEvidence(
            participation_id=participation_id,
            type=type,
            file_ref=file_ref,
            metadata_json=metadata,
            created_at=utcnow(),
        )
        self.db.add(row)
        return row

    def evidence(self, participation_id: str) -> List[VerificationEvidence]:
        return (
            self.db.query(VerificationEvidence)
            .filter(VerificationEvidence.participation_id == participation_id)
            .order_by(VerificationEvidence.created_at.asc())
            .all()
        )

    def result(self, participation_id: str) -> Optional[VerificationResult]:
        return (
            self.db.query(VerificationResult)
            .filter(VerificationResult.participation_id == participation_id)
            .first()
        )

    def upsert_result(
        self,
        *,
        participation_id: str,
        decision: str,
        decided_by: Optional[str],
        decided_at: datetime,
        auto_outcome: Optional[str],
        reason: Optional[str],
    ) -> VerificationResult:
        existing = self.result(participation_id)
        if existing:
            existing.decision = decision
            existing.decided_by = decided_by
            existing.decided_at = decided_at
            existing.auto_outcome = auto_outcome
            existing.reason = reason
            return existing

        row = VerificationResult(
            participation_id=participation_id,
            decision=decision,
            decided_by=decided_by,
            decided_at=decided_at,
            auto_outcome=auto_outcome,
            reason=reason,
        )
        self.db.add(row)
        return row
