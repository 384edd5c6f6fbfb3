from __future__ import annotations

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, JSON

from missionledger.db.base import Base, new_id, utcnow


class EvidenceType(str, enum.Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    OTHER = "OTHER"


class Decision(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class Participation(Base):
    """
    One member's claim on one mission-day slot.

    Never deleted. Status changes go through conditional updates in
    ParticipationRepository.transition, so a concurrent writer that read a
    stale status affects zero rows instead of overwriting a terminal state.
    """
    __tablename__ = "participation"

    id = Column(String, primary_key=True, default=new_id)
    mission_day_id = Column(
        String,
        ForeignKey("mission_day.id", ondelete="RESTRICT"),
        nullable=False,
    )
    member_id = Column(String, nullable=False)

    status = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String, nullable=True)

    # retried claims resolve to this row
    idempotency_key = Column(String, nullable=False, unique=True)
    proof_text = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_participation_member_day", "member_id", "mission_day_id"),
        Index("ix_participation_status_expires", "status", "expires_at"),
    )


class VerificationEvidence(Base):
    __tablename__ = "verification_evidence"

    id = Column(String, primary_key=True, default=new_id)
    participation_id = Column(
        String,
        ForeignKey("participation.id", ondelete="RESTRICT"),
        nullable=False,
    )

    type = Column(String, nullable=False)  # IMAGE | VIDEO | OTHER
    file_ref = Column(String, nullable=False)  # opaque blob-store reference
    metadata_json = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_verification_evidence_participation", "participation_id"),
    )


class VerificationResult(Base):
    __tablename__ = "verification_result"

    id = Column(String, primary_key=True, default=new_id)
    participation_id = Column(
        String,
        ForeignKey("participation.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    decision = Column(String, nullable=False)  # APPROVE | REJECT
    decided_by = Column(String, nullable=True)  # null = automatic check
    decided_at = Column(DateTime(timezone=True), nullable=False)

    auto_outcome = Column(String, nullable=True)  # APPROVE | REJECT | INCONCLUSIVE
    reason = Column(String, nullable=True)
