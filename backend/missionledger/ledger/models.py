from __future__ import annotations

import enum

from sqlalchemy import Column, BigInteger, DateTime, Index, String, UniqueConstraint, JSON

from missionledger.db.base import Base, new_id, utcnow


class LedgerReason(str, enum.Enum):
    MISSION_REWARD = "MISSION_REWARD"
    PAYOUT = "PAYOUT"
    PAYOUT_REVERSAL = "PAYOUT_REVERSAL"
    ADJUSTMENT = "ADJUSTMENT"


class CreditLedgerEntry(Base):
    """
    Append-only signed movement of a member's credit.

    The balance is SUM(amount) per member; no balance column exists.
    Corrections are new offsetting rows. (reason, ref_id) is unique so a
    participation can be rewarded once and a payout debited/reversed once.
    NULL ref_ids never collide.
    """
    __tablename__ = "credit_ledger"

    id = Column(String, primary_key=True, default=new_id)
    member_id = Column(String, nullable=False)

    amount = Column(BigInteger, nullable=False)  # signed, minor units
    reason = Column(String, nullable=False)
    ref_id = Column(String, nullable=True)  # participation id / payout request id

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("reason", "ref_id", name="uq_credit_ledger_reason_ref"),
        Index("ix_credit_ledger_member_time", "member_id", "created_at"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(String, primary_key=True, default=new_id)
    actor_type = Column(String, nullable=False)  # member | staff | system
    actor_id = Column(String, nullable=True)

    action = Column(String, nullable=False)
    target_type = Column(String, nullable=True)
    target_id = Column(String, nullable=True)
    payload_json = Column(JSON, nullable=True)

    at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_actor_time", "actor_id", "at"),
        Index("ix_audit_action_time", "action", "at"),
        Index("ix_audit_target", "target_type", "target_id"),
    )
