from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, JSON

from missionledger.db.base import Base, new_id, utcnow


class PolicyRecord(Base):
    """
    Read-only policy store as seen by the engine. The newest active row per
    key wins; payloads are validated on read (see policy.schemas).
    """
    __tablename__ = "policy"

    id = Column(String, primary_key=True, default=new_id)
    key = Column(String, nullable=False)  # MISSION_LIMITS | PAYOUT
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    payload_json = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_policy_key_active_created", "key", "is_active", "created_at"),
    )
