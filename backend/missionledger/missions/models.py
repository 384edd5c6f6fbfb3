from __future__ import annotations

import enum

from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
)

from missionledger.db.base import Base, new_id, utcnow


class MissionType(str, enum.Enum):
    TRAFFIC = "TRAFFIC"
    SAVE = "SAVE"
    SHARE = "SHARE"


class CampaignStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class MissionDayStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Campaign(Base):
    """
    Advertiser-funded mission definition. Authored elsewhere; the engine reads
    mission_type / reward_amount and ends campaigns whose date window is over.
    """
    __tablename__ = "campaign"

    id = Column(String, primary_key=True, default=new_id)
    advertiser_id = Column(String, nullable=False)
    title = Column(String, nullable=False, default="")

    mission_type = Column(String, nullable=False)  # TRAFFIC | SAVE | SHARE
    reward_amount = Column(Integer, nullable=False)  # minor units credited per approval

    status = Column(String, nullable=False, default=CampaignStatus.ACTIVE.value)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("reward_amount >= 0", name="ck_campaign_reward_non_negative"),
        CheckConstraint("mission_type IN ('TRAFFIC', 'SAVE', 'SHARE')", name="ck_campaign_mission_type"),
        Index("ix_campaign_status_end_date", "status", "end_date"),
    )


class MissionDay(Base):
    __tablename__ = "mission_day"

    id = Column(String, primary_key=True, default=new_id)
    campaign_id = Column(
        String,
        ForeignKey("campaign.id", ondelete="RESTRICT"),
        nullable=False,
    )
    date = Column(Date, nullable=False)  # UTC day

    quota_total = Column(Integer, nullable=False)
    # hot counter: only QuotaAllocator writes it
    quota_remaining = Column(Integer, nullable=False)

    status = Column(String, nullable=False, default=MissionDayStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("campaign_id", "date", name="uq_mission_day_campaign_date"),
        CheckConstraint(
            "quota_remaining >= 0 AND quota_remaining <= quota_total",
            name="ck_mission_day_quota_bounds",
        ),
        Index("ix_mission_day_status_date", "status", "date"),
    )
