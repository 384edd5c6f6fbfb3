# missionledger/missions/quota.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from missionledger.missions.models import (
    Campaign,
    CampaignStatus,
    MissionDay,
    MissionDayStatus,
)

log = logging.getLogger("missionledger.quota")


class QuotaDecision(str, enum.Enum):
    GRANTED = "GRANTED"
    EXHAUSTED = "EXHAUSTED"


@dataclass(frozen=True)
class CloseResult:
    mission_days_closed: int
    campaigns_ended: int


class QuotaAllocator:
    """
    Guards MissionDay.quota_remaining as a semaphore.

    The counter has no setter. The only way down is try_claim (one guarded
    UPDATE); the only way up is reset_quota.
    Neither method commits; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def try_claim(self, mission_day_id: str) -> QuotaDecision:
        stmt = (
            update(MissionDay)
            .where(MissionDay.id == mission_day_id)
            .where(MissionDay.status == MissionDayStatus.ACTIVE.value)
            .where(MissionDay.quota_remaining > 0)
            .values(quota_remaining=MissionDay.quota_remaining - 1)
            .execution_options(synchronize_session=False)
        )
        res = self.db.execute(stmt)
        # rowcount is 1 when a slot was taken, 0 when sold out / closed
        if res.rowcount == 1:
            return QuotaDecision.GRANTED
        log.debug("quota exhausted mission_day=%s", mission_day_id)
        return QuotaDecision.EXHAUSTED

    def find_open_mission_day(self, *, campaign_id: str, today: date) -> Optional[Tuple[MissionDay, Campaign]]:
        """
        Today's ACTIVE mission day of an ACTIVE campaign whose window covers today.
        """
        row = (
            self.db.query(MissionDay, Campaign)
            .join(Campaign, Campaign.id == MissionDay.campaign_id)
            .filter(Campaign.id == campaign_id)
            .filter(Campaign.status == CampaignStatus.ACTIVE.value)
            .filter(Campaign.start_date <= today)
            .filter(Campaign.end_date >= today)
            .filter(MissionDay.date == today)
            .filter(MissionDay.status == MissionDayStatus.ACTIVE.value)
            .first()
        )
        if not row:
            return None
        return row[0], row[1]

    def remaining(self, mission_day_id: str) -> Optional[int]:
        day = self.db.get(MissionDay, mission_day_id)
        return day.quota_remaining if day else None

    def reset_quota(self, mission_day_id: str, *, quota_total: int) -> Optional[MissionDay]:
        """
        Administrative reset: the one path that may raise quota_remaining.
        Slots already consumed today still count against the new total.
        """
        if quota_total < 0:
            raise ValueError("quota_total must be >= 0")

        # single statement so a concurrent try_claim cannot be lost;
        # SET expressions see the pre-update row
        new_remaining = quota_total - (MissionDay.quota_total - MissionDay.quota_remaining)
        res = self.db.execute(
            update(MissionDay)
            .where(MissionDay.id == mission_day_id)
            .values(
                quota_total=quota_total,
                quota_remaining=case((new_remaining > 0, new_remaining), else_=0),
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return None

        day = self.db.get(MissionDay, mission_day_id)
        self.db.refresh(day)
        log.info(
            "quota reset mission_day=%s total=%d remaining=%d",
            mission_day_id, day.quota_total, day.quota_remaining,
        )
        return day

    def close_elapsed_days(self, *, today: date) -> CloseResult:
        campaigns = self.db.execute(
            update(Campaign)
            .where(Campaign.status.in_([CampaignStatus.ACTIVE.value, CampaignStatus.PAUSED.value]))
            .where(Campaign.end_date < today)
            .values(status=CampaignStatus.ENDED.value)
            .execution_options(synchronize_session=False)
        )
        # a day closes once its date is over or its campaign stops running
        halted = select(Campaign.id).where(Campaign.status != CampaignStatus.ACTIVE.value)
        days = self.db.execute(
            update(MissionDay)
            .where(MissionDay.status == MissionDayStatus.ACTIVE.value)
            .where(or_(MissionDay.date < today, MissionDay.campaign_id.in_(halted)))
            .values(status=MissionDayStatus.CLOSED.value)
            .execution_options(synchronize_session=False)
        )
        return CloseResult(
            mission_days_closed=days.rowcount or 0,
            campaigns_ended=campaigns.rowcount or 0,
        )
