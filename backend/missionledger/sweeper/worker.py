# missionledger/sweeper/worker.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from missionledger.core.config import settings
from missionledger.db.base import today_utc, utcnow
from missionledger.ledger.repository import LedgerRepository
from missionledger.missions.quota import QuotaAllocator
from missionledger.participation.repository import ParticipationRepository
from missionledger.streaming.producer import publish_domain_event

log = logging.getLogger("missionledger.sweeper")


@dataclass(frozen=True)
class SweepResult:
    expired: int
    mission_days_closed: int
    campaigns_ended: int


class ExpirySweeper:
    """
    Forces overdue IN_PROGRESS participations to EXPIRED.

    One conditional UPDATE (status + deadline in the WHERE clause), so
    overlapping sweeps and a racing submission cannot both win. Consumed
    quota slots are not handed back.
    """

    def __init__(self, db: Session):
        self.db = db
        self.participations = ParticipationRepository(db)
        self.quota = QuotaAllocator(db)
        self.ledger = LedgerRepository(db)

    def force_expire(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        try:
            expired = self.participations.expire_overdue(now=now)
            if expired:
                self.ledger.audit(
                    actor_type="system",
                    actor_id=None,
                    action="SWEEP_EXPIRE_PARTICIPATIONS",
                    target_type="Participation",
                    payload={"expired": expired, "now": now.isoformat()},
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if expired:
            log.info("expired participations=%d", expired)
            publish_domain_event("participations.expired", key="sweeper", data={"expired": expired, "now": now.isoformat()})
        return expired

    def close_elapsed_days(self, now: Optional[datetime] = None):
        today = today_utc(now)
        try:
            res = self.quota.close_elapsed_days(today=today)
            if res.mission_days_closed or res.campaigns_ended:
                self.ledger.audit(
                    actor_type="system",
                    actor_id=None,
                    action="SWEEP_CLOSE_MISSION_DAYS",
                    target_type="MissionDay",
                    payload={
                        "today": today.isoformat(),
                        "mission_days_closed": res.mission_days_closed,
                        "campaigns_ended": res.campaigns_ended,
                    },
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return res

    def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        expired = self.force_expire(now)
        closed = self.close_elapsed_days(now)
        return SweepResult(
            expired=expired,
            mission_days_closed=closed.mission_days_closed,
            campaigns_ended=closed.campaigns_ended,
        )


def run_once() -> SweepResult:
    from missionledger.db.session import SessionLocal

    db = SessionLocal()
    try:
        return ExpirySweeper(db).run_once()
    finally:
        db.close()


def main():
    import argparse

    p = argparse.ArgumentParser()
    p.add_argument("--loop", action="store_true")
    p.add_argument("--sleep", type=float, default=settings.sweep_interval_sec)
    args = p.parse_args()

    logging.basicConfig(level=settings.log_level)

    if not args.loop:
        res = run_once()
        print(
            f"sweeper expired={res.expired} "
            f"mission_days_closed={res.mission_days_closed} campaigns_ended={res.campaigns_ended}"
        )
        return

    while True:
        try:
            res = run_once()
            if res.expired or res.mission_days_closed:
                print(f"sweeper expired={res.expired} mission_days_closed={res.mission_days_closed}")
        except Exception as e:
            log.exception("sweeper error: %s", e)
        time.sleep(args.sleep)


if __name__ == "__main__":
    main()
