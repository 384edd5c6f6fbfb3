from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import NOW, TODAY, make_mission
from missionledger.engine import MissionLedgerEngine
from missionledger.missions.models import Campaign, CampaignStatus, MissionDay, MissionDayStatus
from missionledger.missions.quota import QuotaAllocator, QuotaDecision
from missionledger.participation.models import Participation
from missionledger.policy.provider import StaticPolicy


def _concurrent_claims(session_factory, campaign_id, n):
    def claim(i):
        session = session_factory()
        try:
            out = MissionLedgerEngine(session, policy=StaticPolicy()).claim(
                member_id=f"member-{i}",
                campaign_id=campaign_id,
                idempotency_key=f"key-{i}",
                now=NOW,
            )
            return out.ok, out.code
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        return list(pool.map(claim, range(n)))


@pytest.mark.parametrize("quota,claimers", [(3, 10), (5, 5), (1, 2)])
def test_concurrent_claims_never_oversell(db, session_factory, quota, claimers):
    campaign_id, day_id = make_mission(db, quota=quota)

    results = _concurrent_claims(session_factory, campaign_id, claimers)

    granted = [r for r in results if r[0]]
    exhausted = [r for r in results if not r[0]]
    assert len(granted) == min(claimers, quota)
    assert all(code == "quota_exhausted" for _, code in exhausted)

    db.expire_all()
    day = db.get(MissionDay, day_id)
    assert day.quota_remaining == quota - min(claimers, quota)
    assert db.query(Participation).filter(Participation.mission_day_id == day_id).count() == len(granted)


def test_try_claim_stops_at_zero(db):
    _, day_id = make_mission(db, quota=1)
    quota = QuotaAllocator(db)

    assert quota.try_claim(day_id) is QuotaDecision.GRANTED
    assert quota.try_claim(day_id) is QuotaDecision.EXHAUSTED
    db.commit()
    assert quota.remaining(day_id) == 0


def test_closed_mission_day_is_exhausted(db):
    _, day_id = make_mission(db, quota=3)
    db.get(MissionDay, day_id).status = MissionDayStatus.CLOSED.value
    db.commit()

    assert QuotaAllocator(db).try_claim(day_id) is QuotaDecision.EXHAUSTED


def test_reset_quota_keeps_consumed_slots(db):
    _, day_id = make_mission(db, quota=5)
    quota = QuotaAllocator(db)
    for _ in range(3):
        quota.try_claim(day_id)
    db.commit()

    day = quota.reset_quota(day_id, quota_total=10)
    db.commit()
    assert (day.quota_total, day.quota_remaining) == (10, 7)

    # shrinking below what was consumed clamps at zero
    day = quota.reset_quota(day_id, quota_total=2)
    db.commit()
    assert (day.quota_total, day.quota_remaining) == (2, 0)


def test_reset_quota_unknown_day(db):
    assert QuotaAllocator(db).reset_quota("missing", quota_total=3) is None


def test_reset_quota_through_engine_is_audited(db, ledger_engine):
    _, day_id = make_mission(db, quota=1)

    out = ledger_engine.reset_quota(mission_day_id=day_id, quota_total=4, actor_id="staff-1")

    assert out.ok
    assert out.value.quota_remaining == 4
    assert ledger_engine.reset_quota(mission_day_id=day_id, quota_total=-1, actor_id="staff-1").code == "quota_total_negative"
    assert ledger_engine.reset_quota(mission_day_id="missing", quota_total=1, actor_id="staff-1").code == "mission_day_not_found"


def test_find_open_mission_day_respects_campaign_window(db):
    campaign_id, day_id = make_mission(db)
    quota = QuotaAllocator(db)

    day, campaign = quota.find_open_mission_day(campaign_id=campaign_id, today=TODAY)
    assert day.id == day_id
    assert campaign.id == campaign_id

    assert quota.find_open_mission_day(campaign_id=campaign_id, today=TODAY + timedelta(days=1)) is None

    db.get(Campaign, campaign_id).status = CampaignStatus.PAUSED.value
    db.commit()
    assert quota.find_open_mission_day(campaign_id=campaign_id, today=TODAY) is None


def test_close_elapsed_days_and_campaigns(db):
    campaign_id, day_id = make_mission(db)
    quota = QuotaAllocator(db)

    res = quota.close_elapsed_days(today=TODAY)
    db.commit()
    assert (res.mission_days_closed, res.campaigns_ended) == (0, 0)

    res = quota.close_elapsed_days(today=TODAY + timedelta(days=2))
    db.commit()
    assert (res.mission_days_closed, res.campaigns_ended) == (1, 1)

    db.expire_all()
    assert db.get(MissionDay, day_id).status == MissionDayStatus.CLOSED.value
    assert db.get(Campaign, campaign_id).status == CampaignStatus.ENDED.value


def test_concurrent_retries_of_one_claim_share_the_participation(db, session_factory):
    campaign_id, day_id = make_mission(db, quota=1)

    def claim(_):
        session = session_factory()
        try:
            out = MissionLedgerEngine(session, policy=StaticPolicy()).claim(
                member_id="m1", campaign_id=campaign_id, idempotency_key="same", now=NOW
            )
            return out.ok, out.value.id if out.ok else out.code
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(claim, range(6)))

    assert all(ok for ok, _ in results), results
    assert len({pid for _, pid in results}) == 1
    db.expire_all()
    assert db.query(Participation).count() == 1
    assert db.get(MissionDay, day_id).quota_remaining == 0


def test_campaign_rejects_unknown_mission_type(db):
    with pytest.raises(IntegrityError):
        make_mission(db, mission_type="POST")
    db.rollback()
    assert db.query(Campaign).count() == 0


def test_close_elapsed_days_closes_days_of_paused_campaign(db):
    paused_id, paused_day = make_mission(db)
    _, running_day = make_mission(db)
    db.get(Campaign, paused_id).status = CampaignStatus.PAUSED.value
    db.commit()

    res = QuotaAllocator(db).close_elapsed_days(today=TODAY)
    db.commit()

    assert (res.mission_days_closed, res.campaigns_ended) == (1, 0)
    db.expire_all()
    assert db.get(MissionDay, paused_day).status == MissionDayStatus.CLOSED.value
    assert db.get(MissionDay, running_day).status == MissionDayStatus.ACTIVE.value
    assert db.get(Campaign, paused_id).status == CampaignStatus.PAUSED.value
