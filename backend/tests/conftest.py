import os
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from missionledger.db.base import Base, new_id
from missionledger.db import registry as _  # noqa: F401  # register models
from missionledger.db.session import build_engine
from missionledger.engine import MissionLedgerEngine
from missionledger.missions.models import Campaign, MissionDay, MissionType
from missionledger.policy.provider import StaticPolicy

TEST_DB_URL_ENV = "TEST_DATABASE_URL"

# fixed clock: mission days are created for this UTC date
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
REWARD = 5000


@pytest.fixture()
def session_factory(tmp_path):
    url = os.environ.get(TEST_DB_URL_ENV) or f"sqlite:///{tmp_path / 'missionledger.db'}"
    engine = build_engine(url)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def policy():
    return StaticPolicy(min_payout=1000)


@pytest.fixture()
def ledger_engine(db, policy):
    return MissionLedgerEngine(db, policy=policy)


def make_mission(
    db,
    *,
    quota: int = 5,
    reward: int = REWARD,
    mission_type: str = MissionType.TRAFFIC.value,
    day: date = TODAY,
):
    """Campaign running around `day` with one ACTIVE mission day on `day`."""
    campaign = Campaign(
        id=new_id(),
        advertiser_id="adv-1",
        title="test campaign",
        mission_type=mission_type,
        reward_amount=reward,
        start_date=day - timedelta(days=1),
        end_date=day + timedelta(days=1),
    )
    db.add(campaign)
    db.flush()
    mission_day = MissionDay(
        id=new_id(),
        campaign_id=campaign.id,
        date=day,
        quota_total=quota,
        quota_remaining=quota,
    )
    db.add(mission_day)
    db.commit()
    return campaign.id, mission_day.id


@pytest.fixture()
def mission(db):
    return make_mission(db)


def claim_and_submit(engine, campaign_id, member_id, *, key=None, now=NOW):
    """Claim a slot and submit one piece of evidence; returns the participation id."""
    from missionledger.verification.intake import EvidenceItem

    claimed = engine.claim(
        member_id=member_id,
        campaign_id=campaign_id,
        idempotency_key=key or f"claim-{member_id}-{campaign_id}",
        now=now,
    )
    assert claimed.ok, claimed
    participation_id = claimed.value.id
    submitted = engine.submit_evidence(
        participation_id=participation_id,
        member_id=member_id,
        items=[EvidenceItem(file_ref="blob://proof/1.jpg", mime="image/jpeg")],
        now=now + timedelta(seconds=30),
    )
    assert submitted.ok, submitted
    return participation_id


def first_read_misses(fn):
    """Wrap a lookup so its first call sees nothing, as if it ran before a concurrent commit."""
    calls = []

    def lookup(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return None
        return fn(*args, **kwargs)

    return lookup
