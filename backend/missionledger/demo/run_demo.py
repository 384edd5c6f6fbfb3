from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from missionledger.db.base import Base, new_id, today_utc
from missionledger.db import registry as _  # noqa: F401  # register models
from missionledger.db.session import SessionLocal, engine
from missionledger.engine import MissionLedgerEngine
from missionledger.missions.models import Campaign, MissionDay, MissionType
from missionledger.policy.provider import StaticPolicy
from missionledger.verification.intake import EvidenceItem

REWARD = 5000


def _seed_campaign(quota: int) -> str:
    today = today_utc()
    db = SessionLocal()
    try:
        campaign = Campaign(
            id=new_id(),
            advertiser_id="advertiser-demo",
            title="Visit the demo store",
            mission_type=MissionType.TRAFFIC.value,
            reward_amount=REWARD,
            start_date=today - timedelta(days=1),
            end_date=today + timedelta(days=6),
        )
        db.add(campaign)
        db.flush()
        db.add(MissionDay(id=new_id(), campaign_id=campaign.id, date=today, quota_total=quota, quota_remaining=quota))
        db.commit()
        return campaign.id
    finally:
        db.close()


def _claim(campaign_id: str, member_id: str):
    # one session per concurrent caller
    db = SessionLocal()
    try:
        out = MissionLedgerEngine(db, policy=StaticPolicy()).claim(
            member_id=member_id,
            campaign_id=campaign_id,
            idempotency_key=f"claim-{member_id}-{campaign_id}",
        )
        return member_id, out.ok, out.code, out.value.id if out.ok else None
    finally:
        db.close()


def main():
    Base.metadata.create_all(bind=engine)
    campaign_id = _seed_campaign(quota=1)
    print(f"Campaign {campaign_id} seeded (quota=1, reward={REWARD})")

    members = [f"member-{new_id()[:8]}" for _ in range(2)]
    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda m: _claim(campaign_id, m), members))

    winner = None
    for member_id, ok, code, participation_id in results:
        print(f"claim member={member_id} ok={ok} code={code}")
        if ok:
            winner = (member_id, participation_id)
    if winner is None:
        print("No claim granted; nothing else to show")
        return
    member_id, participation_id = winner

    db = SessionLocal()
    try:
        eng = MissionLedgerEngine(db, policy=StaticPolicy())

        out = eng.submit_evidence(
            participation_id=participation_id,
            member_id=member_id,
            items=[EvidenceItem(file_ref="blob://demo/receipt.jpg", mime="image/jpeg")],
        )
        print(f"evidence submitted status={out.value.status}")

        out = eng.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-demo")
        print(f"decision status={out.value.status}")
        print(f"balance={eng.balance(member_id)} available={eng.available_balance(member_id)}")

        account = eng.register_account(
            member_id=member_id,
            bank_name="Demo Bank",
            account_number="123-456-7890",
            account_holder_name="Demo Member",
        ).value
        print(f"payout account {account.account_number_masked} primary={account.is_primary}")

        req = eng.request_payout(
            member_id=member_id,
            account_id=account.id,
            amount=REWARD,
            idempotency_key=f"payout-{participation_id}",
        )
        print(f"payout requested status={req.value.status} available={eng.available_balance(member_id)}")

        out = eng.settle(request_id=req.value.id, outcome="REJECTED", actor_id="staff-demo", reason="demo rejection")
        print(f"payout settled status={out.value.status} available={eng.available_balance(member_id)}")

        report = eng.reconcile(member_id)
        print(f"reconcile consistent={report.consistent} balance={report.balance} reserved={report.reserved}")
    finally:
        db.close()

    print("Demo complete")


if __name__ == "__main__":
    main()
