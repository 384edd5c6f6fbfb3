from datetime import timedelta

from conftest import NOW, claim_and_submit
from missionledger.ledger.models import AuditLog
from missionledger.missions.models import MissionDay, MissionDayStatus
from missionledger.outcomes import FailureKind
from missionledger.participation.states import ParticipationStatus
from missionledger.sweeper.worker import ExpirySweeper
from missionledger.verification.intake import EvidenceItem

S = ParticipationStatus


def test_overdue_participation_expires_and_late_submit_is_invalid(db, ledger_engine, mission):
    campaign_id, day_id = mission
    p = ledger_engine.claim(member_id="m1", campaign_id=campaign_id, idempotency_key="k1", now=NOW).value

    assert ledger_engine.force_expire(now=NOW + timedelta(minutes=2)) == 0
    assert ledger_engine.force_expire(now=NOW + timedelta(minutes=4)) == 1

    db.expire_all()
    expired = ledger_engine.participations.repo.get(p.id)
    assert expired.status == S.EXPIRED.value
    assert expired.failure_reason == "expired"

    out = ledger_engine.submit_evidence(
        participation_id=p.id, member_id="m1", items=[EvidenceItem(file_ref="x")], now=NOW + timedelta(minutes=5)
    )
    assert out.kind is FailureKind.INVALID_TRANSITION

    # expiry does not hand the slot back
    assert db.get(MissionDay, day_id).quota_remaining == 4
    assert db.query(AuditLog).filter(AuditLog.action == "SWEEP_EXPIRE_PARTICIPATIONS").count() == 1


def test_sweep_leaves_submitted_participations_alone(ledger_engine, mission):
    campaign_id, _ = mission
    participation_id = claim_and_submit(ledger_engine, campaign_id, "m1")

    assert ledger_engine.force_expire(now=NOW + timedelta(hours=1)) == 0
    assert ledger_engine.participations.repo.get(participation_id).status == S.PENDING_REVIEW.value


def test_repeated_sweeps_are_harmless(db, mission, ledger_engine):
    campaign_id, _ = mission
    ledger_engine.claim(member_id="m1", campaign_id=campaign_id, idempotency_key="k1", now=NOW)
    sweeper = ExpirySweeper(db)

    first = sweeper.run_once(now=NOW + timedelta(minutes=10))
    second = sweeper.run_once(now=NOW + timedelta(minutes=10))

    assert first.expired == 1
    assert second.expired == 0


def test_run_once_closes_elapsed_days(db, mission):
    campaign_id, day_id = mission

    res = ExpirySweeper(db).run_once(now=NOW + timedelta(days=2))

    assert res.mission_days_closed == 1
    assert res.campaigns_ended == 1
    db.expire_all()
    assert db.get(MissionDay, day_id).status == MissionDayStatus.CLOSED.value
    assert db.query(AuditLog).filter(AuditLog.action == "SWEEP_CLOSE_MISSION_DAYS").count() == 1
