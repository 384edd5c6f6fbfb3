from datetime import timedelta

import pytest

from conftest import NOW, REWARD, claim_and_submit, make_mission
from missionledger.engine import MissionLedgerEngine
from missionledger.ledger.models import CreditLedgerEntry, LedgerReason
from missionledger.outcomes import FailureKind
from missionledger.participation.models import VerificationEvidence, VerificationResult
from missionledger.participation.states import ParticipationStatus
from missionledger.verification.auto_check import AutoVerdict, ManualReviewCheck
from missionledger.verification.intake import MAX_EVIDENCE_ITEMS, EvidenceItem, evidence_type_for

S = ParticipationStatus


class _FixedCheck:
    def __init__(self, verdict):
        self.verdict = verdict
        self.seen = []

    def evaluate(self, participation, evidence):
        self.seen.append((participation.id, len(evidence)))
        return self.verdict


def _claim(engine, campaign_id, member_id="m1"):
    return engine.claim(
        member_id=member_id, campaign_id=campaign_id, idempotency_key=f"k-{member_id}", now=NOW
    ).value


def _rewards(db, participation_id):
    return (
        db.query(CreditLedgerEntry)
        .filter(CreditLedgerEntry.reason == LedgerReason.MISSION_REWARD.value)
        .filter(CreditLedgerEntry.ref_id == participation_id)
        .all()
    )


def test_evidence_type_from_mime_or_explicit_type():
    assert evidence_type_for(EvidenceItem(file_ref="a", mime="video/mp4")) == "VIDEO"
    assert evidence_type_for(EvidenceItem(file_ref="a", mime="image/png")) == "IMAGE"
    assert evidence_type_for(EvidenceItem(file_ref="a", mime="application/pdf")) == "OTHER"
    assert evidence_type_for(EvidenceItem(file_ref="a", mime="image/png", type="other")) == "OTHER"


def test_submit_moves_to_pending_review(db, ledger_engine, mission):
    campaign_id, _ = mission
    p = _claim(ledger_engine, campaign_id)

    out = ledger_engine.submit_evidence(
        participation_id=p.id,
        member_id="m1",
        items=[
            EvidenceItem(file_ref="blob://a.jpg", mime="image/jpeg"),
            EvidenceItem(file_ref="blob://b.mp4", mime="video/mp4", metadata={"duration": 12}),
        ],
        proof_text="visited the store",
        now=NOW + timedelta(minutes=1),
    )

    assert out.ok
    assert out.value.status == S.PENDING_REVIEW.value
    assert out.value.proof_text == "visited the store"
    rows = db.query(VerificationEvidence).filter(VerificationEvidence.participation_id == p.id).all()
    assert sorted(r.type for r in rows) == ["IMAGE", "VIDEO"]
    assert all(r.metadata_json.get("mime") for r in rows)


@pytest.mark.parametrize(
    "items,proof,code",
    [
        ([], None, "evidence_required"),
        ([EvidenceItem(file_ref="x")] * (MAX_EVIDENCE_ITEMS + 1), None, "too_many_evidence_items"),
        ([EvidenceItem(file_ref="   ")], None, "file_ref_required"),
        ([EvidenceItem(file_ref="x", type="AUDIO")], None, "unknown_evidence_type"),
        ([EvidenceItem(file_ref="x")], "y" * 2001, "proof_text_too_long"),
    ],
)
def test_submit_rejects_bad_input(db, ledger_engine, mission, items, proof, code):
    campaign_id, _ = mission
    p = _claim(ledger_engine, campaign_id)

    out = ledger_engine.submit_evidence(
        participation_id=p.id, member_id="m1", items=items, proof_text=proof, now=NOW + timedelta(minutes=1)
    )

    assert out.kind is FailureKind.POLICY_VIOLATION
    assert out.code == code
    db.expire_all()
    assert ledger_engine.participations.repo.get(p.id).status == S.IN_PROGRESS.value


def test_submit_for_someone_elses_participation(ledger_engine, mission):
    campaign_id, _ = mission
    p = _claim(ledger_engine, campaign_id)

    out = ledger_engine.submit_evidence(
        participation_id=p.id, member_id="intruder", items=[EvidenceItem(file_ref="x")], now=NOW
    )

    assert out.kind is FailureKind.NOT_FOUND


def test_submit_after_deadline_before_sweep(ledger_engine, mission):
    campaign_id, _ = mission
    p = _claim(ledger_engine, campaign_id)

    out = ledger_engine.submit_evidence(
        participation_id=p.id, member_id="m1", items=[EvidenceItem(file_ref="x")], now=NOW + timedelta(minutes=3)
    )

    assert out.kind is FailureKind.POLICY_VIOLATION
    assert out.code == "deadline_passed"


def test_second_submission_is_an_invalid_transition(ledger_engine, mission):
    campaign_id, _ = mission
    participation_id = claim_and_submit(ledger_engine, campaign_id, "m1")

    out = ledger_engine.submit_evidence(
        participation_id=participation_id, member_id="m1", items=[EvidenceItem(file_ref="x")], now=NOW
    )

    assert out.kind is FailureKind.INVALID_TRANSITION


def test_approve_posts_exactly_one_reward(db, ledger_engine, mission):
    campaign_id, _ = mission
    participation_id = claim_and_submit(ledger_engine, campaign_id, "m1")

    out = ledger_engine.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-1")
    assert out.ok and not out.replayed
    assert out.value.status == S.APPROVED.value

    again = ledger_engine.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-2")
    assert again.ok and again.replayed

    rewards = _rewards(db, participation_id)
    assert len(rewards) == 1
    assert rewards[0].amount == REWARD
    assert ledger_engine.balance("m1") == REWARD

    result = db.query(VerificationResult).filter(VerificationResult.participation_id == participation_id).one()
    assert (result.decision, result.decided_by, result.auto_outcome) == ("APPROVE", "staff-1", None)


def test_decision_is_immutable(db, ledger_engine, mission):
    campaign_id, _ = mission
    participation_id = claim_and_submit(ledger_engine, campaign_id, "m1")
    ledger_engine.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-1")

    out = ledger_engine.decide(
        participation_id=participation_id, decision="REJECT", decider_id="staff-2", reason="changed my mind"
    )

    assert out.kind is FailureKind.INVALID_TRANSITION
    assert out.code == "already_decided"
    assert len(_rewards(db, participation_id)) == 1


def test_reject_requires_reason_and_posts_nothing(db, ledger_engine, mission):
    campaign_id, _ = mission
    participation_id = claim_and_submit(ledger_engine, campaign_id, "m1")

    missing = ledger_engine.decide(participation_id=participation_id, decision="REJECT", decider_id="staff-1")
    assert missing.code == "reason_required"

    out = ledger_engine.decide(
        participation_id=participation_id, decision="REJECT", decider_id="staff-1", reason="blurry photo"
    )
    assert out.ok
    assert out.value.status == S.REJECTED.value
    assert out.value.failure_reason == "blurry photo"
    assert _rewards(db, participation_id) == []
    assert ledger_engine.balance("m1") == 0


def test_decide_before_submission(ledger_engine, mission):
    campaign_id, _ = mission
    p = _claim(ledger_engine, campaign_id)

    out = ledger_engine.decide(participation_id=p.id, decision="APPROVE", decider_id="staff-1")

    assert out.kind is FailureKind.INVALID_TRANSITION
    assert ledger_engine.decide(participation_id="missing", decision="APPROVE").kind is FailureKind.NOT_FOUND


def test_zero_reward_campaign_approves_without_entry(db, ledger_engine):
    campaign_id, _ = make_mission(db, reward=0)
    participation_id = claim_and_submit(ledger_engine, campaign_id, "m1")

    out = ledger_engine.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-1")

    assert out.ok
    assert _rewards(db, participation_id) == []


def test_inconclusive_check_routes_to_manual_review(db, policy, mission):
    campaign_id, _ = mission
    engine = MissionLedgerEngine(db, policy=policy, auto_check=ManualReviewCheck())

    participation_id = claim_and_submit(engine, campaign_id, "m1")
    assert engine.participations.repo.get(participation_id).status == S.MANUAL_REVIEW.value

    out = engine.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-1")
    assert out.value.status == S.APPROVED.value
    result = db.query(VerificationResult).filter(VerificationResult.participation_id == participation_id).one()
    assert result.auto_outcome == AutoVerdict.INCONCLUSIVE.value


def test_automatic_approval_uses_the_same_decision_path(db, policy, mission):
    campaign_id, _ = mission
    check = _FixedCheck(AutoVerdict.APPROVE)
    engine = MissionLedgerEngine(db, policy=policy, auto_check=check)

    participation_id = claim_and_submit(engine, campaign_id, "m1")

    assert check.seen == [(participation_id, 1)]
    assert engine.participations.repo.get(participation_id).status == S.APPROVED.value
    result = db.query(VerificationResult).filter(VerificationResult.participation_id == participation_id).one()
    assert result.decided_by is None
    assert result.auto_outcome == "APPROVE"
    assert len(_rewards(db, participation_id)) == 1

    # staff replaying the same verdict changes nothing
    again = engine.decide(participation_id=participation_id, decision="APPROVE", decider_id="staff-1")
    assert again.replayed
    assert len(_rewards(db, participation_id)) == 1


def test_automatic_rejection(db, policy, mission):
    campaign_id, _ = mission
    engine = MissionLedgerEngine(db, policy=policy, auto_check=_FixedCheck(AutoVerdict.REJECT))

    participation_id = claim_and_submit(engine, campaign_id, "m1")

    p = engine.participations.repo.get(participation_id)
    assert p.status == S.REJECTED.value
    assert p.failure_reason == "auto_check_rejected"
    assert engine.balance("m1") == 0
