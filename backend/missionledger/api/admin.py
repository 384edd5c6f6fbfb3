# missionledger/api/admin.py
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from missionledger.api.deps import Actor, get_engine, require_staff
from missionledger.api.results import participation_out, payout_out, unwrap
from missionledger.api.schemas import CancelIn, DecisionIn, QuotaResetIn, SettleIn
from missionledger.engine import MissionLedgerEngine

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.post("/participations/{participation_id}/decision")
def decide_participation(
    participation_id: str,
    body: DecisionIn,
    actor: Actor = Depends(require_staff),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.decide(
        participation_id=participation_id,
        decision=body.decision,
        decider_id=actor.id,
        reason=body.reason,
    )
    return participation_out(unwrap(out), replayed=out.replayed)


@router.post("/participations/{participation_id}/cancel")
def cancel_participation(
    participation_id: str,
    body: CancelIn | None = None,
    actor: Actor = Depends(require_staff),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.cancel(
        participation_id=participation_id,
        actor_id=actor.id,
        by_member=False,
        reason=body.reason if body else None,
    )
    return participation_out(unwrap(out), replayed=out.replayed)


@router.post("/payouts/{request_id}/settle")
def settle_payout(
    request_id: str,
    body: SettleIn,
    actor: Actor = Depends(require_staff),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.settle(request_id=request_id, outcome=body.outcome, actor_id=actor.id, reason=body.reason)
    return payout_out(unwrap(out), replayed=out.replayed)


@router.post("/mission-days/{mission_day_id}/quota")
def reset_mission_day_quota(
    mission_day_id: str,
    body: QuotaResetIn,
    actor: Actor = Depends(require_staff),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    day = unwrap(engine.reset_quota(mission_day_id=mission_day_id, quota_total=body.quota_total, actor_id=actor.id))
    return {
        "mission_day_id": day.id,
        "campaign_id": day.campaign_id,
        "date": day.date.isoformat(),
        "quota_total": day.quota_total,
        "quota_remaining": day.quota_remaining,
        "status": day.status,
    }


@router.get("/members/{member_id}/reconcile")
def reconcile_member(
    member_id: str,
    actor: Actor = Depends(require_staff),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    report = engine.reconcile(member_id)
    return {
        "member_id": report.member_id,
        "balance": report.balance,
        "reserved": report.reserved,
        "available": report.available,
        "consistent": report.consistent,
        "discrepancies": [asdict(d) for d in report.discrepancies],
    }
