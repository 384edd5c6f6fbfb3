# missionledger/api/member.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from missionledger.api.deps import Actor, get_engine, pagination_params, require_member
from missionledger.api.results import (
    account_out,
    ledger_entry_out,
    participation_out,
    payout_out,
    unwrap,
)
from missionledger.api.schemas import CancelIn, ClaimIn, EvidenceIn, PayoutAccountIn, PayoutRequestIn
from missionledger.engine import MissionLedgerEngine
from missionledger.verification.intake import EvidenceItem

router = APIRouter(prefix="/v1/member", tags=["member"])


# -------------------------------------------------------------------
# Missions
# -------------------------------------------------------------------
@router.post("/campaigns/{campaign_id}/claim")
def claim_mission(
    campaign_id: str,
    body: ClaimIn,
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.claim(member_id=actor.id, campaign_id=campaign_id, idempotency_key=body.idempotency_key)
    return participation_out(unwrap(out), replayed=out.replayed)


@router.post("/participations/{participation_id}/evidence")
def submit_evidence(
    participation_id: str,
    body: EvidenceIn,
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    items = [
        EvidenceItem(file_ref=i.file_ref, mime=i.mime, type=i.type, metadata=i.metadata)
        for i in body.items
    ]
    out = engine.submit_evidence(
        participation_id=participation_id,
        member_id=actor.id,
        items=items,
        proof_text=body.proof_text,
    )
    return participation_out(unwrap(out), replayed=out.replayed)


@router.post("/participations/{participation_id}/cancel")
def cancel_participation(
    participation_id: str,
    body: CancelIn | None = None,
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.cancel(
        participation_id=participation_id,
        actor_id=actor.id,
        by_member=True,
        reason=body.reason if body else None,
    )
    return participation_out(unwrap(out), replayed=out.replayed)


# -------------------------------------------------------------------
# Balance + ledger
# -------------------------------------------------------------------
@router.get("/balance")
def get_balance(
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    balance = engine.balance(actor.id)
    available = engine.available_balance(actor.id)
    return {
        "member_id": actor.id,
        "balance": balance,
        "reserved": balance - available,
        "available": available,
    }


@router.get("/ledger")
def list_ledger(
    page: dict = Depends(pagination_params),
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    rows = engine.ledger_entries(actor.id, limit=page["limit"], offset=page["offset"])
    return {
        "count": len(rows),
        "items": [ledger_entry_out(e) for e in rows],
    }


# -------------------------------------------------------------------
# Payouts
# -------------------------------------------------------------------
@router.post("/payout-accounts")
def register_payout_account(
    body: PayoutAccountIn,
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.register_account(
        member_id=actor.id,
        bank_name=body.bank_name,
        account_number=body.account_number,
        account_holder_name=body.account_holder_name,
    )
    return account_out(unwrap(out))


@router.post("/payout-accounts/{account_id}/primary")
def set_primary_payout_account(
    account_id: str,
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    return account_out(unwrap(engine.set_primary(member_id=actor.id, account_id=account_id)))


@router.post("/payouts")
def request_payout(
    body: PayoutRequestIn,
    actor: Actor = Depends(require_member),
    engine: MissionLedgerEngine = Depends(get_engine),
):
    out = engine.request_payout(
        member_id=actor.id,
        account_id=body.account_id,
        amount=body.amount,
        idempotency_key=body.idempotency_key,
    )
    return payout_out(unwrap(out), replayed=out.replayed)
