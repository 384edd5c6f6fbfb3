from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException

from missionledger.outcomes import FailureKind, Outcome
from missionledger.participation.states import is_terminal

STATUS_BY_KIND = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.EXHAUSTION: 409,
    FailureKind.INVALID_TRANSITION: 409,
    FailureKind.POLICY_VIOLATION: 422,
}


def unwrap(outcome: Outcome):
    """Return the value of a successful outcome, raise the mapped HTTP error otherwise."""
    if outcome.ok:
        return outcome.value
    raise HTTPException(
        status_code=STATUS_BY_KIND[outcome.kind],
        detail={"code": outcome.code, **outcome.detail},
    )


def _iso(dt):
    return dt.isoformat() if dt is not None else None


def participation_out(p, *, replayed: bool = False) -> Dict[str, Any]:
    return {
        "participation_id": p.id,
        "mission_day_id": p.mission_day_id,
        "member_id": p.member_id,
        "status": p.status,
        "terminal": is_terminal(p.status),
        "expires_at": _iso(p.expires_at),
        "submitted_at": _iso(p.submitted_at),
        "decided_at": _iso(p.decided_at),
        "failure_reason": p.failure_reason,
        "replayed": replayed,
    }


def payout_out(r, *, replayed: bool = False) -> Dict[str, Any]:
    return {
        "payout_request_id": r.id,
        "member_id": r.member_id,
        "payout_account_id": r.payout_account_id,
        "amount": r.amount,
        "status": r.status,
        "failure_reason": r.failure_reason,
        "created_at": _iso(r.created_at),
        "decided_at": _iso(r.decided_at),
        "replayed": replayed,
    }


def account_out(a) -> Dict[str, Any]:
    return {
        "payout_account_id": a.id,
        "bank_name": a.bank_name,
        "account_number_masked": a.account_number_masked,
        "account_holder_name": a.account_holder_name,
        "is_primary": a.is_primary,
    }


def ledger_entry_out(e) -> Dict[str, Any]:
    return {
        "entry_id": e.id,
        "amount": e.amount,
        "reason": e.reason,
        "ref_id": e.ref_id,
        "created_at": _iso(e.created_at),
    }
