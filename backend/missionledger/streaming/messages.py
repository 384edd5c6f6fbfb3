# missionledger/streaming/messages.py
from __future__ import annotations

from typing import Any, Dict

from missionledger.db.base import new_id, utcnow

EVENT_SCHEMA_VERSION = "v1"


def build_domain_event(*, kind: str, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Canonical envelope pushed to the internal bus.
    Consumers should not need the DB to parse it.
    """
    return {
        "event_id": new_id(),
        "kind": kind,  # e.g. participation.decided, payout.settled
        "key": key,
        "schema_version": EVENT_SCHEMA_VERSION,
        "occurred_at": utcnow().isoformat(),
        "data": data,
    }


def participation_event_data(p) -> Dict[str, Any]:
    return {
        "participation_id": p.id,
        "mission_day_id": p.mission_day_id,
        "member_id": p.member_id,
        "status": p.status,
        "failure_reason": p.failure_reason,
    }


def payout_event_data(r) -> Dict[str, Any]:
    return {
        "payout_request_id": r.id,
        "member_id": r.member_id,
        "amount": r.amount,
        "status": r.status,
        "failure_reason": r.failure_reason,
    }
