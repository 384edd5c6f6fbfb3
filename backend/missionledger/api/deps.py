from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from missionledger.core.config import settings
from missionledger.core.security import verify_shared_secret
from missionledger.db.session import get_db
from missionledger.engine import MissionLedgerEngine, engine_for

MEMBER = "member"
STAFF = "staff"


@dataclass(frozen=True)
class Actor:
    id: str
    role: str


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    """
    Caller identity is set by the upstream gateway; this service trusts it.
    """
    actor_id = (x_actor_id or "").strip()
    role = (x_actor_role or MEMBER).strip().lower()
    if not actor_id:
        raise HTTPException(status_code=401, detail="actor_required")
    if role not in (MEMBER, STAFF):
        raise HTTPException(status_code=403, detail="unknown_role")
    return Actor(id=actor_id, role=role)


def require_member(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != MEMBER:
        raise HTTPException(status_code=403, detail="member_only")
    return actor


def require_staff(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != STAFF:
        raise HTTPException(status_code=403, detail="staff_only")
    return actor


def require_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    """
    Guard for scheduler-triggered endpoints.
    - Skips in development when CRON_SECRET is not configured
    - Otherwise the X-Cron-Secret header must match
    """
    if not settings.cron_secret:
        if settings.app_env == "development":
            return
        raise HTTPException(status_code=503, detail="cron_secret_not_configured")
    if not verify_shared_secret(x_cron_secret, settings.cron_secret):
        raise HTTPException(status_code=401, detail="invalid_cron_secret")


def get_engine(db: Session = Depends(get_db)) -> MissionLedgerEngine:
    return engine_for(db)


def pagination_params(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0, le=10_000),
):
    return {"limit": limit, "offset": offset}
