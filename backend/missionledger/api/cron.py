from fastapi import APIRouter, Depends

from missionledger.api.deps import get_engine, require_cron_secret
from missionledger.engine import MissionLedgerEngine

router = APIRouter(prefix="/v1/cron", tags=["cron"])


@router.post("/sweep", dependencies=[Depends(require_cron_secret)])
def sweep(engine: MissionLedgerEngine = Depends(get_engine)):
    # expire overdue participations, then close elapsed mission days
    res = engine.sweep()
    return {
        "ok": True,
        "expired": res.expired,
        "mission_days_closed": res.mission_days_closed,
        "campaigns_ended": res.campaigns_ended,
    }
