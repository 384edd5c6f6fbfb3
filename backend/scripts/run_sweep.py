from datetime import datetime, timezone
from missionledger.db.session import SessionLocal
from missionledger.sweeper.worker import ExpirySweeper

db = SessionLocal()

now = datetime.now(timezone.utc)

res = ExpirySweeper(db).run_once(now=now)

db.close()

print(f"expired={res.expired} mission_days_closed={res.mission_days_closed} campaigns_ended={res.campaigns_ended}")
