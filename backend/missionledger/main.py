import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from missionledger.core.config import settings
from missionledger.db.base import Base
from missionledger.db import registry as _  # noqa: F401  # register models
from missionledger.db.session import engine
from missionledger.outcomes import IntegrityViolation
from missionledger.streaming.producer import close_producer
from missionledger.api.member import router as member_router
from missionledger.api.admin import router as admin_router
from missionledger.api.cron import router as cron_router

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("missionledger.api")

app = FastAPI(title="Mission Ledger")
# Include routers
app.include_router(member_router)
app.include_router(admin_router)
app.include_router(cron_router)


@app.exception_handler(IntegrityViolation)
def integrity_violation_handler(request: Request, exc: IntegrityViolation):
    # the transaction was already rolled back by the service
    log.error("integrity violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": {"code": "integrity_violation"}})


@app.on_event("startup")
def startup():
    # MVP bootstrap: create tables automatically
    Base.metadata.create_all(bind=engine)


@app.on_event("shutdown")
def shutdown():
    close_producer()


@app.get("/health")
def health():
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok"}
