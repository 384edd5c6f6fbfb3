# missionledger/db/session.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from missionledger.core.config import settings


def build_engine(url: str, *, echo: bool = False):
    kwargs = {"pool_pre_ping": True, "echo": echo}
    if url.startswith("sqlite"):
        # local runs only; writers wait on the database lock instead of failing fast
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, **kwargs)


engine = build_engine(settings.database_url, echo=settings.db_echo)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
