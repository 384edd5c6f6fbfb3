import uuid
from datetime import date, datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_utc(now: datetime | None = None) -> date:
    # mission days roll over on a fixed UTC boundary
    return as_utc(now or utcnow()).date()


def as_utc(dt: datetime) -> datetime:
    """
    SQLite hands back naive datetimes even for timezone-aware columns.
    Everything is stored in UTC, so a naive value is UTC by construction.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())
