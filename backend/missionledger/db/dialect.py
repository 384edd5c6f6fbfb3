from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_for(db: Session, model):
    """
    Dialect-specific INSERT so callers can use on_conflict_do_nothing().
    Postgres in production, SQLite for local runs; both speak ON CONFLICT.
    """
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"unsupported dialect for ON CONFLICT inserts: {name}")
