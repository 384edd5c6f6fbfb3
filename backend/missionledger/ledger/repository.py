from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from missionledger.db.base import utcnow
from missionledger.ledger.models import AuditLog, CreditLedgerEntry, LedgerReason
from missionledger.outcomes import LedgerIntegrityError

log = logging.getLogger("missionledger.ledger")


class LedgerRepository:
    """
    Credit ledger + audit trail.

    Neither method commits: every write joins the caller's transaction so a
    status flip and its ledger entry land (or vanish) together.
    """

    def __init__(self, db: Session):
        self.db = db

    # -------------------------
    # CREDIT LEDGER (APPEND ONLY)
    # -------------------------

    def post(
        self,
        *,
        member_id: str,
        amount: int,
        reason: LedgerReason,
        ref_id: Optional[str] = None,
    ) -> CreditLedgerEntry:
        if amount == 0:
            raise ValueError("ledger amount must be non-zero")

        # 1) Explicit duplicate check: a second (reason, ref) means a caller
        #    skipped its state check, which is a bug, not a retry.
        if ref_id is not None and self.find(reason=reason, ref_id=ref_id) is not None:
            raise LedgerIntegrityError(f"duplicate ledger entry reason={reason.value} ref={ref_id}")

        entry = CreditLedgerEntry(
            member_id=member_id,
            amount=amount,
            reason=reason.value,
            ref_id=ref_id,
            created_at=utcnow(),
        )
        try:
            self.db.add(entry)
            # 2) Unique (reason, ref_id) catches the concurrent writer the check missed
            self.db.flush()
        except IntegrityError as e:
            raise LedgerIntegrityError(f"ledger insert failed reason={reason.value} ref={ref_id}: {e}") from e

        log.info("ledger post member=%s amount=%d reason=%s ref=%s", member_id, amount, reason.value, ref_id)
        return entry

    def find(self, *, reason: LedgerReason, ref_id: str) -> Optional[CreditLedgerEntry]:
        return (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.reason == reason.value)
            .filter(CreditLedgerEntry.ref_id == ref_id)
            .first()
        )

    def balance(self, member_id: str) -> int:
        total = self.db.execute(
            select(func.coalesce(func.sum(CreditLedgerEntry.amount), 0))
            .where(CreditLedgerEntry.member_id == member_id)
        ).scalar_one()
        return int(total)

    def entries(self, member_id: str, *, limit: int = 50, offset: int = 0) -> List[CreditLedgerEntry]:
        return (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.member_id == member_id)
            .order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count(self, *, reason: LedgerReason, ref_id: str) -> int:
        return (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.reason == reason.value)
            .filter(CreditLedgerEntry.ref_id == ref_id)
            .count()
        )

    # -------------------------
    # AUDIT
    # -------------------------

    def audit(
        self,
        *,
        actor_type: str,
        actor_id: Optional[str],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            payload_json=payload,
            at=utcnow(),
        )
        self.db.add(entry)
        return entry
