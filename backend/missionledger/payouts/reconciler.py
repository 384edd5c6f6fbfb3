# missionledger/payouts/reconciler.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.orm import Session

from missionledger.core.security import mask_account_number
from missionledger.db.base import new_id, utcnow
from missionledger.db.dialect import insert_for
from missionledger.ledger.models import CreditLedgerEntry, LedgerReason
from missionledger.ledger.repository import LedgerRepository
from missionledger.outcomes import FailureKind, IntegrityViolation, Outcome
from missionledger.payouts.models import (
    RESERVING,
    PayoutAccount,
    PayoutRequest,
    PayoutStatus,
)
from missionledger.policy.provider import Policy
from missionledger.streaming.messages import payout_event_data
from missionledger.streaming.producer import publish_domain_event

log = logging.getLogger("missionledger.payouts")

P = PayoutStatus

# outcome -> statuses it may be reached from
SETTLE_SOURCES = {
    P.APPROVED: (P.REQUESTED,),
    P.PAID: (P.REQUESTED, P.APPROVED),
    P.REJECTED: (P.REQUESTED, P.APPROVED),
}


class _LostRace(Exception):
    """Another writer moved the request first."""


class SettleOutcome(str, enum.Enum):
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class Discrepancy:
    code: str
    payout_request_id: Optional[str] = None
    detail: str = ""


@dataclass(frozen=True)
class ReconciliationReport:
    member_id: str
    balance: int
    reserved: int
    available: int
    discrepancies: List[Discrepancy] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.discrepancies


class PayoutReconciler:
    """
    Withdrawable balance = ledger balance - funds reserved by open requests.

    Reservation is a query over REQUESTED/APPROVED requests, never a stored
    number, so the ledger stays append-only. A request whose PAYOUT debit is
    already posted no longer counts as reserved (the debit already lowered
    the balance).
    """

    def __init__(self, db: Session, *, policy: Policy, debit_on_approval: bool = False):
        self.db = db
        self.policy = policy
        self.ledger = LedgerRepository(db)
        self.debit_on_approval = debit_on_approval

    # -------------------------
    # BALANCES
    # -------------------------

    def balance(self, member_id: str) -> int:
        return self.ledger.balance(member_id)

    def reserved(self, member_id: str, *, exclude_request_id: Optional[str] = None) -> int:
        debited = exists().where(
            and_(
                CreditLedgerEntry.reason == LedgerReason.PAYOUT.value,
                CreditLedgerEntry.ref_id == PayoutRequest.id,
            )
        )
        q = (
            select(func.coalesce(func.sum(PayoutRequest.amount), 0))
            .where(PayoutRequest.member_id == member_id)
            .where(PayoutRequest.status.in_(RESERVING))
            .where(~debited)
        )
        if exclude_request_id is not None:
            q = q.where(PayoutRequest.id != exclude_request_id)
        return int(self.db.execute(q).scalar_one())

    def available_balance(self, member_id: str) -> int:
        return self.balance(member_id) - self.reserved(member_id)

    # -------------------------
    # ACCOUNTS
    # -------------------------

    def register_account(
        self,
        *,
        member_id: str,
        bank_name: str,
        account_number: str,
        account_holder_name: Optional[str] = None,
    ) -> Outcome[PayoutAccount]:
        bank_name = (bank_name or "").strip()
        if not bank_name:
            return Outcome.violation("bank_name_required")
        if len((account_number or "").strip()) < 4:
            return Outcome.violation("account_number_too_short")

        account = PayoutAccount(
            id=new_id(),
            member_id=member_id,
            bank_name=bank_name,
            account_number_masked=mask_account_number(account_number),
            account_holder_name=(account_holder_name or "").strip() or None,
            is_primary=False,
            created_at=utcnow(),
        )
        try:
            self.db.add(account)
            self.db.flush()
            self._make_primary(member_id=member_id, account_id=account.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(account)
        return Outcome.success(account)

    def set_primary(self, *, member_id: str, account_id: str) -> Outcome[PayoutAccount]:
        account = self.db.get(PayoutAccount, account_id)
        if account is None or account.member_id != member_id:
            return Outcome.not_found("payout_account_not_found")
        if account.is_primary:
            return Outcome.success(account, replayed=True)
        try:
            self._make_primary(member_id=member_id, account_id=account_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(account)
        return Outcome.success(account)

    def _make_primary(self, *, member_id: str, account_id: str) -> None:
        # clear every flag first; exactly one primary afterwards
        self.db.execute(
            update(PayoutAccount)
            .where(PayoutAccount.member_id == member_id)
            .values(is_primary=False)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            update(PayoutAccount)
            .where(PayoutAccount.id == account_id)
            .values(is_primary=True)
            .execution_options(synchronize_session=False)
        )
        self.ledger.audit(
            actor_type="member",
            actor_id=member_id,
            action="PAYOUT_ACCOUNT_SET_PRIMARY",
            target_type="PayoutAccount",
            target_id=account_id,
        )

    # -------------------------
    # REQUEST
    # -------------------------

    def request_payout(
        self,
        *,
        member_id: str,
        account_id: str,
        amount: int,
        idempotency_key: str,
        now: Optional[datetime] = None,
    ) -> Outcome[PayoutRequest]:
        now = now or utcnow()

        # 1) retried request: return the original reservation
        existing = self._by_key(idempotency_key)
        if existing:
            return self._replay(existing, member_id)

        # 2) input-shaped checks
        account = self.db.get(PayoutAccount, account_id)
        if account is None or account.member_id != member_id:
            return Outcome.not_found("payout_account_not_found")
        if not account.is_primary:
            return Outcome.violation("payout_account_not_primary")

        if amount <= 0:
            return Outcome.violation("amount_must_be_positive")
        minimum = self.policy.min_payout_amount()
        if amount < minimum:
            return Outcome.violation("below_minimum", minimum=minimum)

        request_id = new_id()
        try:
            # 3) serialize this member's requests on their account row
            self._lock_account(account_id, now=now)

            # the original may have committed while we waited on the lock
            existing = self._by_key(idempotency_key)
            if existing:
                self.db.rollback()
                return self._replay(existing, member_id)

            available = self.available_balance(member_id)
            if amount > available:
                self.db.rollback()
                return Outcome.violation("insufficient_balance", available=available)

            stmt = insert_for(self.db, PayoutRequest).values(
                id=request_id,
                member_id=member_id,
                payout_account_id=account_id,
                amount=amount,
                status=P.REQUESTED.value,
                idempotency_key=idempotency_key,
                created_at=now,
            ).on_conflict_do_nothing(
                index_elements=["idempotency_key"]
            )
            inserted = bool(self.db.execute(stmt).rowcount)
            if not inserted:
                self.db.rollback()
                winner = self._by_key(idempotency_key)
                if winner is None:
                    raise IntegrityViolation(f"idempotency key conflict without a row key={idempotency_key}")
                return self._replay(winner, member_id)

            self.ledger.audit(
                actor_type="member",
                actor_id=member_id,
                action="PAYOUT_REQUESTED",
                target_type="PayoutRequest",
                target_id=request_id,
                payload={"amount": amount},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        request = self.db.get(PayoutRequest, request_id)
        log.info("payout requested member=%s amount=%d request=%s", member_id, amount, request_id)
        publish_domain_event("payout.requested", key=request_id, data=payout_event_data(request))
        return Outcome.success(request)

    def _by_key(self, idempotency_key: str) -> Optional[PayoutRequest]:
        return (
            self.db.query(PayoutRequest)
            .filter(PayoutRequest.idempotency_key == idempotency_key)
            .first()
        )

    def _replay(self, existing: PayoutRequest, member_id: str) -> Outcome[PayoutRequest]:
        if existing.member_id != member_id:
            return Outcome.violation("idempotency_key_reused")
        return Outcome.success(existing, replayed=True)

    # -------------------------
    # SETTLE
    # -------------------------

    def settle(
        self,
        *,
        request_id: str,
        outcome: SettleOutcome | str,
        actor_id: Optional[str],
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[PayoutRequest]:
        now = now or utcnow()
        target = P(SettleOutcome(outcome).value)
        reason = (reason or "").strip() or None

        req = self.db.get(PayoutRequest, request_id)
        if req is None:
            return Outcome.not_found("payout_request_not_found")
        if req.status == target.value:
            return Outcome.success(req, replayed=True)
        if P(req.status) not in SETTLE_SOURCES[target]:
            return Outcome.invalid(status=req.status)
        if target is P.REJECTED and not reason:
            return Outcome.violation("reason_required")

        current_status = P(req.status)
        member_id = req.member_id
        amount = req.amount

        try:
            if target is P.REJECTED:
                self._flip(req, current_status, target, now=now, failure_reason=reason)
                self._release(request_id=request_id, member_id=member_id, amount=amount)
                action = "PAYOUT_REJECTED"

            elif target is P.APPROVED:
                self._flip(req, current_status, target, now=now)
                if self.debit_on_approval:
                    self._debit(request_id=request_id, member_id=member_id, amount=amount)
                action = "PAYOUT_APPROVED"

            else:
                self._lock_account(req.payout_account_id, now=now)
                if self.ledger.find(reason=LedgerReason.PAYOUT, ref_id=request_id) is None:
                    # re-check at payment time; other debits may have landed
                    available = self.balance(member_id) - self.reserved(member_id, exclude_request_id=request_id)
                    if available < amount:
                        self._flip(req, current_status, P.REJECTED, now=now, failure_reason="insufficient_balance")
                        self.ledger.audit(
                            actor_type="staff",
                            actor_id=actor_id,
                            action="PAYOUT_REJECTED_INSUFFICIENT_BALANCE",
                            target_type="PayoutRequest",
                            target_id=request_id,
                            payload={"available": available, "amount": amount},
                        )
                        self.db.commit()
                        rejected = self.db.get(PayoutRequest, request_id)
                        publish_domain_event("payout.settled", key=request_id, data=payout_event_data(rejected))
                        return Outcome.fail(
                            FailureKind.POLICY_VIOLATION,
                            "insufficient_balance",
                            value=rejected,
                            available=available,
                        )
                    self._debit(request_id=request_id, member_id=member_id, amount=amount)
                self._flip(req, current_status, target, now=now)
                action = "PAYOUT_PAID"

            self.ledger.audit(
                actor_type="staff",
                actor_id=actor_id,
                action=action,
                target_type="PayoutRequest",
                target_id=request_id,
                payload={"reason": reason} if reason else None,
            )
            self.db.commit()
        except _LostRace:
            self.db.rollback()
            current = self.db.get(PayoutRequest, request_id)
            if current.status == target.value:
                return Outcome.success(current, replayed=True)
            return Outcome.invalid(status=current.status)
        except IntegrityViolation as e:
            self.db.rollback()
            log.error("payout settle aborted request=%s: %s", request_id, e)
            raise
        except Exception:
            self.db.rollback()
            raise

        settled = self.db.get(PayoutRequest, request_id)
        log.info("payout settled request=%s status=%s by=%s", request_id, settled.status, actor_id)
        publish_domain_event("payout.settled", key=request_id, data=payout_event_data(settled))
        return Outcome.success(settled)

    def _lock_account(self, account_id: str, *, now: datetime) -> None:
        # a write on the account row; concurrent balance checks for the same member queue behind it
        self.db.execute(
            update(PayoutAccount)
            .where(PayoutAccount.id == account_id)
            .values(last_requested_at=now)
            .execution_options(synchronize_session=False)
        )

    def _flip(
        self,
        req: PayoutRequest,
        current: PayoutStatus,
        target: PayoutStatus,
        *,
        now: datetime,
        failure_reason: Optional[str] = None,
    ) -> None:
        res = self.db.execute(
            update(PayoutRequest)
            .where(PayoutRequest.id == req.id)
            .where(PayoutRequest.status == current.value)
            .values(status=target.value, decided_at=now, failure_reason=failure_reason)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(req)
        if res.rowcount != 1:
            raise _LostRace()

    def _debit(self, *, request_id: str, member_id: str, amount: int) -> None:
        if self.ledger.find(reason=LedgerReason.PAYOUT, ref_id=request_id) is not None:
            return
        self.ledger.post(
            member_id=member_id,
            amount=-amount,
            reason=LedgerReason.PAYOUT,
            ref_id=request_id,
        )

    def _release(self, *, request_id: str, member_id: str, amount: int) -> None:
        # no debit yet: the status change alone frees the reservation
        if self.ledger.find(reason=LedgerReason.PAYOUT, ref_id=request_id) is None:
            return
        self.ledger.post(
            member_id=member_id,
            amount=amount,
            reason=LedgerReason.PAYOUT_REVERSAL,
            ref_id=request_id,
        )

    # -------------------------
    # RECONCILE
    # -------------------------

    def reconcile(self, member_id: str) -> ReconciliationReport:
        """
        Cross-check payout requests against the ledger for one member.
        Read-only; a non-empty discrepancy list needs operator attention.
        """
        balance = self.balance(member_id)
        reserved = self.reserved(member_id)
        available = balance - reserved
        issues: List[Discrepancy] = []

        requests = (
            self.db.query(PayoutRequest)
            .filter(PayoutRequest.member_id == member_id)
            .all()
        )
        by_id = {r.id: r for r in requests}
        entries = (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.member_id == member_id)
            .filter(CreditLedgerEntry.reason.in_([LedgerReason.PAYOUT.value, LedgerReason.PAYOUT_REVERSAL.value]))
            .all()
        )
        debits = {e.ref_id: e for e in entries if e.reason == LedgerReason.PAYOUT.value}
        reversals = {e.ref_id: e for e in entries if e.reason == LedgerReason.PAYOUT_REVERSAL.value}

        for r in requests:
            debit = debits.get(r.id)
            if r.status == P.PAID.value and debit is None:
                issues.append(Discrepancy("paid_without_debit", r.id))
            if debit is not None and debit.amount != -r.amount:
                issues.append(Discrepancy("debit_amount_mismatch", r.id, f"{debit.amount} != {-r.amount}"))
            if r.status == P.REJECTED.value and debit is not None and r.id not in reversals:
                issues.append(Discrepancy("rejected_debit_not_reversed", r.id))

        for ref_id, rev in reversals.items():
            if ref_id not in debits:
                issues.append(Discrepancy("reversal_without_debit", ref_id))
            elif rev.amount != -debits[ref_id].amount:
                issues.append(Discrepancy("reversal_amount_mismatch", ref_id))

        for ref_id in debits:
            if ref_id not in by_id:
                issues.append(Discrepancy("debit_without_request", ref_id))

        if available < 0:
            issues.append(Discrepancy("negative_available_balance", None, str(available)))

        return ReconciliationReport(
            member_id=member_id,
            balance=balance,
            reserved=reserved,
            available=available,
            discrepancies=issues,
        )
