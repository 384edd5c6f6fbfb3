import pytest

from missionledger.ledger.models import AuditLog, LedgerReason
from missionledger.ledger.repository import LedgerRepository
from missionledger.outcomes import IntegrityViolation, LedgerIntegrityError


def test_balance_is_the_sum_of_entries(db):
    ledger = LedgerRepository(db)
    ledger.post(member_id="m1", amount=5000, reason=LedgerReason.MISSION_REWARD, ref_id="p1")
    ledger.post(member_id="m1", amount=2500, reason=LedgerReason.MISSION_REWARD, ref_id="p2")
    ledger.post(member_id="m1", amount=-3000, reason=LedgerReason.PAYOUT, ref_id="r1")
    ledger.post(member_id="m2", amount=700, reason=LedgerReason.MISSION_REWARD, ref_id="p3")
    db.commit()

    entries = ledger.entries("m1")
    assert ledger.balance("m1") == sum(e.amount for e in entries) == 4500
    assert ledger.balance("m2") == 700
    assert ledger.balance("nobody") == 0


def test_duplicate_reason_and_ref_is_an_integrity_error(db):
    ledger = LedgerRepository(db)
    ledger.post(member_id="m1", amount=5000, reason=LedgerReason.MISSION_REWARD, ref_id="p1")
    db.commit()

    with pytest.raises(LedgerIntegrityError):
        ledger.post(member_id="m1", amount=5000, reason=LedgerReason.MISSION_REWARD, ref_id="p1")
    db.rollback()

    assert ledger.count(reason=LedgerReason.MISSION_REWARD, ref_id="p1") == 1
    assert issubclass(LedgerIntegrityError, IntegrityViolation)


def test_same_ref_under_different_reasons_is_allowed(db):
    ledger = LedgerRepository(db)
    ledger.post(member_id="m1", amount=-1000, reason=LedgerReason.PAYOUT, ref_id="r1")
    ledger.post(member_id="m1", amount=1000, reason=LedgerReason.PAYOUT_REVERSAL, ref_id="r1")
    db.commit()

    assert ledger.balance("m1") == 0


def test_zero_amount_is_refused(db):
    with pytest.raises(ValueError):
        LedgerRepository(db).post(member_id="m1", amount=0, reason=LedgerReason.ADJUSTMENT)


def test_entries_paginate_newest_first(db):
    ledger = LedgerRepository(db)
    for i in range(5):
        ledger.post(member_id="m1", amount=100 + i, reason=LedgerReason.ADJUSTMENT)
    db.commit()

    first_page = ledger.entries("m1", limit=2)
    rest = ledger.entries("m1", limit=10, offset=2)

    assert len(first_page) == 2
    assert len(rest) == 3
    assert {e.id for e in first_page}.isdisjoint({e.id for e in rest})


def test_audit_joins_the_callers_transaction(db):
    ledger = LedgerRepository(db)
    ledger.audit(actor_type="system", actor_id=None, action="TEST_ROLLED_BACK")
    db.rollback()
    ledger.audit(actor_type="staff", actor_id="s1", action="TEST_KEPT", payload={"k": 1})
    db.commit()

    actions = [a.action for a in db.query(AuditLog).all()]
    assert actions == ["TEST_KEPT"]
