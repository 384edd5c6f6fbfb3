from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean, BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, String
)

from missionledger.db.base import Base, new_id, utcnow


class PayoutStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


# funds in these states are reserved against the member's balance
RESERVING = (PayoutStatus.REQUESTED.value, PayoutStatus.APPROVED.value)


class PayoutAccount(Base):
    __tablename__ = "payout_account"

    id = Column(String, primary_key=True, default=new_id)
    member_id = Column(String, nullable=False)

    bank_name = Column(String, nullable=False)
    account_number_masked = Column(String, nullable=False)
    account_holder_name = Column(String, nullable=True)
    is_primary = Column(Boolean, nullable=False, default=False)

    # touched on every payout request; doubles as the per-member write lock
    last_requested_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_payout_account_member", "member_id", "is_primary"),
    )


class PayoutRequest(Base):
    __tablename__ = "payout_request"

    id = Column(String, primary_key=True, default=new_id)
    member_id = Column(String, nullable=False)
    payout_account_id = Column(
        String,
        ForeignKey("payout_account.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount = Column(BigInteger, nullable=False)
    status = Column(String, nullable=False, default=PayoutStatus.REQUESTED.value)
    idempotency_key = Column(String, nullable=False, unique=True)
    failure_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payout_request_amount_positive"),
        Index("ix_payout_request_member_status", "member_id", "status"),
    )
