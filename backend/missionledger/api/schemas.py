from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ClaimIn(BaseModel):
    idempotency_key: str = Field(min_length=1, max_length=200)


class EvidenceItemIn(BaseModel):
    file_ref: str = Field(min_length=1, max_length=1000)
    mime: Optional[str] = None
    type: Optional[Literal["IMAGE", "VIDEO", "OTHER"]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EvidenceIn(BaseModel):
    items: List[EvidenceItemIn] = Field(default_factory=list)
    proof_text: Optional[str] = None


class CancelIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class DecisionIn(BaseModel):
    decision: Literal["APPROVE", "REJECT"]
    reason: Optional[str] = Field(default=None, max_length=500)


class PayoutAccountIn(BaseModel):
    bank_name: str
    account_number: str
    account_holder_name: Optional[str] = None


class PayoutRequestIn(BaseModel):
    account_id: str
    # whole minor units; floats are refused rather than rounded
    amount: int = Field(strict=True)
    idempotency_key: str = Field(min_length=1, max_length=200)


class SettleIn(BaseModel):
    outcome: Literal["APPROVED", "PAID", "REJECTED"]
    reason: Optional[str] = Field(default=None, max_length=500)


class QuotaResetIn(BaseModel):
    quota_total: int = Field(ge=0)
