# missionledger/outcomes.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class FailureKind(str, enum.Enum):
    EXHAUSTION = "exhaustion"
    INVALID_TRANSITION = "invalid_transition"
    POLICY_VIOLATION = "policy_violation"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result of every engine operation.

    Expected business conditions (sold out, wrong state, bad amount) come back
    as ok=False with a machine-readable `code`. Only integrity failures raise.
    `replayed` marks an idempotent repeat that changed nothing.
    """

    ok: bool
    value: Optional[T] = None
    kind: Optional[FailureKind] = None
    code: Optional[str] = None
    replayed: bool = False
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T, *, replayed: bool = False) -> "Outcome[T]":
        return cls(ok=True, value=value, replayed=replayed)

    @classmethod
    def fail(cls, kind: FailureKind, code: str, *, value: Any = None, **detail: Any) -> "Outcome[T]":
        return cls(ok=False, value=value, kind=kind, code=code, detail=detail)

    @classmethod
    def exhausted(cls, code: str = "quota_exhausted", **detail: Any) -> "Outcome[T]":
        return cls.fail(FailureKind.EXHAUSTION, code, **detail)

    @classmethod
    def invalid(cls, code: str = "invalid_transition", **detail: Any) -> "Outcome[T]":
        return cls.fail(FailureKind.INVALID_TRANSITION, code, **detail)

    @classmethod
    def violation(cls, code: str, **detail: Any) -> "Outcome[T]":
        return cls.fail(FailureKind.POLICY_VIOLATION, code, **detail)

    @classmethod
    def not_found(cls, code: str = "not_found") -> "Outcome[T]":
        return cls.fail(FailureKind.NOT_FOUND, code)


class IntegrityViolation(RuntimeError):
    """An invariant was about to be broken. Aborts the enclosing transaction."""


class LedgerIntegrityError(IntegrityViolation):
    pass
