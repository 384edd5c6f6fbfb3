# missionledger/policy/provider.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.orm import Session

from missionledger.missions.models import MissionType
from missionledger.policy.models import PolicyRecord
from missionledger.policy.schemas import MissionLimitsPolicy, PayoutPolicy

log = logging.getLogger("missionledger.policy")

DEFAULT_TIMEOUT_MS: Dict[str, int] = {
    MissionType.TRAFFIC.value: 3 * 60 * 1000,
    MissionType.SAVE.value: 5 * 60 * 1000,
    MissionType.SHARE.value: 2 * 60 * 1000,
}
DEFAULT_MIN_PAYOUT = 1000


class Policy(Protocol):
    def timeout_ms_for(self, mission_type: str) -> int: ...

    def min_payout_amount(self) -> int: ...


@dataclass
class StaticPolicy:
    """Fixed values. Used by tests and scripts that must not depend on stored policy."""

    timeouts_ms: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TIMEOUT_MS))
    min_payout: int = DEFAULT_MIN_PAYOUT

    def timeout_ms_for(self, mission_type: str) -> int:
        return self.timeouts_ms.get(mission_type, DEFAULT_TIMEOUT_MS[MissionType(mission_type).value])

    def min_payout_amount(self) -> int:
        return self.min_payout


class StoredPolicy:
    """
    Policy backed by the `policy` table.

    A missing or malformed payload falls back to the defaults instead of
    failing the request; the malformed case is logged.
    """

    def __init__(self, db: Session):
        self.db = db

    def _active_payload(self, key: str) -> Optional[dict]:
        row = (
            self.db.query(PolicyRecord)
            .filter(PolicyRecord.key == key)
            .filter(PolicyRecord.is_active.is_(True))
            .order_by(PolicyRecord.created_at.desc())
            .first()
        )
        return row.payload_json if row else None

    def mission_limits(self) -> Optional[MissionLimitsPolicy]:
        payload = self._active_payload("MISSION_LIMITS")
        if payload is None:
            return None
        try:
            return MissionLimitsPolicy.model_validate(payload)
        except ValidationError as e:
            log.warning("invalid MISSION_LIMITS policy payload, using defaults: %s", e)
            return None

    def payout(self) -> Optional[PayoutPolicy]:
        payload = self._active_payload("PAYOUT")
        if payload is None:
            return None
        try:
            return PayoutPolicy.model_validate(payload)
        except ValidationError as e:
            log.warning("invalid PAYOUT policy payload, using defaults: %s", e)
            return None

    def timeout_ms_for(self, mission_type: str) -> int:
        limits = self.mission_limits()
        stored = limits.timeout_for(mission_type) if limits else None
        return stored or DEFAULT_TIMEOUT_MS[MissionType(mission_type).value]

    def min_payout_amount(self) -> int:
        policy = self.payout()
        return policy.min_payout_amount if policy else DEFAULT_MIN_PAYOUT
