from __future__ import annotations

from typing import Dict, Literal

from pydantic import BaseModel, Field

from missionledger.missions.models import MissionType

PolicyKey = Literal["MISSION_LIMITS", "PAYOUT"]


class MissionLimitsPolicy(BaseModel):
    timeout_ms_by_mission_type: Dict[MissionType, int] = Field(default_factory=dict)

    def timeout_for(self, mission_type: str) -> int | None:
        value = self.timeout_ms_by_mission_type.get(MissionType(mission_type))
        if value is None or value < 1:
            return None
        return value


class PayoutPolicy(BaseModel):
    min_payout_amount: int = Field(ge=0)
