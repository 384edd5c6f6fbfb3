from missionledger.missions.models import Campaign, MissionDay
from missionledger.participation.models import (
    Participation,
    VerificationEvidence,
    VerificationResult,
)
from missionledger.ledger.models import CreditLedgerEntry, AuditLog
from missionledger.payouts.models import PayoutAccount, PayoutRequest
from missionledger.policy.models import PolicyRecord
