"""Shared value objects used across the prediction, risk and timeline subsystems."""

from settlerisk.schemas.instruction import (
    InstructionStatus,
    Priority,
    SecurityType,
    SettlementInstruction,
    SettlementMethod,
    Side,
    TERMINAL_STATUSES,
    ensure_utc,
    utcnow,
)
from settlerisk.schemas.market import (
    CounterpartyRiskProfile,
    HistoricalContext,
    MarketConditions,
    MarketStressLevel,
    TimeOfDay,
    VolumePattern,
)
from settlerisk.schemas.tiers import RiskTier, TIER_ORDER, clamp, tier_for

__all__ = [
    "CounterpartyRiskProfile",
    "HistoricalContext",
    "InstructionStatus",
    "MarketConditions",
    "MarketStressLevel",
    "Priority",
    "RiskTier",
    "SecurityType",
    "SettlementInstruction",
    "SettlementMethod",
    "Side",
    "TERMINAL_STATUSES",
    "TIER_ORDER",
    "TimeOfDay",
    "VolumePattern",
    "clamp",
    "ensure_utc",
    "tier_for",
    "utcnow",
]
