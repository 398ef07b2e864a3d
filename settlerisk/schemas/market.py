"""
Market, history and counterparty inputs.

These are supplied by external collaborators (market data feeds, the
settlement history store, the counterparty credit system) and consumed
read-only by the engines.
"""

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MarketStressLevel(StrEnum):
    NORMAL = "NORMAL"
    ELEVATED = "ELEVATED"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class TimeOfDay(StrEnum):
    OPEN = "OPEN"
    MID_DAY = "MID_DAY"
    CLOSE = "CLOSE"
    AFTER_HOURS = "AFTER_HOURS"


class VolumePattern(StrEnum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    LOW = "LOW"


class MarketConditions(BaseModel):
    """Current market state. All indices are normalised to [0, 1]."""

    model_config = ConfigDict(frozen=True)

    volatility_index: float = Field(default=0.2, ge=0.0, le=1.0)
    liquidity_index: float = Field(default=0.8, ge=0.0, le=1.0)
    credit_spread_index: float = Field(default=0.1, ge=0.0, le=1.0)
    system_load: float = Field(default=0.5, ge=0.0, le=1.0)
    market_stress_level: MarketStressLevel = MarketStressLevel.NORMAL
    holiday_adjustments: bool = False
    time_of_day: TimeOfDay = TimeOfDay.MID_DAY


class HistoricalContext(BaseModel):
    """Settlement track record for the counterparty and security type."""

    model_config = ConfigDict(frozen=True)

    counterparty_success_rate: float = Field(default=0.98, ge=0.0, le=1.0)
    counterparty_avg_delay_days: float = Field(default=0.0, ge=0.0)
    security_type_success_rate: float = Field(default=0.99, ge=0.0, le=1.0)
    seasonal_factor: float = Field(default=1.0, ge=0.0)
    recent_failures: int = Field(default=0, ge=0)
    volume_pattern: VolumePattern = VolumePattern.NORMAL
    counterparty_history_months: float = Field(default=24.0, ge=0.0)
    settlement_count: int = Field(default=0, ge=0)


class CounterpartyRiskProfile(BaseModel):
    """Credit standing of a counterparty as seen by the risk engine."""

    model_config = ConfigDict(frozen=True)

    counterparty_id: str
    credit_rating: str = "BBB"
    probability_of_default: float = Field(default=0.02, ge=0.0, le=1.0)
    current_exposure: float = Field(default=0.0, ge=0.0)
    exposure_limit: Optional[float] = Field(default=None, gt=0.0)
    concentration_pct: float = Field(
        default=0.0, ge=0.0, le=1.0,
        description="Share of total book exposure held against this counterparty",
    )
    sanctions: bool = False
    kyc_approved: bool = True
