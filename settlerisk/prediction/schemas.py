"""
Failure Prediction Schemas.

Input value object, the prediction record with its explanation
(risk factors, mitigations, early warnings), failure patterns and the
prediction model descriptor.
"""

import uuid
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from settlerisk.schemas import (
    HistoricalContext,
    MarketConditions,
    RiskTier,
    SettlementInstruction,
    ensure_utc,
    utcnow,
)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ── Enums ─────────────────────────────────────────────────────────────────


class FactorCategory(StrEnum):
    COUNTERPARTY = "COUNTERPARTY"
    SECURITY = "SECURITY"
    MARKET = "MARKET"
    OPERATIONAL = "OPERATIONAL"
    SYSTEMIC = "SYSTEMIC"


class ImplementationCost(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class SuggestionPriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SuggestionCategory(StrEnum):
    PREVENTION = "PREVENTION"
    MONITORING = "MONITORING"
    RESPONSE = "RESPONSE"
    RECOVERY = "RECOVERY"


class IndicatorStatus(StrEnum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class IndicatorTrend(StrEnum):
    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    DETERIORATING = "DETERIORATING"


class ConditionOperator(StrEnum):
    EQUALS = "EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    BETWEEN = "BETWEEN"
    CONTAINS = "CONTAINS"


class SummaryTimeframe(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


TIMEFRAME_WINDOWS: dict[SummaryTimeframe, timedelta] = {
    SummaryTimeframe.DAILY: timedelta(days=1),
    SummaryTimeframe.WEEKLY: timedelta(days=7),
    SummaryTimeframe.MONTHLY: timedelta(days=30),
}


# ── Input ─────────────────────────────────────────────────────────────────


class PredictionInput(BaseModel):
    """Everything the ensemble needs for one instruction. Read-only."""

    model_config = ConfigDict(frozen=True)

    instruction: SettlementInstruction
    historical: HistoricalContext = Field(default_factory=HistoricalContext)
    market: MarketConditions = Field(default_factory=MarketConditions)
    as_of: datetime = Field(default_factory=utcnow)

    @field_validator("as_of")
    @classmethod
    def _aware_as_of(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_instruction(
        cls,
        instruction: SettlementInstruction,
        historical: Optional[HistoricalContext] = None,
        market: Optional[MarketConditions] = None,
        as_of: Optional[datetime] = None,
    ) -> "PredictionInput":
        return cls(
            instruction=instruction.model_copy(),
            historical=historical or HistoricalContext(),
            market=market or MarketConditions(),
            as_of=as_of or utcnow(),
        )

    @property
    def instruction_id(self) -> str:
        return self.instruction.instruction_id

    @property
    def hours_to_settlement(self) -> float:
        return (self.instruction.settlement_date - self.as_of).total_seconds() / 3600.0


# ── Explanation records ───────────────────────────────────────────────────


class RiskFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    impact: float = Field(ge=0.0, le=1.0)
    weight: float
    description: str
    category: FactorCategory


class MitigationSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    suggestion_id: str = Field(default_factory=lambda: _new_id("mit"))
    suggestion: str
    expected_impact: float = Field(ge=0.0, le=1.0)
    implementation_cost: ImplementationCost
    time_to_implement_hours: float
    priority: SuggestionPriority
    category: SuggestionCategory


class EarlyWarningIndicator(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator: str
    current_value: float
    threshold: float
    status: IndicatorStatus
    trend: IndicatorTrend
    lead_time_hours: float


# ── Prediction ────────────────────────────────────────────────────────────


class FailurePrediction(BaseModel):
    """One ensemble prediction. Never edited; recompute after valid_until."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    prediction_id: str = Field(default_factory=lambda: _new_id("pred"))
    instruction_id: str
    failure_probability: float = Field(ge=0.0, le=1.0)
    risk_tier: RiskTier
    expected_delay_days: float = Field(ge=0.0)
    confidence: float = Field(ge=0.5, le=0.99)
    risk_factors: list[RiskFactor] = Field(default_factory=list, max_length=5)
    mitigation_suggestions: list[MitigationSuggestion] = Field(default_factory=list, max_length=5)
    early_warning_indicators: list[EarlyWarningIndicator] = Field(default_factory=list)
    member_scores: dict[str, float] = Field(default_factory=dict)
    base_probability: float = Field(default=0.0, ge=0.0, le=1.0)
    pattern_adjustment: float = 0.0
    matched_patterns: list[str] = Field(default_factory=list)
    model_id: str
    model_version: str
    prediction_timestamp: datetime = Field(default_factory=utcnow)
    valid_until: datetime

    @model_validator(mode="after")
    def _validity_window(self) -> "FailurePrediction":
        if self.valid_until < self.prediction_timestamp:
            raise ValueError("valid_until must not precede prediction_timestamp")
        return self

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.valid_until


# ── Patterns ──────────────────────────────────────────────────────────────


class PatternCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: ConditionOperator
    value: Any
    weight: float = Field(ge=0.0)


class FailurePattern(BaseModel):
    """A named, weighted rule set describing a recurring failure cause."""

    model_config = ConfigDict(validate_assignment=True)

    pattern_id: str = Field(default_factory=lambda: _new_id("pattern"))
    pattern_name: str
    description: str = ""
    frequency: float = Field(ge=0.0, le=1.0)
    avg_impact: float = Field(ge=0.0, le=1.0)
    conditions: list[PatternCondition] = Field(default_factory=list)
    prevention_measures: list[str] = Field(default_factory=list)
    identified_count: int = 0
    last_seen: Optional[datetime] = None

    @property
    def total_weight(self) -> float:
        return sum(c.weight for c in self.conditions)


# ── Models ────────────────────────────────────────────────────────────────


class PredictionModel(BaseModel):
    """Descriptor of a registered ensemble configuration."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    model_name: str
    version: str
    algorithm: str = "ENSEMBLE"
    last_training_date: datetime = Field(default_factory=utcnow)
    training_data_size: int = 0
    members: list[str] = Field(default_factory=lambda: ["linear", "rule", "network"])
    member_weights: dict[str, float] = Field(default_factory=dict)
    feature_importance: dict[str, float] = Field(default_factory=dict)
    is_active: bool = False


# ── Summary ───────────────────────────────────────────────────────────────


class FactorFrequency(BaseModel):
    factor: str
    count: int


class PredictionSummary(BaseModel):
    timeframe: SummaryTimeframe
    period_start: datetime
    period_end: datetime
    total_predictions: int
    high_risk_count: int
    average_failure_probability: float
    tier_distribution: dict[str, int] = Field(default_factory=dict)
    top_risk_factors: list[FactorFrequency] = Field(default_factory=list)
    model_accuracy: Optional[float] = None
