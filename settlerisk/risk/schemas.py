"""
Risk Assessment Schemas.
"""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from settlerisk.config import settings
from settlerisk.schemas import RiskTier


class AlertLevel(StrEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


ALERT_LEVEL_RANK: dict[AlertLevel, int] = {
    AlertLevel.INFO: 0,
    AlertLevel.WARNING: 1,
    AlertLevel.CRITICAL: 2,
}


class RiskComponent(StrEnum):
    CREDIT = "credit"
    LIQUIDITY = "liquidity"
    OPERATIONAL = "operational"
    MARKET = "market"


class RiskThresholds(BaseModel):
    """Component weights and alerting thresholds."""

    model_config = ConfigDict(frozen=True)

    weights: dict[RiskComponent, float] = Field(default_factory=lambda: {
        RiskComponent.CREDIT: settings.risk_weight_credit,
        RiskComponent.LIQUIDITY: settings.risk_weight_liquidity,
        RiskComponent.OPERATIONAL: settings.risk_weight_operational,
        RiskComponent.MARKET: settings.risk_weight_market,
    })
    component_thresholds: dict[RiskComponent, float] = Field(default_factory=lambda: {
        RiskComponent.CREDIT: settings.risk_credit_threshold,
        RiskComponent.LIQUIDITY: settings.risk_liquidity_threshold,
        RiskComponent.OPERATIONAL: settings.risk_operational_threshold,
        RiskComponent.MARKET: settings.risk_market_threshold,
    })
    composite_threshold: float = Field(default_factory=lambda: settings.risk_composite_threshold)
    warning_margin: float = Field(default_factory=lambda: settings.risk_warning_margin, ge=0.0)

    @model_validator(mode="after")
    def _weights_cover_components(self) -> "RiskThresholds":
        missing = set(RiskComponent) - set(self.weights)
        if missing:
            raise ValueError(f"Missing weights for: {sorted(m.value for m in missing)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Risk weights must be non-negative")
        if sum(self.weights.values()) <= 0:
            raise ValueError("Risk weights must not all be zero")
        return self


class RiskAssessment(BaseModel):
    """Point-in-time risk decomposition for one instruction."""

    model_config = ConfigDict(frozen=True)

    assessment_id: str = Field(default_factory=lambda: f"ra_{uuid.uuid4().hex[:12]}")
    instruction_id: str
    counterparty_id: str
    credit_risk: float = Field(ge=0.0, le=1.0)
    liquidity_risk: float = Field(ge=0.0, le=1.0)
    operational_risk: float = Field(ge=0.0, le=1.0)
    market_risk: float = Field(ge=0.0, le=1.0)
    composite_score: float = Field(ge=0.0, le=1.0)
    grade: RiskTier
    alert_level: AlertLevel
    breached_components: list[RiskComponent] = Field(default_factory=list)
    key_factors: list[str] = Field(default_factory=list)
    mitigation_actions: list[str] = Field(default_factory=list)
    assessed_at: datetime
    valid_until: datetime

    def component_scores(self) -> dict[RiskComponent, float]:
        return {
            RiskComponent.CREDIT: self.credit_risk,
            RiskComponent.LIQUIDITY: self.liquidity_risk,
            RiskComponent.OPERATIONAL: self.operational_risk,
            RiskComponent.MARKET: self.market_risk,
        }


class RiskTrend(BaseModel):
    instruction_id: str
    assessments: int
    first_score: float
    latest_score: float
    change: float
    direction: str      # "increasing" | "decreasing" | "stable"
