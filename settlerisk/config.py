"""
SettleRisk Configuration.

Pydantic Settings v2: loads from .env, environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "SettleRisk"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # ── Prediction Ensemble ──────────────────────────────────────────────
    ensemble_weight_linear: float = Field(default=0.40, alias="ENSEMBLE_WEIGHT_LINEAR")
    ensemble_weight_rule: float = Field(default=0.35, alias="ENSEMBLE_WEIGHT_RULE")
    ensemble_weight_network: float = Field(default=0.25, alias="ENSEMBLE_WEIGHT_NETWORK")
    ensemble_members: list[str] = Field(
        default=["linear", "rule", "network"],
        alias="ENSEMBLE_MEMBERS",
        description="Scoring members by registry name, in blend order",
    )
    pattern_match_threshold: float = Field(default=0.5, alias="PATTERN_MATCH_THRESHOLD")
    pattern_detect_min_share: float = Field(
        default=0.3, alias="PATTERN_DETECT_MIN_SHARE",
        description="Share of historical inputs a pattern must match to be detected",
    )
    prediction_validity_hours: float = Field(default=4.0, alias="PREDICTION_VALIDITY_HOURS")
    high_risk_threshold: float = Field(default=0.7, alias="HIGH_RISK_THRESHOLD")
    model_staleness_days: int = Field(default=30, alias="MODEL_STALENESS_DAYS")
    large_notional_threshold: float = Field(default=50_000_000.0, alias="LARGE_NOTIONAL_THRESHOLD")

    # ── History Caps ─────────────────────────────────────────────────────
    prediction_history_size: int = Field(default=100, alias="PREDICTION_HISTORY_SIZE")
    assessment_history_size: int = Field(default=50, alias="ASSESSMENT_HISTORY_SIZE")
    event_history_size: int = Field(default=1000, alias="EVENT_HISTORY_SIZE")

    # ── Risk Scoring ─────────────────────────────────────────────────────
    risk_weight_credit: float = Field(default=0.35, alias="RISK_WEIGHT_CREDIT")
    risk_weight_liquidity: float = Field(default=0.25, alias="RISK_WEIGHT_LIQUIDITY")
    risk_weight_operational: float = Field(default=0.20, alias="RISK_WEIGHT_OPERATIONAL")
    risk_weight_market: float = Field(default=0.20, alias="RISK_WEIGHT_MARKET")
    risk_composite_threshold: float = Field(default=0.7, alias="RISK_COMPOSITE_THRESHOLD")
    risk_credit_threshold: float = Field(default=0.8, alias="RISK_CREDIT_THRESHOLD")
    risk_liquidity_threshold: float = Field(default=0.8, alias="RISK_LIQUIDITY_THRESHOLD")
    risk_operational_threshold: float = Field(default=0.85, alias="RISK_OPERATIONAL_THRESHOLD")
    risk_market_threshold: float = Field(default=0.8, alias="RISK_MARKET_THRESHOLD")
    risk_warning_margin: float = Field(default=0.1, alias="RISK_WARNING_MARGIN")
    assessment_validity_hours: float = Field(default=24.0, alias="ASSESSMENT_VALIDITY_HOURS")

    # ── Timeline Tracking ────────────────────────────────────────────────
    scan_interval_seconds: int = Field(default=60, alias="TIMELINE_SCAN_INTERVAL_SECONDS")
    deadline_approach_minutes: int = Field(default=30, alias="DEADLINE_APPROACH_MINUTES")
    sla_critical_overdue_hours: float = Field(default=48.0, alias="SLA_CRITICAL_OVERDUE_HOURS")

    # ── Outcome Tracking ─────────────────────────────────────────────────
    decision_threshold: float = Field(default=0.5, alias="DECISION_THRESHOLD")

    # ── Operational ──────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")
    graceful_shutdown_seconds: int = Field(default=30, alias="GRACEFUL_SHUTDOWN_SECONDS")

    @property
    def ensemble_weights(self) -> dict[str, float]:
        return {
            "linear": self.ensemble_weight_linear,
            "rule": self.ensemble_weight_rule,
            "network": self.ensemble_weight_network,
        }


settings = Settings()
