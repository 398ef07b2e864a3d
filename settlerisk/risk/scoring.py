"""
Settlement Risk Scoring Engine.

Decomposes settlement risk into four components, each in [0, 1]:

    credit      = 0.5 · min(1, PD / 0.20) · rating multiplier
                + 0.3 · exposure utilisation
                + 0.2 · concentration
    liquidity   = (0.5 · (1 − liquidity index) + 0.5 · log10(notional + 1) / 10)
                  × security liquidity multiplier
    operational = 0.5 · system load + 0.3 · method complexity + 0.2 · window pressure
    market      = (0.6 · volatility + 0.4 · credit spread) × stress multiplier

The composite is the threshold-weighted mean of the components.
Pure computation; no I/O.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.risk.schemas import (
    AlertLevel,
    RiskAssessment,
    RiskComponent,
    RiskThresholds,
)
from settlerisk.schemas import (
    CounterpartyRiskProfile,
    MarketConditions,
    MarketStressLevel,
    SettlementInstruction,
    SettlementMethod,
    clamp,
    ensure_utc,
    tier_for,
    utcnow,
)

logger = structlog.get_logger(__name__)

# ── Calibration tables ────────────────────────────────────────────────────

RATING_SCORES: dict[str, int] = {
    "AAA": 95, "AA+": 90, "AA": 85, "AA-": 80,
    "A+": 75, "A": 70, "A-": 65,
    "BBB+": 60, "BBB": 55, "BBB-": 50,
    "BB+": 45, "BB": 40, "BB-": 35,
    "B+": 30, "B": 25, "B-": 20,
    "CCC+": 15, "CCC": 10, "CCC-": 5,
    "CC": 3, "C": 1, "D": 0,
}
DEFAULT_RATING_SCORE = 25

PD_SATURATION = 0.20
CONCENTRATION_SATURATION = 0.20
UNKNOWN_LIMIT_UTILISATION = 0.5

SECURITY_LIQUIDITY_MULTIPLIERS: dict[str, float] = {
    "GOVERNMENT_BOND": 0.6,
    "EQUITY": 0.8,
    "CORPORATE_BOND": 1.1,
    "STRUCTURED_PRODUCT": 1.5,
}

METHOD_COMPLEXITY: dict[str, float] = {
    SettlementMethod.CASH: 0.2,
    SettlementMethod.DVP: 0.3,
    SettlementMethod.RVP: 0.35,
    SettlementMethod.FOP: 0.5,
}

STRESS_MULTIPLIERS: dict[str, float] = {
    MarketStressLevel.NORMAL: 1.0,
    MarketStressLevel.ELEVATED: 1.15,
    MarketStressLevel.HIGH: 1.35,
    MarketStressLevel.EXTREME: 1.6,
}

COMPONENT_ACTIONS: dict[RiskComponent, list[str]] = {
    RiskComponent.CREDIT: [
        "Request additional collateral from counterparty",
        "Review counterparty exposure limit",
    ],
    RiskComponent.LIQUIDITY: [
        "Pre-position securities and cash ahead of settlement",
        "Arrange standby securities borrowing",
    ],
    RiskComponent.OPERATIONAL: [
        "Prioritise instruction in the settlement queue",
        "Confirm settlement details with custodian",
    ],
    RiskComponent.MARKET: [
        "Hedge market exposure until settlement",
        "Tighten margin requirements",
    ],
}


def rating_multiplier(rating: str) -> float:
    """0.55 for AAA up to 1.5 for D; unknown ratings score as B."""
    score = RATING_SCORES.get(rating.upper().strip(), DEFAULT_RATING_SCORE)
    return 0.5 + (1.0 - score / 100.0)


@dataclass(frozen=True)
class ComponentScores:
    credit: float
    liquidity: float
    operational: float
    market: float
    factors: tuple[str, ...] = ()

    def as_dict(self) -> dict[RiskComponent, float]:
        return {
            RiskComponent.CREDIT: self.credit,
            RiskComponent.LIQUIDITY: self.liquidity,
            RiskComponent.OPERATIONAL: self.operational,
            RiskComponent.MARKET: self.market,
        }


class RiskScoringEngine:
    """Stateless settlement risk decomposition."""

    def __init__(
        self,
        thresholds: Optional[RiskThresholds] = None,
        validity_hours: Optional[float] = None,
    ):
        self.thresholds = thresholds or RiskThresholds()
        self.validity = timedelta(
            hours=settings.assessment_validity_hours if validity_hours is None else validity_hours
        )

    def assess(
        self,
        instruction: SettlementInstruction,
        profile: CounterpartyRiskProfile,
        market: MarketConditions,
        now: Optional[datetime] = None,
    ) -> RiskAssessment:
        now = ensure_utc(now) or utcnow()
        factors: list[str] = []

        credit = self.credit_risk(instruction, profile, factors)
        liquidity = self.liquidity_risk(instruction, market, factors)
        operational = self.operational_risk(instruction, market, factors)
        market_risk = self.market_risk(market, factors)

        scores = ComponentScores(credit, liquidity, operational, market_risk)
        composite = self.composite(scores)
        alert_level, breached = self.alert_level(scores, composite)

        actions: list[str] = []
        for component, score in scores.as_dict().items():
            if score > self.thresholds.component_thresholds[component] - self.thresholds.warning_margin:
                actions.extend(COMPONENT_ACTIONS[component])
        if alert_level == AlertLevel.CRITICAL:
            actions.insert(0, "Escalate to settlement risk desk")

        return RiskAssessment(
            instruction_id=instruction.instruction_id,
            counterparty_id=instruction.counterparty_id,
            credit_risk=credit,
            liquidity_risk=liquidity,
            operational_risk=operational,
            market_risk=market_risk,
            composite_score=composite,
            grade=tier_for(composite),
            alert_level=alert_level,
            breached_components=breached,
            key_factors=factors,
            mitigation_actions=list(dict.fromkeys(actions)),
            assessed_at=now,
            valid_until=now + self.validity,
        )

    # ── Components ────────────────────────────────────────────────────────

    @staticmethod
    def credit_risk(
        instruction: SettlementInstruction,
        profile: CounterpartyRiskProfile,
        factors: Optional[list[str]] = None,
    ) -> float:
        factors = factors if factors is not None else []
        if profile.sanctions or not profile.kyc_approved:
            factors.append(
                "Counterparty is sanctioned" if profile.sanctions else "Counterparty KYC not approved"
            )
            return 1.0

        pd_component = min(1.0, profile.probability_of_default / PD_SATURATION)
        pd_component *= rating_multiplier(profile.credit_rating)

        if profile.exposure_limit:
            utilisation = min(
                1.0,
                (profile.current_exposure + instruction.notional_amount) / profile.exposure_limit,
            )
        else:
            utilisation = UNKNOWN_LIMIT_UTILISATION
        concentration = min(1.0, profile.concentration_pct / CONCENTRATION_SATURATION)

        if profile.probability_of_default > 0.05:
            factors.append(f"Elevated probability of default ({profile.probability_of_default:.1%})")
        if RATING_SCORES.get(profile.credit_rating.upper(), DEFAULT_RATING_SCORE) < 50:
            factors.append(f"Sub-investment grade rating ({profile.credit_rating})")
        if utilisation > 0.9:
            factors.append(f"Exposure at {utilisation:.0%} of limit")
        if profile.concentration_pct > 0.10:
            factors.append(f"Concentration at {profile.concentration_pct:.0%} of book")

        return clamp(0.5 * pd_component + 0.3 * utilisation + 0.2 * concentration)

    @staticmethod
    def liquidity_risk(
        instruction: SettlementInstruction,
        market: MarketConditions,
        factors: Optional[list[str]] = None,
    ) -> float:
        factors = factors if factors is not None else []
        size = math.log10(instruction.notional_amount + 1) / 10.0
        multiplier = SECURITY_LIQUIDITY_MULTIPLIERS.get(instruction.security_type, 1.0)
        if market.liquidity_index < 0.5:
            factors.append(f"Thin market liquidity ({market.liquidity_index:.2f})")
        if multiplier > 1.0:
            factors.append(f"{instruction.security_type} is hard to source")
        return clamp((0.5 * (1.0 - market.liquidity_index) + 0.5 * size) * multiplier)

    @staticmethod
    def operational_risk(
        instruction: SettlementInstruction,
        market: MarketConditions,
        factors: Optional[list[str]] = None,
    ) -> float:
        factors = factors if factors is not None else []
        complexity = METHOD_COMPLEXITY.get(instruction.settlement_method, 0.4)
        window_days = (instruction.settlement_date - instruction.trade_date).total_seconds() / 86400.0
        if window_days < 1:
            pressure = 1.0
        elif window_days < 2:
            pressure = 0.5
        else:
            pressure = 0.0
        if market.system_load > 0.8:
            factors.append(f"Settlement systems at {market.system_load:.0%} capacity")
        if pressure >= 1.0:
            factors.append("Same-day settlement window")
        return clamp(0.5 * market.system_load + 0.3 * complexity + 0.2 * pressure)

    @staticmethod
    def market_risk(market: MarketConditions, factors: Optional[list[str]] = None) -> float:
        factors = factors if factors is not None else []
        multiplier = STRESS_MULTIPLIERS.get(market.market_stress_level, 1.0)
        if market.volatility_index > 0.4:
            factors.append(f"High volatility ({market.volatility_index:.2f})")
        if market.market_stress_level in (MarketStressLevel.HIGH, MarketStressLevel.EXTREME):
            factors.append(f"Market stress {market.market_stress_level}")
        return clamp((0.6 * market.volatility_index + 0.4 * market.credit_spread_index) * multiplier)

    # ── Aggregation ───────────────────────────────────────────────────────

    def composite(self, scores: ComponentScores) -> float:
        weights = self.thresholds.weights
        total = sum(weights.values())
        weighted = sum(weights[c] * s for c, s in scores.as_dict().items())
        return clamp(weighted / total)

    def alert_level(
        self,
        scores: ComponentScores,
        composite: float,
    ) -> tuple[AlertLevel, list[RiskComponent]]:
        t = self.thresholds
        breached = [
            c for c, s in scores.as_dict().items()
            if s > t.component_thresholds[c]
        ]
        if breached or composite > t.composite_threshold:
            return AlertLevel.CRITICAL, breached

        near = composite > t.composite_threshold - t.warning_margin or any(
            s > t.component_thresholds[c] - t.warning_margin
            for c, s in scores.as_dict().items()
        )
        return (AlertLevel.WARNING if near else AlertLevel.INFO), breached
