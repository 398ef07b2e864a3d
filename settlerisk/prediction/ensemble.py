"""
Ensemble Failure Predictor.

Pure computation: PredictionInput + active model descriptor + pattern
snapshot → FailurePrediction. No I/O, no shared state.

Pipeline:
    1. Feature extraction
    2. Member scores blended by weight → base probability
    3. Pattern uplift for patterns matching above threshold
    4. Clamp, tier, expected delay, confidence
    5. Explanation: risk factors, mitigations, early warnings
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.prediction.features import FeatureExtractor
from settlerisk.prediction.models import ScoringModel, build_members
from settlerisk.prediction.patterns import PatternLibrary
from settlerisk.prediction.schemas import (
    EarlyWarningIndicator,
    FactorCategory,
    FailurePattern,
    FailurePrediction,
    ImplementationCost,
    IndicatorStatus,
    IndicatorTrend,
    MitigationSuggestion,
    PredictionInput,
    PredictionModel,
    RiskFactor,
    SuggestionCategory,
    SuggestionPriority,
)
from settlerisk.schemas import MarketStressLevel, clamp, ensure_utc, tier_for, utcnow

logger = structlog.get_logger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────

BASE_CONFIDENCE = 0.8
CONFIDENCE_FLOOR = 0.5
CONFIDENCE_CEILING = 0.99
MAX_FACTORS = 5
MAX_SUGGESTIONS = 5

STRESSED_MARKETS = frozenset({MarketStressLevel.HIGH, MarketStressLevel.EXTREME})

PRIORITY_RANK: dict[SuggestionPriority, int] = {
    SuggestionPriority.CRITICAL: 4,
    SuggestionPriority.HIGH: 3,
    SuggestionPriority.MEDIUM: 2,
    SuggestionPriority.LOW: 1,
}


@dataclass(frozen=True)
class BlendResult:
    """Intermediate scores before explanation."""
    member_scores: dict[str, float]
    base_probability: float
    pattern_adjustment: float
    probability: float
    matched_patterns: list[str] = field(default_factory=list)


class EnsemblePredictor:
    """Blend scoring members and historical patterns into one prediction."""

    def __init__(
        self,
        pattern_library: PatternLibrary,
        feature_extractor: Optional[FeatureExtractor] = None,
        validity_hours: Optional[float] = None,
        staleness_days: Optional[int] = None,
        large_notional: Optional[float] = None,
    ):
        self.patterns = pattern_library
        self.features = feature_extractor or FeatureExtractor()
        self.validity = timedelta(
            hours=settings.prediction_validity_hours if validity_hours is None else validity_hours
        )
        self.staleness = timedelta(
            days=settings.model_staleness_days if staleness_days is None else staleness_days
        )
        self.large_notional = (
            settings.large_notional_threshold if large_notional is None else large_notional
        )
        self._members: dict[tuple[str, ...], list[ScoringModel]] = {}

    # ── Public API ────────────────────────────────────────────────────────

    def predict(
        self,
        data: PredictionInput,
        model: PredictionModel,
        patterns: Optional[tuple[FailurePattern, ...]] = None,
        now: Optional[datetime] = None,
    ) -> FailurePrediction:
        now = ensure_utc(now) or utcnow()
        features = self.features.extract(data)
        blend = self.blend(data, model, features, patterns)

        prediction = FailurePrediction(
            instruction_id=data.instruction_id,
            failure_probability=blend.probability,
            risk_tier=tier_for(blend.probability),
            expected_delay_days=self.expected_delay(data, blend.probability),
            confidence=self.confidence(data, model, now),
            risk_factors=self.risk_factors(data),
            mitigation_suggestions=self.mitigations(data, blend.probability),
            early_warning_indicators=self.early_warnings(data),
            member_scores=blend.member_scores,
            base_probability=blend.base_probability,
            pattern_adjustment=blend.pattern_adjustment,
            matched_patterns=blend.matched_patterns,
            model_id=model.model_id,
            model_version=model.version,
            prediction_timestamp=now,
            valid_until=now + self.validity,
        )

        logger.debug(
            "failure_prediction_computed",
            instruction_id=data.instruction_id,
            probability=round(prediction.failure_probability, 4),
            tier=prediction.risk_tier.value,
            patterns=blend.matched_patterns,
        )
        return prediction

    def blend(
        self,
        data: PredictionInput,
        model: PredictionModel,
        features: Optional[dict[str, float]] = None,
        patterns: Optional[tuple[FailurePattern, ...]] = None,
    ) -> BlendResult:
        if features is None:
            features = self.features.extract(data)

        weights = model.member_weights or settings.ensemble_weights
        member_scores: dict[str, float] = {}
        weighted = 0.0
        total_weight = 0.0
        for member in self._members_for(model):
            score = clamp(member.score(features))
            member_scores[member.name] = score
            w = max(0.0, weights.get(member.name, 0.0))
            weighted += w * score
            total_weight += w

        base = clamp(weighted / total_weight) if total_weight > 0 else 0.0
        adjustment, matched = self.patterns.adjustment(data, patterns)

        return BlendResult(
            member_scores=member_scores,
            base_probability=base,
            pattern_adjustment=adjustment,
            probability=clamp(base + adjustment),
            matched_patterns=matched,
        )

    # ── Scalar outputs ────────────────────────────────────────────────────

    @staticmethod
    def expected_delay(data: PredictionInput, probability: float) -> float:
        delay = probability * 3.0 + 0.3 * data.historical.counterparty_avg_delay_days
        if data.market.market_stress_level in STRESSED_MARKETS:
            delay *= 1.5
        if data.market.holiday_adjustments:
            delay += 1.0
        return round(delay, 1)

    def confidence(self, data: PredictionInput, model: PredictionModel, now: datetime) -> float:
        confidence = BASE_CONFIDENCE
        if data.historical.counterparty_success_rate == 1.0:
            confidence *= 0.7
        if data.market.market_stress_level == MarketStressLevel.EXTREME:
            confidence *= 0.8
        if now - model.last_training_date > self.staleness:
            confidence *= 0.95
        return clamp(confidence, CONFIDENCE_FLOOR, CONFIDENCE_CEILING)

    # ── Explanation ───────────────────────────────────────────────────────

    @staticmethod
    def risk_factors(data: PredictionInput) -> list[RiskFactor]:
        hist = data.historical
        market = data.market
        factors: list[RiskFactor] = []

        if hist.counterparty_success_rate < 0.95:
            factors.append(RiskFactor(
                factor="Low Counterparty Success Rate",
                impact=1.0 - hist.counterparty_success_rate,
                weight=0.25,
                description=(
                    f"Counterparty settles successfully "
                    f"{hist.counterparty_success_rate:.1%} of the time"
                ),
                category=FactorCategory.COUNTERPARTY,
            ))
        if hist.counterparty_avg_delay_days > 1.0:
            factors.append(RiskFactor(
                factor="High Average Delay",
                impact=min(1.0, hist.counterparty_avg_delay_days / 5.0),
                weight=0.20,
                description=f"Counterparty settlements run {hist.counterparty_avg_delay_days:.1f} days late on average",
                category=FactorCategory.COUNTERPARTY,
            ))
        if market.volatility_index > 0.30:
            factors.append(RiskFactor(
                factor="High Market Volatility",
                impact=market.volatility_index,
                weight=0.12,
                description=f"Volatility index at {market.volatility_index:.2f}",
                category=FactorCategory.MARKET,
            ))
        if market.liquidity_index < 0.70:
            factors.append(RiskFactor(
                factor="Low Market Liquidity",
                impact=1.0 - market.liquidity_index,
                weight=0.10,
                description=f"Liquidity index at {market.liquidity_index:.2f}",
                category=FactorCategory.MARKET,
            ))
        if market.system_load > 0.80:
            factors.append(RiskFactor(
                factor="High System Load",
                impact=market.system_load,
                weight=0.02,
                description=f"Settlement systems at {market.system_load:.0%} capacity",
                category=FactorCategory.OPERATIONAL,
            ))
        if hist.security_type_success_rate < 0.98:
            factors.append(RiskFactor(
                factor="Security Type Risk",
                impact=1.0 - hist.security_type_success_rate,
                weight=0.15,
                description=(
                    f"{data.instruction.security_type} settles successfully "
                    f"{hist.security_type_success_rate:.1%} of the time"
                ),
                category=FactorCategory.SECURITY,
            ))

        factors.sort(key=lambda f: f.impact, reverse=True)
        return factors[:MAX_FACTORS]

    def mitigations(self, data: PredictionInput, probability: float) -> list[MitigationSuggestion]:
        factors = self.risk_factors(data)
        suggestions: list[MitigationSuggestion] = []

        if probability > 0.7:
            suggestions.append(MitigationSuggestion(
                suggestion="Initiate proactive communication with counterparty",
                expected_impact=0.3,
                implementation_cost=ImplementationCost.LOW,
                time_to_implement_hours=1,
                priority=SuggestionPriority.HIGH,
                category=SuggestionCategory.PREVENTION,
            ))
            suggestions.append(MitigationSuggestion(
                suggestion="Enable real-time monitoring and alerts",
                expected_impact=0.4,
                implementation_cost=ImplementationCost.LOW,
                time_to_implement_hours=0.5,
                priority=SuggestionPriority.HIGH,
                category=SuggestionCategory.MONITORING,
            ))

        for factor in factors:
            if factor.category == FactorCategory.COUNTERPARTY and "Success Rate" in factor.factor:
                suggestions.append(MitigationSuggestion(
                    suggestion="Require additional settlement confirmation",
                    expected_impact=0.25,
                    implementation_cost=ImplementationCost.LOW,
                    time_to_implement_hours=0.5,
                    priority=SuggestionPriority.MEDIUM,
                    category=SuggestionCategory.PREVENTION,
                ))
            elif factor.category == FactorCategory.MARKET and "Volatility" in factor.factor:
                suggestions.append(MitigationSuggestion(
                    suggestion="Consider settlement guarantee or insurance",
                    expected_impact=0.6,
                    implementation_cost=ImplementationCost.HIGH,
                    time_to_implement_hours=24,
                    priority=SuggestionPriority.MEDIUM,
                    category=SuggestionCategory.PREVENTION,
                ))
            elif factor.category == FactorCategory.OPERATIONAL:
                suggestions.append(MitigationSuggestion(
                    suggestion="Allocate dedicated operations resources",
                    expected_impact=0.3,
                    implementation_cost=ImplementationCost.MEDIUM,
                    time_to_implement_hours=2,
                    priority=SuggestionPriority.MEDIUM,
                    category=SuggestionCategory.RESPONSE,
                ))

        if data.instruction.notional_amount > self.large_notional:
            suggestions.append(MitigationSuggestion(
                suggestion="Break into smaller settlement batches",
                expected_impact=0.4,
                implementation_cost=ImplementationCost.MEDIUM,
                time_to_implement_hours=4,
                priority=SuggestionPriority.MEDIUM,
                category=SuggestionCategory.PREVENTION,
            ))

        suggestions.sort(
            key=lambda s: (PRIORITY_RANK[s.priority], s.expected_impact),
            reverse=True,
        )
        unique: list[MitigationSuggestion] = []
        seen: set[str] = set()
        for s in suggestions:
            if s.suggestion not in seen:
                seen.add(s.suggestion)
                unique.append(s)
        return unique[:MAX_SUGGESTIONS]

    @staticmethod
    def early_warnings(data: PredictionInput) -> list[EarlyWarningIndicator]:
        hist = data.historical
        market = data.market
        stressed = market.market_stress_level in STRESSED_MARKETS
        hours_left = max(0.0, data.hours_to_settlement)

        if market.system_load > 0.8:
            load_status = IndicatorStatus.CRITICAL
        elif market.system_load > 0.6:
            load_status = IndicatorStatus.WARNING
        else:
            load_status = IndicatorStatus.NORMAL

        return [
            EarlyWarningIndicator(
                indicator="Counterparty Response Time",
                current_value=hist.counterparty_avg_delay_days * 24,
                threshold=24,
                status=IndicatorStatus.WARNING if hist.counterparty_avg_delay_days > 1 else IndicatorStatus.NORMAL,
                trend=IndicatorTrend.DETERIORATING if hist.recent_failures > 0 else IndicatorTrend.STABLE,
                lead_time_hours=48,
            ),
            EarlyWarningIndicator(
                indicator="Market Liquidity Level",
                current_value=market.liquidity_index * 100,
                threshold=70,
                status=IndicatorStatus.WARNING if market.liquidity_index < 0.7 else IndicatorStatus.NORMAL,
                trend=IndicatorTrend.DETERIORATING if stressed else IndicatorTrend.STABLE,
                lead_time_hours=24,
            ),
            EarlyWarningIndicator(
                indicator="System Capacity Utilization",
                current_value=market.system_load * 100,
                threshold=80,
                status=load_status,
                trend=IndicatorTrend.STABLE,
                lead_time_hours=12,
            ),
            EarlyWarningIndicator(
                indicator="Settlement Window Remaining",
                current_value=round(hours_left, 2),
                threshold=24,
                status=IndicatorStatus.WARNING if hours_left < 24 else IndicatorStatus.NORMAL,
                trend=IndicatorTrend.DETERIORATING,
                lead_time_hours=6,
            ),
        ]

    # ── Internals ─────────────────────────────────────────────────────────

    def _members_for(self, model: PredictionModel) -> list[ScoringModel]:
        key = tuple(model.members)
        members = self._members.get(key)
        if members is None:
            members = build_members(list(key))
            self._members[key] = members
        return members
