"""
Failure Pattern Library.

A pattern is a weighted set of conditions over named input fields. The
match fraction is the matched condition weight over the total condition
weight. Patterns whose match exceeds the threshold add
``frequency × avg_impact × match`` to the ensemble probability.

Registration takes a lock; evaluation reads an immutable snapshot so a
prediction never sees a half-registered pattern.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import structlog

from settlerisk.config import settings
from settlerisk.prediction.features import FeatureExtractor
from settlerisk.prediction.schemas import (
    ConditionOperator,
    FailurePattern,
    PatternCondition,
    PredictionInput,
)
from settlerisk.schemas import utcnow

logger = structlog.get_logger(__name__)

WEEKDAY_NAMES = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

FIELD_ACCESSORS: dict[str, Callable[[PredictionInput], Any]] = {
    "settlement_day_of_week": lambda d: WEEKDAY_NAMES[d.instruction.settlement_date.weekday()],
    "hours_to_settlement": lambda d: d.hours_to_settlement,
    "notional_amount": lambda d: d.instruction.notional_amount,
    "security_type": lambda d: d.instruction.security_type,
    "settlement_method": lambda d: d.instruction.settlement_method,
    "currency": lambda d: d.instruction.currency,
    "priority": lambda d: d.instruction.priority,
    "counterparty_id": lambda d: d.instruction.counterparty_id,
    "custodian_id": lambda d: d.instruction.custodian_id,
    "volatility_index": lambda d: d.market.volatility_index,
    "liquidity_index": lambda d: d.market.liquidity_index,
    "credit_spread_index": lambda d: d.market.credit_spread_index,
    "system_load": lambda d: d.market.system_load,
    "market_stress_level": lambda d: d.market.market_stress_level,
    "holiday_adjustments": lambda d: d.market.holiday_adjustments,
    "time_of_day": lambda d: d.market.time_of_day,
    "counterparty_success_rate": lambda d: d.historical.counterparty_success_rate,
    "counterparty_avg_delay_days": lambda d: d.historical.counterparty_avg_delay_days,
    "counterparty_history_months": lambda d: d.historical.counterparty_history_months,
    "security_type_success_rate": lambda d: d.historical.security_type_success_rate,
    "recent_failures": lambda d: d.historical.recent_failures,
    "volume_pattern": lambda d: d.historical.volume_pattern,
}

_MISSING = object()


def default_patterns() -> list[FailurePattern]:
    return [
        FailurePattern(
            pattern_id="pattern_weekend_settlement",
            pattern_name="Weekend Settlement Risk",
            description="Settlements due on Friday with less than a day of runway",
            frequency=0.15,
            avg_impact=0.3,
            conditions=[
                PatternCondition(field="settlement_day_of_week", operator=ConditionOperator.EQUALS, value="FRIDAY", weight=0.6),
                PatternCondition(field="hours_to_settlement", operator=ConditionOperator.LESS_THAN, value=24, weight=0.4),
            ],
            prevention_measures=[
                "Expedite Friday settlements",
                "Pre-position securities and cash before the weekend",
            ],
        ),
        FailurePattern(
            pattern_id="pattern_high_volatility",
            pattern_name="High Volatility Settlement Stress",
            description="Volatile markets strain counterparty funding and delivery",
            frequency=0.08,
            avg_impact=0.45,
            conditions=[
                PatternCondition(field="volatility_index", operator=ConditionOperator.GREATER_THAN, value=0.4, weight=0.7),
                PatternCondition(field="market_stress_level", operator=ConditionOperator.EQUALS, value="HIGH", weight=0.3),
            ],
            prevention_measures=[
                "Increase margin requirements",
                "Enhanced monitoring of counterparty positions",
            ],
        ),
        FailurePattern(
            pattern_id="pattern_new_counterparty",
            pattern_name="New Counterparty Risk",
            description="Counterparties with a short settlement history fail more often",
            frequency=0.22,
            avg_impact=0.35,
            conditions=[
                PatternCondition(field="counterparty_history_months", operator=ConditionOperator.LESS_THAN, value=6, weight=0.8),
                PatternCondition(field="counterparty_success_rate", operator=ConditionOperator.LESS_THAN, value=0.95, weight=0.2),
            ],
            prevention_measures=[
                "Enhanced due diligence",
                "Require settlement confirmations",
                "Consider credit limits",
            ],
        ),
        FailurePattern(
            pattern_id="pattern_large_trade",
            pattern_name="Large Trade Settlement Risk",
            description="Very large or structured trades are harder to settle in one piece",
            frequency=0.05,
            avg_impact=0.60,
            conditions=[
                PatternCondition(field="notional_amount", operator=ConditionOperator.GREATER_THAN, value=50_000_000, weight=0.6),
                PatternCondition(field="security_type", operator=ConditionOperator.EQUALS, value="STRUCTURED_PRODUCT", weight=0.4),
            ],
            prevention_measures=[
                "Split into smaller settlements",
                "Pre-arrange financing",
                "Use settlement guarantees",
            ],
        ),
    ]


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def condition_holds(condition: PatternCondition, actual: Any) -> bool:
    """Evaluate one condition against an already resolved field value."""
    if actual is None or actual is _MISSING:
        return False

    op = condition.operator
    expected = condition.value

    if op == ConditionOperator.EQUALS:
        if isinstance(actual, str) or isinstance(expected, str):
            return str(actual).upper() == str(expected).upper()
        return actual == expected

    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        a, e = _as_float(actual), _as_float(expected)
        if a is None or e is None:
            return False
        return a > e if op == ConditionOperator.GREATER_THAN else a < e

    if op == ConditionOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        a, low, high = _as_float(actual), _as_float(expected[0]), _as_float(expected[1])
        if a is None or low is None or high is None:
            return False
        return low <= a <= high

    if op == ConditionOperator.CONTAINS:
        if isinstance(expected, (list, tuple, set, frozenset)):
            return str(actual).upper() in {str(v).upper() for v in expected}
        return str(expected).upper() in str(actual).upper()

    return False


class PatternLibrary:
    """Registry and evaluator for failure patterns."""

    def __init__(
        self,
        patterns: Optional[Iterable[FailurePattern]] = None,
        match_threshold: Optional[float] = None,
        detect_min_share: Optional[float] = None,
    ):
        initial = default_patterns() if patterns is None else list(patterns)
        self._patterns: dict[str, FailurePattern] = {p.pattern_id: p for p in initial}
        self._snapshot: tuple[FailurePattern, ...] = tuple(self._patterns.values())
        self._lock = asyncio.Lock()
        self._features = FeatureExtractor()
        self.match_threshold = (
            settings.pattern_match_threshold if match_threshold is None else match_threshold
        )
        self.detect_min_share = (
            settings.pattern_detect_min_share if detect_min_share is None else detect_min_share
        )

    # ── Registration ──────────────────────────────────────────────────────

    async def register(self, pattern: FailurePattern) -> FailurePattern:
        async with self._lock:
            existing = self._patterns.get(pattern.pattern_id)
            if existing is not None:
                pattern.identified_count = max(pattern.identified_count, existing.identified_count)
                pattern.last_seen = pattern.last_seen or existing.last_seen
            self._patterns[pattern.pattern_id] = pattern
            self._snapshot = tuple(self._patterns.values())

        if pattern.total_weight == 0:
            logger.warning("pattern_ineffective", pattern_id=pattern.pattern_id, reason="zero_total_weight")
        logger.info(
            "failure_pattern_registered",
            pattern_id=pattern.pattern_id,
            pattern_name=pattern.pattern_name,
            conditions=len(pattern.conditions),
        )
        return pattern

    def snapshot(self) -> tuple[FailurePattern, ...]:
        return self._snapshot

    def list_patterns(self) -> list[FailurePattern]:
        return list(self._snapshot)

    def get(self, pattern_id: str) -> Optional[FailurePattern]:
        return self._patterns.get(pattern_id)

    # ── Evaluation ────────────────────────────────────────────────────────

    def resolve(self, field_name: str, data: PredictionInput, features: Optional[dict] = None) -> Any:
        accessor = FIELD_ACCESSORS.get(field_name)
        if accessor is not None:
            return accessor(data)
        if features is None:
            features = self._features.extract(data)
        return features.get(field_name, _MISSING)

    def evaluate(
        self,
        pattern: FailurePattern,
        data: PredictionInput,
        features: Optional[dict] = None,
    ) -> float:
        """Weighted fraction of the pattern's conditions that hold, in [0, 1]."""
        total = pattern.total_weight
        if total <= 0:
            logger.warning("pattern_ineffective", pattern_id=pattern.pattern_id, reason="zero_total_weight")
            return 0.0

        if features is None:
            features = self._features.extract(data)
        matched = sum(
            c.weight
            for c in pattern.conditions
            if condition_holds(c, self.resolve(c.field, data, features))
        )
        return min(1.0, matched / total)

    def matches(
        self,
        data: PredictionInput,
        patterns: Optional[tuple[FailurePattern, ...]] = None,
    ) -> list[tuple[FailurePattern, float]]:
        """Patterns whose match fraction exceeds the threshold."""
        features = self._features.extract(data)
        hits = []
        for pattern in patterns if patterns is not None else self._snapshot:
            fraction = self.evaluate(pattern, data, features)
            if fraction > self.match_threshold:
                hits.append((pattern, fraction))
        return hits

    def adjustment(
        self,
        data: PredictionInput,
        patterns: Optional[tuple[FailurePattern, ...]] = None,
    ) -> tuple[float, list[str]]:
        """Total probability uplift and the names of contributing patterns."""
        total = 0.0
        names = []
        for pattern, fraction in self.matches(data, patterns):
            total += pattern.frequency * pattern.avg_impact * fraction
            names.append(pattern.pattern_name)
        return total, names

    def detect(self, history: list[PredictionInput]) -> list[FailurePattern]:
        """
        Patterns recurring across a set of historical inputs.

        A pattern is reported when it matches at least ``detect_min_share`` of
        the inputs; results are ranked by hit count. Pure: counts are untouched.
        """
        if not history:
            return []

        ranked: list[tuple[int, FailurePattern]] = []
        for pattern in self._snapshot:
            hits = sum(
                1 for data in history
                if self.evaluate(pattern, data) > self.match_threshold
            )
            if hits and hits / len(history) >= self.detect_min_share:
                ranked.append((hits, pattern))

        ranked.sort(key=lambda item: item[0], reverse=True)
        return [pattern for _, pattern in ranked]

    async def observe(self, data: PredictionInput, seen_at: Optional[datetime] = None) -> list[FailurePattern]:
        """Record that a realised failure or delay matched these patterns."""
        seen_at = seen_at or utcnow()
        matched = [pattern for pattern, _ in self.matches(data)]
        async with self._lock:
            for pattern in matched:
                pattern.identified_count += 1
                pattern.last_seen = seen_at
        if matched:
            logger.info(
                "failure_patterns_observed",
                instruction_id=data.instruction_id,
                patterns=[p.pattern_id for p in matched],
            )
        return matched
