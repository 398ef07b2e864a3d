"""
Feature Extraction.

Flattens a PredictionInput into the named numeric features the scoring
members consume. Categorical attributes are mapped to fixed scores.
"""

import math

from settlerisk.prediction.schemas import PredictionInput
from settlerisk.schemas import MarketStressLevel, Priority, SettlementMethod

# ── Categorical scores ────────────────────────────────────────────────────

PRIORITY_SCORES: dict[str, float] = {
    Priority.LOW: 0.25,
    Priority.MEDIUM: 0.5,
    Priority.HIGH: 0.75,
    Priority.CRITICAL: 1.0,
}

SETTLEMENT_METHOD_SCORES: dict[str, float] = {
    SettlementMethod.DVP: 0.8,
    SettlementMethod.FOP: 0.6,
    SettlementMethod.RVP: 0.7,
    SettlementMethod.CASH: 0.9,
}
DEFAULT_METHOD_SCORE = 0.5

MARKET_STRESS_SCORES: dict[str, float] = {
    MarketStressLevel.NORMAL: 0.2,
    MarketStressLevel.ELEVATED: 0.4,
    MarketStressLevel.HIGH: 0.7,
    MarketStressLevel.EXTREME: 1.0,
}

# Order matters: positional members (the network) read the leading features.
FEATURE_ORDER: tuple[str, ...] = (
    "counterparty_success_rate",
    "counterparty_avg_delay",
    "recent_failures",
    "security_type_success_rate",
    "notional_amount_normalized",
    "market_volatility",
    "liquidity_index",
    "credit_spread",
    "system_load",
    "time_to_settlement",
    "settlement_day_of_week",
    "seasonal_factor",
    "priority_score",
    "settlement_method_score",
    "market_stress",
)


def normalize_notional(notional: float) -> float:
    return math.log10(notional + 1) / 10.0


class FeatureExtractor:
    """Stateless mapping from prediction input to feature vector."""

    def extract(self, data: PredictionInput) -> dict[str, float]:
        instruction = data.instruction
        historical = data.historical
        market = data.market

        time_to_settlement = (
            instruction.settlement_date - instruction.trade_date
        ).total_seconds() / 86400.0

        return {
            "counterparty_success_rate": historical.counterparty_success_rate,
            "counterparty_avg_delay": historical.counterparty_avg_delay_days,
            "recent_failures": float(historical.recent_failures),
            "security_type_success_rate": historical.security_type_success_rate,
            "notional_amount_normalized": normalize_notional(instruction.notional_amount),
            "market_volatility": market.volatility_index,
            "liquidity_index": market.liquidity_index,
            "credit_spread": market.credit_spread_index,
            "system_load": market.system_load,
            "time_to_settlement": time_to_settlement,
            "settlement_day_of_week": float(instruction.settlement_date.isoweekday() % 7),
            "seasonal_factor": historical.seasonal_factor,
            "priority_score": PRIORITY_SCORES.get(instruction.priority, 0.5),
            "settlement_method_score": SETTLEMENT_METHOD_SCORES.get(
                instruction.settlement_method, DEFAULT_METHOD_SCORE
            ),
            "market_stress": MARKET_STRESS_SCORES.get(market.market_stress_level, 0.2),
        }

    def vector(self, data: PredictionInput) -> list[float]:
        features = self.extract(data)
        return [features[name] for name in FEATURE_ORDER]
