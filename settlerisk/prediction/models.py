"""
Scoring Members.

Each member maps a feature dict to a failure probability in [0, 1].
The coefficients shipped here are hand-set placeholders; trained weights
can be swapped in by registering another ScoringModel under a new name.

Members:
    linear   - logistic regression over weighted features
    rule     - additive decision rules with nested refinements
    network  - single hidden layer (tanh) with sigmoid output
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

import structlog

from settlerisk.exceptions import ConfigurationError
from settlerisk.prediction.features import FEATURE_ORDER
from settlerisk.schemas import clamp

logger = structlog.get_logger(__name__)


def sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


class ScoringModel(ABC):
    """A single ensemble member."""

    name: str = "base"

    @abstractmethod
    def score(self, features: dict[str, float]) -> float:
        """Return a failure probability in [0, 1]."""


# ── Linear ────────────────────────────────────────────────────────────────

LINEAR_WEIGHTS: dict[str, float] = {
    "counterparty_success_rate": 0.25,
    "counterparty_avg_delay": 0.20,
    "security_type_success_rate": 0.15,
    "market_volatility": 0.12,
    "liquidity_index": 0.10,
    "credit_spread": 0.08,
    "notional_amount_normalized": 0.05,
    "time_to_settlement": 0.03,
    "system_load": 0.02,
}
LINEAR_INTERCEPT = -2.5


class LinearModel(ScoringModel):
    name = "linear"

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        intercept: float = LINEAR_INTERCEPT,
    ):
        self.weights = dict(weights or LINEAR_WEIGHTS)
        self.intercept = intercept

    def score(self, features: dict[str, float]) -> float:
        logit = self.intercept + sum(
            w * features.get(name, 0.0) for name, w in self.weights.items()
        )
        return sigmoid(logit)


# ── Rule-based ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DecisionRule:
    """
    Adds ``increment`` when ``feature <op> threshold`` holds.

    Children are only evaluated when the parent fired.
    """
    feature: str
    operator: str               # "<" | ">"
    threshold: float
    increment: float
    children: tuple["DecisionRule", ...] = field(default_factory=tuple)

    def matches(self, features: dict[str, float]) -> bool:
        value = features.get(self.feature)
        if value is None:
            return False
        if self.operator == "<":
            return value < self.threshold
        if self.operator == ">":
            return value > self.threshold
        raise ConfigurationError(f"Unsupported rule operator: {self.operator}")


DEFAULT_RULES: tuple[DecisionRule, ...] = (
    DecisionRule(
        "counterparty_success_rate", "<", 0.95, 0.3,
        children=(DecisionRule("counterparty_avg_delay", ">", 1.0, 0.2),),
    ),
    DecisionRule(
        "market_volatility", ">", 0.3, 0.25,
        children=(DecisionRule("liquidity_index", "<", 0.7, 0.15),),
    ),
    DecisionRule("system_load", ">", 0.8, 0.2),
    DecisionRule("time_to_settlement", "<", 1.0, 0.15),
)


class RuleModel(ScoringModel):
    name = "rule"

    def __init__(
        self,
        rules: tuple[DecisionRule, ...] = DEFAULT_RULES,
        base_score: float = 0.1,
    ):
        self.rules = rules
        self.base_score = base_score

    def score(self, features: dict[str, float]) -> float:
        total = self.base_score + sum(self._apply(rule, features) for rule in self.rules)
        return clamp(total)

    def _apply(self, rule: DecisionRule, features: dict[str, float]) -> float:
        if not rule.matches(features):
            return 0.0
        return rule.increment + sum(self._apply(child, features) for child in rule.children)


# ── Network ───────────────────────────────────────────────────────────────

HIDDEN_WEIGHTS: tuple[float, ...] = (0.3, -0.4, 0.5, -0.2, 0.6, -0.3, 0.4, 0.2, -0.1)
OUTPUT_WEIGHTS: tuple[float, ...] = (0.8, -0.6, 0.7)


class NetworkModel(ScoringModel):
    """
    Tiny feed-forward scorer.

    Hidden unit i is tanh(w1[i] * x_i) over the leading features in
    FEATURE_ORDER; the output layer combines the first len(w2) hidden units.
    """

    name = "network"

    def __init__(
        self,
        hidden_weights: tuple[float, ...] = HIDDEN_WEIGHTS,
        output_weights: tuple[float, ...] = OUTPUT_WEIGHTS,
        input_features: tuple[str, ...] = FEATURE_ORDER,
    ):
        if len(output_weights) > len(hidden_weights):
            raise ConfigurationError("Output layer is wider than the hidden layer")
        if len(hidden_weights) > len(input_features):
            raise ConfigurationError("Hidden layer needs one input feature per unit")
        self.hidden_weights = hidden_weights
        self.output_weights = output_weights
        self.input_features = input_features[: len(hidden_weights)]

    def score(self, features: dict[str, float]) -> float:
        hidden = [
            math.tanh(w * features.get(name, 0.0))
            for w, name in zip(self.hidden_weights, self.input_features)
        ]
        output = sum(w * h for w, h in zip(self.output_weights, hidden))
        return sigmoid(output)


# ── Registry ──────────────────────────────────────────────────────────────

MEMBER_FACTORIES: dict[str, Callable[[], ScoringModel]] = {
    LinearModel.name: LinearModel,
    RuleModel.name: RuleModel,
    NetworkModel.name: NetworkModel,
}


def register_member(name: str, factory: Callable[[], ScoringModel]) -> None:
    """Make a scoring member available to model descriptors by name."""
    MEMBER_FACTORIES[name] = factory
    logger.info("scoring_member_registered", member=name)


def build_members(names: list[str]) -> list[ScoringModel]:
    unknown = [n for n in names if n not in MEMBER_FACTORIES]
    if unknown:
        raise ConfigurationError(
            f"Unknown scoring members: {', '.join(unknown)}",
            available=sorted(MEMBER_FACTORIES),
        )
    return [MEMBER_FACTORIES[n]() for n in names]
