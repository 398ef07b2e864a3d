"""Five-band risk tiering shared by predictions and risk assessments."""

from enum import StrEnum


class RiskTier(StrEnum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


# Lower bounds, highest first
TIER_CUTOFFS: tuple[tuple[float, RiskTier], ...] = (
    (0.8, RiskTier.VERY_HIGH),
    (0.6, RiskTier.HIGH),
    (0.4, RiskTier.MEDIUM),
    (0.2, RiskTier.LOW),
)

TIER_ORDER: dict[RiskTier, int] = {
    RiskTier.VERY_LOW: 0,
    RiskTier.LOW: 1,
    RiskTier.MEDIUM: 2,
    RiskTier.HIGH: 3,
    RiskTier.VERY_HIGH: 4,
}


def tier_for(score: float) -> RiskTier:
    """Map a [0, 1] score to its tier."""
    for cutoff, tier in TIER_CUTOFFS:
        if score >= cutoff:
            return tier
    return RiskTier.VERY_LOW


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))
