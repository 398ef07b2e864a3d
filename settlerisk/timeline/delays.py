"""
Delay classification.

Cause is read from the operator's notes first (keyword match), then from
the party responsible for the milestone. Impact grows with how far past its
alert threshold the milestone is running and is raised for high priority
or large trades.
"""

from settlerisk.schemas import Priority, SettlementInstruction
from settlerisk.timeline.schemas import (
    DelayImpact,
    DelayType,
    ResponsibleParty,
    SettlementMilestone,
)
from settlerisk.timeline.templates import CRITICAL_PATH

# First match wins
CAUSE_KEYWORDS: tuple[tuple[tuple[str, ...], DelayType], ...] = (
    (("counterparty", "client", "broker"), DelayType.COUNTERPARTY),
    (("custodian", "custody", "depository"), DelayType.CUSTODIAN),
    (("system", "technical", "outage", "network"), DelayType.SYSTEM),
    (("market", "holiday", "liquidity"), DelayType.MARKET),
    (("regulatory", "compliance", "sanction"), DelayType.REGULATORY),
)

PARTY_CAUSES: dict[ResponsibleParty, DelayType] = {
    ResponsibleParty.COUNTERPARTY: DelayType.COUNTERPARTY,
    ResponsibleParty.CUSTODIAN: DelayType.CUSTODIAN,
    ResponsibleParty.CLEARING_HOUSE: DelayType.MARKET,
    ResponsibleParty.INTERNAL: DelayType.OPERATIONAL,
    ResponsibleParty.THIRD_PARTY: DelayType.OPERATIONAL,
}

MITIGATIONS: dict[DelayType, list[str]] = {
    DelayType.COUNTERPARTY: [
        "Contact counterparty operations team",
        "Escalate to counterparty relationship manager",
    ],
    DelayType.CUSTODIAN: [
        "Contact custodian relationship manager",
        "Verify account setup and funding",
    ],
    DelayType.SYSTEM: [
        "Engage IT support team",
        "Consider manual processing as backup",
    ],
    DelayType.MARKET: [
        "Review market calendar and cut-off times",
        "Monitor closely for resolution",
    ],
    DelayType.REGULATORY: [
        "Review regulatory documentation",
        "Engage compliance team",
    ],
    DelayType.OPERATIONAL: [
        "Monitor closely for resolution",
        "Prepare escalation if delay extends",
    ],
}

IMPACT_ORDER = (DelayImpact.LOW, DelayImpact.MEDIUM, DelayImpact.HIGH, DelayImpact.CRITICAL)


def classify_cause(milestone: SettlementMilestone, notes: str | None = None) -> DelayType:
    text = (notes or milestone.notes or "").lower()
    for keywords, delay_type in CAUSE_KEYWORDS:
        if any(k in text for k in keywords):
            return delay_type
    return PARTY_CAUSES.get(milestone.responsible, DelayType.OPERATIONAL)


def _raise(impact: DelayImpact, floor: DelayImpact) -> DelayImpact:
    return max(impact, floor, key=IMPACT_ORDER.index)


def assess_impact(
    milestone: SettlementMilestone,
    instruction: SettlementInstruction,
    minutes_late: float,
) -> DelayImpact:
    ratio = minutes_late / milestone.alert_threshold_minutes
    if ratio <= 1:
        impact = DelayImpact.LOW
    elif ratio <= 2:
        impact = DelayImpact.MEDIUM
    elif ratio <= 4:
        impact = DelayImpact.HIGH
    else:
        impact = DelayImpact.CRITICAL

    if instruction.priority == Priority.CRITICAL:
        impact = _raise(impact, DelayImpact.CRITICAL)
    elif instruction.priority == Priority.HIGH:
        impact = _raise(impact, DelayImpact.HIGH)

    if instruction.notional_amount > 10_000_000:
        impact = _raise(impact, DelayImpact.HIGH)
    elif instruction.notional_amount > 1_000_000:
        impact = _raise(impact, DelayImpact.MEDIUM)

    if milestone.milestone_type in CRITICAL_PATH:
        impact = _raise(impact, DelayImpact.MEDIUM)
    return impact


def mitigation_for(delay_type: DelayType) -> list[str]:
    return list(MITIGATIONS[delay_type])
