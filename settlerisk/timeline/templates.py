"""
Milestone templates and default SLAs.

A template lists, per security type, each milestone's offset from trade
date (hours), its alert threshold (minutes past expected time) and the
responsible party. Offsets are scaled so FINAL_SETTLEMENT lands on the
SLA target, which lets a custom SLA stretch or compress the whole timeline.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from settlerisk.schemas import SecurityType, SettlementInstruction, SettlementMethod
from settlerisk.timeline.schemas import (
    MilestoneType,
    ResponsibleParty,
    SettlementMilestone,
    SettlementSLA,
)

M = MilestoneType
R = ResponsibleParty


@dataclass(frozen=True)
class MilestoneTemplate:
    milestone_type: MilestoneType
    offset_hours: float
    alert_threshold_minutes: int
    responsible: ResponsibleParty


def _t(milestone_type, offset, threshold, responsible) -> MilestoneTemplate:
    return MilestoneTemplate(milestone_type, offset, threshold, responsible)


TEMPLATES: dict[str, tuple[MilestoneTemplate, ...]] = {
    SecurityType.EQUITY: (
        _t(M.TRADE_CAPTURE, 0, 30, R.INTERNAL),
        _t(M.TRADE_CONFIRMATION, 0.5, 60, R.COUNTERPARTY),
        _t(M.AFFIRMATION, 1, 120, R.COUNTERPARTY),
        _t(M.ALLOCATION, 2, 180, R.INTERNAL),
        _t(M.SETTLEMENT_INSTRUCTION_SENT, 24, 60, R.INTERNAL),
        _t(M.CUSTODY_CONFIRMATION, 48, 240, R.CUSTODIAN),
        _t(M.CASH_CONFIRMATION, 48, 240, R.CUSTODIAN),
        _t(M.FINAL_SETTLEMENT, 48, 360, R.CUSTODIAN),
        _t(M.RECONCILIATION, 72, 120, R.INTERNAL),
        _t(M.REPORTING, 96, 240, R.INTERNAL),
    ),
    SecurityType.CORPORATE_BOND: (
        _t(M.TRADE_CAPTURE, 0, 30, R.INTERNAL),
        _t(M.TRADE_CONFIRMATION, 0.5, 60, R.COUNTERPARTY),
        _t(M.AFFIRMATION, 2, 180, R.COUNTERPARTY),
        _t(M.ALLOCATION, 4, 240, R.INTERNAL),
        _t(M.SETTLEMENT_INSTRUCTION_SENT, 72, 120, R.INTERNAL),
        _t(M.CUSTODY_CONFIRMATION, 72, 360, R.CUSTODIAN),
        _t(M.CASH_CONFIRMATION, 72, 360, R.CUSTODIAN),
        _t(M.FINAL_SETTLEMENT, 72, 480, R.CUSTODIAN),
        _t(M.RECONCILIATION, 96, 180, R.INTERNAL),
        _t(M.REPORTING, 120, 240, R.INTERNAL),
    ),
    SecurityType.GOVERNMENT_BOND: (
        _t(M.TRADE_CAPTURE, 0, 30, R.INTERNAL),
        _t(M.TRADE_CONFIRMATION, 0.25, 30, R.COUNTERPARTY),
        _t(M.AFFIRMATION, 0.5, 60, R.COUNTERPARTY),
        _t(M.ALLOCATION, 1, 90, R.INTERNAL),
        _t(M.SETTLEMENT_INSTRUCTION_SENT, 24, 60, R.INTERNAL),
        _t(M.CUSTODY_CONFIRMATION, 24, 180, R.CUSTODIAN),
        _t(M.CASH_CONFIRMATION, 24, 180, R.CUSTODIAN),
        _t(M.FINAL_SETTLEMENT, 24, 240, R.CUSTODIAN),
        _t(M.RECONCILIATION, 48, 120, R.INTERNAL),
        _t(M.REPORTING, 72, 240, R.INTERNAL),
    ),
}
# Structured products follow the bond workflow on a longer clock
TEMPLATES[SecurityType.STRUCTURED_PRODUCT] = TEMPLATES[SecurityType.CORPORATE_BOND]

DEFAULT_TEMPLATE = SecurityType.EQUITY

# Dropped per settlement method
METHOD_EXCLUSIONS: dict[str, frozenset[MilestoneType]] = {
    SettlementMethod.FOP: frozenset({M.CASH_CONFIRMATION}),
    SettlementMethod.CASH: frozenset({M.CUSTODY_CONFIRMATION}),
}

TERMINAL_MILESTONE = M.FINAL_SETTLEMENT

CRITICAL_PATH: tuple[MilestoneType, ...] = (
    M.TRADE_CONFIRMATION,
    M.AFFIRMATION,
    M.SETTLEMENT_INSTRUCTION_SENT,
    M.FINAL_SETTLEMENT,
)


DEFAULT_SLAS: tuple[SettlementSLA, ...] = (
    SettlementSLA(
        security_type=SecurityType.EQUITY, settlement_method=SettlementMethod.DVP,
        target_settlement_hours=48, warning_ratio=0.80, critical_ratio=0.95,
        max_allowable_delay_hours=72,
    ),
    SettlementSLA(
        security_type=SecurityType.CORPORATE_BOND, settlement_method=SettlementMethod.DVP,
        target_settlement_hours=72, warning_ratio=0.85, critical_ratio=0.95,
        max_allowable_delay_hours=120,
    ),
    SettlementSLA(
        security_type=SecurityType.GOVERNMENT_BOND, settlement_method=SettlementMethod.DVP,
        target_settlement_hours=24, warning_ratio=0.85, critical_ratio=0.95,
        max_allowable_delay_hours=48,
    ),
    SettlementSLA(
        security_type=SecurityType.STRUCTURED_PRODUCT, settlement_method=SettlementMethod.DVP,
        target_settlement_hours=96, warning_ratio=0.80, critical_ratio=0.95,
        max_allowable_delay_hours=144,
    ),
)


def sla_key(security_type: str, settlement_method: str) -> str:
    return f"{security_type}_{settlement_method}"


class SLARegistry:
    """SLA lookup by (security type, method) with DVP and EQUITY fallbacks."""

    def __init__(self, slas: tuple[SettlementSLA, ...] = DEFAULT_SLAS):
        self._slas: dict[str, SettlementSLA] = {}
        for sla in slas:
            self.register(sla)

    def register(self, sla: SettlementSLA) -> None:
        self._slas[sla_key(sla.security_type, sla.settlement_method)] = sla

    def lookup(self, security_type: str, settlement_method: str) -> SettlementSLA:
        for key in (
            sla_key(security_type, settlement_method),
            sla_key(security_type, SettlementMethod.DVP),
            sla_key(SecurityType.EQUITY, SettlementMethod.DVP),
        ):
            sla = self._slas.get(key)
            if sla is not None:
                return sla
        raise LookupError("No default EQUITY_DVP SLA registered")

    def all(self) -> list[SettlementSLA]:
        return list(self._slas.values())


def template_for(security_type: str, settlement_method: str) -> list[MilestoneTemplate]:
    steps = TEMPLATES.get(security_type, TEMPLATES[DEFAULT_TEMPLATE])
    excluded = METHOD_EXCLUSIONS.get(settlement_method, frozenset())
    return [s for s in steps if s.milestone_type not in excluded]


def build_milestones(
    instruction: SettlementInstruction,
    sla: SettlementSLA,
    start: datetime | None = None,
) -> list[SettlementMilestone]:
    """Instantiate the ordered milestone list for an instruction."""
    steps = template_for(instruction.security_type, instruction.settlement_method)
    final_offset = next(
        (s.offset_hours for s in steps if s.milestone_type == TERMINAL_MILESTONE),
        sla.target_settlement_hours,
    )
    scale = sla.target_settlement_hours / final_offset if final_offset else 1.0
    start = start or instruction.trade_date

    return [
        SettlementMilestone(
            instruction_id=instruction.instruction_id,
            milestone_type=step.milestone_type,
            sequence=index,
            expected_time=start + timedelta(hours=step.offset_hours * scale),
            responsible=step.responsible,
            alert_threshold_minutes=step.alert_threshold_minutes,
        )
        for index, step in enumerate(steps, start=1)
    ]
