"""
Timeline Tracking Schemas.

Milestones, delays, alerts, SLAs and the read-only timeline view.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from settlerisk.schemas import InstructionStatus, SettlementInstruction, utcnow


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ── Enums ─────────────────────────────────────────────────────────────────


class MilestoneType(StrEnum):
    TRADE_CAPTURE = "TRADE_CAPTURE"
    TRADE_CONFIRMATION = "TRADE_CONFIRMATION"
    AFFIRMATION = "AFFIRMATION"
    ALLOCATION = "ALLOCATION"
    SETTLEMENT_INSTRUCTION_SENT = "SETTLEMENT_INSTRUCTION_SENT"
    CUSTODY_CONFIRMATION = "CUSTODY_CONFIRMATION"
    CASH_CONFIRMATION = "CASH_CONFIRMATION"
    FINAL_SETTLEMENT = "FINAL_SETTLEMENT"
    RECONCILIATION = "RECONCILIATION"
    REPORTING = "REPORTING"


class MilestoneStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    DELAYED = "DELAYED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ResponsibleParty(StrEnum):
    INTERNAL = "INTERNAL"
    COUNTERPARTY = "COUNTERPARTY"
    CUSTODIAN = "CUSTODIAN"
    CLEARING_HOUSE = "CLEARING_HOUSE"
    THIRD_PARTY = "THIRD_PARTY"


class DelayType(StrEnum):
    COUNTERPARTY = "COUNTERPARTY"
    CUSTODIAN = "CUSTODIAN"
    SYSTEM = "SYSTEM"
    MARKET = "MARKET"
    REGULATORY = "REGULATORY"
    OPERATIONAL = "OPERATIONAL"


class DelayImpact(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertType(StrEnum):
    DELAY = "DELAY"
    FAILURE = "FAILURE"
    EXCEPTION = "EXCEPTION"
    DEADLINE_APPROACHING = "DEADLINE_APPROACHING"
    SLA_BREACH = "SLA_BREACH"


class AlertSeverity(StrEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


SEVERITY_RANK: dict[AlertSeverity, int] = {
    AlertSeverity.INFO: 1,
    AlertSeverity.WARNING: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertState(StrEnum):
    UNACKNOWLEDGED = "UNACKNOWLEDGED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class ReportPeriod(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


# ── Records ───────────────────────────────────────────────────────────────


class SettlementMilestone(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    milestone_id: str = Field(default_factory=lambda: _new_id("ms"))
    instruction_id: str
    milestone_type: MilestoneType
    sequence: int
    expected_time: datetime
    actual_time: Optional[datetime] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    responsible: ResponsibleParty
    notes: Optional[str] = None
    alert_threshold_minutes: int = Field(gt=0)

    @property
    def is_open(self) -> bool:
        return self.status in (MilestoneStatus.PENDING, MilestoneStatus.DELAYED)

    def minutes_late(self, at: datetime) -> float:
        return max(0.0, (at - self.expected_time).total_seconds() / 60.0)


class SettlementDelay(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    delay_id: str = Field(default_factory=lambda: _new_id("delay"))
    instruction_id: str
    milestone_id: str
    milestone_type: MilestoneType
    delay_type: DelayType
    delay_reason: str
    estimated_duration_minutes: float
    actual_duration_minutes: Optional[float] = None
    impact: DelayImpact
    mitigation: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


class SettlementAlert(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    alert_id: str = Field(default_factory=lambda: _new_id("salert"))
    instruction_id: str
    milestone_id: Optional[str] = None
    milestone_type: Optional[MilestoneType] = None
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    state: AlertState = AlertState.UNACKNOWLEDGED
    created_at: datetime = Field(default_factory=utcnow)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state != AlertState.RESOLVED


class SettlementSLA(BaseModel):
    model_config = ConfigDict(frozen=True)

    security_type: str
    settlement_method: str
    target_settlement_hours: float = Field(gt=0)
    warning_ratio: float = Field(default=0.80, gt=0)
    critical_ratio: float = Field(default=0.95, gt=0)
    max_allowable_delay_hours: float = Field(ge=0)


class SettlementTimeline(BaseModel):
    """Read-only view of one instruction's lifecycle."""

    instruction: SettlementInstruction
    milestones: list[SettlementMilestone]
    delays: list[SettlementDelay]
    sla: SettlementSLA
    progress_pct: float
    estimated_completion: Optional[datetime]
    critical_path: list[MilestoneType]
    version: int


# ── Scan & reporting ──────────────────────────────────────────────────────


class ScanError(BaseModel):
    instruction_id: str
    error: str


class ScanReport(BaseModel):
    scanned_at: datetime
    instructions_scanned: int = 0
    alerts_raised: int = 0
    delays_recorded: int = 0
    errors: list[ScanError] = Field(default_factory=list)


class ReasonCount(BaseModel):
    reason: str
    count: int


class CounterpartyPerformance(BaseModel):
    counterparty_id: str
    total: int
    late_or_failed: int
    failure_rate: float


class PerformanceReport(BaseModel):
    period: ReportPeriod
    period_start: datetime
    period_end: datetime
    total_instructions: int
    settled_on_time: int
    settled_late: int
    failed: int
    average_settlement_hours: float
    sla_compliance: float = Field(ge=0.0, le=1.0)
    top_delay_reasons: list[ReasonCount] = Field(default_factory=list)
    worst_counterparties: list[CounterpartyPerformance] = Field(default_factory=list)
    status_breakdown: dict[InstructionStatus, int] = Field(default_factory=dict)
