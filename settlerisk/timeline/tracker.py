"""
Settlement Timeline Tracker.

Holds every instruction's milestone timeline, applies milestone updates,
records delays, raises alerts and runs the periodic overdue scan.

Concurrency: one asyncio.Lock per instruction guards its milestones,
delays and derived status, and a version counter is bumped on every
mutation. Events are published after the lock is released.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.events import Event, EventType, InMemoryEventBus
from settlerisk.exceptions import (
    AlertNotFound,
    DuplicateInstruction,
    InstructionNotFound,
    MilestoneNotFound,
)
from settlerisk.schemas import InstructionStatus, SettlementInstruction, ensure_utc, utcnow
from settlerisk.timeline import delays as delay_rules
from settlerisk.timeline.schemas import (
    SEVERITY_RANK,
    AlertSeverity,
    AlertState,
    AlertType,
    DelayImpact,
    MilestoneStatus,
    MilestoneType,
    PerformanceReport,
    ReportPeriod,
    ScanError,
    ScanReport,
    SettlementAlert,
    SettlementDelay,
    SettlementMilestone,
    SettlementSLA,
    SettlementTimeline,
)
from settlerisk.timeline.reporting import build_performance_report
from settlerisk.timeline.state import check_transition, derive_instruction_status
from settlerisk.timeline.templates import (
    CRITICAL_PATH,
    TERMINAL_MILESTONE,
    SLARegistry,
    build_milestones,
)

logger = structlog.get_logger(__name__)

IMPACT_SEVERITY: dict[DelayImpact, AlertSeverity] = {
    DelayImpact.LOW: AlertSeverity.INFO,
    DelayImpact.MEDIUM: AlertSeverity.WARNING,
    DelayImpact.HIGH: AlertSeverity.WARNING,
    DelayImpact.CRITICAL: AlertSeverity.CRITICAL,
}

DONE_STATUSES = frozenset({MilestoneStatus.COMPLETED, MilestoneStatus.SKIPPED})


@dataclass
class _Timeline:
    instruction: SettlementInstruction
    milestones: list[SettlementMilestone]
    sla: SettlementSLA
    delays: list[SettlementDelay] = field(default_factory=list)
    alert_ids: list[str] = field(default_factory=list)
    # milestone_id → highest severity already alerted
    alerted: dict[str, AlertSeverity] = field(default_factory=dict)
    version: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def milestone(self, milestone_type: MilestoneType) -> Optional[SettlementMilestone]:
        return next((m for m in self.milestones if m.milestone_type == milestone_type), None)

    def open_delay(self, milestone_id: str) -> Optional[SettlementDelay]:
        return next(
            (d for d in self.delays if d.milestone_id == milestone_id and d.is_open),
            None,
        )


class TimelineTracker:
    """Milestone lifecycle, delays, alerts and the periodic scan."""

    def __init__(
        self,
        bus: InMemoryEventBus,
        sla_registry: Optional[SLARegistry] = None,
        approach_minutes: Optional[int] = None,
        critical_overdue_hours: Optional[float] = None,
    ):
        self.bus = bus
        self.slas = sla_registry or SLARegistry()
        self.approach_window = timedelta(
            minutes=settings.deadline_approach_minutes if approach_minutes is None else approach_minutes
        )
        # Overdue this long is CRITICAL whatever the SLA target
        self.critical_overdue_hours = (
            settings.sla_critical_overdue_hours
            if critical_overdue_hours is None else critical_overdue_hours
        )
        self._timelines: dict[str, _Timeline] = {}
        self._alerts: dict[str, SettlementAlert] = {}

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def create_timeline(self, instruction: SettlementInstruction) -> SettlementTimeline:
        """Instantiate the milestone timeline for a newly captured instruction."""
        if instruction.instruction_id in self._timelines:
            raise DuplicateInstruction(instruction.instruction_id)

        instruction = instruction.model_copy(deep=True)
        sla = self.slas.lookup(instruction.security_type, instruction.settlement_method)
        milestones = build_milestones(instruction, sla)
        instruction.status = derive_instruction_status(milestones, instruction.status)
        timeline = _Timeline(instruction=instruction, milestones=milestones, sla=sla)
        self._timelines[instruction.instruction_id] = timeline

        logger.info(
            "settlement_timeline_created",
            instruction_id=instruction.instruction_id,
            security_type=instruction.security_type,
            settlement_method=instruction.settlement_method.value,
            milestones=len(milestones),
            sla_hours=sla.target_settlement_hours,
        )
        await self.bus.emit(
            EventType.TIMELINE_CREATED,
            correlation_id=instruction.instruction_id,
            instruction_id=instruction.instruction_id,
            counterparty_id=instruction.counterparty_id,
            milestones=[m.milestone_type.value for m in milestones],
            expected_settlement=milestones[-1].expected_time.isoformat() if milestones else None,
        )
        return self._view(timeline)

    async def register_instruction(self, instruction: SettlementInstruction) -> SettlementInstruction:
        """Capture an instruction; returns the tracked copy."""
        await self.create_timeline(instruction)
        return self.get_instruction(instruction.instruction_id)

    def register_sla(self, sla: SettlementSLA) -> None:
        self.slas.register(sla)
        logger.info(
            "settlement_sla_registered",
            security_type=sla.security_type,
            settlement_method=sla.settlement_method,
            target_hours=sla.target_settlement_hours,
        )

    async def update_milestone_status(
        self,
        instruction_id: str,
        milestone_type: MilestoneType,
        status: MilestoneStatus,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> SettlementMilestone:
        """
        Move a milestone to a new status.

        Repeating the current status is a no-op: no second delay, alert or event.

        Raises:
            InstructionNotFound, MilestoneNotFound, InvalidMilestoneTransition
        """
        timeline = self._get(instruction_id)
        events: list[Event] = []

        async with timeline.lock:
            milestone = timeline.milestone(milestone_type)
            if milestone is None:
                raise MilestoneNotFound(instruction_id, milestone_type.value)
            if not check_transition(milestone, status):
                logger.debug(
                    "milestone_update_noop",
                    instruction_id=instruction_id,
                    milestone=milestone_type.value,
                    status=status.value,
                )
                return milestone.model_copy()

            at = ensure_utc(at) or utcnow()
            previous = milestone.status
            milestone.status = status
            if notes:
                milestone.notes = notes
            if status != MilestoneStatus.DELAYED:
                milestone.actual_time = at

            if status in (MilestoneStatus.DELAYED, MilestoneStatus.FAILED):
                delay, created = self._record_delay(timeline, milestone, at, notes)
                if created:
                    events.append(self._delay_event(delay))
                if status == MilestoneStatus.FAILED:
                    alert = self._raise_alert(
                        timeline, milestone, AlertType.FAILURE, AlertSeverity.CRITICAL,
                        f"Milestone {milestone_type.value} failed"
                        + (f": {notes}" if notes else ""),
                        at,
                    )
                else:
                    alert = self._raise_alert(
                        timeline, milestone, AlertType.DELAY, IMPACT_SEVERITY[delay.impact],
                        f"Milestone {milestone_type.value} delayed ({delay.delay_type.value.lower()})",
                        at,
                    )
                events.append(self._alert_event(alert))

            elif status == MilestoneStatus.COMPLETED:
                delay = timeline.open_delay(milestone.milestone_id)
                if delay is not None:
                    delay.resolved_at = at
                    delay.actual_duration_minutes = round(milestone.minutes_late(at), 1)
                    events.append(Event(
                        event_type=EventType.DELAY_RESOLVED,
                        correlation_id=instruction_id,
                        payload={
                            "delay_id": delay.delay_id,
                            "instruction_id": instruction_id,
                            "milestone": milestone_type.value,
                            "actual_duration_minutes": delay.actual_duration_minutes,
                        },
                    ))
                if milestone_type == TERMINAL_MILESTONE:
                    timeline.instruction.actual_settlement_time = at

            status_event = self._refresh_status(timeline, at)
            timeline.version += 1
            events.append(Event(
                event_type=EventType.MILESTONE_UPDATED,
                correlation_id=instruction_id,
                payload={
                    "instruction_id": instruction_id,
                    "milestone_id": milestone.milestone_id,
                    "milestone": milestone_type.value,
                    "previous_status": previous.value,
                    "status": status.value,
                    "version": timeline.version,
                },
            ))
            if status_event is not None:
                events.append(status_event)
            result = milestone.model_copy()

        logger.info(
            "milestone_updated",
            instruction_id=instruction_id,
            milestone=milestone_type.value,
            previous=previous.value,
            status=status.value,
            instruction_status=timeline.instruction.status.value,
        )
        await self._publish(events)
        return result

    async def cancel_instruction(self, instruction_id: str, reason: str = "") -> bool:
        """Cancel a live instruction. Returns False if it had already finished."""
        timeline = self._get(instruction_id)
        async with timeline.lock:
            instruction = timeline.instruction
            if instruction.is_terminal:
                logger.warning(
                    "cancel_ignored_terminal_instruction",
                    instruction_id=instruction_id,
                    status=instruction.status.value,
                )
                return False
            previous = instruction.status
            instruction.status = InstructionStatus.CANCELLED
            instruction.updated_at = utcnow()
            timeline.version += 1

        logger.info("instruction_cancelled", instruction_id=instruction_id, reason=reason)
        await self.bus.emit(
            EventType.INSTRUCTION_STATUS_CHANGED,
            correlation_id=instruction_id,
            instruction_id=instruction_id,
            counterparty_id=instruction.counterparty_id,
            previous_status=previous.value,
            status=InstructionStatus.CANCELLED.value,
            reason=reason,
        )
        return True

    # ── Scan ──────────────────────────────────────────────────────────────

    async def scan(self, now: Optional[datetime] = None) -> ScanReport:
        """
        Check every live instruction for overdue or imminent milestones.

        Settled instructions are still scanned for RECONCILIATION and
        REPORTING; failed and cancelled ones are skipped.
        A failure on one instruction is logged and reported; the scan carries on.
        """
        now = ensure_utc(now) or utcnow()
        report = ScanReport(scanned_at=now)

        for instruction_id in list(self._timelines):
            try:
                scanned, alerts, delays = await self._scan_instruction(instruction_id, now)
            except Exception as e:
                logger.error(
                    "timeline_scan_failed",
                    instruction_id=instruction_id,
                    error=str(e) or type(e).__name__,
                )
                report.errors.append(ScanError(instruction_id=instruction_id, error=str(e)))
                continue
            report.instructions_scanned += scanned
            report.alerts_raised += alerts
            report.delays_recorded += delays

        logger.info(
            "timeline_scan_completed",
            scanned=report.instructions_scanned,
            alerts=report.alerts_raised,
            delays=report.delays_recorded,
            errors=len(report.errors),
        )
        return report

    async def _scan_instruction(self, instruction_id: str, now: datetime) -> tuple[int, int, int]:
        timeline = self._timelines[instruction_id]
        events: list[Event] = []
        alerts = delays = 0

        async with timeline.lock:
            status = timeline.instruction.status
            if status in (InstructionStatus.CANCELLED, InstructionStatus.FAILED):
                return 0, 0, 0
            milestones = timeline.milestones
            if status == InstructionStatus.SETTLED:
                # Only the post-settlement checkpoints are still watched
                terminal = timeline.milestone(TERMINAL_MILESTONE)
                milestones = [m for m in milestones if m.sequence > terminal.sequence]

            target_hours = timeline.sla.target_settlement_hours
            for milestone in milestones:
                if not milestone.is_open:
                    continue

                until = milestone.expected_time - now
                minutes_late = milestone.minutes_late(now)
                alert_type, severity, message = self._classify(
                    milestone, until, minutes_late, target_hours, timeline.sla
                )

                if minutes_late > milestone.alert_threshold_minutes:
                    delay, created = self._record_delay(timeline, milestone, now, None)
                    if created:
                        delays += 1
                        events.append(self._delay_event(delay))

                if severity is None:
                    continue
                already = timeline.alerted.get(milestone.milestone_id)
                if already is not None and SEVERITY_RANK[severity] <= SEVERITY_RANK[already]:
                    continue
                alert = self._raise_alert(timeline, milestone, alert_type, severity, message, now)
                events.append(self._alert_event(alert))
                alerts += 1

            if events:
                timeline.version += 1

        await self._publish(events)
        return 1, alerts, delays

    def _classify(
        self,
        milestone: SettlementMilestone,
        until: timedelta,
        minutes_late: float,
        target_hours: float,
        sla: SettlementSLA,
    ) -> tuple[Optional[AlertType], Optional[AlertSeverity], str]:
        name = milestone.milestone_type.value
        if until > timedelta(0):
            if until <= self.approach_window:
                minutes = round(until.total_seconds() / 60)
                return (
                    AlertType.DEADLINE_APPROACHING, AlertSeverity.INFO,
                    f"Milestone {name} due in {minutes} minutes",
                )
            return None, None, ""

        overdue_hours = minutes_late / 60.0
        ratio = overdue_hours / target_hours
        if ratio >= sla.critical_ratio or overdue_hours >= self.critical_overdue_hours:
            return (
                AlertType.SLA_BREACH, AlertSeverity.CRITICAL,
                f"Milestone {name} is {overdue_hours:.1f}h overdue; SLA of {target_hours:g}h breached",
            )
        if ratio >= sla.warning_ratio:
            return (
                AlertType.SLA_BREACH, AlertSeverity.WARNING,
                f"Milestone {name} is {overdue_hours:.1f}h overdue; approaching SLA of {target_hours:g}h",
            )
        if minutes_late > milestone.alert_threshold_minutes:
            return (
                AlertType.DEADLINE_APPROACHING, AlertSeverity.WARNING,
                f"Milestone {name} is {round(minutes_late)} minutes late",
            )
        return (
            AlertType.DEADLINE_APPROACHING, AlertSeverity.INFO,
            f"Milestone {name} passed its expected time",
        )

    # ── Alerts ────────────────────────────────────────────────────────────

    async def acknowledge_alert(self, alert_id: str, user: str) -> SettlementAlert:
        alert = self._get_alert(alert_id)
        if alert.state != AlertState.UNACKNOWLEDGED:
            return alert.model_copy()
        alert.state = AlertState.ACKNOWLEDGED
        alert.acknowledged_at = utcnow()
        alert.acknowledged_by = user
        logger.info("settlement_alert_acknowledged", alert_id=alert_id, user=user)
        await self.bus.emit(
            EventType.ALERT_ACKNOWLEDGED,
            correlation_id=alert.instruction_id,
            alert_id=alert_id,
            instruction_id=alert.instruction_id,
            acknowledged_by=user,
        )
        return alert.model_copy()

    async def resolve_alert(
        self,
        alert_id: str,
        resolution: str = "",
        user: Optional[str] = None,
    ) -> SettlementAlert:
        alert = self._get_alert(alert_id)
        if alert.state == AlertState.RESOLVED:
            return alert.model_copy()
        now = utcnow()
        if alert.acknowledged_at is None:
            alert.acknowledged_at = now
            alert.acknowledged_by = user
        alert.state = AlertState.RESOLVED
        alert.resolved_at = now
        alert.resolution = resolution or None
        logger.info("settlement_alert_resolved", alert_id=alert_id, user=user)
        await self.bus.emit(
            EventType.ALERT_RESOLVED,
            correlation_id=alert.instruction_id,
            alert_id=alert_id,
            instruction_id=alert.instruction_id,
            resolution=resolution,
        )
        return alert.model_copy()

    def get_active_alerts(self, severity: Optional[AlertSeverity] = None) -> list[SettlementAlert]:
        alerts = [
            a for a in self._alerts.values()
            if a.is_active and (severity is None or a.severity == severity)
        ]
        alerts.sort(key=lambda a: (SEVERITY_RANK[a.severity], a.created_at), reverse=True)
        return [a.model_copy() for a in alerts]

    def get_alerts(self, instruction_id: str) -> list[SettlementAlert]:
        timeline = self._get(instruction_id)
        return [self._alerts[a].model_copy() for a in timeline.alert_ids]

    # ── Queries ───────────────────────────────────────────────────────────

    def get_timeline(self, instruction_id: str) -> SettlementTimeline:
        return self._view(self._get(instruction_id))

    def get_instruction(self, instruction_id: str) -> SettlementInstruction:
        return self._get(instruction_id).instruction.model_copy()

    def get_milestones(self, instruction_id: str) -> list[SettlementMilestone]:
        return [m.model_copy() for m in self._get(instruction_id).milestones]

    def get_delays(self, instruction_id: str) -> list[SettlementDelay]:
        return [d.model_copy() for d in self._get(instruction_id).delays]

    def list_instructions(self) -> list[SettlementInstruction]:
        return [t.instruction.model_copy() for t in self._timelines.values()]

    def get_instructions_by_status(self, status: InstructionStatus) -> list[SettlementInstruction]:
        return [
            t.instruction.model_copy() for t in self._timelines.values()
            if t.instruction.status == status
        ]

    def get_instructions_by_counterparty(self, counterparty_id: str) -> list[SettlementInstruction]:
        return [
            t.instruction.model_copy() for t in self._timelines.values()
            if t.instruction.counterparty_id == counterparty_id
        ]

    def get_pending_milestones(self, instruction_id: Optional[str] = None) -> list[SettlementMilestone]:
        timelines = [self._get(instruction_id)] if instruction_id else list(self._timelines.values())
        return [
            m.model_copy()
            for t in timelines
            if not t.instruction.is_terminal
            for m in t.milestones
            if m.status == MilestoneStatus.PENDING
        ]

    def get_overdue_milestones(
        self,
        now: Optional[datetime] = None,
        instruction_id: Optional[str] = None,
    ) -> list[SettlementMilestone]:
        now = ensure_utc(now) or utcnow()
        return [
            m for m in self.get_pending_milestones(instruction_id)
            if m.expected_time < now
        ]

    def generate_performance_report(
        self,
        period: ReportPeriod = ReportPeriod.DAILY,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PerformanceReport:
        views = [self._view(t) for t in self._timelines.values()]
        return build_performance_report(views, period, start, end)

    # ── Internals ─────────────────────────────────────────────────────────

    def _get(self, instruction_id: str) -> _Timeline:
        timeline = self._timelines.get(instruction_id)
        if timeline is None:
            raise InstructionNotFound(instruction_id)
        return timeline

    def _get_alert(self, alert_id: str) -> SettlementAlert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    def _record_delay(
        self,
        timeline: _Timeline,
        milestone: SettlementMilestone,
        at: datetime,
        notes: Optional[str],
    ) -> tuple[SettlementDelay, bool]:
        """Open delay for the milestone, creating it if none is open."""
        existing = timeline.open_delay(milestone.milestone_id)
        if existing is not None:
            return existing, False

        minutes_late = milestone.minutes_late(at)
        delay_type = delay_rules.classify_cause(milestone, notes)
        delay = SettlementDelay(
            instruction_id=milestone.instruction_id,
            milestone_id=milestone.milestone_id,
            milestone_type=milestone.milestone_type,
            delay_type=delay_type,
            delay_reason=notes or (
                f"Milestone exceeded expected time by {round(minutes_late)} minutes"
            ),
            estimated_duration_minutes=round(minutes_late or milestone.alert_threshold_minutes, 1),
            impact=delay_rules.assess_impact(milestone, timeline.instruction, minutes_late),
            mitigation=delay_rules.mitigation_for(delay_type),
            created_at=at,
        )
        timeline.delays.append(delay)
        logger.info(
            "settlement_delay_recorded",
            instruction_id=milestone.instruction_id,
            milestone=milestone.milestone_type.value,
            delay_type=delay_type.value,
            impact=delay.impact.value,
        )
        return delay, True

    def _raise_alert(
        self,
        timeline: _Timeline,
        milestone: SettlementMilestone,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        at: datetime,
    ) -> SettlementAlert:
        alert = SettlementAlert(
            instruction_id=milestone.instruction_id,
            milestone_id=milestone.milestone_id,
            milestone_type=milestone.milestone_type,
            alert_type=alert_type,
            severity=severity,
            message=message,
            created_at=at,
        )
        self._alerts[alert.alert_id] = alert
        timeline.alert_ids.append(alert.alert_id)
        previous = timeline.alerted.get(milestone.milestone_id)
        if previous is None or SEVERITY_RANK[severity] > SEVERITY_RANK[previous]:
            timeline.alerted[milestone.milestone_id] = severity
        logger.info(
            "settlement_alert_raised",
            instruction_id=milestone.instruction_id,
            milestone=milestone.milestone_type.value,
            alert_type=alert_type.value,
            severity=severity.value,
        )
        return alert

    def _refresh_status(self, timeline: _Timeline, at: datetime) -> Optional[Event]:
        instruction = timeline.instruction
        previous = instruction.status
        status = derive_instruction_status(timeline.milestones, previous)
        instruction.updated_at = at
        if status == previous:
            return None
        instruction.status = status
        return Event(
            event_type=EventType.INSTRUCTION_STATUS_CHANGED,
            correlation_id=instruction.instruction_id,
            payload={
                "instruction_id": instruction.instruction_id,
                "counterparty_id": instruction.counterparty_id,
                "previous_status": previous.value,
                "status": status.value,
                "actual_settlement_time": (
                    instruction.actual_settlement_time.isoformat()
                    if instruction.actual_settlement_time else None
                ),
                "delay_days": self._settlement_delay_days(timeline, at),
            },
        )

    @staticmethod
    def _settlement_delay_days(timeline: _Timeline, at: datetime) -> float:
        """Days past the scheduled settlement date (0 if on time)."""
        finished = timeline.instruction.actual_settlement_time or at
        late = (finished - timeline.instruction.settlement_date).total_seconds() / 86400.0
        return round(max(0.0, late), 2)

    @staticmethod
    def _delay_event(delay: SettlementDelay) -> Event:
        return Event(
            event_type=EventType.DELAY_RECORDED,
            correlation_id=delay.instruction_id,
            payload={
                "delay_id": delay.delay_id,
                "instruction_id": delay.instruction_id,
                "milestone": delay.milestone_type.value,
                "delay_type": delay.delay_type.value,
                "impact": delay.impact.value,
                "estimated_duration_minutes": delay.estimated_duration_minutes,
            },
        )

    @staticmethod
    def _alert_event(alert: SettlementAlert) -> Event:
        return Event(
            event_type=EventType.ALERT_CREATED,
            correlation_id=alert.instruction_id,
            payload={
                "alert_id": alert.alert_id,
                "instruction_id": alert.instruction_id,
                "milestone": alert.milestone_type.value if alert.milestone_type else None,
                "alert_type": alert.alert_type.value,
                "severity": alert.severity.value,
                "message": alert.message,
            },
        )

    async def _publish(self, events: list[Event]) -> None:
        for event in events:
            await self.bus.publish(event)

    def _view(self, timeline: _Timeline) -> SettlementTimeline:
        milestones = timeline.milestones
        done = sum(1 for m in milestones if m.status in DONE_STATUSES)
        progress = round(done / len(milestones) * 100, 1) if milestones else 0.0

        terminal = timeline.milestone(TERMINAL_MILESTONE)
        if terminal is not None and terminal.status == MilestoneStatus.COMPLETED:
            estimated = terminal.actual_time
        else:
            remaining = [m for m in milestones if m.is_open]
            durations = [
                d.actual_duration_minutes if d.actual_duration_minutes is not None
                else d.estimated_duration_minutes
                for d in timeline.delays
            ]
            avg_delay = sum(durations) / len(durations) if durations else 0.0
            anchor = terminal if terminal is not None and terminal.is_open else (
                remaining[-1] if remaining else None
            )
            estimated = (
                anchor.expected_time + timedelta(minutes=avg_delay) if anchor else None
            )

        return SettlementTimeline(
            instruction=timeline.instruction.model_copy(),
            milestones=[m.model_copy() for m in milestones],
            delays=[d.model_copy() for d in timeline.delays],
            sla=timeline.sla,
            progress_pct=progress,
            estimated_completion=estimated,
            critical_path=[m.milestone_type for m in milestones if m.milestone_type in CRITICAL_PATH],
            version=timeline.version,
        )
