"""Tests for the timeline tracker: lifecycle, milestone updates, delays and alerts."""

from datetime import timedelta

import pytest

from settlerisk.events import EventType
from settlerisk.exceptions import (
    AlertNotFound,
    DuplicateInstruction,
    InstructionNotFound,
    InvalidMilestoneTransition,
    MilestoneNotFound,
)
from settlerisk.schemas import InstructionStatus, SettlementMethod
from settlerisk.timeline.schemas import (
    AlertSeverity,
    AlertState,
    AlertType,
    DelayImpact,
    DelayType,
    MilestoneStatus,
    MilestoneType,
)

M = MilestoneType
S = MilestoneStatus


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestTimelineLifecycle:
    @pytest.mark.asyncio
    async def test_create_timeline(self, bus, tracker, make_instruction, trade_time):
        view = await tracker.create_timeline(make_instruction())

        assert view.instruction.status == InstructionStatus.PENDING
        assert len(view.milestones) == 10
        assert view.progress_pct == 0.0
        assert view.estimated_completion == trade_time + timedelta(hours=48)
        assert view.critical_path == [
            M.TRADE_CONFIRMATION, M.AFFIRMATION, M.SETTLEMENT_INSTRUCTION_SENT, M.FINAL_SETTLEMENT,
        ]
        created = bus.history(EventType.TIMELINE_CREATED)
        assert created[0].payload["milestones"][0] == "TRADE_CAPTURE"

    @pytest.mark.asyncio
    async def test_duplicate_instruction(self, tracker, make_instruction):
        await tracker.create_timeline(make_instruction())
        with pytest.raises(DuplicateInstruction):
            await tracker.register_instruction(make_instruction())

    @pytest.mark.asyncio
    async def test_tracked_copy_is_isolated(self, tracker, make_instruction):
        instruction = make_instruction()
        await tracker.create_timeline(instruction)
        instruction.notional_amount = 1.0
        assert tracker.get_instruction("SI-001").notional_amount == 1_000_000.0

    @pytest.mark.asyncio
    async def test_unknown_instruction_and_milestone(self, tracker, make_instruction):
        await tracker.create_timeline(make_instruction(method=SettlementMethod.FOP))
        with pytest.raises(InstructionNotFound):
            await tracker.update_milestone_status("SI-404", M.TRADE_CAPTURE, S.COMPLETED)
        with pytest.raises(MilestoneNotFound):
            await tracker.update_milestone_status("SI-001", M.CASH_CONFIRMATION, S.COMPLETED)

    @pytest.mark.asyncio
    async def test_queries(self, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction(instruction_id="SI-A", counterparty_id="CP-1"))
        await tracker.create_timeline(make_instruction(instruction_id="SI-B", counterparty_id="CP-2"))
        await tracker.update_milestone_status("SI-B", M.TRADE_CAPTURE, S.COMPLETED, at=trade_time)

        assert [i.instruction_id for i in tracker.get_instructions_by_counterparty("CP-2")] == ["SI-B"]
        assert [i.instruction_id for i in tracker.get_instructions_by_status(InstructionStatus.PROCESSING)] == ["SI-B"]
        assert len(tracker.get_pending_milestones("SI-B")) == 9
        assert len(tracker.get_pending_milestones()) == 19

        overdue = tracker.get_overdue_milestones(trade_time + timedelta(hours=3), "SI-A")
        assert [m.milestone_type for m in overdue] == [
            M.TRADE_CAPTURE, M.TRADE_CONFIRMATION, M.AFFIRMATION, M.ALLOCATION,
        ]


# =============================================================================
# MILESTONE UPDATES
# =============================================================================


class TestMilestoneUpdates:
    @pytest.mark.asyncio
    async def test_first_completion_starts_processing(self, bus, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction())
        milestone = await tracker.update_milestone_status("SI-001", M.TRADE_CAPTURE, S.COMPLETED, at=trade_time)

        assert milestone.actual_time == trade_time
        view = tracker.get_timeline("SI-001")
        assert view.instruction.status == InstructionStatus.PROCESSING
        assert view.progress_pct == 10.0
        assert view.version == 1

        changed = bus.history(EventType.INSTRUCTION_STATUS_CHANGED)
        assert changed[0].payload["previous_status"] == "PENDING"
        assert changed[0].payload["status"] == "PROCESSING"

    @pytest.mark.asyncio
    async def test_repeated_update_is_idempotent(self, bus, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction())
        await tracker.update_milestone_status("SI-001", M.AFFIRMATION, S.DELAYED, at=trade_time + timedelta(hours=2))
        events_before = len(bus.history())

        await tracker.update_milestone_status("SI-001", M.AFFIRMATION, S.DELAYED, at=trade_time + timedelta(hours=5))

        assert len(bus.history()) == events_before
        assert len(tracker.get_delays("SI-001")) == 1
        assert len(tracker.get_alerts("SI-001")) == 1
        assert tracker.get_timeline("SI-001").version == 1

    @pytest.mark.asyncio
    async def test_completed_milestone_cannot_be_delayed(self, tracker, make_instruction):
        await tracker.create_timeline(make_instruction())
        await tracker.update_milestone_status("SI-001", M.TRADE_CAPTURE, S.COMPLETED)
        with pytest.raises(InvalidMilestoneTransition):
            await tracker.update_milestone_status("SI-001", M.TRADE_CAPTURE, S.DELAYED)

    @pytest.mark.asyncio
    async def test_delay_then_complete(self, bus, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction())
        # Confirmation expected at +30min; flagged at the trade time, before it is due
        await tracker.update_milestone_status(
            "SI-001", M.TRADE_CONFIRMATION, S.DELAYED, notes="counterparty unresponsive", at=trade_time
        )

        delay = tracker.get_delays("SI-001")[0]
        assert delay.delay_type == DelayType.COUNTERPARTY
        assert delay.impact == DelayImpact.MEDIUM
        assert delay.estimated_duration_minutes == 60
        assert tracker.get_instruction("SI-001").status == InstructionStatus.DELAYED

        alert = tracker.get_alerts("SI-001")[0]
        assert alert.alert_type == AlertType.DELAY
        assert alert.severity == AlertSeverity.WARNING

        view = tracker.get_timeline("SI-001")
        assert view.estimated_completion == trade_time + timedelta(hours=48, minutes=60)

        await tracker.update_milestone_status(
            "SI-001", M.TRADE_CONFIRMATION, S.COMPLETED, at=trade_time + timedelta(minutes=90)
        )
        delay = tracker.get_delays("SI-001")[0]
        assert not delay.is_open
        assert delay.actual_duration_minutes == 60.0
        assert tracker.get_instruction("SI-001").status == InstructionStatus.PROCESSING
        assert len(bus.history(EventType.DELAY_RESOLVED)) == 1

    @pytest.mark.asyncio
    async def test_final_settlement_settles(self, bus, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction())
        settled_at = trade_time + timedelta(hours=60)
        await tracker.update_milestone_status("SI-001", M.FINAL_SETTLEMENT, S.COMPLETED, at=settled_at)

        instruction = tracker.get_instruction("SI-001")
        assert instruction.status == InstructionStatus.SETTLED
        assert instruction.actual_settlement_time == settled_at
        assert tracker.get_timeline("SI-001").estimated_completion == settled_at

        changed = bus.history(EventType.INSTRUCTION_STATUS_CHANGED)[-1]
        assert changed.payload["status"] == "SETTLED"
        assert changed.payload["delay_days"] == 0.5

    @pytest.mark.asyncio
    async def test_failed_milestone_fails_instruction(self, bus, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction())
        await tracker.update_milestone_status("SI-001", M.TRADE_CAPTURE, S.COMPLETED, at=trade_time)
        await tracker.update_milestone_status(
            "SI-001", M.CUSTODY_CONFIRMATION, S.FAILED, notes="securities not delivered",
            at=trade_time + timedelta(hours=50),
        )

        assert tracker.get_instruction("SI-001").status == InstructionStatus.FAILED
        alert = tracker.get_alerts("SI-001")[0]
        assert alert.alert_type == AlertType.FAILURE
        assert alert.severity == AlertSeverity.CRITICAL
        assert "securities not delivered" in alert.message
        assert tracker.get_delays("SI-001")[0].delay_type == DelayType.CUSTODIAN

        # Failure outranks a later final settlement
        await tracker.update_milestone_status("SI-001", M.FINAL_SETTLEMENT, S.COMPLETED)
        assert tracker.get_instruction("SI-001").status == InstructionStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel(self, bus, tracker, make_instruction):
        await tracker.create_timeline(make_instruction())

        assert await tracker.cancel_instruction("SI-001", reason="trade busted") is True
        assert await tracker.cancel_instruction("SI-001") is False

        await tracker.update_milestone_status("SI-001", M.TRADE_CAPTURE, S.COMPLETED)
        assert tracker.get_instruction("SI-001").status == InstructionStatus.CANCELLED
        assert tracker.get_pending_milestones("SI-001") == []
        changed = bus.history(EventType.INSTRUCTION_STATUS_CHANGED)
        assert [e.payload["status"] for e in changed] == ["CANCELLED"]


# =============================================================================
# ALERTS
# =============================================================================


class TestAlertHandling:
    async def _failed_and_delayed(self, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction(instruction_id="SI-F"))
        await tracker.create_timeline(make_instruction(instruction_id="SI-D", notional=500_000))
        await tracker.update_milestone_status("SI-F", M.AFFIRMATION, S.FAILED, at=trade_time)
        # ALLOCATION is off the critical path; small trade → LOW impact → INFO
        await tracker.update_milestone_status("SI-D", M.ALLOCATION, S.DELAYED, at=trade_time)

    @pytest.mark.asyncio
    async def test_active_alerts_ordered_by_severity(self, tracker, make_instruction, trade_time):
        await self._failed_and_delayed(tracker, make_instruction, trade_time)

        alerts = tracker.get_active_alerts()
        assert [a.severity for a in alerts] == [AlertSeverity.CRITICAL, AlertSeverity.INFO]
        assert [a.instruction_id for a in tracker.get_active_alerts(AlertSeverity.INFO)] == ["SI-D"]

    @pytest.mark.asyncio
    async def test_acknowledge_is_idempotent(self, bus, tracker, make_instruction, trade_time):
        await self._failed_and_delayed(tracker, make_instruction, trade_time)
        alert_id = tracker.get_alerts("SI-F")[0].alert_id

        first = await tracker.acknowledge_alert(alert_id, "ops.user")
        second = await tracker.acknowledge_alert(alert_id, "someone.else")

        assert first.state == AlertState.ACKNOWLEDGED
        assert second.acknowledged_by == "ops.user"
        assert len(bus.history(EventType.ALERT_ACKNOWLEDGED)) == 1
        assert len(tracker.get_active_alerts()) == 2

    @pytest.mark.asyncio
    async def test_resolve_removes_from_active(self, bus, tracker, make_instruction, trade_time):
        await self._failed_and_delayed(tracker, make_instruction, trade_time)
        alert_id = tracker.get_alerts("SI-D")[0].alert_id

        resolved = await tracker.resolve_alert(alert_id, "allocation received", user="ops.user")
        await tracker.resolve_alert(alert_id, "again")

        assert resolved.state == AlertState.RESOLVED
        assert resolved.acknowledged_by == "ops.user"
        assert resolved.resolution == "allocation received"
        assert [a.instruction_id for a in tracker.get_active_alerts()] == ["SI-F"]
        assert len(bus.history(EventType.ALERT_RESOLVED)) == 1

    @pytest.mark.asyncio
    async def test_unknown_alert(self, tracker):
        with pytest.raises(AlertNotFound):
            await tracker.acknowledge_alert("salert_missing", "ops.user")
