"""Tests for settlement performance reporting."""

from datetime import timedelta

import pytest

from settlerisk.schemas import InstructionStatus
from settlerisk.timeline.schemas import MilestoneStatus, MilestoneType, ReportPeriod

M = MilestoneType
S = MilestoneStatus


class TestPerformanceReport:
    @pytest.mark.asyncio
    async def test_weekly_report(self, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction(instruction_id="SI-ON-TIME", counterparty_id="CP-1"))
        await tracker.create_timeline(make_instruction(instruction_id="SI-LATE", counterparty_id="CP-2"))
        await tracker.create_timeline(make_instruction(instruction_id="SI-FAILED", counterparty_id="CP-2"))
        await tracker.create_timeline(make_instruction(instruction_id="SI-OPEN", counterparty_id="CP-3"))
        await tracker.create_timeline(make_instruction(
            instruction_id="SI-OLD", trade_date=trade_time - timedelta(days=30)
        ))

        await tracker.update_milestone_status(
            "SI-ON-TIME", M.FINAL_SETTLEMENT, S.COMPLETED, at=trade_time + timedelta(hours=40)
        )
        await tracker.update_milestone_status(
            "SI-LATE", M.FINAL_SETTLEMENT, S.COMPLETED, at=trade_time + timedelta(hours=60)
        )
        await tracker.update_milestone_status(
            "SI-FAILED", M.AFFIRMATION, S.FAILED, at=trade_time + timedelta(hours=2)
        )

        report = tracker.generate_performance_report(
            ReportPeriod.WEEKLY, end=trade_time + timedelta(days=3)
        )

        assert report.period_start == trade_time - timedelta(days=4)
        assert report.total_instructions == 4
        assert report.settled_on_time == 1
        assert report.settled_late == 1
        assert report.failed == 1
        assert report.sla_compliance == pytest.approx(1 / 3)
        assert report.average_settlement_hours == 50.0
        assert [(r.reason, r.count) for r in report.top_delay_reasons] == [("COUNTERPARTY", 1)]
        assert report.status_breakdown == {
            InstructionStatus.SETTLED: 2,
            InstructionStatus.FAILED: 1,
            InstructionStatus.PENDING: 1,
        }

        worst = report.worst_counterparties
        assert [c.counterparty_id for c in worst] == ["CP-2"]
        assert worst[0].total == 2
        assert worst[0].failure_rate == 1.0

    @pytest.mark.asyncio
    async def test_empty_window_is_fully_compliant(self, tracker, trade_time):
        report = tracker.generate_performance_report(ReportPeriod.DAILY, end=trade_time)
        assert report.total_instructions == 0
        assert report.sla_compliance == 1.0
        assert report.average_settlement_hours == 0.0

    @pytest.mark.asyncio
    async def test_explicit_window(self, tracker, make_instruction, trade_time):
        await tracker.create_timeline(make_instruction())
        report = tracker.generate_performance_report(
            start=trade_time - timedelta(minutes=1), end=trade_time + timedelta(minutes=1)
        )
        assert report.total_instructions == 1
        assert report.period == ReportPeriod.DAILY
