"""
End-to-end flow through the platform facade.

capture → risk assessment + timeline → prediction → settlement outcome →
feedback metrics and pattern counts.
"""

from datetime import timedelta

import pytest

from settlerisk.events import EventType
from settlerisk.risk.schemas import AlertLevel
from settlerisk.schemas import CounterpartyRiskProfile, InstructionStatus, RiskTier
from settlerisk.timeline.schemas import MilestoneStatus, MilestoneType


class TestPlatformFlow:
    @pytest.mark.asyncio
    async def test_capture_creates_timeline_and_assessment(self, bus, platform, make_instruction):
        timeline, assessment = await platform.on_instruction_captured(make_instruction())

        assert timeline.instruction.instruction_id == "SI-001"
        assert assessment.alert_level == AlertLevel.INFO
        assert platform.risk.get_active_assessment("SI-001") is assessment
        assert bus.history(EventType.TIMELINE_CREATED, correlation_id="SI-001")
        assert bus.history(EventType.RISK_ASSESSED, correlation_id="SI-001")

    @pytest.mark.asyncio
    async def test_profile_feeds_reassessment(self, platform, make_instruction):
        await platform.on_instruction_captured(make_instruction())
        platform.update_counterparty_profile(
            CounterpartyRiskProfile(counterparty_id="CP-001", sanctions=True)
        )

        assessment = await platform.reassess("SI-001")

        assert assessment.alert_level == AlertLevel.CRITICAL
        assert platform.risk.get_risk_trend("SI-001").direction == "increasing"

    @pytest.mark.asyncio
    async def test_prediction_uses_latest_context(
        self, platform, make_instruction, stressed_history, stressed_market, trade_time
    ):
        await platform.on_instruction_captured(make_instruction())
        platform.update_historical_context("CP-001", stressed_history)
        platform.update_market_conditions(stressed_market)

        prediction = await platform.predict("SI-001", now=trade_time)

        assert prediction.risk_tier == RiskTier.HIGH
        assert prediction.failure_probability == pytest.approx(0.6526, abs=0.002)

    @pytest.mark.asyncio
    async def test_failure_feeds_metrics_and_patterns(
        self, bus, platform, make_instruction, stressed_history, stressed_market, trade_time
    ):
        await platform.on_instruction_captured(make_instruction())
        platform.update_historical_context("CP-001", stressed_history)
        platform.update_market_conditions(stressed_market)
        await platform.predict("SI-001", now=trade_time)

        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.CUSTODY_CONFIRMATION, MilestoneStatus.FAILED,
            at=trade_time + timedelta(hours=50),
        )

        metrics = platform.performance.get_metrics("1.0.0")
        assert metrics.true_positives == 1
        assert metrics.precision == 1.0
        assert metrics.recall == 1.0

        feedback = bus.history(EventType.PREDICTION_FEEDBACK, correlation_id="SI-001")
        assert len(feedback) == 1
        assert feedback[0].payload["actual_failure"] is True
        assert feedback[0].payload["actual_delay_days"] == 0.08

        assert platform.patterns.get("pattern_high_volatility").identified_count == 1
        assert platform.patterns.get("pattern_large_trade").identified_count == 0
        assert len(bus.dead_letters) == 0

    @pytest.mark.asyncio
    async def test_on_time_settlement_is_not_counted_as_pattern_hit(
        self, bus, platform, make_instruction, stressed_history, stressed_market, trade_time
    ):
        await platform.on_instruction_captured(make_instruction())
        platform.update_historical_context("CP-001", stressed_history)
        platform.update_market_conditions(stressed_market)
        await platform.predict("SI-001", now=trade_time)

        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.FINAL_SETTLEMENT, MilestoneStatus.COMPLETED,
            at=trade_time + timedelta(hours=47),
        )

        metrics = platform.performance.get_metrics("1.0.0")
        assert metrics.false_positives == 1
        assert platform.patterns.get("pattern_high_volatility").identified_count == 0

    @pytest.mark.asyncio
    async def test_failed_reconciliation_after_settlement_is_scored_once(
        self, bus, platform, make_instruction, stressed_history, stressed_market, trade_time
    ):
        await platform.on_instruction_captured(make_instruction())
        platform.update_historical_context("CP-001", stressed_history)
        platform.update_market_conditions(stressed_market)
        await platform.predict("SI-001", now=trade_time)

        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.FINAL_SETTLEMENT, MilestoneStatus.COMPLETED,
            at=trade_time + timedelta(hours=47),
        )
        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.RECONCILIATION, MilestoneStatus.FAILED,
            at=trade_time + timedelta(hours=75),
        )

        assert platform.timelines.get_instruction("SI-001").status == InstructionStatus.FAILED
        metrics = platform.performance.get_metrics("1.0.0")
        assert metrics.total_predictions == 1
        assert metrics.false_positives == 1
        assert metrics.true_positives == 0
        assert len(platform.performance.get_outcomes("SI-001")) == 1
        assert len(bus.history(EventType.PREDICTION_FEEDBACK, correlation_id="SI-001")) == 1
        assert platform.patterns.get("pattern_high_volatility").identified_count == 0

    @pytest.mark.asyncio
    async def test_replayed_status_change_does_not_rescore(
        self, bus, platform, make_instruction, trade_time
    ):
        await platform.on_instruction_captured(make_instruction())
        await platform.predict("SI-001", now=trade_time)
        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.AFFIRMATION, MilestoneStatus.FAILED,
            at=trade_time + timedelta(hours=2),
        )

        await bus.replay(EventType.INSTRUCTION_STATUS_CHANGED)

        metrics = platform.performance.get_metrics("1.0.0")
        assert metrics.total_predictions == 1
        assert metrics.false_negatives == 1

    @pytest.mark.asyncio
    async def test_settlement_without_prediction_is_ignored(self, bus, platform, make_instruction):
        await platform.on_instruction_captured(make_instruction())

        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.FINAL_SETTLEMENT, MilestoneStatus.COMPLETED
        )

        assert platform.timelines.get_instruction("SI-001").status == InstructionStatus.SETTLED
        assert bus.history(EventType.PREDICTION_FEEDBACK) == []
        assert len(bus.dead_letters) == 0

    @pytest.mark.asyncio
    async def test_predict_pending_skips_finished(self, platform, make_instruction):
        await platform.on_instruction_captured(make_instruction(instruction_id="SI-LIVE"))
        await platform.on_instruction_captured(make_instruction(instruction_id="SI-DONE"))
        await platform.timelines.cancel_instruction("SI-DONE")

        predictions = await platform.predict_pending()

        assert [p.instruction_id for p in predictions] == ["SI-LIVE"]

    @pytest.mark.asyncio
    async def test_stop_detaches_feedback_loop(self, platform, make_instruction):
        await platform.on_instruction_captured(make_instruction())
        await platform.predict("SI-001")
        await platform.stop()

        await platform.timelines.update_milestone_status(
            "SI-001", MilestoneType.FINAL_SETTLEMENT, MilestoneStatus.COMPLETED
        )
        assert platform.performance.list_metrics() == []
