"""Tests for the prediction service: model registry, history, events and queries."""

from datetime import timedelta

import pytest

from settlerisk.events import EventType
from settlerisk.exceptions import (
    ConfigurationError,
    ModelNotFound,
    NoActiveModel,
    PredictionNotFound,
)
from settlerisk.prediction.patterns import PatternLibrary
from settlerisk.prediction.schemas import (
    ConditionOperator,
    FailurePattern,
    PatternCondition,
    PredictionInput,
    PredictionModel,
    SummaryTimeframe,
)
from settlerisk.prediction.service import PredictionService, default_model
from settlerisk.schemas import RiskTier


class TestModelRegistry:
    @pytest.mark.asyncio
    async def test_predict_without_active_model(self, bus, scenario_input):
        service = PredictionService(bus)

        with pytest.raises(NoActiveModel):
            await service.predict(scenario_input)

        errors = bus.history(EventType.PREDICTION_ERROR)
        assert len(errors) == 1
        assert errors[0].payload["error_type"] == "NoActiveModel"
        assert errors[0].correlation_id == "SI-001"
        assert service.get_prediction_history("SI-001") == []

    @pytest.mark.asyncio
    async def test_activate_switches_active_flag(self, prediction_service):
        challenger = default_model().model_copy(
            update={"model_id": "challenger", "version": "1.1.0"}
        )
        await prediction_service.register_model(challenger)
        assert prediction_service.active_model.model_id == "settlement_failure_ensemble_v1"

        await prediction_service.activate_model("challenger")

        active = [m.model_id for m in prediction_service.list_models() if m.is_active]
        assert active == ["challenger"]
        assert prediction_service.active_model.version == "1.1.0"

    @pytest.mark.asyncio
    async def test_activate_unknown_model(self, prediction_service):
        with pytest.raises(ModelNotFound):
            await prediction_service.activate_model("missing")

    @pytest.mark.asyncio
    async def test_register_rejects_unknown_member(self, bus):
        service = PredictionService(bus)
        bad = PredictionModel(
            model_id="bad", model_name="Bad", version="0.1", members=["linear", "svm"]
        )
        with pytest.raises(ConfigurationError):
            await service.register_model(bad)
        assert service.list_models() == []

    @pytest.mark.asyncio
    async def test_activation_event(self, bus, prediction_service):
        events = bus.history(EventType.MODEL_ACTIVATED)
        assert events[-1].payload == {
            "model_id": "settlement_failure_ensemble_v1",
            "version": "1.0.0",
        }


class TestPredictions:
    @pytest.mark.asyncio
    async def test_high_risk_prediction_publishes_two_events(self, bus, prediction_service, scenario_input, trade_time):
        prediction = await prediction_service.predict(scenario_input, now=trade_time)

        assert prediction.risk_tier == RiskTier.HIGH
        generated = bus.history(EventType.PREDICTION_GENERATED, correlation_id="SI-001")
        high_risk = bus.history(EventType.PREDICTION_HIGH_RISK, correlation_id="SI-001")
        assert len(generated) == 1
        assert len(high_risk) == 1
        assert high_risk[0].payload["risk_factors"][0] == "High System Load"

    @pytest.mark.asyncio
    async def test_low_risk_prediction_skips_high_risk_event(self, bus, prediction_service, make_input):
        await prediction_service.predict(make_input())
        assert bus.history(EventType.PREDICTION_GENERATED)
        assert bus.history(EventType.PREDICTION_HIGH_RISK) == []

    @pytest.mark.asyncio
    async def test_naive_timestamps_predict_like_utc(
        self, prediction_service, make_instruction, stressed_history, stressed_market, scenario_input, trade_time
    ):
        naive_trade = trade_time.replace(tzinfo=None)
        data = PredictionInput.from_instruction(
            make_instruction(trade_date=naive_trade),
            historical=stressed_history,
            market=stressed_market,
            as_of=naive_trade,
        )

        naive = await prediction_service.predict(data, now=naive_trade)
        aware = await prediction_service.predict(scenario_input, now=trade_time)

        assert naive.failure_probability == aware.failure_probability
        assert naive.prediction_timestamp == trade_time
        assert naive.early_warning_indicators[-1].current_value == 48.0

    @pytest.mark.asyncio
    async def test_history_is_capped_per_instruction(self, bus, scenario_input):
        service = PredictionService(bus, history_size=3)
        await service.register_model(default_model(), activate=True)

        for _ in range(5):
            await service.predict(scenario_input)

        history = service.get_prediction_history("SI-001")
        assert len(history) == 3
        assert service.get_latest_prediction("SI-001") is history[-1]

    @pytest.mark.asyncio
    async def test_latest_prediction_missing(self, prediction_service):
        with pytest.raises(PredictionNotFound) as exc:
            prediction_service.get_latest_prediction("SI-404")
        assert exc.value.to_dict()["error"] == "E1001"

    @pytest.mark.asyncio
    async def test_batch_keeps_input_order(self, prediction_service, make_instruction, make_input):
        inputs = [make_input(make_instruction(instruction_id=f"SI-{i}")) for i in range(4)]
        results = await prediction_service.predict_batch(inputs)
        assert [p.instruction_id for p in results] == ["SI-0", "SI-1", "SI-2", "SI-3"]

    @pytest.mark.asyncio
    async def test_high_risk_query_uses_latest_and_threshold(
        self, prediction_service, scenario_input, make_instruction, make_input
    ):
        await prediction_service.predict(scenario_input)
        await prediction_service.predict(make_input(make_instruction(instruction_id="SI-CALM")))

        assert prediction_service.get_high_risk_predictions() == []
        hits = prediction_service.get_high_risk_predictions(threshold=0.6)
        assert [p.instruction_id for p in hits] == ["SI-001"]

    @pytest.mark.asyncio
    async def test_summary_counts_window(self, prediction_service, scenario_input, trade_time):
        await prediction_service.predict(scenario_input, now=trade_time)
        await prediction_service.predict(scenario_input, now=trade_time - timedelta(days=3))

        daily = prediction_service.generate_summary(
            SummaryTimeframe.DAILY, now=trade_time + timedelta(hours=1)
        )
        weekly = prediction_service.generate_summary(
            SummaryTimeframe.WEEKLY, now=trade_time + timedelta(hours=1)
        )

        assert daily.total_predictions == 1
        assert weekly.total_predictions == 2
        assert daily.tier_distribution == {"HIGH": 1}
        assert daily.top_risk_factors[0].factor == "High System Load"
        assert daily.high_risk_count == 0
        assert daily.model_accuracy is None

    @pytest.mark.asyncio
    async def test_summary_reports_accuracy_from_provider(self, bus, scenario_input):
        service = PredictionService(bus, accuracy_provider=lambda version: 0.75)
        await service.register_model(default_model(), activate=True)
        await service.predict(scenario_input)
        assert service.generate_summary().model_accuracy == 0.75


class TestServicePatterns:
    @pytest.mark.asyncio
    async def test_add_pattern_publishes_event(self, bus, prediction_service):
        pattern = FailurePattern(
            pattern_id="pattern_cash_usd",
            pattern_name="USD cash leg",
            frequency=0.1,
            avg_impact=0.2,
            conditions=[
                PatternCondition(field="currency", operator=ConditionOperator.EQUALS, value="usd", weight=1.0),
            ],
        )
        await prediction_service.add_failure_pattern(pattern)

        assert prediction_service.patterns.get("pattern_cash_usd") is not None
        events = bus.history(EventType.PATTERN_ADDED)
        assert events[-1].payload["pattern_id"] == "pattern_cash_usd"

    @pytest.mark.asyncio
    async def test_new_pattern_applies_to_next_prediction(self, prediction_service, make_input):
        before = await prediction_service.predict(make_input())
        await prediction_service.add_failure_pattern(FailurePattern(
            pattern_name="Everything in USD",
            frequency=0.5,
            avg_impact=0.4,
            conditions=[
                PatternCondition(field="currency", operator=ConditionOperator.EQUALS, value="USD", weight=1.0),
            ],
        ))
        after = await prediction_service.predict(make_input())

        assert after.pattern_adjustment == pytest.approx(before.pattern_adjustment + 0.2)
        assert "Everything in USD" in after.matched_patterns

    @pytest.mark.asyncio
    async def test_detect_patterns_over_seen_inputs(self, bus, scenario_input, make_instruction, make_input):
        service = PredictionService(bus, PatternLibrary())
        await service.register_model(default_model(), activate=True)
        await service.predict(scenario_input)
        await service.predict(make_input(make_instruction(instruction_id="SI-CALM")))

        detected = service.detect_patterns()
        assert [p.pattern_id for p in detected] == ["pattern_high_volatility"]
        assert service.detect_patterns(["SI-CALM"]) == []
