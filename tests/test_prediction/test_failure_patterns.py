"""Tests for the failure pattern library."""

from datetime import timedelta

import pytest

from settlerisk.prediction.patterns import PatternLibrary, condition_holds, default_patterns
from settlerisk.prediction.schemas import ConditionOperator, FailurePattern, PatternCondition
from settlerisk.schemas import HistoricalContext


def _condition(operator, value, field="notional_amount", weight=1.0) -> PatternCondition:
    return PatternCondition(field=field, operator=operator, value=value, weight=weight)


class TestConditions:
    def test_equals_is_case_insensitive(self):
        assert condition_holds(_condition(ConditionOperator.EQUALS, "friday"), "FRIDAY")

    def test_numeric_comparisons(self):
        assert condition_holds(_condition(ConditionOperator.GREATER_THAN, 10), 11)
        assert not condition_holds(_condition(ConditionOperator.GREATER_THAN, 10), 10)
        assert condition_holds(_condition(ConditionOperator.LESS_THAN, "10"), 9.5)

    def test_between_is_inclusive(self):
        cond = _condition(ConditionOperator.BETWEEN, [1, 5])
        assert condition_holds(cond, 1)
        assert condition_holds(cond, 5)
        assert not condition_holds(cond, 5.01)

    def test_between_needs_two_bounds(self):
        assert not condition_holds(_condition(ConditionOperator.BETWEEN, 3), 3)

    def test_contains(self):
        assert condition_holds(_condition(ConditionOperator.CONTAINS, ["EQUITY", "FUND"]), "fund")
        assert condition_holds(_condition(ConditionOperator.CONTAINS, "BOND"), "CORPORATE_BOND")
        assert not condition_holds(_condition(ConditionOperator.CONTAINS, "BOND"), "EQUITY")

    def test_missing_value_never_matches(self):
        assert not condition_holds(_condition(ConditionOperator.EQUALS, None), None)
        assert not condition_holds(_condition(ConditionOperator.GREATER_THAN, 1), "not-a-number")


class TestPatternLibrary:
    def setup_method(self):
        self.library = PatternLibrary()

    def test_default_patterns_are_loaded(self):
        ids = {p.pattern_id for p in self.library.list_patterns()}
        assert ids == {p.pattern_id for p in default_patterns()}
        assert len(ids) == 4

    def test_friday_settlement_with_short_runway(self, make_instruction, make_input):
        # Thursday 10:00 trade settling Friday 08:00 the next day
        instruction = make_instruction(settlement_days=22 / 24)
        instruction = instruction.model_copy(update={
            "trade_date": instruction.trade_date + timedelta(days=3),
            "settlement_date": instruction.settlement_date + timedelta(days=3),
        })
        data = make_input(instruction)
        weekend = self.library.get("pattern_weekend_settlement")

        assert self.library.evaluate(weekend, data) == pytest.approx(1.0)
        _, names = self.library.adjustment(data)
        assert "Weekend Settlement Risk" in names

    def test_partial_match_below_threshold_is_ignored(self, make_input):
        data = make_input(historical=HistoricalContext(counterparty_success_rate=0.9))
        new_cp = self.library.get("pattern_new_counterparty")

        assert self.library.evaluate(new_cp, data) == pytest.approx(0.2)
        adjustment, names = self.library.adjustment(data)
        assert adjustment == 0.0
        assert names == []

    def test_unknown_field_never_matches(self, make_input):
        pattern = FailurePattern(
            pattern_name="Typo",
            frequency=0.5,
            avg_impact=0.5,
            conditions=[_condition(ConditionOperator.EQUALS, "X", field="no_such_field")],
        )
        assert self.library.evaluate(pattern, make_input()) == 0.0

    def test_feature_names_resolve(self, make_input):
        pattern = FailurePattern(
            pattern_name="Short window",
            frequency=0.1,
            avg_impact=0.1,
            conditions=[_condition(ConditionOperator.LESS_THAN, 3, field="time_to_settlement")],
        )
        assert self.library.evaluate(pattern, make_input()) == 1.0

    @pytest.mark.asyncio
    async def test_zero_weight_pattern_is_inert(self, make_input):
        pattern = FailurePattern(
            pattern_id="pattern_weightless",
            pattern_name="Weightless",
            frequency=1.0,
            avg_impact=1.0,
            conditions=[_condition(ConditionOperator.GREATER_THAN, 0, weight=0.0)],
        )
        await self.library.register(pattern)

        assert self.library.evaluate(pattern, make_input()) == 0.0
        _, names = self.library.adjustment(make_input())
        assert "Weightless" not in names

    @pytest.mark.asyncio
    async def test_reregistering_keeps_identified_count(self):
        original = self.library.get("pattern_high_volatility")
        original.identified_count = 7
        replacement = original.model_copy(update={"identified_count": 0, "avg_impact": 0.5})

        registered = await self.library.register(replacement)

        assert registered.identified_count == 7
        assert self.library.get("pattern_high_volatility").avg_impact == 0.5

    @pytest.mark.asyncio
    async def test_snapshot_is_replaced_not_mutated(self):
        before = self.library.snapshot()
        await self.library.register(FailurePattern(
            pattern_name="Extra", frequency=0.1, avg_impact=0.1,
            conditions=[_condition(ConditionOperator.GREATER_THAN, 0)],
        ))
        assert len(before) == 4
        assert len(self.library.snapshot()) == 5

    @pytest.mark.asyncio
    async def test_observe_counts_matching_patterns(self, scenario_input, trade_time):
        matched = await self.library.observe(scenario_input, trade_time)

        assert [p.pattern_id for p in matched] == ["pattern_high_volatility"]
        pattern = self.library.get("pattern_high_volatility")
        assert pattern.identified_count == 1
        assert pattern.last_seen == trade_time
        assert self.library.get("pattern_large_trade").identified_count == 0

    def test_detect_requires_minimum_share(self, scenario_input, make_input):
        history = [scenario_input] + [make_input() for _ in range(3)]
        assert self.library.detect(history) == []
        assert [p.pattern_id for p in self.library.detect(history[:2])] == ["pattern_high_volatility"]

    def test_detect_empty_history(self):
        assert self.library.detect([]) == []
