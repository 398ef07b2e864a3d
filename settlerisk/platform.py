"""
SettleRisk Platform: wires the subsystems together.

    capture ─► risk assessment + milestone timeline
    predict ─► ensemble prediction from the latest market / history context
    settle  ─► instruction.status_changed ─► outcome feedback + pattern counts

External collaborators push instructions, counterparty profiles, settlement
history and market conditions in; everything else flows through the bus.
"""

from datetime import datetime
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.events import Event, EventType, InMemoryEventBus
from settlerisk.exceptions import PredictionNotFound
from settlerisk.outcomes.schemas import ActualOutcome
from settlerisk.outcomes.tracker import PerformanceTracker
from settlerisk.prediction.patterns import PatternLibrary
from settlerisk.prediction.schemas import FailurePrediction, PredictionInput
from settlerisk.prediction.service import PredictionService, default_model
from settlerisk.risk.schemas import RiskAssessment
from settlerisk.risk.service import RiskAssessmentService
from settlerisk.schemas import (
    CounterpartyRiskProfile,
    HistoricalContext,
    InstructionStatus,
    MarketConditions,
    SettlementInstruction,
)
from settlerisk.timeline.schemas import SettlementTimeline
from settlerisk.timeline.tracker import TimelineTracker

logger = structlog.get_logger(__name__)

FINISHED = frozenset({InstructionStatus.SETTLED.value, InstructionStatus.FAILED.value})


class SettlementRiskPlatform:
    """Facade over prediction, risk scoring, timeline tracking and feedback."""

    def __init__(self, bus: Optional[InMemoryEventBus] = None):
        self.bus = bus or InMemoryEventBus(event_history_size=settings.event_history_size)
        self.patterns = PatternLibrary()
        self.predictions = PredictionService(self.bus, self.patterns)
        self.performance = PerformanceTracker(self.bus, self.predictions)
        self.predictions.accuracy_provider = self.performance.accuracy_for
        self.risk = RiskAssessmentService(self.bus)
        self.timelines = TimelineTracker(self.bus)

        self.market = MarketConditions()
        self._profiles: dict[str, CounterpartyRiskProfile] = {}
        self._histories: dict[str, HistoricalContext] = {}
        self._handler_id: Optional[str] = None
        # Instructions whose first terminal transition has been fed back
        self._fed_back: set[str] = set()

    async def start(self) -> None:
        if self.predictions.active_model is None:
            await self.predictions.register_model(default_model(), activate=True)
        if self._handler_id is None:
            self._handler_id = self.bus.subscribe(
                self._on_status_changed,
                [EventType.INSTRUCTION_STATUS_CHANGED],
            )
        logger.info("settlement_platform_started")

    async def stop(self) -> None:
        if self._handler_id is not None:
            self.bus.unsubscribe(self._handler_id)
            self._handler_id = None
        logger.info("settlement_platform_stopped")

    # ── Inbound context ───────────────────────────────────────────────────

    def update_counterparty_profile(self, profile: CounterpartyRiskProfile) -> None:
        self._profiles[profile.counterparty_id] = profile

    def update_historical_context(self, counterparty_id: str, context: HistoricalContext) -> None:
        self._histories[counterparty_id] = context

    def update_market_conditions(self, market: MarketConditions) -> None:
        self.market = market
        logger.debug(
            "market_conditions_updated",
            stress=market.market_stress_level.value,
            volatility=market.volatility_index,
        )

    # ── Operations ────────────────────────────────────────────────────────

    async def on_instruction_captured(
        self,
        instruction: SettlementInstruction,
    ) -> tuple[SettlementTimeline, RiskAssessment]:
        """Create the timeline and the first risk assessment for a new instruction."""
        timeline = await self.timelines.create_timeline(instruction)
        assessment = await self.risk.assess(
            timeline.instruction, self._profile_for(instruction.counterparty_id), self.market
        )
        return timeline, assessment

    async def reassess(self, instruction_id: str) -> RiskAssessment:
        instruction = self.timelines.get_instruction(instruction_id)
        return await self.risk.assess(
            instruction, self._profile_for(instruction.counterparty_id), self.market
        )

    def build_input(self, instruction_id: str, as_of: Optional[datetime] = None) -> PredictionInput:
        instruction = self.timelines.get_instruction(instruction_id)
        return PredictionInput.from_instruction(
            instruction,
            historical=self._histories.get(instruction.counterparty_id),
            market=self.market,
            as_of=as_of,
        )

    async def predict(self, instruction_id: str, now: Optional[datetime] = None) -> FailurePrediction:
        return await self.predictions.predict(self.build_input(instruction_id, now), now)

    async def predict_pending(self, now: Optional[datetime] = None) -> list[FailurePrediction]:
        """Predict every instruction that has not settled, failed or been cancelled."""
        live = [i for i in self.timelines.list_instructions() if not i.is_terminal]
        inputs = [self.build_input(i.instruction_id, now) for i in live]
        return await self.predictions.predict_batch(inputs, now)

    # ── Feedback loop ─────────────────────────────────────────────────────

    async def _on_status_changed(self, event: Event) -> None:
        status = event.payload.get("status")
        if status not in FINISHED:
            return

        instruction_id = event.payload["instruction_id"]
        if instruction_id in self._fed_back:
            logger.debug(
                "outcome_feedback_skipped",
                instruction_id=instruction_id,
                status=status,
            )
            return
        delay_days = event.payload.get("delay_days")
        outcome = ActualOutcome.FAILURE if status == InstructionStatus.FAILED.value else ActualOutcome.SUCCESS

        try:
            await self.performance.record_outcome(instruction_id, outcome, delay_days)
        except PredictionNotFound:
            logger.debug("outcome_without_prediction", instruction_id=instruction_id)

        last_input = self.predictions.get_last_input(instruction_id)
        if last_input is not None and (outcome == ActualOutcome.FAILURE or (delay_days or 0) > 0):
            await self.patterns.observe(last_input, event.timestamp)
        self._fed_back.add(instruction_id)

    def _profile_for(self, counterparty_id: str) -> CounterpartyRiskProfile:
        profile = self._profiles.get(counterparty_id)
        if profile is None:
            profile = CounterpartyRiskProfile(counterparty_id=counterparty_id)
        return profile
