"""
Risk Assessment Service.

One active assessment per instruction (overwritten on reassessment) plus a
capped audit trail of every assessment ever produced.
"""

from datetime import datetime
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.events import EventType, InMemoryEventBus
from settlerisk.exceptions import AssessmentNotFound
from settlerisk.risk.schemas import (
    ALERT_LEVEL_RANK,
    AlertLevel,
    RiskAssessment,
    RiskTrend,
)
from settlerisk.risk.scoring import RiskScoringEngine
from settlerisk.schemas import (
    CounterpartyRiskProfile,
    MarketConditions,
    SettlementInstruction,
)
from settlerisk.store import AppendOnlyLog

logger = structlog.get_logger(__name__)

TREND_EPSILON = 0.02


class RiskAssessmentService:
    def __init__(
        self,
        bus: InMemoryEventBus,
        engine: Optional[RiskScoringEngine] = None,
        history_size: Optional[int] = None,
    ):
        self.bus = bus
        self.engine = engine or RiskScoringEngine()
        self._active: dict[str, RiskAssessment] = {}
        self._audit: AppendOnlyLog[RiskAssessment] = AppendOnlyLog(
            history_size or settings.assessment_history_size
        )

    async def assess(
        self,
        instruction: SettlementInstruction,
        profile: CounterpartyRiskProfile,
        market: MarketConditions,
        now: Optional[datetime] = None,
    ) -> RiskAssessment:
        assessment = self.engine.assess(instruction, profile, market, now)
        self._active[instruction.instruction_id] = assessment
        self._audit.append(instruction.instruction_id, assessment)

        logger.info(
            "risk_assessed",
            instruction_id=instruction.instruction_id,
            composite=round(assessment.composite_score, 4),
            grade=assessment.grade.value,
            alert_level=assessment.alert_level.value,
        )
        payload = dict(
            assessment_id=assessment.assessment_id,
            instruction_id=assessment.instruction_id,
            counterparty_id=assessment.counterparty_id,
            composite_score=assessment.composite_score,
            grade=assessment.grade.value,
            alert_level=assessment.alert_level.value,
            breached_components=[c.value for c in assessment.breached_components],
        )
        await self.bus.emit(
            EventType.RISK_ASSESSED, correlation_id=instruction.instruction_id, **payload
        )
        if assessment.alert_level == AlertLevel.CRITICAL:
            await self.bus.emit(
                EventType.RISK_ALERT,
                correlation_id=instruction.instruction_id,
                key_factors=assessment.key_factors,
                **payload,
            )
        return assessment

    # ── Queries ───────────────────────────────────────────────────────────

    def get_active_assessment(self, instruction_id: str) -> RiskAssessment:
        assessment = self._active.get(instruction_id)
        if assessment is None:
            raise AssessmentNotFound(instruction_id)
        return assessment

    def get_active_assessments(
        self,
        min_alert_level: AlertLevel = AlertLevel.INFO,
    ) -> list[RiskAssessment]:
        floor = ALERT_LEVEL_RANK[min_alert_level]
        hits = [
            a for a in self._active.values()
            if ALERT_LEVEL_RANK[a.alert_level] >= floor
        ]
        hits.sort(key=lambda a: a.composite_score, reverse=True)
        return hits

    def get_assessment_history(self, instruction_id: str) -> list[RiskAssessment]:
        return self._audit.history(instruction_id)

    def get_risk_trend(self, instruction_id: str) -> RiskTrend:
        history = self._audit.history(instruction_id)
        if not history:
            raise AssessmentNotFound(instruction_id)
        first, latest = history[0].composite_score, history[-1].composite_score
        change = latest - first
        if change > TREND_EPSILON:
            direction = "increasing"
        elif change < -TREND_EPSILON:
            direction = "decreasing"
        else:
            direction = "stable"
        return RiskTrend(
            instruction_id=instruction_id,
            assessments=len(history),
            first_score=first,
            latest_score=latest,
            change=change,
            direction=direction,
        )
