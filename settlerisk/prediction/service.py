"""
Prediction Service.

Owns the model registry, the per-instruction prediction history and the
pattern library, and publishes prediction events. The heavy lifting is
delegated to the pure EnsemblePredictor.
"""

import asyncio
from collections import Counter
from datetime import datetime
from typing import Callable, Optional

import structlog

from settlerisk.config import settings
from settlerisk.events import EventType, InMemoryEventBus
from settlerisk.exceptions import ModelNotFound, NoActiveModel, PredictionNotFound
from settlerisk.prediction.ensemble import EnsemblePredictor
from settlerisk.prediction.models import build_members
from settlerisk.prediction.patterns import PatternLibrary
from settlerisk.prediction.schemas import (
    TIMEFRAME_WINDOWS,
    FactorFrequency,
    FailurePattern,
    FailurePrediction,
    PredictionInput,
    PredictionModel,
    PredictionSummary,
    SummaryTimeframe,
)
from settlerisk.schemas import RiskTier, ensure_utc, utcnow
from settlerisk.store import AppendOnlyLog

logger = structlog.get_logger(__name__)

HIGH_RISK_TIERS = frozenset({RiskTier.HIGH, RiskTier.VERY_HIGH})

AccuracyProvider = Callable[[str], Optional[float]]


def default_model() -> PredictionModel:
    """The shipped ensemble: hand-set linear, rule and network members."""
    return PredictionModel(
        model_id="settlement_failure_ensemble_v1",
        model_name="Settlement Failure Ensemble",
        version="1.0.0",
        algorithm="ENSEMBLE",
        training_data_size=0,
        members=list(settings.ensemble_members),
        member_weights=settings.ensemble_weights,
        feature_importance={
            "counterparty_success_rate": 0.25,
            "counterparty_avg_delay": 0.20,
            "security_type_success_rate": 0.15,
            "market_volatility": 0.12,
            "liquidity_index": 0.10,
            "credit_spread": 0.08,
            "notional_amount_normalized": 0.05,
            "time_to_settlement": 0.03,
            "system_load": 0.02,
        },
    )


class PredictionService:
    """Async front end for failure predictions."""

    def __init__(
        self,
        bus: InMemoryEventBus,
        pattern_library: Optional[PatternLibrary] = None,
        predictor: Optional[EnsemblePredictor] = None,
        history_size: Optional[int] = None,
        high_risk_threshold: Optional[float] = None,
        accuracy_provider: Optional[AccuracyProvider] = None,
    ):
        self.bus = bus
        self.patterns = pattern_library or PatternLibrary()
        self.predictor = predictor or EnsemblePredictor(self.patterns)
        self.high_risk_threshold = (
            settings.high_risk_threshold if high_risk_threshold is None else high_risk_threshold
        )
        self.accuracy_provider = accuracy_provider
        self._history: AppendOnlyLog[FailurePrediction] = AppendOnlyLog(
            history_size or settings.prediction_history_size
        )
        self._inputs: dict[str, PredictionInput] = {}
        self._models: dict[str, PredictionModel] = {}
        self._active_model_id: Optional[str] = None
        self._registry_lock = asyncio.Lock()

    # ── Model registry ────────────────────────────────────────────────────

    async def register_model(self, model: PredictionModel, activate: bool = False) -> PredictionModel:
        build_members(model.members)  # fail fast on unknown members
        async with self._registry_lock:
            self._models[model.model_id] = model
        logger.info(
            "prediction_model_registered",
            model_id=model.model_id,
            version=model.version,
            members=model.members,
        )
        if activate:
            return await self.activate_model(model.model_id)
        return model

    async def activate_model(self, model_id: str) -> PredictionModel:
        async with self._registry_lock:
            if model_id not in self._models:
                raise ModelNotFound(model_id)
            for mid, model in list(self._models.items()):
                self._models[mid] = model.model_copy(update={"is_active": mid == model_id})
            self._active_model_id = model_id
            active = self._models[model_id]

        await self.bus.emit(
            EventType.MODEL_ACTIVATED,
            model_id=active.model_id,
            version=active.version,
        )
        logger.info("prediction_model_activated", model_id=model_id, version=active.version)
        return active

    @property
    def active_model(self) -> Optional[PredictionModel]:
        if self._active_model_id is None:
            return None
        return self._models.get(self._active_model_id)

    def list_models(self) -> list[PredictionModel]:
        return list(self._models.values())

    # ── Predictions ───────────────────────────────────────────────────────

    async def predict(self, data: PredictionInput, now: Optional[datetime] = None) -> FailurePrediction:
        """Predict failure for one instruction and append it to its history."""
        try:
            model = self.active_model
            if model is None:
                raise NoActiveModel()
            prediction = self.predictor.predict(data, model, self.patterns.snapshot(), now)
        except Exception as e:
            logger.error(
                "prediction_failed",
                instruction_id=data.instruction_id,
                error=str(e),
            )
            await self.bus.emit(
                EventType.PREDICTION_ERROR,
                correlation_id=data.instruction_id,
                instruction_id=data.instruction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        self._history.append(data.instruction_id, prediction)
        self._inputs[data.instruction_id] = data

        logger.info(
            "failure_prediction_generated",
            instruction_id=data.instruction_id,
            probability=round(prediction.failure_probability, 4),
            tier=prediction.risk_tier.value,
            model_version=prediction.model_version,
        )
        await self.bus.emit(
            EventType.PREDICTION_GENERATED,
            correlation_id=data.instruction_id,
            prediction_id=prediction.prediction_id,
            instruction_id=prediction.instruction_id,
            failure_probability=prediction.failure_probability,
            risk_tier=prediction.risk_tier.value,
            expected_delay_days=prediction.expected_delay_days,
            confidence=prediction.confidence,
            model_version=prediction.model_version,
        )
        if prediction.risk_tier in HIGH_RISK_TIERS:
            await self.bus.emit(
                EventType.PREDICTION_HIGH_RISK,
                correlation_id=data.instruction_id,
                prediction_id=prediction.prediction_id,
                instruction_id=prediction.instruction_id,
                failure_probability=prediction.failure_probability,
                risk_tier=prediction.risk_tier.value,
                risk_factors=[f.factor for f in prediction.risk_factors],
            )
        return prediction

    async def predict_batch(
        self,
        inputs: list[PredictionInput],
        now: Optional[datetime] = None,
    ) -> list[FailurePrediction]:
        """Predict every input; results keep the input order."""
        results = await asyncio.gather(*(self.predict(data, now) for data in inputs))
        logger.info("batch_predictions_generated", count=len(results))
        return list(results)

    # ── Queries ───────────────────────────────────────────────────────────

    def get_prediction_history(self, instruction_id: str) -> list[FailurePrediction]:
        return self._history.history(instruction_id)

    def get_latest_prediction(self, instruction_id: str) -> FailurePrediction:
        latest = self._history.latest(instruction_id)
        if latest is None:
            raise PredictionNotFound(instruction_id)
        return latest

    def get_last_input(self, instruction_id: str) -> Optional[PredictionInput]:
        return self._inputs.get(instruction_id)

    def get_high_risk_predictions(self, threshold: Optional[float] = None) -> list[FailurePrediction]:
        """Latest prediction per instruction at or above the threshold, riskiest first."""
        threshold = self.high_risk_threshold if threshold is None else threshold
        hits = [
            p for p in self._history.latest_per_key()
            if p.failure_probability >= threshold
        ]
        hits.sort(key=lambda p: p.failure_probability, reverse=True)
        return hits

    def generate_summary(
        self,
        timeframe: SummaryTimeframe = SummaryTimeframe.DAILY,
        now: Optional[datetime] = None,
    ) -> PredictionSummary:
        now = ensure_utc(now) or utcnow()
        start = now - TIMEFRAME_WINDOWS[timeframe]
        window = [
            p for p in self._history.all_records()
            if start <= p.prediction_timestamp <= now
        ]

        factor_counts: Counter[str] = Counter(
            f.factor for p in window for f in p.risk_factors
        )
        tiers: Counter[str] = Counter(p.risk_tier.value for p in window)
        total = len(window)

        accuracy = None
        model = self.active_model
        if self.accuracy_provider is not None and model is not None:
            accuracy = self.accuracy_provider(model.version)

        return PredictionSummary(
            timeframe=timeframe,
            period_start=start,
            period_end=now,
            total_predictions=total,
            high_risk_count=sum(
                1 for p in window if p.failure_probability > self.high_risk_threshold
            ),
            average_failure_probability=(
                sum(p.failure_probability for p in window) / total if total else 0.0
            ),
            tier_distribution=dict(tiers),
            top_risk_factors=[
                FactorFrequency(factor=name, count=count)
                for name, count in factor_counts.most_common(5)
            ],
            model_accuracy=accuracy,
        )

    # ── Patterns ──────────────────────────────────────────────────────────

    async def add_failure_pattern(self, pattern: FailurePattern) -> FailurePattern:
        registered = await self.patterns.register(pattern)
        await self.bus.emit(
            EventType.PATTERN_ADDED,
            pattern_id=registered.pattern_id,
            pattern_name=registered.pattern_name,
            frequency=registered.frequency,
            avg_impact=registered.avg_impact,
        )
        return registered

    def detect_patterns(self, instruction_ids: Optional[list[str]] = None) -> list[FailurePattern]:
        """Recurring patterns across the latest inputs seen for the given instructions."""
        ids = instruction_ids if instruction_ids is not None else list(self._inputs)
        history = [self._inputs[i] for i in ids if i in self._inputs]
        return self.patterns.detect(history)
