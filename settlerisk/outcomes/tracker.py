"""
Prediction Performance Tracker.

Closes the loop: when a settlement finishes, its latest prediction is
scored against what happened and the model version's running metrics
(accuracy, precision, recall, F1, Brier, delay error) are updated.
"""

from datetime import datetime
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.events import EventType, InMemoryEventBus
from settlerisk.outcomes.schemas import ActualOutcome, ModelPerformanceMetrics, OutcomeRecord
from settlerisk.prediction.service import PredictionService
from settlerisk.schemas import ensure_utc, utcnow

logger = structlog.get_logger(__name__)


class PerformanceTracker:
    def __init__(
        self,
        bus: InMemoryEventBus,
        predictions: PredictionService,
        decision_threshold: Optional[float] = None,
    ):
        self.bus = bus
        self.predictions = predictions
        self.decision_threshold = (
            settings.decision_threshold if decision_threshold is None else decision_threshold
        )
        self._metrics: dict[str, ModelPerformanceMetrics] = {}
        self._outcomes: dict[str, list[OutcomeRecord]] = {}
        # prediction_id → the record that scored it
        self._scored: dict[str, OutcomeRecord] = {}

    async def record_outcome(
        self,
        instruction_id: str,
        actual_outcome: ActualOutcome,
        actual_delay_days: Optional[float] = None,
        at: Optional[datetime] = None,
    ) -> OutcomeRecord:
        """
        Score the latest prediction for an instruction against its realised outcome.

        A prediction is scored once. Later outcomes for the same prediction
        (a settled instruction that fails reconciliation, a retried or
        replayed event) return the original record and leave metrics alone.

        Raises:
            PredictionNotFound: if the instruction was never predicted.
        """
        prediction = self.predictions.get_latest_prediction(instruction_id)
        already = self._scored.get(prediction.prediction_id)
        if already is not None:
            logger.info(
                "prediction_outcome_already_recorded",
                instruction_id=instruction_id,
                prediction_id=prediction.prediction_id,
                recorded=already.actual_outcome.value,
                ignored=actual_outcome.value,
            )
            return already
        at = ensure_utc(at) or utcnow()

        predicted_failure = prediction.failure_probability > self.decision_threshold
        actual_failure = actual_outcome == ActualOutcome.FAILURE

        metrics = self._metrics.setdefault(
            prediction.model_version,
            ModelPerformanceMetrics(model_version=prediction.model_version, period_start=at),
        )
        metrics.total_predictions += 1
        if predicted_failure and actual_failure:
            metrics.true_positives += 1
        elif predicted_failure:
            metrics.false_positives += 1
        elif actual_failure:
            metrics.false_negatives += 1
        else:
            metrics.true_negatives += 1
        metrics.brier_sum += (prediction.failure_probability - float(actual_failure)) ** 2
        if actual_delay_days is not None:
            metrics.delay_abs_error_sum += abs(prediction.expected_delay_days - actual_delay_days)
            metrics.delay_observations += 1
        metrics.period_end = at

        record = OutcomeRecord(
            instruction_id=instruction_id,
            prediction_id=prediction.prediction_id,
            model_version=prediction.model_version,
            predicted_probability=prediction.failure_probability,
            predicted_failure=predicted_failure,
            predicted_delay_days=prediction.expected_delay_days,
            actual_outcome=actual_outcome,
            actual_delay_days=actual_delay_days,
            correct=predicted_failure == actual_failure,
            recorded_at=at,
        )
        self._outcomes.setdefault(instruction_id, []).append(record)
        self._scored[prediction.prediction_id] = record

        logger.info(
            "prediction_outcome_recorded",
            instruction_id=instruction_id,
            model_version=prediction.model_version,
            predicted_failure=predicted_failure,
            actual=actual_outcome.value,
            accuracy=round(metrics.accuracy, 4),
        )
        await self.bus.emit(
            EventType.PREDICTION_FEEDBACK,
            correlation_id=instruction_id,
            prediction_id=prediction.prediction_id,
            instruction_id=instruction_id,
            model_version=prediction.model_version,
            predicted_failure=predicted_failure,
            predicted_probability=prediction.failure_probability,
            predicted_delay_days=prediction.expected_delay_days,
            actual_failure=actual_failure,
            actual_delay_days=actual_delay_days,
        )
        return record

    def get_metrics(self, model_version: str) -> Optional[ModelPerformanceMetrics]:
        metrics = self._metrics.get(model_version)
        return metrics.model_copy() if metrics else None

    def list_metrics(self) -> list[ModelPerformanceMetrics]:
        return [m.model_copy() for m in self._metrics.values()]

    def get_outcomes(self, instruction_id: str) -> list[OutcomeRecord]:
        return list(self._outcomes.get(instruction_id, []))

    def accuracy_for(self, model_version: str) -> Optional[float]:
        metrics = self._metrics.get(model_version)
        if metrics is None or metrics.total_predictions == 0:
            return None
        return metrics.accuracy
