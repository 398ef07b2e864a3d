"""
Outcome Tracking Schemas.

Records what ACTUALLY happened to a settlement after it was predicted,
and the running confusion counts per model version.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ActualOutcome(StrEnum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class OutcomeRecord(BaseModel):
    """Predicted versus realised result for one instruction."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    outcome_id: str = Field(default_factory=lambda: f"out_{uuid.uuid4().hex[:12]}")
    instruction_id: str
    prediction_id: str
    model_version: str

    predicted_probability: float
    predicted_failure: bool
    predicted_delay_days: float

    actual_outcome: ActualOutcome
    actual_delay_days: Optional[float] = None

    correct: bool
    recorded_at: datetime


class ModelPerformanceMetrics(BaseModel):
    """Running accuracy metrics for one model version."""

    model_config = ConfigDict(protected_namespaces=())

    model_version: str
    total_predictions: int = 0
    true_positives: int = 0
    true_negatives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    brier_sum: float = 0.0
    delay_abs_error_sum: float = 0.0
    delay_observations: int = 0
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @computed_field
    @property
    def correct_predictions(self) -> int:
        return self.true_positives + self.true_negatives

    @computed_field
    @property
    def accuracy(self) -> float:
        if self.total_predictions == 0:
            return 0.0
        return self.correct_predictions / self.total_predictions

    @computed_field
    @property
    def precision(self) -> float:
        predicted_positive = self.true_positives + self.false_positives
        return self.true_positives / predicted_positive if predicted_positive else 0.0

    @computed_field
    @property
    def recall(self) -> float:
        actual_positive = self.true_positives + self.false_negatives
        return self.true_positives / actual_positive if actual_positive else 0.0

    @computed_field
    @property
    def f1_score(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) > 0 else 0.0

    @computed_field
    @property
    def brier_score(self) -> float:
        if self.total_predictions == 0:
            return 0.0
        return self.brier_sum / self.total_predictions

    @computed_field
    @property
    def mean_absolute_delay_error(self) -> Optional[float]:
        if self.delay_observations == 0:
            return None
        return self.delay_abs_error_sum / self.delay_observations
