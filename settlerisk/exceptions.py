"""
Exception hierarchy for SettleRisk.

Every error carries a stable code so callers (API layers, event consumers)
can map failures without parsing messages.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Error codes for categorizing failures."""

    # Prediction errors (1xxx)
    NO_ACTIVE_MODEL = "E1000"
    PREDICTION_NOT_FOUND = "E1001"
    MODEL_NOT_FOUND = "E1002"

    # Risk errors (2xxx)
    ASSESSMENT_NOT_FOUND = "E2000"

    # Timeline errors (3xxx)
    INSTRUCTION_NOT_FOUND = "E3000"
    MILESTONE_NOT_FOUND = "E3001"
    ALERT_NOT_FOUND = "E3002"
    INVALID_TRANSITION = "E3003"
    DUPLICATE_INSTRUCTION = "E3004"

    # Configuration errors (9xxx)
    CONFIGURATION_ERROR = "E9000"


class SettlementRiskError(Exception):
    """Base exception for all SettleRisk errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(SettlementRiskError):
    """A referenced record does not exist."""

    def __init__(self, resource: str, identifier: str, code: ErrorCode):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code=code,
            details={"resource": resource, "identifier": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class NoActiveModel(SettlementRiskError):
    def __init__(self):
        super().__init__(
            message="No active prediction model is registered",
            code=ErrorCode.NO_ACTIVE_MODEL,
        )


class ModelNotFound(NotFoundError):
    def __init__(self, model_id: str):
        super().__init__("Prediction model", model_id, ErrorCode.MODEL_NOT_FOUND)


class PredictionNotFound(NotFoundError):
    def __init__(self, instruction_id: str):
        super().__init__("Prediction", instruction_id, ErrorCode.PREDICTION_NOT_FOUND)


class AssessmentNotFound(NotFoundError):
    def __init__(self, instruction_id: str):
        super().__init__("Risk assessment", instruction_id, ErrorCode.ASSESSMENT_NOT_FOUND)


class InstructionNotFound(NotFoundError):
    def __init__(self, instruction_id: str):
        super().__init__("Settlement instruction", instruction_id, ErrorCode.INSTRUCTION_NOT_FOUND)


class MilestoneNotFound(NotFoundError):
    def __init__(self, instruction_id: str, milestone: str):
        super().__init__(
            "Milestone", f"{instruction_id}/{milestone}", ErrorCode.MILESTONE_NOT_FOUND
        )


class AlertNotFound(NotFoundError):
    def __init__(self, alert_id: str):
        super().__init__("Settlement alert", alert_id, ErrorCode.ALERT_NOT_FOUND)


class InvalidMilestoneTransition(SettlementRiskError):
    def __init__(self, milestone: str, current: str, requested: str):
        super().__init__(
            message=f"Milestone {milestone} cannot move from {current} to {requested}",
            code=ErrorCode.INVALID_TRANSITION,
            details={"milestone": milestone, "current": current, "requested": requested},
        )


class DuplicateInstruction(SettlementRiskError):
    def __init__(self, instruction_id: str):
        super().__init__(
            message=f"Timeline already exists for instruction {instruction_id}",
            code=ErrorCode.DUPLICATE_INSTRUCTION,
            details={"instruction_id": instruction_id},
        )


class ConfigurationError(SettlementRiskError):
    def __init__(self, message: str, **details: Any):
        super().__init__(message=message, code=ErrorCode.CONFIGURATION_ERROR, details=details)
