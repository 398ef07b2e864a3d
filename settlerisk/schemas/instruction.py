"""
Settlement instruction schemas.

A SettlementInstruction is one trade's record of what must be exchanged and
when. Identity fields never change after capture; ``status`` is owned by the
timeline tracker, which derives it from the milestone states.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC; aware ones are kept as given."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SecurityType(StrEnum):
    EQUITY = "EQUITY"
    CORPORATE_BOND = "CORPORATE_BOND"
    GOVERNMENT_BOND = "GOVERNMENT_BOND"
    STRUCTURED_PRODUCT = "STRUCTURED_PRODUCT"
    FUND = "FUND"
    DERIVATIVE = "DERIVATIVE"


class SettlementMethod(StrEnum):
    DVP = "DVP"     # delivery versus payment
    FOP = "FOP"     # free of payment
    RVP = "RVP"     # receive versus payment
    CASH = "CASH"


class Priority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Side(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class InstructionStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SETTLED = "SETTLED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    DELAYED = "DELAYED"


TERMINAL_STATUSES = frozenset({
    InstructionStatus.SETTLED,
    InstructionStatus.FAILED,
    InstructionStatus.CANCELLED,
})


class SettlementInstruction(BaseModel):
    """A single trade awaiting settlement."""

    model_config = ConfigDict(validate_assignment=True)

    instruction_id: str
    trade_id: str
    counterparty_id: str
    security_id: str
    security_type: str = SecurityType.EQUITY
    notional_amount: float = Field(ge=0)
    currency: str = "USD"
    side: Side = Side.BUY
    trade_date: datetime
    settlement_date: datetime
    settlement_method: SettlementMethod = SettlementMethod.DVP
    priority: Priority = Priority.MEDIUM
    custodian_id: Optional[str] = None
    clearing_house: Optional[str] = None
    status: InstructionStatus = InstructionStatus.PENDING
    actual_settlement_time: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator(
        "trade_date", "settlement_date", "actual_settlement_time", "created_at", "updated_at"
    )
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _settlement_after_trade(self) -> "SettlementInstruction":
        if self.settlement_date < self.trade_date:
            raise ValueError("settlement_date must not precede trade_date")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
