"""
Test fixtures for SettleRisk.

Provides:
- Event bus with instant retries
- Instruction factory anchored on a Monday 10:00 UTC trade
- Stressed market / history scenario input
- Prediction service with the default ensemble active
- Timeline tracker and the full platform facade
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from settlerisk.events import InMemoryEventBus
from settlerisk.platform import SettlementRiskPlatform
from settlerisk.prediction.patterns import PatternLibrary
from settlerisk.prediction.schemas import PredictionInput
from settlerisk.prediction.service import PredictionService, default_model
from settlerisk.schemas import (
    HistoricalContext,
    MarketConditions,
    MarketStressLevel,
    Priority,
    SettlementInstruction,
    SettlementMethod,
)
from settlerisk.timeline.tracker import TimelineTracker

# Monday 10:00 UTC
TRADE_TIME = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def _instruction(
    instruction_id: str = "SI-001",
    counterparty_id: str = "CP-001",
    security_type: str = "EQUITY",
    notional: float = 1_000_000.0,
    method: SettlementMethod = SettlementMethod.DVP,
    priority: Priority = Priority.MEDIUM,
    trade_date: datetime = TRADE_TIME,
    settlement_days: float = 2,
) -> SettlementInstruction:
    return SettlementInstruction(
        instruction_id=instruction_id,
        trade_id=f"T-{instruction_id}",
        counterparty_id=counterparty_id,
        security_id="US0378331005",
        security_type=security_type,
        notional_amount=notional,
        currency="USD",
        trade_date=trade_date,
        settlement_date=trade_date + timedelta(days=settlement_days),
        settlement_method=method,
        priority=priority,
        custodian_id="CUST-01",
    )


def _input(
    instruction: SettlementInstruction | None = None,
    historical: HistoricalContext | None = None,
    market: MarketConditions | None = None,
) -> PredictionInput:
    instruction = instruction or _instruction()
    return PredictionInput.from_instruction(
        instruction,
        historical=historical,
        market=market,
        as_of=instruction.trade_date,
    )


@pytest.fixture
def trade_time() -> datetime:
    return TRADE_TIME


@pytest.fixture
def make_instruction():
    return _instruction


@pytest.fixture
def make_input():
    return _input


@pytest.fixture
def stressed_history() -> HistoricalContext:
    return HistoricalContext(
        counterparty_success_rate=0.80,
        counterparty_avg_delay_days=2.0,
        security_type_success_rate=0.98,
        recent_failures=3,
    )


@pytest.fixture
def stressed_market() -> MarketConditions:
    return MarketConditions(
        volatility_index=0.5,
        liquidity_index=0.8,
        credit_spread_index=0.2,
        system_load=0.85,
        market_stress_level=MarketStressLevel.HIGH,
    )


@pytest.fixture
def scenario_input(stressed_history, stressed_market) -> PredictionInput:
    """System load 0.85, volatility 0.5, counterparty success 80%, 2 day average delay."""
    return _input(historical=stressed_history, market=stressed_market)


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus(retry_delay_seconds=0.0)


@pytest_asyncio.fixture
async def prediction_service(bus) -> PredictionService:
    service = PredictionService(bus, PatternLibrary())
    await service.register_model(default_model(), activate=True)
    return service


@pytest.fixture
def tracker(bus) -> TimelineTracker:
    return TimelineTracker(bus)


@pytest_asyncio.fixture
async def platform(bus) -> SettlementRiskPlatform:
    platform = SettlementRiskPlatform(bus)
    await platform.start()
    yield platform
    await platform.stop()
