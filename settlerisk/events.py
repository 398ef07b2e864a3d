"""
Domain event bus.

Every subsystem publishes what it did (prediction generated, milestone
updated, alert raised, ...) to an in-memory bus. Subscribers are async
callables; each runs with retry and exponential backoff, and an event that
still fails is parked in a dead letter queue instead of breaking the
publisher.
"""

import asyncio
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# EVENT DEFINITIONS
# ============================================================================


class EventType(str, Enum):
    """Event types in the system."""

    # Prediction events
    PREDICTION_GENERATED = "prediction.generated"
    PREDICTION_HIGH_RISK = "prediction.high_risk"
    PREDICTION_ERROR = "prediction.error"
    PREDICTION_FEEDBACK = "prediction.feedback"
    PATTERN_ADDED = "pattern.added"
    MODEL_ACTIVATED = "model.activated"

    # Risk events
    RISK_ASSESSED = "risk.assessed"
    RISK_ALERT = "risk.alert"

    # Timeline events
    TIMELINE_CREATED = "timeline.created"
    MILESTONE_UPDATED = "milestone.updated"
    INSTRUCTION_STATUS_CHANGED = "instruction.status_changed"
    DELAY_RECORDED = "delay.recorded"
    DELAY_RESOLVED = "delay.resolved"
    ALERT_CREATED = "alert.created"
    ALERT_ACKNOWLEDGED = "alert.acknowledged"
    ALERT_RESOLVED = "alert.resolved"


class Event(BaseModel):
    """Base event class."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# HANDLERS & DEAD LETTER QUEUE
# ============================================================================


EventHandler = Callable[[Event], Awaitable[None]]


@dataclass
class HandlerRegistration:
    """Handler registration details."""

    handler: EventHandler
    event_types: list[EventType]
    handler_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    retry_count: int = 3
    timeout_seconds: float = 30.0


@dataclass
class DeadLetterEntry:
    """An event a handler gave up on."""

    event: Event
    error: str
    error_traceback: str
    handler_id: str
    attempt_count: int
    failed_at: datetime = field(default_factory=_utcnow)


class DeadLetterQueue:
    """Bounded store of events that exhausted their handler retries."""

    def __init__(self, max_size: int = 1000):
        self._queue: dict[str, DeadLetterEntry] = {}
        self._max_size = max_size

    def add(self, event: Event, error: Exception, handler_id: str, attempt_count: int) -> str:
        key = f"{event.event_id}:{handler_id}"
        if key not in self._queue and len(self._queue) >= self._max_size:
            oldest_key = min(self._queue, key=lambda k: self._queue[k].failed_at)
            del self._queue[oldest_key]

        self._queue[key] = DeadLetterEntry(
            event=event,
            error=str(error),
            error_traceback=traceback.format_exc(),
            handler_id=handler_id,
            attempt_count=attempt_count,
        )
        logger.warning(
            "event_dead_lettered",
            event_id=event.event_id,
            event_type=event.event_type.value,
            handler_id=handler_id,
            attempt_count=attempt_count,
            error=str(error),
        )
        return key

    def list_entries(self, event_type: Optional[EventType] = None) -> list[DeadLetterEntry]:
        entries = list(self._queue.values())
        if event_type:
            entries = [e for e in entries if e.event.event_type == event_type]
        entries.sort(key=lambda e: e.failed_at, reverse=True)
        return entries

    def __len__(self) -> int:
        return len(self._queue)


# ============================================================================
# EVENT BUS
# ============================================================================


class InMemoryEventBus:
    """
    In-memory event bus.

    Supports:
    - Async event handling (matching handlers run concurrently)
    - Handler retry with exponential backoff
    - Dead letter queue
    - Bounded event history for queries and replay
    """

    def __init__(
        self,
        max_retry: int = 3,
        retry_delay_seconds: float = 0.1,
        event_history_size: int = 1000,
    ):
        self._handlers: dict[str, HandlerRegistration] = {}
        self._history: list[Event] = []
        self._history_size = event_history_size
        self._max_retry = max_retry
        self._retry_delay = retry_delay_seconds
        self.dead_letters = DeadLetterQueue()

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers."""
        self._history.append(event)
        if len(self._history) > self._history_size:
            self._history = self._history[-self._history_size:]

        logger.debug(
            "event_published",
            event_id=event.event_id,
            event_type=event.event_type.value,
        )

        matching = [h for h in self._handlers.values() if event.event_type in h.event_types]
        if matching:
            await asyncio.gather(
                *(self._execute_handler(h, event) for h in matching),
                return_exceptions=True,
            )

    async def emit(
        self,
        event_type: EventType,
        correlation_id: Optional[str] = None,
        **payload: Any,
    ) -> Event:
        """Build and publish an event in one call."""
        event = Event(event_type=event_type, correlation_id=correlation_id, payload=payload)
        await self.publish(event)
        return event

    async def _execute_handler(self, registration: HandlerRegistration, event: Event) -> None:
        """Execute a handler with retry logic."""
        for attempt in range(registration.retry_count):
            try:
                await asyncio.wait_for(
                    registration.handler(event),
                    timeout=registration.timeout_seconds,
                )
                return
            except Exception as e:
                logger.error(
                    "handler_error",
                    handler_id=registration.handler_id,
                    event_id=event.event_id,
                    attempt=attempt + 1,
                    error=str(e) or type(e).__name__,
                )
                if attempt < registration.retry_count - 1:
                    await asyncio.sleep(self._retry_delay * (2 ** attempt))
                else:
                    self.dead_letters.add(event, e, registration.handler_id, attempt + 1)

    def subscribe(
        self,
        handler: EventHandler,
        event_types: list[EventType],
        retry_count: Optional[int] = None,
        timeout_seconds: float = 30.0,
    ) -> str:
        """Subscribe to events. Returns handler ID."""
        registration = HandlerRegistration(
            handler=handler,
            event_types=list(event_types),
            retry_count=retry_count or self._max_retry,
            timeout_seconds=timeout_seconds,
        )
        self._handlers[registration.handler_id] = registration
        logger.debug(
            "handler_subscribed",
            handler_id=registration.handler_id,
            event_types=[t.value for t in event_types],
        )
        return registration.handler_id

    def unsubscribe(self, handler_id: str) -> bool:
        return self._handlers.pop(handler_id, None) is not None

    def history(
        self,
        event_type: Optional[EventType] = None,
        correlation_id: Optional[str] = None,
    ) -> list[Event]:
        """Published events, oldest first, optionally filtered."""
        events = self._history
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if correlation_id is not None:
            events = [e for e in events if e.correlation_id == correlation_id]
        return list(events)

    async def replay(self, event_type: Optional[EventType] = None) -> int:
        """Re-deliver stored events to current subscribers without re-recording them."""
        replayed = 0
        for event in self.history(event_type):
            matching = [h for h in self._handlers.values() if event.event_type in h.event_types]
            for registration in matching:
                await self._execute_handler(registration, event)
            replayed += 1
        logger.info("events_replayed", count=replayed)
        return replayed
