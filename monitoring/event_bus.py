"""
EventBus — explicitly constructed publish/subscribe channel for lifecycle events.

SRP: Fan-out of notifications only. Publishers never know who listens, and a
     failing subscriber never breaks the publisher or other subscribers.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger

from interfaces import EventHandler
from position_models import (
    ClosedPosition, ExecutionResult, ForceClosedPosition, TradingSignal, utcnow,
)


class EventTopic(str, Enum):
    POSITION_OPENED = "positionOpened"
    POSITION_UPDATED = "positionUpdated"
    POSITION_CLOSED = "positionClosed"
    POSITION_FORCE_CLOSED = "positionForceClosed"
    TRADE_FAILED = "tradeFailed"


@dataclass(frozen=True)
class PositionClosedEvent:
    position: ClosedPosition
    reason: str
    result: Optional[ExecutionResult] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PositionForceClosedEvent:
    position: ForceClosedPosition
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TradeFailedEvent:
    signal: TradingSignal
    error: str
    error_code: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


class EventBus:
    """In-process async pub/sub keyed by EventTopic."""

    def __init__(self):
        self._handlers: Dict[EventTopic, List[EventHandler]] = defaultdict(list)
        self._published: Dict[EventTopic, int] = defaultdict(int)

    def subscribe(self, topic: EventTopic, handler: EventHandler) -> None:
        topic = EventTopic(topic)
        self._handlers[topic].append(handler)
        logger.debug(f"EventBus: subscribed {getattr(handler, '__name__', handler)} to {topic.value}")

    def unsubscribe(self, topic: EventTopic, handler: EventHandler) -> None:
        handlers = self._handlers.get(EventTopic(topic), [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, topic: EventTopic, payload: Any) -> None:
        """Deliver payload to every subscriber of topic, in subscription order."""
        topic = EventTopic(topic)
        self._published[topic] += 1
        for handler in list(self._handlers.get(topic, [])):
            try:
                await handler(payload)
            except Exception as e:
                logger.error(f"EventBus: subscriber {getattr(handler, '__name__', handler)} "
                             f"failed on {topic.value}: {e}")

    def published_count(self, topic: EventTopic) -> int:
        return self._published[EventTopic(topic)]
