"""
Protocol interfaces for dependency injection (DIP — Dependency Inversion Principle).

The engine depends on these abstractions, not on concrete implementations.
This allows swapping live ↔ dry-run ↔ mock without touching business logic.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Protocol, runtime_checkable

from position_models import (
    FailedTrade, ExecutionResult, Position, PositionRecord, PositionStatus,
    TokenSnapshot, Trade, TradingSignal,
)


# ── Market Data ──────────────────────────────────────────────────────────────

@runtime_checkable
class IPriceFeed(Protocol):
    """Provides current and historical token prices."""

    async def connect(self) -> bool: ...

    async def disconnect(self) -> None: ...

    async def get_price(self, token_address: str) -> Decimal: ...

    async def get_historical_prices(self, token_address: str) -> List[Decimal]: ...


# ── Execution Venue ──────────────────────────────────────────────────────────

@runtime_checkable
class IExecutionVenue(Protocol):
    """Routes and settles trades."""

    async def connect(self) -> bool: ...

    async def disconnect(self) -> None: ...

    async def execute(self, signal: TradingSignal) -> ExecutionResult: ...

    async def get_balance(self) -> Decimal: ...


# ── Signal Source ────────────────────────────────────────────────────────────

@runtime_checkable
class ISignalSource(Protocol):
    """Scores a token snapshot into a confidence value in [0, 1]."""

    def evaluate(self, snapshot: TokenSnapshot) -> float: ...


# ── Durable Store ────────────────────────────────────────────────────────────

@runtime_checkable
class IDurableStore(Protocol):
    """Crash-recovery persistence for tokens, positions and trades."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def save_token(self, snapshot: TokenSnapshot) -> None: ...

    async def get_token(self, address: str) -> Optional[TokenSnapshot]: ...

    async def create_position(self, position: Position) -> None: ...

    async def update_position(self, record: PositionRecord) -> None: ...

    async def get_position(self, position_id: str) -> Optional[PositionRecord]: ...

    async def get_positions_by_status(self, status: PositionStatus) -> List[PositionRecord]: ...

    async def save_trade(self, trade: Trade) -> None: ...

    async def get_trades_by_position(self, position_id: str) -> List[Trade]: ...

    async def get_trade_history(self, start: datetime, end: datetime) -> List[Trade]: ...

    async def save_failed_trade(self, failed: FailedTrade) -> None: ...

    async def get_failed_trades(self, limit: int = 100) -> List[FailedTrade]: ...


# ── Event Publishing ─────────────────────────────────────────────────────────

EventHandler = Callable[[Any], Awaitable[None]]


@runtime_checkable
class IEventPublisher(Protocol):
    """Publishes lifecycle notifications to subscribers."""

    async def publish(self, topic: Any, payload: Any) -> None: ...

    def subscribe(self, topic: Any, handler: EventHandler) -> None: ...
