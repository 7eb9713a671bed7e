"""
In-memory durable store — dry-run and test backend.

Same contract as RedisStore; records are kept as serialized dicts so every
read returns a fresh object, exactly like a round-trip through Redis.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from errors import StoreUnavailable, ValidationError
from position_models import (
    FailedTrade, Position, PositionRecord, PositionStatus, TokenSnapshot, Trade,
    position_from_record,
)


class MemoryStore:
    """Dict-backed implementation of IDurableStore."""

    def __init__(self):
        self._tokens: Dict[str, Dict[str, Any]] = {}
        self._positions: Dict[str, Dict[str, Any]] = {}
        self._trades: List[Dict[str, Any]] = []
        self._failed: List[Dict[str, Any]] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True
        logger.info("Memory store ready")

    async def disconnect(self) -> None:
        self.connected = False

    def _check(self) -> None:
        if not self.connected:
            raise StoreUnavailable("memory store not connected", code="not_connected")

    # ── Tokens ───────────────────────────────────────────────────────────

    async def save_token(self, snapshot: TokenSnapshot) -> None:
        self._check()
        self._tokens[snapshot.address] = snapshot.to_dict()

    async def get_token(self, address: str) -> Optional[TokenSnapshot]:
        self._check()
        data = self._tokens.get(address)
        return TokenSnapshot.from_dict(data) if data else None

    # ── Positions ────────────────────────────────────────────────────────

    async def create_position(self, position: Position) -> None:
        self._check()
        if position.id in self._positions:
            raise ValidationError(f"position {position.id} already exists",
                                  token_address=position.token_address, code="duplicate_id")
        self._positions[position.id] = position.to_dict()

    async def update_position(self, record: PositionRecord) -> None:
        self._check()
        self._positions[record.id] = record.to_dict()

    async def get_position(self, position_id: str) -> Optional[PositionRecord]:
        self._check()
        data = self._positions.get(position_id)
        return position_from_record(data) if data else None

    async def get_positions_by_status(self, status: PositionStatus) -> List[PositionRecord]:
        self._check()
        status = PositionStatus(status)
        return [position_from_record(d) for d in self._positions.values()
                if d["status"] == status.value]

    # ── Trades ───────────────────────────────────────────────────────────

    async def save_trade(self, trade: Trade) -> None:
        self._check()
        self._trades.append(trade.to_dict())

    async def get_trades_by_position(self, position_id: str) -> List[Trade]:
        self._check()
        return [Trade.from_dict(t) for t in self._trades if t["position_id"] == position_id]

    async def get_trade_history(self, start: datetime, end: datetime) -> List[Trade]:
        self._check()
        trades = [Trade.from_dict(t) for t in self._trades]
        return sorted((t for t in trades if start <= t.timestamp <= end),
                      key=lambda t: t.timestamp)

    async def save_failed_trade(self, failed: FailedTrade) -> None:
        self._check()
        self._failed.append(failed.to_dict())

    async def get_failed_trades(self, limit: int = 100) -> List[FailedTrade]:
        self._check()
        return [FailedTrade.from_dict(f) for f in self._failed[-limit:]]
