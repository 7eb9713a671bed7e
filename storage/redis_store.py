"""
Redis durable store.

Key layout (all under the configured prefix):
  token:{address}            JSON token snapshot
  position:{id}              JSON position record (any variant)
  positions:{status}         SET of position ids per status
  trades                     ZSET of JSON trades scored by epoch seconds
  trades:position:{id}       LIST of JSON trades for one position
  failed_trades              LIST of JSON failed-trade records
"""
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from loguru import logger

from config import RedisConfig
from errors import FatalError, StoreUnavailable, ValidationError
from position_models import (
    FailedTrade, Position, PositionRecord, PositionStatus, TokenSnapshot, Trade,
    position_from_record,
)


class RedisStore:
    """IDurableStore backed by a single Redis database."""

    def __init__(self, cfg: RedisConfig):
        self.cfg = cfg
        self.prefix = cfg.key_prefix
        self.client: Optional[redis.Redis] = None

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    async def connect(self) -> None:
        try:
            self.client = redis.Redis(
                host=self.cfg.host, port=self.cfg.port, db=self.cfg.db,
                decode_responses=True, socket_connect_timeout=5)
            await self.client.ping()
            logger.info(f"✓ Connected to Redis {self.cfg.host}:{self.cfg.port}/{self.cfg.db}")
        except RedisError as e:
            self.client = None
            raise FatalError(f"Redis connection failed: {e}", code="store_connect") from e

    async def disconnect(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Disconnected from Redis")

    @asynccontextmanager
    async def _guard(self, operation: str):
        if self.client is None:
            raise StoreUnavailable(f"{operation}: store not connected", code="not_connected")
        try:
            yield self.client
        except RedisError as e:
            raise StoreUnavailable(f"{operation}: {e}", code="redis_error") from e

    # ── Tokens ───────────────────────────────────────────────────────────

    async def save_token(self, snapshot: TokenSnapshot) -> None:
        async with self._guard("save_token") as r:
            await r.set(self._key("token", snapshot.address), json.dumps(snapshot.to_dict()))

    async def get_token(self, address: str) -> Optional[TokenSnapshot]:
        async with self._guard("get_token") as r:
            raw = await r.get(self._key("token", address))
        return TokenSnapshot.from_dict(json.loads(raw)) if raw else None

    # ── Positions ────────────────────────────────────────────────────────

    async def create_position(self, position: Position) -> None:
        async with self._guard("create_position") as r:
            created = await r.set(self._key("position", position.id),
                                  json.dumps(position.to_dict()), nx=True)
            if not created:
                raise ValidationError(f"position {position.id} already exists",
                                      token_address=position.token_address, code="duplicate_id")
            await r.sadd(self._key("positions", position.status.value), position.id)

    async def update_position(self, record: PositionRecord) -> None:
        status = record.status.value
        async with self._guard("update_position") as r:
            async with r.pipeline(transaction=True) as pipe:
                pipe.set(self._key("position", record.id), json.dumps(record.to_dict()))
                for s in PositionStatus:
                    if s.value != status:
                        pipe.srem(self._key("positions", s.value), record.id)
                pipe.sadd(self._key("positions", status), record.id)
                await pipe.execute()

    async def get_position(self, position_id: str) -> Optional[PositionRecord]:
        async with self._guard("get_position") as r:
            raw = await r.get(self._key("position", position_id))
        return position_from_record(json.loads(raw)) if raw else None

    async def get_positions_by_status(self, status: PositionStatus) -> List[PositionRecord]:
        status = PositionStatus(status)
        async with self._guard("get_positions_by_status") as r:
            ids = await r.smembers(self._key("positions", status.value))
            if not ids:
                return []
            raws = await r.mget([self._key("position", pid) for pid in sorted(ids)])
        return [position_from_record(json.loads(raw)) for raw in raws if raw]

    # ── Trades ───────────────────────────────────────────────────────────

    async def save_trade(self, trade: Trade) -> None:
        payload = json.dumps(trade.to_dict())
        async with self._guard("save_trade") as r:
            async with r.pipeline(transaction=True) as pipe:
                pipe.zadd(self._key("trades"), {payload: trade.timestamp.timestamp()})
                pipe.rpush(self._key("trades", "position", trade.position_id), payload)
                await pipe.execute()

    async def get_trades_by_position(self, position_id: str) -> List[Trade]:
        async with self._guard("get_trades_by_position") as r:
            raws = await r.lrange(self._key("trades", "position", position_id), 0, -1)
        return [Trade.from_dict(json.loads(raw)) for raw in raws]

    async def get_trade_history(self, start: datetime, end: datetime) -> List[Trade]:
        async with self._guard("get_trade_history") as r:
            raws = await r.zrangebyscore(self._key("trades"), start.timestamp(), end.timestamp())
        return [Trade.from_dict(json.loads(raw)) for raw in raws]

    async def save_failed_trade(self, failed: FailedTrade) -> None:
        async with self._guard("save_failed_trade") as r:
            await r.rpush(self._key("failed_trades"), json.dumps(failed.to_dict()))

    async def get_failed_trades(self, limit: int = 100) -> List[FailedTrade]:
        async with self._guard("get_failed_trades") as r:
            raws = await r.lrange(self._key("failed_trades"), -limit, -1)
        return [FailedTrade.from_dict(json.loads(raw)) for raw in raws]
