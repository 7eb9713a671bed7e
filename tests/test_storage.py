"""
Durable stores — MemoryStore behaviour and RedisStore against a mocked client.
"""
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config import RedisConfig
from conftest import make_position
from errors import FatalError, StoreUnavailable, ValidationError
from position_models import (
    FailedTrade, PositionStatus, SignalType, TokenSnapshot, Trade, utcnow,
)
from storage.memory_store import MemoryStore
from storage.redis_store import RedisStore


def trade(position_id="p1", minutes_ago=0, pnl=None, trade_type=SignalType.EXIT):
    return Trade(position_id=position_id, token_address="T", trade_type=trade_type,
                 price=Decimal("1"), quantity=Decimal("1"),
                 timestamp=utcnow() - timedelta(minutes=minutes_ago), signature="s",
                 realized_pnl=pnl)


class TestMemoryStore:

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        store = MemoryStore()
        with pytest.raises(StoreUnavailable):
            await store.get_position("x")
        await store.connect()
        assert await store.get_position("x") is None

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self, store):
        await store.create_position(make_position())
        with pytest.raises(ValidationError):
            await store.create_position(make_position())

    @pytest.mark.asyncio
    async def test_positions_by_status(self, store):
        a, b = make_position("A", position_id="a"), make_position("B", position_id="b")
        await store.create_position(a)
        await store.create_position(b)
        b.terminate(PositionStatus.FORCE_CLOSED)
        await store.update_position(b)
        active = await store.get_positions_by_status(PositionStatus.ACTIVE)
        assert [p.id for p in active] == ["a"]
        forced = await store.get_positions_by_status(PositionStatus.FORCE_CLOSED)
        assert [p.id for p in forced] == ["b"]

    @pytest.mark.asyncio
    async def test_reads_are_detached(self, store):
        pos = make_position()
        await store.create_position(pos)
        loaded = await store.get_position(pos.id)
        loaded.stop_loss = Decimal("1")
        assert (await store.get_position(pos.id)).stop_loss == Decimal("90")

    @pytest.mark.asyncio
    async def test_trade_history_range(self, store):
        await store.save_trade(trade(minutes_ago=120))
        await store.save_trade(trade(minutes_ago=30))
        await store.save_trade(trade(position_id="p2", minutes_ago=5))
        now = utcnow()
        recent = await store.get_trade_history(now - timedelta(hours=1), now)
        assert len(recent) == 2
        assert recent[0].timestamp < recent[1].timestamp
        assert len(await store.get_trades_by_position("p1")) == 2

    @pytest.mark.asyncio
    async def test_failed_trades_limit(self, store):
        for i in range(5):
            await store.save_failed_trade(FailedTrade(
                token_address=f"T{i}", trade_type=SignalType.ENTRY, price=Decimal("1"),
                quantity=Decimal("1"), timestamp=utcnow(), error="x"))
        latest = await store.get_failed_trades(limit=2)
        assert [f.token_address for f in latest] == ["T3", "T4"]

    @pytest.mark.asyncio
    async def test_token_snapshot(self, store):
        await store.save_token(TokenSnapshot(address="T", price=Decimal("0.5"), symbol="TKN"))
        snap = await store.get_token("T")
        assert snap.symbol == "TKN"
        assert snap.price == Decimal("0.5")


def _pipeline_mock():
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    return pipe


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.sadd = AsyncMock(return_value=1)
    client.smembers = AsyncMock(return_value=set())
    client.mget = AsyncMock(return_value=[])
    client.lrange = AsyncMock(return_value=[])
    client.rpush = AsyncMock(return_value=1)
    client.zrangebyscore = AsyncMock(return_value=[])
    client.aclose = AsyncMock()
    client.pipeline = MagicMock(return_value=_pipeline_mock())
    return client


@pytest.fixture
def redis_store(redis_client):
    with patch("storage.redis_store.redis.Redis", return_value=redis_client):
        yield RedisStore(RedisConfig(key_prefix="test"))


class TestRedisStore:

    @pytest.mark.asyncio
    async def test_connect_failure_is_fatal(self, redis_client):
        redis_client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        with patch("storage.redis_store.redis.Redis", return_value=redis_client):
            store = RedisStore(RedisConfig())
            with pytest.raises(FatalError) as exc:
                await store.connect()
        assert exc.value.code == "store_connect"

    @pytest.mark.asyncio
    async def test_operations_need_connection(self, redis_store):
        with pytest.raises(StoreUnavailable):
            await redis_store.get_position("p")

    @pytest.mark.asyncio
    async def test_redis_error_is_transient(self, redis_store, redis_client):
        await redis_store.connect()
        redis_client.get = AsyncMock(side_effect=RedisConnectionError("reset"))
        with pytest.raises(StoreUnavailable):
            await redis_store.get_position("p")

    @pytest.mark.asyncio
    async def test_create_position_uses_nx_and_status_set(self, redis_store, redis_client):
        await redis_store.connect()
        pos = make_position()
        await redis_store.create_position(pos)
        key, payload = redis_client.set.call_args.args
        assert key == f"test:position:{pos.id}"
        assert json.loads(payload)["stop_loss"] == "90"
        assert redis_client.set.call_args.kwargs["nx"] is True
        redis_client.sadd.assert_awaited_with("test:positions:active", pos.id)

    @pytest.mark.asyncio
    async def test_create_existing_position_rejected(self, redis_store, redis_client):
        await redis_store.connect()
        redis_client.set = AsyncMock(return_value=None)
        with pytest.raises(ValidationError):
            await redis_store.create_position(make_position())

    @pytest.mark.asyncio
    async def test_get_active_positions(self, redis_store, redis_client):
        await redis_store.connect()
        pos = make_position()
        redis_client.smembers = AsyncMock(return_value={pos.id})
        redis_client.mget = AsyncMock(return_value=[json.dumps(pos.to_dict())])
        loaded = await redis_store.get_positions_by_status(PositionStatus.ACTIVE)
        assert loaded == [pos]

    @pytest.mark.asyncio
    async def test_update_moves_status_sets(self, redis_store, redis_client):
        await redis_store.connect()
        pipe = redis_client.pipeline.return_value
        pos = make_position()
        pos.terminate(PositionStatus.CLOSED)
        await redis_store.update_position(pos)
        pipe.sadd.assert_called_with("test:positions:closed", pos.id)
        removed = {c.args[0] for c in pipe.srem.call_args_list}
        assert removed == {"test:positions:active", "test:positions:force_closed"}
        pipe.execute.assert_awaited()

    @pytest.mark.asyncio
    async def test_disconnect_closes_client(self, redis_store, redis_client):
        await redis_store.connect()
        await redis_store.disconnect()
        redis_client.aclose.assert_awaited()
        assert redis_store.client is None
