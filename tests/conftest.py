"""
Shared fixtures for the position engine tests.
Everything runs in-process: in-memory store, dry-run venue, scripted price feed.
"""
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List

import pytest

from config import TradingConfig, VenueConfig
from errors import PriceNotFound, StoreUnavailable, TransientError
from execution.execution_coordinator import ExecutionCoordinator, ExitChannel
from execution.position_monitor import PositionMonitor
from execution.position_store import PositionStore
from execution.risk_evaluator import RiskEvaluator
from execution.trading_engine import TradingEngine
from execution.venues import DryRunVenue
from monitoring.event_bus import EventBus, EventTopic
from position_models import (
    Position, PositionMetadata, PositionStatus, compute_risk_reward, utcnow,
)
from signal_scoring import WeightedSignalSource
from storage.memory_store import MemoryStore


class FakePriceFeed:
    """Scripted IPriceFeed: set prices per token, or an error to raise."""

    def __init__(self):
        self.prices: Dict[str, Decimal] = {}
        self.history: Dict[str, List[Decimal]] = {}
        self.errors: Dict[str, Exception] = {}
        self.connected = False
        self.calls = defaultdict(int)

    async def connect(self) -> bool:
        self.connected = True
        return True

    async def disconnect(self) -> None:
        self.connected = False

    def set_price(self, token: str, price) -> None:
        self.prices[token] = Decimal(str(price))

    async def get_price(self, token_address: str) -> Decimal:
        self.calls[token_address] += 1
        if token_address in self.errors:
            raise self.errors[token_address]
        if token_address not in self.prices:
            raise PriceNotFound("no price", token_address=token_address)
        return self.prices[token_address]

    async def get_historical_prices(self, token_address: str) -> List[Decimal]:
        if token_address in self.errors and isinstance(self.errors[token_address], TransientError):
            raise self.errors[token_address]
        return self.history.get(token_address, [])


class EventRecorder:
    """Subscribes to every topic and keeps the payloads."""

    def __init__(self, bus: EventBus):
        self.events: Dict[EventTopic, list] = defaultdict(list)
        for topic in EventTopic:
            bus.subscribe(topic, self._make_handler(topic))

    def _make_handler(self, topic):
        async def handler(payload):
            self.events[topic].append(payload)
        return handler

    def __getitem__(self, topic: EventTopic) -> list:
        return self.events[topic]


def make_position(token: str = "TOKEN_A", entry="100", quantity="10", stop_loss="90",
                  take_profit="120", position_id: str = None, age_sec: float = 0) -> Position:
    entry, quantity = Decimal(entry), Decimal(quantity)
    stop_loss, take_profit = Decimal(stop_loss), Decimal(take_profit)
    ts = utcnow() - timedelta(seconds=age_sec)
    return Position(
        id=position_id or f"pos-{token}",
        token_address=token,
        entry_price=entry,
        quantity=quantity,
        stop_loss=stop_loss,
        take_profit=take_profit,
        current_price=entry,
        unrealized_pnl=Decimal("0"),
        pnl_percentage=Decimal("0"),
        entry_timestamp=ts,
        last_updated=ts,
        trade_signature="sig-entry",
        metadata=PositionMetadata(
            confidence_score=0.9,
            initial_stop_loss=stop_loss,
            initial_take_profit=take_profit,
            risk_reward_ratio=compute_risk_reward(entry, stop_loss, take_profit),
            highest_price=entry,
            lowest_price=entry,
            max_drawdown=Decimal("0"),
        ),
    )


def fail_first_closed_write(store):
    """Make the first write of a CLOSED record fail; later writes go through."""
    original = store.update_position
    failed = []

    async def update_position(record):
        if record.status == PositionStatus.CLOSED and not failed:
            failed.append(record)
            raise StoreUnavailable("write timeout")
        await original(record)

    store.update_position = update_position
    return failed


@pytest.fixture
def trading_config():
    return TradingConfig(
        max_positions=5,
        max_position_size=Decimal("20"),
        min_position_size=Decimal("0.1"),
        stop_loss_pct=Decimal("0.10"),
        take_profit_pct=Decimal("0.20"),
        slippage_bps=100,
        min_confidence_score=0.7,
        monitoring_interval_sec=0.01,
        position_size_fraction=Decimal("0.1"),
        max_position_fraction=Decimal("0.2"),
        volatility_tp_multiplier=Decimal("2.0"),
        trail_stop_activation_pct=Decimal("5.0"),
        trail_stop_distance=Decimal("0.02"),
        volatility_threshold=0.05,
        position_stale_threshold_sec=300,
        liquidate_on_shutdown=True,
        dry_run=True,
    )


@pytest.fixture
def store():
    s = MemoryStore()
    s.connected = True
    return s


@pytest.fixture
def feed():
    return FakePriceFeed()


@pytest.fixture
def venue():
    return DryRunVenue(VenueConfig(simulated_balance=Decimal("1000"), simulated_fee_bps=0))


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def evaluator(trading_config):
    return RiskEvaluator(trading_config)


@pytest.fixture
def positions(store, trading_config):
    return PositionStore(store, trading_config)


@pytest.fixture
def exits():
    return ExitChannel()


@pytest.fixture
def coordinator(trading_config, venue, positions, store, bus):
    return ExecutionCoordinator(trading_config, venue, positions, store, bus)


@pytest.fixture
def monitor(trading_config, positions, feed, evaluator, exits, bus):
    return PositionMonitor(trading_config, positions, feed, evaluator, exits, bus)


@pytest.fixture
def engine(trading_config, store, feed, venue, positions, coordinator, monitor, exits):
    return TradingEngine(trading_config, store, feed, venue, WeightedSignalSource(),
                         positions, coordinator, monitor, exits)
