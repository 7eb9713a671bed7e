"""
Service Container — wires and owns all engine service instances.

SRP:  This module's only job is construction of the service graph.
DIP:  Consumers receive interfaces, not concrete classes.

Usage:
    container = ServiceContainer(cfg)
    engine = container.engine
    await engine.start()

    # In tests:
    container.override(venue=FakeVenue(), store=MemoryStore())
"""
from __future__ import annotations

from typing import Optional
from loguru import logger

from config import EngineConfig, get_config
from interfaces import IDurableStore, IExecutionVenue, IPriceFeed, ISignalSource


class ServiceContainer:
    """
    Lazily constructs the engine graph. Nothing is shared across containers:
    two containers give two independent engines.
    """

    def __init__(self, cfg: Optional[EngineConfig] = None):
        self.cfg = cfg or get_config()
        self._store: Optional[IDurableStore] = None
        self._price_feed: Optional[IPriceFeed] = None
        self._venue: Optional[IExecutionVenue] = None
        self._signal_source: Optional[ISignalSource] = None
        self._events = None
        self._evaluator = None
        self._positions = None
        self._exits = None
        self._coordinator = None
        self._monitor = None
        self._engine = None
        self._metrics = None
        self._performance = None
        logger.debug("ServiceContainer initialised")

    # ── External collaborators ───────────────────────────────────────────

    @property
    def store(self) -> IDurableStore:
        if self._store is None:
            if self.cfg.redis.backend == "memory":
                from storage.memory_store import MemoryStore
                self._store = MemoryStore()
            else:
                from storage.redis_store import RedisStore
                self._store = RedisStore(self.cfg.redis)
        return self._store

    @property
    def price_feed(self) -> IPriceFeed:
        if self._price_feed is None:
            from data_sources.price_feed import HttpPriceFeed
            self._price_feed = HttpPriceFeed(self.cfg.price_feed)
        return self._price_feed

    @property
    def venue(self) -> IExecutionVenue:
        if self._venue is None:
            from execution.venues import DryRunVenue, HttpSwapVenue
            if self.cfg.trading.dry_run:
                self._venue = DryRunVenue(self.cfg.venue)
            else:
                self._venue = HttpSwapVenue(self.cfg.venue, self.cfg.trading)
        return self._venue

    @property
    def signal_source(self) -> ISignalSource:
        if self._signal_source is None:
            from signal_scoring import WeightedSignalSource
            self._signal_source = WeightedSignalSource()
        return self._signal_source

    # ── Engine components ────────────────────────────────────────────────

    @property
    def events(self):
        if self._events is None:
            from monitoring.event_bus import EventBus
            self._events = EventBus()
        return self._events

    @property
    def evaluator(self):
        if self._evaluator is None:
            from execution.risk_evaluator import RiskEvaluator
            self._evaluator = RiskEvaluator(self.cfg.trading)
        return self._evaluator

    @property
    def positions(self):
        if self._positions is None:
            from execution.position_store import PositionStore
            self._positions = PositionStore(self.store, self.cfg.trading)
        return self._positions

    @property
    def exits(self):
        if self._exits is None:
            from execution.execution_coordinator import ExitChannel
            self._exits = ExitChannel()
        return self._exits

    @property
    def coordinator(self):
        if self._coordinator is None:
            from execution.execution_coordinator import ExecutionCoordinator
            self._coordinator = ExecutionCoordinator(
                self.cfg.trading, self.venue, self.positions, self.store, self.events)
        return self._coordinator

    @property
    def monitor(self):
        if self._monitor is None:
            from execution.position_monitor import PositionMonitor
            on_round = self.metrics.record_round if self.metrics is not None else None
            self._monitor = PositionMonitor(
                self.cfg.trading, self.positions, self.price_feed, self.evaluator,
                self.exits, self.events, on_round=on_round)
        return self._monitor

    @property
    def engine(self):
        if self._engine is None:
            from execution.trading_engine import TradingEngine
            self._engine = TradingEngine(
                self.cfg.trading, self.store, self.price_feed, self.venue,
                self.signal_source, self.positions, self.coordinator,
                self.monitor, self.exits)
        return self._engine

    @property
    def metrics(self):
        """Prometheus exporter, or None when METRICS_ENABLED is off."""
        if self._metrics is None and self.cfg.metrics.enabled:
            from monitoring.metrics_exporter import MetricsExporter
            self._metrics = MetricsExporter()
            self._metrics.attach(self.events)
        return self._metrics

    @property
    def performance(self):
        if self._performance is None:
            from monitoring.performance_tracker import PerformanceTracker
            self._performance = PerformanceTracker(self.store)
        return self._performance

    # ── Inject overrides (for testing) ───────────────────────────────────

    def override(self, **kwargs):
        """
        Override any service with a fake.

        Example:
            container.override(price_feed=FakeFeed())
        """
        for key, value in kwargs.items():
            attr = f"_{key}"
            if hasattr(self, attr):
                setattr(self, attr, value)
                logger.debug(f"ServiceContainer: overrode {key}")
            else:
                raise KeyError(f"Unknown service: {key}")
