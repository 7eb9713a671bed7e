"""
Prometheus Metrics Exporter
Counts lifecycle events and monitor rounds, served over HTTP for scraping
"""
from __future__ import annotations

from typing import Optional

from loguru import logger
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from monitoring.event_bus import (
    EventBus, EventTopic, PositionClosedEvent, PositionForceClosedEvent, TradeFailedEvent,
)
from position_models import Position


class MetricsExporter:
    """
    Prometheus view of the engine.

    Fed two ways:
    - EventBus subscriptions (opened / closed / force-closed / failed)
    - record_round(), wired as the monitor's round hook
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._setup_counters()
        self._setup_gauges()
        self.round_duration = Histogram(
            'engine_round_duration_seconds', 'Monitor round duration in seconds',
            buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10], registry=self.registry)
        self._server_started = False

    def _setup_counters(self):
        counter_defs = [
            ('rounds', 'engine_rounds', 'Monitor rounds completed'),
            ('rounds_skipped', 'engine_rounds_skipped', 'Monitor ticks skipped (overlap)'),
            ('round_errors', 'engine_round_errors', 'Per-position task failures'),
            ('positions_opened', 'engine_positions_opened', 'Positions opened'),
            ('positions_closed', 'engine_positions_closed', 'Positions closed'),
            ('positions_force_closed', 'engine_positions_force_closed', 'Positions force-closed'),
            ('failed_trades', 'engine_failed_trades', 'Failed trade attempts'),
        ]
        for attr, name, desc in counter_defs:
            setattr(self, attr, Counter(name, desc, registry=self.registry))

    def _setup_gauges(self):
        gauge_defs = [
            ('open_positions', 'engine_open_positions', 'Active positions'),
            ('realized_pnl', 'engine_realized_pnl', 'Realized P&L since start'),
        ]
        for attr, name, desc in gauge_defs:
            setattr(self, attr, Gauge(name, desc, registry=self.registry))

    # ── Wiring ───────────────────────────────────────────────────────────

    def attach(self, events: EventBus) -> None:
        events.subscribe(EventTopic.POSITION_OPENED, self._on_opened)
        events.subscribe(EventTopic.POSITION_CLOSED, self._on_closed)
        events.subscribe(EventTopic.POSITION_FORCE_CLOSED, self._on_force_closed)
        events.subscribe(EventTopic.TRADE_FAILED, self._on_failed)

    def serve(self, port: int) -> None:
        if self._server_started:
            return
        start_http_server(port, registry=self.registry)
        self._server_started = True
        logger.info(f"✓ Metrics server started on http://localhost:{port}/metrics")

    # ── Feeds ────────────────────────────────────────────────────────────

    def record_round(self, report) -> None:
        self.set_open_positions(report.open_positions)
        if report.skipped:
            self.rounds_skipped.inc()
            return
        self.rounds.inc()
        self.round_errors.inc(report.errors)
        self.round_duration.observe(report.duration_sec)

    async def _on_opened(self, position: Position) -> None:
        self.positions_opened.inc()
        self.open_positions.inc()

    async def _on_closed(self, event: PositionClosedEvent) -> None:
        self.positions_closed.inc()
        self.open_positions.dec()
        self.realized_pnl.inc(float(event.position.realized_pnl))

    async def _on_force_closed(self, event: PositionForceClosedEvent) -> None:
        self.positions_force_closed.inc()
        self.open_positions.dec()

    async def _on_failed(self, event: TradeFailedEvent) -> None:
        self.failed_trades.inc()

    def set_open_positions(self, count: int) -> None:
        self.open_positions.set(count)
