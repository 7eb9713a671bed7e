"""
Position Monitor — periodic evaluation rounds over every active position.

Each round fans out one task per position. A task only ever writes its own
position, so no per-position locking is needed. Exits are handed to the
coordinator through the ExitChannel and awaited, so a round ends only once
its exits have settled.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from config import TradingConfig
from errors import TransientError
from execution.execution_coordinator import ExitChannel
from execution.position_store import PositionStore
from execution.risk_evaluator import (
    Action, AdjustTakeProfit, Exit, Hold, RaiseStopLoss, RiskEvaluator, compute_volatility,
)
from interfaces import IEventPublisher, IPriceFeed
from monitoring.event_bus import EventTopic
from position_models import MarketMetrics, Position, utcnow


@dataclass
class RoundReport:
    started_at: datetime
    duration_sec: float = 0.0
    positions: int = 0
    open_positions: int = 0
    exits: int = 0
    adjustments: int = 0
    errors: int = 0
    skipped: bool = False
    actions: List[Action] = field(default_factory=list)


class PositionMonitor:
    """Runs a round every monitoring_interval_sec until stopped."""

    def __init__(self, config: TradingConfig, positions: PositionStore,
                 price_feed: IPriceFeed, evaluator: RiskEvaluator,
                 exits: ExitChannel, events: IEventPublisher,
                 on_round: Optional[Callable[[RoundReport], None]] = None):
        self.config = config
        self._positions = positions
        self._feed = price_feed
        self._evaluator = evaluator
        self._exits = exits
        self._events = events
        self.on_round = on_round

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._round_in_progress = False
        self.rounds_completed = 0
        self.rounds_skipped = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="position-monitor")
        logger.info(f"Monitor started (interval={self.config.monitoring_interval_sec}s)")

    async def stop(self) -> None:
        """Let the in-flight round finish; schedule no more."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Monitor stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_round()
            try:
                await asyncio.wait_for(self._stop_event.wait(),
                                       timeout=self.config.monitoring_interval_sec)
            except asyncio.TimeoutError:
                pass

    async def run_round(self) -> RoundReport:
        report = RoundReport(started_at=utcnow())
        if self._round_in_progress:
            self.rounds_skipped += 1
            report.skipped = True
            report.open_positions = self._positions.count()
            logger.warning("Previous round still running, skipping this tick")
            return report

        self._round_in_progress = True
        t0 = time.monotonic()
        try:
            active = self._positions.get_active()
            report.positions = len(active)
            results = await asyncio.gather(*(self._process(p) for p in active),
                                           return_exceptions=True)
            for position, result in zip(active, results):
                if isinstance(result, BaseException):
                    report.errors += 1
                    self._log_task_error(position, result)
                    continue
                report.actions.append(result)
                if isinstance(result, Exit):
                    report.exits += 1
                elif isinstance(result, (RaiseStopLoss, AdjustTakeProfit)):
                    report.adjustments += 1
        finally:
            self._round_in_progress = False

        report.duration_sec = time.monotonic() - t0
        report.open_positions = self._positions.count()
        self.rounds_completed += 1
        logger.debug(f"Round done: {report.positions} positions, {report.exits} exits, "
                     f"{report.errors} errors in {report.duration_sec:.3f}s")
        if self.on_round is not None:
            self.on_round(report)
        return report

    @staticmethod
    def _log_task_error(position: Position, error: BaseException) -> None:
        if isinstance(error, TransientError):
            logger.warning(f"Round skipped {position.token_address}: {error}")
        else:
            logger.error(f"Round task failed for {position.token_address}: {error}")

    async def _market_metrics(self, position: Position) -> MarketMetrics:
        price = await self._feed.get_price(position.token_address)
        try:
            history = await self._feed.get_historical_prices(position.token_address)
        except TransientError as e:
            logger.debug(f"No price history for {position.token_address}: {e}")
            history = []
        return MarketMetrics(price=price, volatility=compute_volatility(history),
                             sample_count=len(history))

    async def _process(self, position: Position) -> Action:
        if not position.is_active:
            return Hold()
        metrics = await self._market_metrics(position)

        position.mark_price(metrics.price)
        position.metadata.volatility = metrics.volatility
        await self._positions.upsert(position)
        await self._events.publish(EventTopic.POSITION_UPDATED, position.snapshot())

        action = self._evaluator.evaluate(position, metrics.price, metrics)
        if isinstance(action, RaiseStopLoss):
            old = position.stop_loss
            if position.raise_stop_loss(action.value):
                await self._positions.upsert(position)
                logger.info(f"Trailing stop {position.token_address}: {old:.8f} → {action.value:.8f}")
        elif isinstance(action, AdjustTakeProfit):
            if position.set_take_profit(action.value):
                await self._positions.upsert(position)
                logger.info(f"Take profit {position.token_address} → {action.value:.8f} "
                            f"(vol={metrics.volatility:.4f})")
        elif isinstance(action, Exit):
            logger.info(f"Exit {position.token_address} @ {metrics.price} [{action.reason.value}]")
            await self._exits.submit(position, action.reason)
        return action
