"""
Trading Engine — startup, shutdown and opportunity intake.

start(): connect store → venue → price feed, rehydrate, start exit consumer
         and monitor. Any failure surfaces as FatalError; the engine does not
         report running.
stop():  stop monitor (in-flight round finishes), liquidate if configured,
         drain the exit consumer, disconnect everything.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

from loguru import logger

from config import TradingConfig
from errors import EngineError, ExecutionFailure, FatalError, TransientError, ValidationError
from execution.execution_coordinator import CloseOutcome, ExecutionCoordinator, ExitChannel
from execution.position_monitor import PositionMonitor
from execution.position_store import PositionStore
from interfaces import IDurableStore, IExecutionVenue, IPriceFeed, ISignalSource
from position_models import CloseReason, Position, TokenSnapshot


class TradingEngine:

    def __init__(self, config: TradingConfig, store: IDurableStore,
                 price_feed: IPriceFeed, venue: IExecutionVenue,
                 signal_source: ISignalSource, positions: PositionStore,
                 coordinator: ExecutionCoordinator, monitor: PositionMonitor,
                 exits: ExitChannel):
        self.config = config
        self._store = store
        self._feed = price_feed
        self._venue = venue
        self._signals = signal_source
        self.positions = positions
        self.coordinator = coordinator
        self.monitor = monitor
        self._exits = exits
        self._consumer: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            logger.warning("Engine already running")
            return
        mode = "DRY RUN" if self.config.dry_run else "LIVE"
        logger.info(f"Starting position engine ({mode})")
        try:
            await self._store.connect()
            await self._venue.connect()
            await self._feed.connect()
            await self.positions.rehydrate(self._feed)
        except FatalError:
            await self._disconnect_all()
            raise
        except EngineError as e:
            await self._disconnect_all()
            raise FatalError(f"startup failed: {e}", code="startup") from e

        self._exits.reopen()
        self._consumer = asyncio.create_task(self.coordinator.serve_exits(self._exits),
                                             name="exit-consumer")
        self.monitor.start()
        self._running = True
        logger.info(f"✓ Engine running with {self.positions.count()} active position(s)")

    async def stop(self) -> List[CloseOutcome]:
        """Shut down. Returns the close outcomes of any liquidated positions."""
        if not self._running:
            return []
        logger.info("Stopping position engine...")
        await self.monitor.stop()

        outcomes: List[CloseOutcome] = []
        if self.config.liquidate_on_shutdown:
            active = self.positions.get_active()
            if active:
                logger.info(f"Liquidating {len(active)} position(s)")
                results = await asyncio.gather(*(self._liquidate(p) for p in active),
                                               return_exceptions=True)
                for position, result in zip(active, results):
                    if isinstance(result, BaseException):
                        logger.error(f"Liquidation of {position.id} failed: {result}")
                    else:
                        outcomes.append(result)

        self._exits.close()
        if self._consumer is not None:
            await self._consumer
            self._consumer = None

        errors = await self._disconnect_all()
        self._running = False
        if errors:
            raise FatalError(f"shutdown incomplete: {'; '.join(errors)}", code="shutdown")
        logger.info("✓ Engine stopped")
        return outcomes

    async def _liquidate(self, position: Position) -> CloseOutcome:
        try:
            return await self.coordinator.close(position, CloseReason.SHUTDOWN)
        except Exception as e:
            if not position.is_active:
                raise
            return await self.coordinator.force_close(position, str(e))

    async def _disconnect_all(self) -> List[str]:
        errors = []
        for name, component in (("price feed", self._feed), ("venue", self._venue),
                                ("store", self._store)):
            try:
                await component.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting {name}: {e}")
                errors.append(f"{name}: {e}")
        return errors

    # ── Opportunity intake ───────────────────────────────────────────────

    async def evaluate_opportunity(self, snapshot: TokenSnapshot) -> Optional[Position]:
        """Score a token and open a position if it clears every gate."""
        if self.positions.count() >= self.config.max_positions:
            logger.debug(f"Max positions reached, ignoring {snapshot.address}")
            return None
        if snapshot.address in self.positions:
            logger.debug(f"Already holding {snapshot.address}")
            return None

        confidence = self._signals.evaluate(snapshot)
        try:
            await self._store.save_token(snapshot)
            if confidence < self.config.min_confidence_score:
                logger.debug(f"Confidence {confidence:.2f} too low for {snapshot.address}")
                return None
            balance = await self._venue.get_balance()
        except TransientError as e:
            logger.warning(f"Opportunity {snapshot.address} skipped: {e}")
            return None
        signal = self.coordinator.build_entry_signal(snapshot, confidence, balance)
        if signal is None:
            return None
        try:
            return await self.coordinator.open(signal)
        except (ValidationError, ExecutionFailure) as e:
            logger.warning(f"Opportunity {snapshot.address} not taken: {e}")
            return None
