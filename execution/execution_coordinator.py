"""
Execution Coordinator — the only path that opens or closes positions.

SRP: Translates signals into venue executions and venue results into position
     state transitions. Every outcome is persisted, indexed and published.

Exit requests from the monitor arrive through an ExitChannel; the coordinator
never calls back into the monitor.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Set, Union

from loguru import logger

from config import TradingConfig
from errors import EngineError, ExecutionFailure, ValidationError
from execution.position_store import PositionStore
from execution.risk_evaluator import RiskEvaluator
from interfaces import IDurableStore, IEventPublisher, IExecutionVenue
from monitoring.event_bus import (
    EventTopic, PositionClosedEvent, PositionForceClosedEvent, TradeFailedEvent,
)
from position_models import (
    CloseReason, ClosedPosition, ExecutionResult, FailedTrade, ForceClosedPosition,
    Position, PositionMetadata, PositionStatus, SignalType, TokenSnapshot, Trade,
    TradingSignal, compute_pnl_percentage, compute_risk_reward,
    compute_unrealized_pnl, utcnow,
)

CloseOutcome = Union[ClosedPosition, ForceClosedPosition]


@dataclass
class ExitRequest:
    position: Position
    reason: CloseReason
    done: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())


class ExitChannel:
    """One-way queue of exit requests, monitor → coordinator."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def submit(self, position: Position, reason: CloseReason) -> CloseOutcome:
        """Enqueue an exit and wait until the coordinator settles it."""
        if self.closed:
            raise ExecutionFailure("exit channel is closed",
                                   token_address=position.token_address, code="channel_closed")
        request = ExitRequest(position=position, reason=reason)
        await self._queue.put(request)
        return await request.done

    async def next(self) -> Optional[ExitRequest]:
        return await self._queue.get()

    def reopen(self) -> None:
        self.closed = False

    def close(self) -> None:
        """Stop accepting requests; the consumer drains what is queued, then exits."""
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)


class ExecutionCoordinator:
    """Opens and closes positions against an execution venue."""

    def __init__(self, config: TradingConfig, venue: IExecutionVenue,
                 positions: PositionStore, store: IDurableStore,
                 events: IEventPublisher):
        self.config = config
        self._venue = venue
        self._positions = positions
        self._store = store
        self._events = events
        self._levels = RiskEvaluator(config)
        self._pending_tokens: Set[str] = set()

    # ── Sizing & signals ─────────────────────────────────────────────────

    def calculate_position_size(self, confidence: float, balance: Decimal) -> Decimal:
        """
        balance × fraction × confidence, clamped to
        [min_position_size, min(max_position_size, balance × max_position_fraction)].

        Returns 0 when the raw size is below the minimum (trade suppressed).
        """
        cfg = self.config
        raw = balance * cfg.position_size_fraction * Decimal(str(confidence))
        if raw < cfg.min_position_size:
            return Decimal("0")
        ceiling = min(cfg.max_position_size, balance * cfg.max_position_fraction)
        if ceiling < cfg.min_position_size:
            return Decimal("0")
        return min(max(raw, cfg.min_position_size), ceiling)

    def build_entry_signal(self, snapshot: TokenSnapshot, confidence: float,
                           balance: Decimal) -> Optional[TradingSignal]:
        if confidence < self.config.min_confidence_score:
            return None
        quantity = self.calculate_position_size(confidence, balance)
        if quantity <= 0:
            logger.debug(f"Size below minimum for {snapshot.address} (balance={balance})")
            return None
        stop_loss, take_profit = self._levels.entry_levels(snapshot.price)
        return TradingSignal(
            token_address=snapshot.address,
            signal_type=SignalType.ENTRY,
            price=snapshot.price,
            quantity=quantity,
            confidence=confidence,
            stop_loss=stop_loss,
            take_profit=take_profit,
            reason="opportunity",
            slippage_bps=self.config.slippage_bps,
            metadata={"symbol": snapshot.symbol},
        )

    # ── Open ─────────────────────────────────────────────────────────────

    def _validate_entry(self, signal: TradingSignal) -> None:
        cfg = self.config
        token = signal.token_address

        def reject(message: str, field_name: str, code: str):
            raise ValidationError(message, token_address=token, code=code, field_name=field_name)

        if signal.signal_type != SignalType.ENTRY:
            reject("open requires an entry signal", "signal_type", "not_entry")
        if not cfg.min_position_size <= signal.quantity <= cfg.max_position_size:
            reject(f"quantity {signal.quantity} outside "
                   f"[{cfg.min_position_size}, {cfg.max_position_size}]", "quantity", "size")
        if signal.confidence < cfg.min_confidence_score:
            reject(f"confidence {signal.confidence:.2f} below {cfg.min_confidence_score}",
                   "confidence", "low_confidence")
        if signal.stop_loss is None or signal.take_profit is None:
            reject("entry requires stop loss and take profit", "stop_loss", "missing_levels")
        if not signal.stop_loss < signal.price < signal.take_profit:
            reject(f"levels must satisfy stop < price < target "
                   f"({signal.stop_loss} / {signal.price} / {signal.take_profit})",
                   "stop_loss", "inverted_levels")
        if token in self._positions or token in self._pending_tokens:
            reject("token already has an active position", "token_address", "duplicate_token")
        if self._positions.count() + len(self._pending_tokens) >= cfg.max_positions:
            reject(f"max positions reached ({cfg.max_positions})", "token_address", "max_positions")

    async def open(self, signal: TradingSignal) -> Position:
        try:
            self._validate_entry(signal)
        except ValidationError as e:
            logger.warning(f"Entry rejected for {signal.token_address}: {e.message}")
            await self._record_failure(signal, e.message, e.code)
            raise

        self._pending_tokens.add(signal.token_address)
        try:
            result = await self._execute(signal)
            if not result.success:
                await self._record_failure(signal, result.error or "execution failed",
                                           result.error_code)
                raise ExecutionFailure(result.error or "execution failed",
                                       token_address=signal.token_address,
                                       code=result.error_code)
            position = self._build_position(signal, result)
            try:
                await self._positions.upsert(position)
            except EngineError as e:
                error = f"filled ({result.signature}) but not tracked: {e.message}"
                await self._record_failure(signal, error, "not_persisted")
                raise ExecutionFailure(error, token_address=signal.token_address,
                                       code="not_persisted", signature=result.signature) from e
        finally:
            self._pending_tokens.discard(signal.token_address)

        await self._save_trade(Trade(
            position_id=position.id, token_address=position.token_address,
            trade_type=SignalType.ENTRY, price=position.entry_price,
            quantity=position.quantity, timestamp=position.entry_timestamp,
            signature=position.trade_signature, fees=result.fees, slippage=result.slippage))
        logger.info(f"✓ Position opened: {position.id} {position.token_address} "
                    f"qty={position.quantity} @ {position.entry_price} "
                    f"(sl={position.stop_loss:.8f} tp={position.take_profit:.8f})")
        await self._events.publish(EventTopic.POSITION_OPENED, position.snapshot())
        return position

    @staticmethod
    def _build_position(signal: TradingSignal, result: ExecutionResult) -> Position:
        price = signal.price
        return Position(
            id=str(uuid.uuid4()),
            token_address=signal.token_address,
            entry_price=price,
            quantity=signal.quantity,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            current_price=price,
            unrealized_pnl=Decimal("0"),
            pnl_percentage=Decimal("0"),
            entry_timestamp=result.timestamp,
            last_updated=result.timestamp,
            trade_signature=result.signature or "",
            metadata=PositionMetadata(
                confidence_score=signal.confidence,
                initial_stop_loss=signal.stop_loss,
                initial_take_profit=signal.take_profit,
                risk_reward_ratio=compute_risk_reward(price, signal.stop_loss, signal.take_profit),
                highest_price=price,
                lowest_price=price,
                max_drawdown=Decimal("0"),
            ),
        )

    # ── Close ────────────────────────────────────────────────────────────

    async def close(self, position: Position, reason: CloseReason) -> CloseOutcome:
        """
        Exit at the latest observed price.

        Outside shutdown a failed exit leaves the position ACTIVE and raises
        ExecutionFailure. During shutdown it is force-closed instead.
        A settled exit whose record cannot be persisted is force-closed too.
        """
        if not position.is_active:
            raise ValidationError(f"position {position.id} is already {position.status.value}",
                                  token_address=position.token_address, code="terminal_position")
        reason = CloseReason(reason)
        signal = TradingSignal(
            token_address=position.token_address,
            signal_type=SignalType.EXIT,
            price=position.current_price,
            quantity=position.quantity,
            confidence=1.0,
            reason=reason.value,
            slippage_bps=self.config.slippage_bps,
            metadata={"position_id": position.id},
        )
        result = await self._execute(signal)
        if not result.success:
            error = result.error or "execution failed"
            await self._record_failure(signal, error, result.error_code)
            if reason == CloseReason.SHUTDOWN:
                return await self.force_close(position, error)
            raise ExecutionFailure(error, token_address=position.token_address,
                                   code=result.error_code, signature=result.signature)

        exit_price = signal.price
        realized = compute_unrealized_pnl(position.entry_price, exit_price, position.quantity)
        pnl_pct = compute_pnl_percentage(realized, position.entry_price, position.quantity)
        trade = Trade(
            position_id=position.id, token_address=position.token_address,
            trade_type=SignalType.EXIT, price=exit_price, quantity=position.quantity,
            timestamp=result.timestamp, signature=result.signature or "",
            fees=result.fees, slippage=result.slippage,
            realized_pnl=realized, pnl_percentage=pnl_pct)
        terminal = position.snapshot()
        terminal.terminate(PositionStatus.CLOSED)
        closed = ClosedPosition(
            position=terminal, exit_price=exit_price,
            exit_timestamp=result.timestamp, realized_pnl=realized,
            pnl_percentage=pnl_pct, close_reason=reason.value, trade=trade)
        try:
            await self._positions.retire(closed)
        except EngineError as e:
            # Settled at the venue: the position must not stay tradeable.
            error = f"exit settled ({result.signature}) but not persisted: {e.message}"
            await self._record_failure(signal, error, "not_persisted")
            return await self.force_close(position, error)
        position.terminate(PositionStatus.CLOSED)
        await self._save_trade(trade)
        logger.info(f"✓ Position closed: {position.id} {position.token_address} "
                    f"P&L={realized:+.6f} ({pnl_pct:+.2f}%) [{reason.value}]")
        await self._events.publish(EventTopic.POSITION_CLOSED,
                                   PositionClosedEvent(position=closed, reason=reason.value,
                                                       result=result))
        return closed

    async def force_close(self, position: Position, error: str = "") -> ForceClosedPosition:
        """Mark a position closed without venue confirmation."""
        if not position.is_active:
            raise ValidationError(f"position {position.id} is already {position.status.value}",
                                  token_address=position.token_address, code="terminal_position")
        position.terminate(PositionStatus.FORCE_CLOSED)
        record = ForceClosedPosition(position=position.snapshot(),
                                     exit_timestamp=utcnow(), error=error)
        try:
            await self._positions.retire(record)
        except EngineError as e:
            logger.error(f"Force-close of {position.id} not persisted: {e}")
            self._positions.remove(position.token_address)
        logger.warning(f"Position force-closed: {position.id} {position.token_address} ({error})")
        await self._events.publish(EventTopic.POSITION_FORCE_CLOSED,
                                   PositionForceClosedEvent(position=record))
        return record

    # ── Exit channel consumer ────────────────────────────────────────────

    async def serve_exits(self, channel: ExitChannel) -> None:
        """Settle exit requests until the channel is closed."""
        in_flight: Set[asyncio.Task] = set()
        while True:
            request = await channel.next()
            if request is None:
                break
            task = asyncio.create_task(self._settle(request))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        logger.debug("Exit consumer stopped")

    async def _settle(self, request: ExitRequest) -> None:
        try:
            outcome = await self.close(request.position, request.reason)
        except Exception as e:
            if not request.done.done():
                request.done.set_exception(e)
            return
        if not request.done.done():
            request.done.set_result(outcome)

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _execute(self, signal: TradingSignal) -> ExecutionResult:
        try:
            return await self._venue.execute(signal)
        except Exception as e:
            logger.error(f"Venue error on {signal.signal_type.value} {signal.token_address}: {e}")
            return ExecutionResult(success=False, error=str(e),
                                   error_code=getattr(e, "code", None) or type(e).__name__)

    async def _save_trade(self, trade: Trade) -> None:
        try:
            await self._store.save_trade(trade)
        except EngineError as e:
            logger.error(f"Trade {trade.signature} for {trade.token_address} not recorded: {e}")

    async def _record_failure(self, signal: TradingSignal, error: str,
                              code: Optional[str]) -> None:
        failed = FailedTrade(
            token_address=signal.token_address, trade_type=signal.signal_type,
            price=signal.price, quantity=signal.quantity, timestamp=utcnow(),
            error=error, error_code=code)
        try:
            await self._store.save_failed_trade(failed)
        except EngineError as e:
            logger.error(f"Could not record failed trade for {signal.token_address}: {e}")
        logger.error(f"Trade failed: {signal.signal_type.value} {signal.token_address}: {error}")
        await self._events.publish(EventTopic.TRADE_FAILED,
                                   TradeFailedEvent(signal=signal, error=error, error_code=code))
