"""
Position Store — in-memory index of ACTIVE positions, keyed by token address.

Every mutation is mirrored to the durable store so a restart can rebuild the
index with rehydrate(). At most one active position exists per token.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional, Set

from loguru import logger

from config import TradingConfig
from errors import TransientError, ValidationError
from execution.risk_evaluator import RiskEvaluator
from interfaces import IDurableStore, IPriceFeed
from position_models import Position, PositionRecord, PositionStatus, utcnow


class PositionStore:
    """Active-position index with write-through persistence."""

    def __init__(self, store: IDurableStore, config: TradingConfig):
        self._store = store
        self._config = config
        self._levels = RiskEvaluator(config)
        self._by_token: Dict[str, Position] = {}
        self._persisted_ids: Set[str] = set()

    # ── Mutations ────────────────────────────────────────────────────────

    async def upsert(self, position: Position) -> None:
        """Register or update an active position and mirror it to the durable store."""
        if not position.is_active:
            raise ValidationError(f"only active positions are indexed ({position.status.value})",
                                  token_address=position.token_address, code="terminal_position")
        held = self._by_token.get(position.token_address)
        if held is not None and held.id != position.id:
            raise ValidationError("token already has an active position",
                                  token_address=position.token_address, code="duplicate_token")
        if position.id in self._persisted_ids:
            await self._store.update_position(position)
        else:
            await self._store.create_position(position)
            self._persisted_ids.add(position.id)
        self._by_token[position.token_address] = position

    def remove(self, token_address: str) -> Optional[Position]:
        return self._by_token.pop(token_address, None)

    async def retire(self, record: PositionRecord) -> None:
        """
        Persist a terminal record, then drop it from the active index.

        If the write fails the index is left untouched and the error propagates.
        """
        await self._store.update_position(record)
        self.remove(record.token_address)

    # ── Queries ──────────────────────────────────────────────────────────

    def get(self, token_address: str) -> Optional[Position]:
        return self._by_token.get(token_address)

    def get_by_id(self, position_id: str) -> Optional[Position]:
        for position in self._by_token.values():
            if position.id == position_id:
                return position
        return None

    def get_active(self) -> List[Position]:
        return list(self._by_token.values())

    def snapshot(self) -> List[Position]:
        """Detached copies, safe to hand to observers."""
        return [p.snapshot() for p in self._by_token.values()]

    def count(self) -> int:
        return len(self._by_token)

    def __contains__(self, token_address: str) -> bool:
        return token_address in self._by_token

    # ── Recovery ─────────────────────────────────────────────────────────

    async def rehydrate(self, price_feed: IPriceFeed) -> int:
        """Load ACTIVE positions from the durable store and revalidate them."""
        records = await self._store.get_positions_by_status(PositionStatus.ACTIVE)
        stale_after = timedelta(seconds=self._config.position_stale_threshold_sec)
        loaded = 0
        for position in records:
            if not isinstance(position, Position):
                continue
            if position.token_address in self._by_token:
                logger.warning(f"Skipping duplicate active position {position.id} "
                               f"for {position.token_address}")
                continue
            self._persisted_ids.add(position.id)
            self._by_token[position.token_address] = position
            loaded += 1
            try:
                price = await price_feed.get_price(position.token_address)
            except TransientError as e:
                logger.warning(f"Rehydrated {position.id} without a fresh price: {e}")
                continue
            self._revalidate(position, price, stale_after)
            try:
                await self._store.update_position(position)
            except TransientError as e:
                logger.error(f"Could not persist revalidated {position.id}: {e}")
        logger.info(f"✓ Rehydrated {loaded} active position(s)")
        return loaded

    def _revalidate(self, position: Position, price, stale_after: timedelta) -> None:
        if utcnow() - position.last_updated > stale_after:
            logger.info(f"Position {position.id} is stale, refreshing metrics @ {price}")
            position.mark_price(price)
        if position.stop_loss > price or position.take_profit < price:
            stop_loss, take_profit = self._levels.entry_levels(price)
            logger.warning(
                f"Position {position.id} has inconsistent levels "
                f"(sl={position.stop_loss}, tp={position.take_profit}, price={price}); "
                f"reset to sl={stop_loss:.8f} tp={take_profit:.8f}")
            position.reset_levels(stop_loss, take_profit)
