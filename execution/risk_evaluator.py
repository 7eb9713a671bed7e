"""
Risk Evaluator
Pure exit / level-adjustment decisions for a single position.

No I/O, no shared state: given the same position, price and metrics it always
returns the same Action.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence, Union

from config import TradingConfig
from position_models import (
    CloseReason, MarketMetrics, Position, compute_pnl_percentage,
    compute_unrealized_pnl,
)


@dataclass(frozen=True)
class Hold:
    pass


@dataclass(frozen=True)
class RaiseStopLoss:
    value: Decimal


@dataclass(frozen=True)
class AdjustTakeProfit:
    value: Decimal


@dataclass(frozen=True)
class Exit:
    reason: CloseReason


Action = Union[Hold, RaiseStopLoss, AdjustTakeProfit, Exit]


def compute_volatility(prices: Sequence[Decimal]) -> float:
    """Population standard deviation of log returns. 0.0 without two usable samples."""
    samples = [float(p) for p in prices if p is not None and p > 0]
    returns = [math.log(samples[i] / samples[i - 1]) for i in range(1, len(samples))]
    if not returns:
        return 0.0
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance)


class RiskEvaluator:
    """
    Decides what to do with an active position this round.

    Priority (first match wins):
    1. price <= stop loss           → Exit(stop_loss)
    2. price >= take profit         → Exit(take_profit)
    3. pnl% above trail activation  → RaiseStopLoss, only if it moves the stop up
    4. volatility above threshold   → AdjustTakeProfit, only if the target changes
    """

    def __init__(self, config: TradingConfig):
        self.config = config

    def evaluate(self, position: Position, current_price: Decimal,
                 metrics: Optional[MarketMetrics] = None) -> Action:
        if current_price <= position.stop_loss:
            return Exit(CloseReason.STOP_LOSS)
        if current_price >= position.take_profit:
            return Exit(CloseReason.TAKE_PROFIT)

        trail = self._trailing_stop(position, current_price)
        if trail is not None:
            return RaiseStopLoss(trail)

        if metrics is not None:
            target = self._volatility_target(position, metrics.volatility)
            if target is not None:
                return AdjustTakeProfit(target)

        return Hold()

    def _trailing_stop(self, position: Position, current_price: Decimal) -> Optional[Decimal]:
        pnl = compute_unrealized_pnl(position.entry_price, current_price, position.quantity)
        pnl_pct = compute_pnl_percentage(pnl, position.entry_price, position.quantity)
        if pnl_pct <= self.config.trail_stop_activation_pct:
            return None
        candidate = current_price * (1 - self.config.trail_stop_distance)
        if candidate > position.stop_loss:
            return candidate
        return None

    def _volatility_target(self, position: Position, volatility: float) -> Optional[Decimal]:
        if volatility <= self.config.volatility_threshold:
            return None
        target = self.dynamic_take_profit(position.entry_price, volatility)
        if target == position.take_profit:
            return None
        return target

    def dynamic_take_profit(self, entry_price: Decimal, volatility: float) -> Decimal:
        base = entry_price * (1 + self.config.take_profit_pct)
        adjustment = Decimal(str(volatility)) * self.config.volatility_tp_multiplier
        return base * (1 + adjustment)

    def entry_levels(self, price: Decimal) -> tuple[Decimal, Decimal]:
        """Initial (stop_loss, take_profit) for a long entry at price."""
        return (price * (1 - self.config.stop_loss_pct),
                price * (1 + self.config.take_profit_pct))
