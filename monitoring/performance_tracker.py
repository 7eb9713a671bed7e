"""
Performance Tracker
Aggregates realized performance from the durable trade history
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger

from interfaces import IDurableStore
from position_models import SignalType, Trade, utcnow


@dataclass
class PerformanceMetrics:
    """Performance snapshot over a time range."""
    start: datetime
    end: datetime

    # Trade statistics
    total_trades: int
    profitable_trades: int
    losing_trades: int
    win_rate: float

    # P&L
    total_pnl: Decimal
    gross_profit: Decimal
    gross_loss: Decimal
    profit_factor: float
    total_fees: Decimal

    # Return metrics
    avg_return_pct: float
    sharpe_ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_trades": self.total_trades,
            "profitable_trades": self.profitable_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_pnl": str(self.total_pnl),
            "gross_profit": str(self.gross_profit),
            "gross_loss": str(self.gross_loss),
            "profit_factor": self.profit_factor,
            "total_fees": str(self.total_fees),
            "avg_return_pct": self.avg_return_pct,
            "sharpe_ratio": self.sharpe_ratio,
        }


def sharpe_ratio(returns: List[float], risk_free_rate: float = 0.0) -> float:
    """Per-trade Sharpe ratio (mean excess return / population std-dev)."""
    if len(returns) < 2:
        return 0.0
    mean_r = sum(returns) / len(returns)
    std_r = (sum((r - mean_r) ** 2 for r in returns) / len(returns)) ** 0.5
    if std_r == 0:
        return 0.0
    return (mean_r - risk_free_rate) / std_r


class PerformanceTracker:
    """
    Read-only performance reporting.

    Only exit trades carry realized P&L, so they are the unit of counting.
    Fees from entries and exits are both included in total_fees.
    """

    def __init__(self, store: IDurableStore):
        self._store = store

    async def summarize(self, start: Optional[datetime] = None,
                        end: Optional[datetime] = None) -> PerformanceMetrics:
        end = end or utcnow()
        start = start or end - timedelta(days=30)
        trades = await self._store.get_trade_history(start, end)
        metrics = self.calculate_metrics(trades, start, end)
        logger.debug(f"Performance {start:%Y-%m-%d} → {end:%Y-%m-%d}: "
                     f"{metrics.total_trades} trades, P&L={metrics.total_pnl}")
        return metrics

    @staticmethod
    def calculate_metrics(trades: List[Trade], start: datetime,
                          end: datetime) -> PerformanceMetrics:
        exits = [t for t in trades
                 if t.trade_type == SignalType.EXIT and t.realized_pnl is not None]
        pnls = [t.realized_pnl for t in exits]
        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p < 0]
        gross_profit = sum(wins, Decimal("0"))
        gross_loss = sum(losses, Decimal("0"))
        n = len(exits)

        if losses and gross_loss != 0:
            profit_factor = float(abs(gross_profit / gross_loss))
        else:
            profit_factor = float("inf") if wins else 0.0

        returns = [float(t.pnl_percentage) / 100 for t in exits if t.pnl_percentage is not None]
        return PerformanceMetrics(
            start=start, end=end,
            total_trades=n,
            profitable_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / n if n > 0 else 0.0,
            total_pnl=sum(pnls, Decimal("0")),
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            profit_factor=profit_factor,
            total_fees=sum((t.fees for t in trades), Decimal("0")),
            avg_return_pct=(sum(returns) / len(returns) * 100) if returns else 0.0,
            sharpe_ratio=sharpe_ratio(returns),
        )

    async def get_daily_pnl(self, days: int = 30) -> List[Dict[str, Any]]:
        """Realized P&L per calendar day for the last N days."""
        end = utcnow()
        trades = await self._store.get_trade_history(end - timedelta(days=days), end)
        daily: Dict[str, Decimal] = {}
        for t in trades:
            if t.trade_type == SignalType.EXIT and t.realized_pnl is not None:
                key = t.timestamp.strftime("%Y-%m-%d")
                daily[key] = daily.get(key, Decimal("0")) + t.realized_pnl
        return [{"date": d, "pnl": p} for d, p in sorted(daily.items())]
