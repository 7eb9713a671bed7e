"""
PerformanceTracker aggregation over the trade history.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from monitoring.performance_tracker import PerformanceTracker, sharpe_ratio
from position_models import SignalType, Trade, utcnow


def exit_trade(pnl, pct, minutes_ago=1, fees="0"):
    return Trade(position_id="p", token_address="T", trade_type=SignalType.EXIT,
                 price=Decimal("1"), quantity=Decimal("1"),
                 timestamp=utcnow() - timedelta(minutes=minutes_ago), signature="s",
                 fees=Decimal(fees), realized_pnl=Decimal(pnl), pnl_percentage=Decimal(pct))


def entry_trade(minutes_ago=2, fees="0.01"):
    return Trade(position_id="p", token_address="T", trade_type=SignalType.ENTRY,
                 price=Decimal("1"), quantity=Decimal("1"),
                 timestamp=utcnow() - timedelta(minutes=minutes_ago), signature="s",
                 fees=Decimal(fees))


@pytest.mark.asyncio
async def test_summary_counts_exits_only(store):
    for t in (entry_trade(), exit_trade("250", "25"), entry_trade(),
              exit_trade("-110", "-11"), exit_trade("50", "5", fees="0.02")):
        await store.save_trade(t)

    m = await PerformanceTracker(store).summarize()
    assert m.total_trades == 3
    assert m.profitable_trades == 2
    assert m.losing_trades == 1
    assert m.win_rate == pytest.approx(2 / 3)
    assert m.total_pnl == Decimal("190")
    assert m.profit_factor == pytest.approx(300 / 110)
    assert m.total_fees == Decimal("0.04")


@pytest.mark.asyncio
async def test_summary_respects_range(store):
    await store.save_trade(exit_trade("10", "1", minutes_ago=60 * 24 * 40))
    await store.save_trade(exit_trade("20", "2"))
    m = await PerformanceTracker(store).summarize()
    assert m.total_trades == 1
    assert m.total_pnl == Decimal("20")


@pytest.mark.asyncio
async def test_empty_history(store):
    m = await PerformanceTracker(store).summarize()
    assert m.total_trades == 0
    assert m.win_rate == 0.0
    assert m.profit_factor == 0.0
    assert m.sharpe_ratio == 0.0


def test_profit_factor_without_losses():
    now = utcnow()
    m = PerformanceTracker.calculate_metrics([exit_trade("5", "5")], now, now)
    assert m.profit_factor == float("inf")


def test_sharpe_ratio():
    assert sharpe_ratio([0.1]) == 0.0
    assert sharpe_ratio([0.1, 0.1]) == 0.0
    # mean 0.1, population std 0.1
    assert sharpe_ratio([0.2, 0.0]) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_daily_pnl(store):
    await store.save_trade(exit_trade("5", "5"))
    await store.save_trade(exit_trade("-2", "-2"))
    daily = await PerformanceTracker(store).get_daily_pnl(days=1)
    assert sum(d["pnl"] for d in daily) == Decimal("3")
