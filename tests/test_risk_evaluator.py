"""
RiskEvaluator decisions — exit priority, trailing stop, volatility targets.
"""
import math
from decimal import Decimal

import pytest

from conftest import make_position
from execution.risk_evaluator import (
    AdjustTakeProfit, Exit, Hold, RaiseStopLoss, compute_volatility,
)
from position_models import CloseReason, MarketMetrics


def metrics(price, volatility=0.0):
    return MarketMetrics(price=Decimal(str(price)), volatility=volatility)


class TestExitRules:

    def test_stop_loss_hit(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("89")) == Exit(CloseReason.STOP_LOSS)

    def test_stop_loss_boundary_is_inclusive(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("90")) == Exit(CloseReason.STOP_LOSS)

    def test_take_profit_hit(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("125")) == Exit(CloseReason.TAKE_PROFIT)

    def test_take_profit_boundary_is_inclusive(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("120")) == Exit(CloseReason.TAKE_PROFIT)

    def test_exit_beats_volatility_adjustment(self, evaluator):
        pos = make_position()
        action = evaluator.evaluate(pos, Decimal("89"), metrics(89, volatility=0.5))
        assert action == Exit(CloseReason.STOP_LOSS)

    def test_hold_in_range(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("101"), metrics(101)) == Hold()


class TestTrailingStop:

    def test_activates_above_threshold(self, evaluator):
        """106 is +6% → stop trails to 106 × 0.98."""
        pos = make_position()
        action = evaluator.evaluate(pos, Decimal("106"))
        assert action == RaiseStopLoss(Decimal("103.88"))

    def test_not_active_at_threshold(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("105")) == Hold()

    def test_never_proposes_lower_stop(self, evaluator):
        pos = make_position(stop_loss="104")
        # 106 × 0.98 = 103.88 < 104 → nothing to do
        assert evaluator.evaluate(pos, Decimal("106")) == Hold()

    def test_trailing_beats_volatility(self, evaluator):
        pos = make_position()
        action = evaluator.evaluate(pos, Decimal("110"), metrics(110, volatility=0.5))
        assert isinstance(action, RaiseStopLoss)


class TestVolatilityTarget:

    def test_adjusts_take_profit(self, evaluator):
        pos = make_position()
        action = evaluator.evaluate(pos, Decimal("101"), metrics(101, volatility=0.1))
        # 100 × 1.2 × (1 + 0.1 × 2)
        assert action == AdjustTakeProfit(Decimal("144.0"))

    def test_below_threshold_holds(self, evaluator):
        pos = make_position()
        assert evaluator.evaluate(pos, Decimal("101"), metrics(101, volatility=0.05)) == Hold()

    def test_unchanged_target_holds(self, evaluator):
        target = evaluator.dynamic_take_profit(Decimal("100"), 0.1)
        pos = make_position(take_profit=str(target))
        assert evaluator.evaluate(pos, Decimal("101"), metrics(101, volatility=0.1)) == Hold()


class TestPurity:

    def test_same_inputs_same_action(self, evaluator):
        pos = make_position()
        m = metrics(106, volatility=0.2)
        first = evaluator.evaluate(pos, Decimal("106"), m)
        assert all(evaluator.evaluate(pos, Decimal("106"), m) == first for _ in range(5))

    def test_does_not_mutate_position(self, evaluator):
        pos = make_position()
        before = pos.to_dict()
        evaluator.evaluate(pos, Decimal("106"), metrics(106, volatility=0.2))
        assert pos.to_dict() == before

    def test_entry_levels(self, evaluator):
        sl, tp = evaluator.entry_levels(Decimal("2.5"))
        assert sl == Decimal("2.25")
        assert tp == Decimal("3.0")


class TestComputeVolatility:

    def test_empty_and_single(self):
        assert compute_volatility([]) == 0.0
        assert compute_volatility([Decimal("1")]) == 0.0

    def test_constant_prices(self):
        assert compute_volatility([Decimal("2")] * 5) == 0.0

    def test_population_std_of_log_returns(self):
        prices = [Decimal("100"), Decimal("110"), Decimal("99")]
        r1, r2 = math.log(110 / 100), math.log(99 / 110)
        mean = (r1 + r2) / 2
        expected = math.sqrt(((r1 - mean) ** 2 + (r2 - mean) ** 2) / 2)
        assert compute_volatility(prices) == pytest.approx(expected)

    def test_ignores_non_positive_samples(self):
        assert compute_volatility([Decimal("0"), Decimal("100"), Decimal("100")]) == 0.0
