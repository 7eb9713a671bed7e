"""
WeightedSignalSource confidence scoring.
"""
from decimal import Decimal

import pytest

from interfaces import ISignalSource
from position_models import TokenSnapshot
from signal_scoring import WeightedSignalSource


def snap(sentiment=0.0, holder=0.0, volume=0.0):
    return TokenSnapshot(address="T", price=Decimal("1"), sentiment_score=sentiment,
                         holder_score=holder, volume_24h=volume)


def test_weighted_sum():
    # 0.4 × 0.5 + 0.3 × 0.6 + 0.3 × 0.5
    assert WeightedSignalSource().evaluate(snap(0.5, 0.6, 500_000)) == pytest.approx(0.53)


def test_volume_saturates():
    source = WeightedSignalSource()
    assert source.evaluate(snap(volume=5_000_000)) == pytest.approx(0.3)


def test_clamped_to_unit_interval():
    source = WeightedSignalSource()
    assert source.evaluate(snap(2.0, 2.0, 1e9)) == 1.0
    assert source.evaluate(snap(-1.0, -1.0, -5)) == 0.0


def test_satisfies_protocol():
    assert isinstance(WeightedSignalSource(), ISignalSource)
