"""
Signal scoring — turns a token snapshot into an entry confidence in [0, 1].

Pure functions only; where sentiment and holder scores come from is the
caller's concern.
"""
from __future__ import annotations

from dataclasses import dataclass

from position_models import TokenSnapshot


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class WeightedSignalSource:
    """confidence = w_s×sentiment + w_h×holder_score + w_v×min(volume_24h / volume_norm, 1)"""
    sentiment_weight: float = 0.4
    holder_weight: float = 0.3
    volume_weight: float = 0.3
    volume_norm: float = 1_000_000.0

    def evaluate(self, snapshot: TokenSnapshot) -> float:
        volume_score = min(max(snapshot.volume_24h, 0.0) / self.volume_norm, 1.0)
        score = (self.sentiment_weight * _clamp(snapshot.sentiment_score)
                 + self.holder_weight * _clamp(snapshot.holder_score)
                 + self.volume_weight * volume_score)
        return _clamp(score)
