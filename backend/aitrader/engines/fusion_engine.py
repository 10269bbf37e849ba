"""
AI Trader — Fusion Engine

Weighted combination of the six layer scores into one rule-based bullish
probability, with adaptive weight tuning from labeled outcomes.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

import structlog

from aitrader.models import LAYERS, FusionSample, FusionWeights, LayerScores

log = structlog.get_logger(__name__)

# Per-layer (min, max) applied before renormalisation
WEIGHT_BOUNDS: dict[str, tuple[float, float]] = {
    "indicator": (0.01, 0.8),
    "pattern": (0.01, 0.6),
    "elliott": (0.01, 0.6),
    "orderflow": (0.01, 0.6),
    "candle_shape": (0.005, 0.5),
    "news": (0.005, 0.4),
}


def fuse(scores: LayerScores, weights: FusionWeights) -> float:
    """Normalised weighted mean of the layer scores, in [0, 1]."""
    w = weights.normalized()
    fused = sum(getattr(w, name) * min(1.0, max(0.0, getattr(scores, name))) for name in LAYERS)
    return min(1.0, max(0.0, fused))


def tune_step(weights: FusionWeights, sample: FusionSample, learning_rate: float) -> FusionWeights:
    """One adaptive update: nudge, clamp per layer, renormalise to sum 1."""
    predicted = min(1.0, max(0.0, sample.predicted))
    error = sample.label - predicted
    updated = {}
    for name in LAYERS:
        lo, hi = WEIGHT_BOUNDS[name]
        w = getattr(weights, name) + learning_rate * error * (getattr(sample.layers, name) - 0.5)
        updated[name] = min(hi, max(lo, w))
    return FusionWeights(**updated).normalized()


class FusionEngine:
    """Owns the live fusion weights; tuning is serialised by a lock."""

    def __init__(self, weights: Optional[FusionWeights] = None, learning_rate: float = 0.02):
        self.weights = (weights or FusionWeights()).normalized()
        self.learning_rate = learning_rate
        self._lock = threading.Lock()

    def fuse(self, scores: LayerScores) -> float:
        return fuse(scores, self.weights)

    def tune(self, samples: Iterable[FusionSample]) -> FusionWeights:
        """Apply one tuning step per sample and return the new weights."""
        with self._lock:
            weights = self.weights
            count = 0
            for sample in samples:
                weights = tune_step(weights, sample, self.learning_rate)
                count += 1
            self.weights = weights
        if count:
            log.info("fusion_engine.tuned", samples=count, weights=weights.model_dump())
        return weights

    def reset(self, weights: Optional[FusionWeights] = None) -> None:
        with self._lock:
            self.weights = (weights or FusionWeights()).normalized()
