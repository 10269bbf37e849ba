"""
AI Trader — Feature Extractor

Maps candles + pattern/wave output into the fixed-order numeric vector the
online model is trained on. ``FEATURE_NAMES`` is the schema: changing its
order or length invalidates previously trained weights.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from aitrader.models import Candle, FibonacciLevels, PatternKind, WaveAnalysis

FEATURE_SCHEMA_VERSION = "v1"

RETURN_WINDOW = 20
RETURN_LAGS = 10

CHART_PATTERNS = frozenset({
    PatternKind.DOUBLE_TOP,
    PatternKind.DOUBLE_BOTTOM,
    PatternKind.HEAD_AND_SHOULDERS,
    PatternKind.INVERSE_HEAD_AND_SHOULDERS,
    PatternKind.TRIANGLE,
    PatternKind.MARKET_STRUCTURE_BREAK,
})

FEATURE_NAMES: tuple[str, ...] = (
    "ret_mean",
    "ret_std",
    "atr_log",
    "atr_ratio",
    "pattern_count",
    "order_block_count",
    "fvg_count",
    "stop_run_count",
    "channel_count",
    "impulse_quality",
    "sentiment",
    "confidence",
    *(f"ret_lag_{i}" for i in range(1, RETURN_LAGS + 1)),
    "fib_dist_0.5",
    "fib_dist_0.618",
)


def _returns(candles: Sequence[Candle]) -> np.ndarray:
    closes = np.array([c.close for c in candles[-(RETURN_WINDOW + 1):]], dtype=float)
    if len(closes) < 2:
        return np.zeros(0)
    prev = np.where(closes[:-1] == 0, np.nan, closes[:-1])
    return np.nan_to_num(closes[1:] / prev - 1.0)


def extract_features(
    candles: Sequence[Candle],
    wave: Optional[WaveAnalysis],
    fib: Optional[FibonacciLevels],
    atr: float,
) -> list[float]:
    """Feature vector ordered as ``FEATURE_NAMES``; every entry is finite."""
    rets = _returns(candles)
    price = candles[-1].close if candles else 0.0
    patterns = wave.patterns if wave is not None else []

    def count(*kinds: PatternKind) -> float:
        return sum(1 for p in patterns if p.kind in kinds) / 10.0

    lags = list(rets[::-1][:RETURN_LAGS])
    lags += [0.0] * (RETURN_LAGS - len(lags))

    fib_feats = [0.0, 0.0]
    if fib is not None and price:
        rng = max(fib.high - fib.low, 1e-12)
        fib_feats = [(price - fib.retracements["0.5"]) / rng, (price - fib.retracements["0.618"]) / rng]

    vector = [
        float(rets.mean()) if rets.size else 0.0,
        float(rets.std()) if rets.size else 0.0,
        math.log1p(max(atr, 0.0)),
        atr / price if price else 0.0,
        sum(1 for p in patterns if p.kind in CHART_PATTERNS) / 10.0,
        count(PatternKind.ORDER_BLOCK),
        count(PatternKind.FAIR_VALUE_GAP),
        count(PatternKind.STOP_RUN_FAILURE),
        count(PatternKind.CHANNEL),
        (wave.impulse.quality / 100.0) if wave is not None and wave.impulse is not None else 0.0,
        wave.sentiment if wave is not None else 0.0,
        (wave.confidence / 100.0) if wave is not None else 0.0,
        *lags,
        *fib_feats,
    ]
    return [float(v) if math.isfinite(v) else 0.0 for v in vector]


def feature_dict(vector: Sequence[float]) -> dict[str, float]:
    """Name → value view of a vector, for logging and explanations."""
    return dict(zip(FEATURE_NAMES, vector))
