"""
AI Trader — Fibonacci Levels

Retracement / extension ladder derived from the active swing range.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from aitrader.models import Candle, FibonacciLevels, WaveDirection

RETRACEMENTS = (0.236, 0.382, 0.5, 0.618, 0.786)
EXTENSIONS = (1.272, 1.618, 2.0)


def fib_levels(low: float, high: float, direction: WaveDirection = WaveDirection.UP) -> FibonacciLevels:
    """Levels for a swing between ``low`` and ``high``.

    An UP swing retraces down from the high and extends above it; a DOWN
    swing retraces up from the low and extends below it.
    """
    low, high = min(low, high), max(low, high)
    rng = high - low
    if direction == WaveDirection.UP:
        retr = {str(r): high - r * rng for r in RETRACEMENTS}
        ext = {str(e): high + (e - 1) * rng for e in EXTENSIONS}
    else:
        retr = {str(r): low + r * rng for r in RETRACEMENTS}
        ext = {str(e): low - (e - 1) * rng for e in EXTENSIONS}
    return FibonacciLevels(low=low, high=high, direction=direction, retracements=retr, extensions=ext)


def fib_from_candles(candles: Sequence[Candle], window: int = 90) -> Optional[FibonacciLevels]:
    """Fib ladder over the trailing ``window`` candles; direction from extreme order."""
    if not candles:
        return None
    recent = candles[-window:]
    lows = np.array([c.low for c in recent])
    highs = np.array([c.high for c in recent])
    i_lo, i_hi = int(np.argmin(lows)), int(np.argmax(highs))
    direction = WaveDirection.UP if i_lo <= i_hi else WaveDirection.DOWN
    return fib_levels(float(lows[i_lo]), float(highs[i_hi]), direction)
