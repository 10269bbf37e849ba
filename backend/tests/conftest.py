"""
Shared candle factories for the signal-core tests.
"""

from __future__ import annotations

import numpy as np
import pytest

from aitrader.config import Settings
from aitrader.models import Candle, Pivot, PivotKind

T0 = 1_700_000_000_000.0
STEP = 60_000.0


def path_closes(points: list[float], bars: int) -> list[float]:
    """Piecewise-linear price path through ``points`` with ``bars`` steps per leg."""
    out: list[float] = []
    for a, b in zip(points, points[1:]):
        out.extend(np.linspace(a, b, bars + 1)[:-1].tolist())
    out.append(points[-1])
    return out


def flat_candles(closes: list[float], volume: float = 1000.0) -> list[Candle]:
    """Zero-range candles: open = high = low = close."""
    return [
        Candle(timestamp=T0 + i * STEP, open=c, high=c, low=c, close=c, volume=volume)
        for i, c in enumerate(closes)
    ]


def rising_candles(n: int = 40, step: float = 0.5, volume: float = 1000.0) -> list[Candle]:
    """Steady uptrend with small bodies and wide wicks (no gaps, no order blocks)."""
    out = []
    for i in range(n):
        close = 100 + step * i
        open_ = close - 0.3
        out.append(Candle(
            timestamp=T0 + i * STEP, open=open_, high=close + 1, low=open_ - 1,
            close=close, volume=volume,
        ))
    return out


def pivot(index: int, price: float, kind: str) -> Pivot:
    return Pivot(index=index, timestamp=T0 + index * STEP, price=price, kind=PivotKind(kind))


@pytest.fixture
def settings() -> Settings:
    return Settings(store_dir=None)


@pytest.fixture
def uptrend() -> list[Candle]:
    return rising_candles(40)
