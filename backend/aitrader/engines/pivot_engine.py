"""
AI Trader — Swing / Pivot Detector

Finds local highs and lows confirmed by ``left`` candles before and ``right``
candles after. Micro-noise pivots are suppressed and clustered same-kind
pivots collapse onto their most extreme member.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from aitrader.models import Candle, Pivot, PivotKind


def _more_extreme(a: Pivot, b: Pivot) -> Pivot:
    if a.kind == PivotKind.HIGH:
        return b if b.price > a.price else a
    return b if b.price < a.price else a


def merge_pivots(pivots: Sequence[Pivot], window: int) -> list[Pivot]:
    """Collapse consecutive same-kind pivots closer than ``window`` bars."""
    out: list[Pivot] = []
    for p in pivots:
        if out and out[-1].kind == p.kind and p.index - out[-1].index <= window:
            out[-1] = _more_extreme(out[-1], p)
        else:
            out.append(p)
    return out


def find_pivots(
    candles: Sequence[Candle],
    left: int = 3,
    right: int = 3,
    min_move_pct: float = 0.001,
) -> list[Pivot]:
    """Detect swing highs/lows ordered by index.

    A HIGH needs high[i] >= every high in [i-left, i) and (i, i+right];
    LOW is symmetric. A candle qualifying as both is taken as a HIGH.
    """
    n = len(candles)
    if n < left + right + 1:
        return []

    h = np.array([c.high for c in candles], dtype=float)
    l = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)

    raw: list[Pivot] = []
    for i in range(left, n - right):
        lo, hi = i - left, i + right + 1
        neighbours = np.r_[lo:i, i + 1:hi]

        if neighbours.size == 0 or h[i] >= h[neighbours].max():
            kind, price = PivotKind.HIGH, h[i]
        elif l[i] <= l[neighbours].min():
            kind, price = PivotKind.LOW, l[i]
        else:
            continue

        # Noise filter against the local mean close
        ref = closes[lo:hi].mean()
        if ref > 0 and abs(price - ref) / ref < min_move_pct:
            continue

        raw.append(Pivot(
            index=i,
            timestamp=candles[i].timestamp,
            price=float(price),
            kind=kind,
        ))

    return merge_pivots(raw, left)


def alternate(pivots: Sequence[Pivot]) -> list[Pivot]:
    """Strictly alternating HIGH/LOW sequence keeping the extreme of each run."""
    out: list[Pivot] = []
    for p in pivots:
        if out and out[-1].kind == p.kind:
            out[-1] = _more_extreme(out[-1], p)
        else:
            out.append(p)
    return out
