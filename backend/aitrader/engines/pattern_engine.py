"""
AI Trader — Pattern Detection Engine

Rule-based detection of chart and smart-money structures over the pivot
sequence. Deterministic analysis, every detector returns an empty list when
there is not enough structure.

Chart Patterns:
  Double Top/Bottom, Head & Shoulders (& Inverse),
  Symmetrical/Ascending/Descending Triangle, Channel

Structure:
  Order Block, Fair Value Gap, Stop-Run (SFP), BOS, CHoCH
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import structlog

from aitrader.config import Settings, get_settings
from aitrader.engines.pivot_engine import alternate
from aitrader.models import Candle, Direction, Pattern, PatternKind, Pivot, PivotKind

log = structlog.get_logger(__name__)

EPS = 1e-12
FLAT_SLOPE = 0.01


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def _linfit(x: np.ndarray, y: np.ndarray) -> tuple[float, float, float]:
    """Least-squares line → (slope, intercept, r²)."""
    slope, intercept = np.polyfit(x, y, 1)
    fitted = slope * x + intercept
    ss_res = float(np.sum((y - fitted) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r2 = 1.0 - ss_res / ss_tot if ss_tot > EPS else 1.0
    return float(slope), float(intercept), max(0.0, r2)


def _unit_time(pivots: Sequence[Pivot]) -> tuple[np.ndarray, float, float]:
    """Pivot timestamps rescaled onto [0, 1] across the window."""
    t = np.array([p.timestamp for p in pivots], dtype=float)
    t0, span = t.min(), t.max() - t.min()
    if span <= 0:
        t = np.array([p.index for p in pivots], dtype=float)
        t0, span = t.min(), max(t.max() - t.min(), 1.0)
    return (t - t0) / span, t0, span


def is_old(pattern: Pattern, n_candles: int, max_age: int) -> bool:
    """A pattern is old once its last defining bar is more than ``max_age`` bars back."""
    return (n_candles - 1 - pattern.end_index) > max_age


def pattern_bias(patterns: Sequence[Pattern], n_candles: int, max_age: int) -> float:
    """Confidence-weighted net directional lean of fresh patterns, in [-1, 1]."""
    num = den = 0.0
    for p in patterns:
        if p.side == Direction.NEUTRAL or is_old(p, n_candles, max_age):
            continue
        w = p.confidence / 100.0
        num += w if p.side == Direction.BULLISH else -w
        den += w
    return num / den if den > EPS else 0.0


class PatternEngine:
    """Chart / structure detector over candles and their pivots.

    Usage:
        engine = PatternEngine()
        patterns = engine.scan(candles, pivots)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def scan(self, candles: Sequence[Candle], pivots: Sequence[Pivot]) -> list[Pattern]:
        """Run every detector; results ordered by the bar they complete on."""
        swings = alternate(pivots)
        found: list[Pattern] = []
        found += self.detect_double_tops(swings)
        found += self.detect_head_and_shoulders(swings)
        found += self.detect_triangles(swings)
        found += self.detect_channel(swings, candles)
        found += self.detect_order_blocks(candles)
        found += self.detect_fair_value_gaps(candles)
        found += self.detect_stop_runs(pivots, candles)
        found += self.detect_market_structure(swings, candles)
        found.sort(key=lambda p: (p.end_index, p.kind.value))
        log.debug("pattern_engine.scan", candles=len(candles), pivots=len(pivots), patterns=len(found))
        return found

    # ──────────────────────────────────────────
    # Reversal Chart Patterns
    # ──────────────────────────────────────────

    def detect_double_tops(self, swings: Sequence[Pivot]) -> list[Pattern]:
        """H-L-H (top) / L-H-L (bottom) with near-equal outer pivots."""
        tol = 1.0 - self.settings.double_top_symmetry
        out: list[Pattern] = []
        for i in range(len(swings) - 2):
            a, mid, b = swings[i], swings[i + 1], swings[i + 2]
            if a.kind != b.kind or mid.kind == a.kind:
                continue
            diff = abs(a.price - b.price) / max((a.price + b.price) / 2, EPS)
            if diff >= tol:
                continue
            conf = 40 + 50 * (1 - diff / tol)

            if a.kind == PivotKind.HIGH:
                top = max(a.price, b.price)
                if mid.price >= min(a.price, b.price):
                    continue
                out.append(Pattern(
                    kind=PatternKind.DOUBLE_TOP, name="Double Top", side=Direction.BEARISH,
                    confidence=round(conf, 2), neckline=mid.price,
                    target=mid.price - (top - mid.price),
                    pivots=[a, mid, b], start_index=a.index, end_index=b.index,
                    description=f"Twin highs near {top:.4g}, neckline {mid.price:.4g}",
                    meta={"symmetry": round(1 - diff, 4)},
                ))
            else:
                bottom = min(a.price, b.price)
                if mid.price <= max(a.price, b.price):
                    continue
                out.append(Pattern(
                    kind=PatternKind.DOUBLE_BOTTOM, name="Double Bottom", side=Direction.BULLISH,
                    confidence=round(conf, 2), neckline=mid.price,
                    target=mid.price + (mid.price - bottom),
                    pivots=[a, mid, b], start_index=a.index, end_index=b.index,
                    description=f"Twin lows near {bottom:.4g}, neckline {mid.price:.4g}",
                    meta={"symmetry": round(1 - diff, 4)},
                ))
        return out

    def detect_head_and_shoulders(self, swings: Sequence[Pivot]) -> list[Pattern]:
        """Five alternating pivots whose middle like-kind pivot is the extreme."""
        out: list[Pattern] = []
        for i in range(len(swings) - 4):
            w = swings[i:i + 5]
            ls, n1, head, n2, rs = w
            if ls.kind != head.kind or head.kind != rs.kind or n1.kind == head.kind:
                continue
            neckline = (n1.price + n2.price) / 2

            if head.kind == PivotKind.HIGH:
                if not (head.price > ls.price and head.price > rs.price and neckline < min(ls.price, rs.price)):
                    continue
                depth = head.price - neckline
                kind, name, side = PatternKind.HEAD_AND_SHOULDERS, "Head & Shoulders", Direction.BEARISH
                target = neckline - depth
            else:
                if not (head.price < ls.price and head.price < rs.price and neckline > max(ls.price, rs.price)):
                    continue
                depth = neckline - head.price
                kind, name, side = PatternKind.INVERSE_HEAD_AND_SHOULDERS, "Inverse Head & Shoulders", Direction.BULLISH
                target = neckline + depth

            symmetry = 1 - min(1.0, abs(ls.price - rs.price) / max(depth, EPS))
            out.append(Pattern(
                kind=kind, name=name, side=side,
                confidence=round(50 + 35 * symmetry, 2),
                neckline=neckline, target=target,
                pivots=list(w), start_index=ls.index, end_index=rs.index,
                description=f"Head at {head.price:.4g}, neckline {neckline:.4g}",
                meta={"shoulder_symmetry": round(symmetry, 4)},
            ))
        return out

    # ──────────────────────────────────────────
    # Continuation / Range Patterns
    # ──────────────────────────────────────────

    def _triangle(self, window: Sequence[Pivot]) -> Optional[Pattern]:
        highs = [p for p in window if p.kind == PivotKind.HIGH]
        lows = [p for p in window if p.kind == PivotKind.LOW]
        if len(highs) < 2 or len(lows) < 2:
            return None

        x, t0, span = _unit_time(window)
        xs = {p.index: v for p, v in zip(window, x)}
        hx = np.array([xs[p.index] for p in highs])
        lx = np.array([xs[p.index] for p in lows])
        hy = np.array([p.price for p in highs])
        ly = np.array([p.price for p in lows])
        if np.ptp(hx) <= 0 or np.ptp(lx) <= 0:
            return None

        hs, hb, hr2 = _linfit(hx, hy)
        lslope, lb, lr2 = _linfit(lx, ly)
        mean_price = max(float(np.mean([p.price for p in window])), EPS)
        rh, rl = hs / mean_price, lslope / mean_price

        flat_h, flat_l = abs(rh) < FLAT_SLOPE, abs(rl) < FLAT_SLOPE
        height = float(hy[0] - ly[0])
        resistance, support = hs + hb, lslope + lb
        if resistance <= support:
            return None

        if rh < -FLAT_SLOPE and rl > FLAT_SLOPE:
            name, side, target = "Symmetrical Triangle", Direction.NEUTRAL, None
        elif flat_h and rl > FLAT_SLOPE:
            name, side, target = "Ascending Triangle", Direction.BULLISH, resistance + abs(height)
        elif flat_l and rh < -FLAT_SLOPE:
            name, side, target = "Descending Triangle", Direction.BEARISH, support - abs(height)
        else:
            return None

        return Pattern(
            kind=PatternKind.TRIANGLE, name=name, side=side,
            confidence=round(min(90.0, 45 + 35 * (hr2 + lr2) / 2), 2),
            target=target,
            pivots=list(window), start_index=window[0].index, end_index=window[-1].index,
            description=f"{name} over {len(window)} pivots",
            meta={"resistance": resistance, "support": support,
                  "high_slope": round(rh, 5), "low_slope": round(rl, 5)},
        )

    def detect_triangles(self, swings: Sequence[Pivot]) -> list[Pattern]:
        """Sliding 6–9 pivot windows; overlapping hits keep the most confident."""
        candidates: list[Pattern] = []
        for size in range(6, 10):
            for i in range(len(swings) - size + 1):
                tri = self._triangle(swings[i:i + size])
                if tri is not None:
                    candidates.append(tri)

        kept: list[Pattern] = []
        for tri in sorted(candidates, key=lambda p: (-p.confidence, -p.end_index)):
            if all(tri.end_index < k.start_index or tri.start_index > k.end_index for k in kept):
                kept.append(tri)
        return kept

    def detect_channel(self, swings: Sequence[Pivot], candles: Sequence[Candle]) -> list[Pattern]:
        """Trailing ≤60-pivot regression channel."""
        window = list(swings[-60:])
        highs = [p for p in window if p.kind == PivotKind.HIGH]
        lows = [p for p in window if p.kind == PivotKind.LOW]
        if len(highs) < 3 or len(lows) < 3 or not candles:
            return []

        x, t0, span = _unit_time(window)
        xs = {p.index: v for p, v in zip(window, x)}
        hs, hb, hr2 = _linfit(np.array([xs[p.index] for p in highs]), np.array([p.price for p in highs]))
        ls, lb, lr2 = _linfit(np.array([xs[p.index] for p in lows]), np.array([p.price for p in lows]))

        avg_mag = (abs(hs) + abs(ls)) / 2
        parallel = abs(hs - ls) <= self.settings.channel_parallel_tolerance * avg_mag + EPS

        # Project both lines onto the latest candle
        last = candles[-1]
        if window[0].timestamp != window[-1].timestamp:
            x_end = (last.timestamp - t0) / span
        else:
            x_end = (len(candles) - 1 - t0) / span
        upper, lower = hs * x_end + hb, ls * x_end + lb
        if upper <= lower:
            return []

        mean_price = max(float(np.mean([p.price for p in window])), EPS)
        rel = (hs + ls) / 2 / mean_price
        if rel > FLAT_SLOPE:
            name, side, target = "Ascending Channel", Direction.BULLISH, upper
        elif rel < -FLAT_SLOPE:
            name, side, target = "Descending Channel", Direction.BEARISH, lower
        else:
            name, side, target = "Horizontal Channel", Direction.NEUTRAL, None

        conf = 45 + (25 if parallel else 0) + 10 * (hr2 + lr2) / 2
        return [Pattern(
            kind=PatternKind.CHANNEL, name=name, side=side,
            confidence=round(min(95.0, conf), 2), target=target,
            pivots=window, start_index=window[0].index, end_index=window[-1].index,
            description=f"{name}{' (parallel)' if parallel else ''}",
            meta={"upper": upper, "lower": lower, "parallel": parallel},
        )]

    # ──────────────────────────────────────────
    # Smart-Money Structure
    # ──────────────────────────────────────────

    def _recent_start(self, n: int) -> int:
        return max(0, n - self.settings.pattern_max_age_bars)

    def detect_order_blocks(self, candles: Sequence[Candle]) -> list[Pattern]:
        """Strong-bodied candle followed by continuation two bars later."""
        s = self.settings
        out: list[Pattern] = []
        for i in range(self._recent_start(len(candles)), len(candles) - 2):
            c = candles[i]
            rng = c.high - c.low
            body = abs(c.close - c.open)
            if rng <= 0 or c.open == 0:
                continue
            ratio = body / rng
            if ratio <= s.order_block_body_ratio or body / abs(c.open) <= s.order_block_min_body_pct:
                continue
            follow = candles[i + 2].close
            if c.close > c.open and follow > c.close:
                side, name = Direction.BULLISH, "Bullish Order Block"
            elif c.close < c.open and follow < c.close:
                side, name = Direction.BEARISH, "Bearish Order Block"
            else:
                continue
            strength = (ratio - s.order_block_body_ratio) / max(1 - s.order_block_body_ratio, EPS)
            out.append(Pattern(
                kind=PatternKind.ORDER_BLOCK, name=name, side=side,
                confidence=round(50 + 40 * min(1.0, strength), 2),
                start_index=i, end_index=i + 2,
                description=f"{name} zone {c.low:.4g}–{c.high:.4g}",
                meta={"zone_low": c.low, "zone_high": c.high},
            ))
        return out

    def detect_fair_value_gaps(self, candles: Sequence[Candle]) -> list[Pattern]:
        """Three-candle imbalance between candle i-1 and i+1 wicks."""
        out: list[Pattern] = []
        for i in range(max(1, self._recent_start(len(candles))), len(candles) - 1):
            prev, mid, nxt = candles[i - 1], candles[i], candles[i + 1]
            mid_range = max(mid.high - mid.low, EPS)
            if nxt.low > prev.high:
                side, lo, hi = Direction.BULLISH, prev.high, nxt.low
            elif nxt.high < prev.low:
                side, lo, hi = Direction.BEARISH, nxt.high, prev.low
            else:
                continue
            out.append(Pattern(
                kind=PatternKind.FAIR_VALUE_GAP,
                name=f"{side.value} FVG", side=side,
                confidence=round(45 + 35 * min(1.0, (hi - lo) / mid_range), 2),
                start_index=i - 1, end_index=i + 1,
                description=f"Unfilled gap {lo:.4g}–{hi:.4g}",
                meta={"gap_low": lo, "gap_high": hi},
            ))
        return out

    def detect_stop_runs(self, pivots: Sequence[Pivot], candles: Sequence[Candle]) -> list[Pattern]:
        """Swing failure: breach of the prior same-kind pivot that closes back inside.

        The target is the most recent opposing swing, the far side of the
        range the sweep failed out of.
        """
        ratio = self.settings.sfp_wick_body_ratio
        out: list[Pattern] = []
        last_of: dict[PivotKind, Pivot] = {}
        for p in pivots:
            prior = last_of.get(p.kind)
            opposing = last_of.get(PivotKind.LOW if p.kind == PivotKind.HIGH else PivotKind.HIGH)
            last_of[p.kind] = p
            if prior is None or p.index + 1 >= len(candles):
                continue
            c, nxt = candles[p.index], candles[p.index + 1]
            body = abs(c.close - c.open)

            if p.kind == PivotKind.HIGH and p.price > prior.price:
                wick = c.high - max(c.open, c.close)
                if wick >= ratio * body and nxt.close < prior.price:
                    side, name = Direction.BEARISH, "Bearish SFP"
                else:
                    continue
            elif p.kind == PivotKind.LOW and p.price < prior.price:
                wick = min(c.open, c.close) - c.low
                if wick >= ratio * body and nxt.close > prior.price:
                    side, name = Direction.BULLISH, "Bullish SFP"
                else:
                    continue
            else:
                continue

            target = None
            if opposing is not None:
                beyond = opposing.price > prior.price if side == Direction.BULLISH else opposing.price < prior.price
                target = opposing.price if beyond else None

            rejection = wick / max(body, EPS)
            out.append(Pattern(
                kind=PatternKind.STOP_RUN_FAILURE, name=name, side=side,
                confidence=round(50 + 30 * min(1.0, rejection / 3), 2),
                target=target, pivots=[prior, p],
                start_index=prior.index, end_index=p.index + 1,
                description=f"Swept {prior.price:.4g} and closed back inside",
                meta={"swept_level": prior.price},
            ))
        return out

    def detect_market_structure(self, swings: Sequence[Pivot], candles: Sequence[Candle]) -> list[Pattern]:
        """BOS on the latest close, CHoCH on the last three swings."""
        if not candles or not swings:
            return []
        n = len(candles)
        close = candles[-1].close
        out: list[Pattern] = []

        last_high = next((p for p in reversed(swings) if p.kind == PivotKind.HIGH), None)
        last_low = next((p for p in reversed(swings) if p.kind == PivotKind.LOW), None)
        if last_high is not None and close > last_high.price:
            out.append(Pattern(
                kind=PatternKind.MARKET_STRUCTURE_BREAK, name="BOS", side=Direction.BULLISH,
                confidence=60.0, pivots=[last_high],
                start_index=last_high.index, end_index=n - 1,
                description=f"Close {close:.4g} broke swing high {last_high.price:.4g}",
                meta={"level": last_high.price, "type": "BOS"},
            ))
        elif last_low is not None and close < last_low.price:
            out.append(Pattern(
                kind=PatternKind.MARKET_STRUCTURE_BREAK, name="BOS", side=Direction.BEARISH,
                confidence=60.0, pivots=[last_low],
                start_index=last_low.index, end_index=n - 1,
                description=f"Close {close:.4g} broke swing low {last_low.price:.4g}",
                meta={"level": last_low.price, "type": "BOS"},
            ))

        if len(swings) >= 3:
            a, mid, b = swings[-3:]
            if a.kind == PivotKind.HIGH and b.price >= a.price and close < mid.price:
                side = Direction.BEARISH
            elif a.kind == PivotKind.LOW and b.price <= a.price and close > mid.price:
                side = Direction.BULLISH
            else:
                side = None
            if side is not None:
                out.append(Pattern(
                    kind=PatternKind.MARKET_STRUCTURE_BREAK, name="CHoCH", side=side,
                    confidence=65.0, pivots=[a, mid, b],
                    start_index=a.index, end_index=n - 1,
                    description=f"Close {close:.4g} violated {mid.price:.4g} against prior structure",
                    meta={"level": mid.price, "type": "CHoCH"},
                ))
        return out
