"""
AI Trader — Elliott Wave Engine

Labels the best-scoring 5-pivot Elliott impulse, searches for the A-B-C
correction that follows it, and folds the impulse together with the chart
pattern lean into a single sentiment scalar (-1..1) plus a confidence (0..100).

Impulse rules (candidates violating any are rejected):
  - wave 3 is not the shortest (must exceed 90% of the smallest of 1/2/4)
  - wave 2 never retraces more than 100% of wave 1
  - wave 4 may not run past wave 1's start by more than the overlap tolerance
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import structlog

from aitrader.config import Settings, get_settings
from aitrader.engines.pattern_engine import PatternEngine, is_old, pattern_bias
from aitrader.engines.pivot_engine import alternate, find_pivots
from aitrader.models import (
    Candle,
    CorrectionLabel,
    Direction,
    ImpulseLabel,
    Pattern,
    Pivot,
    PivotKind,
    Reason,
    Wave,
    WaveAnalysis,
    WaveDirection,
)

log = structlog.get_logger(__name__)

EPS = 1e-12
GOLDEN = 1.618


def _avg_volume(candles: Sequence[Candle], start: int, end: int) -> float:
    vols = [c.volume for c in candles[start:end + 1]]
    return float(np.mean(vols)) if vols else 0.0


class WaveEngine:
    """Elliott impulse / correction labeler."""

    def __init__(self, settings: Optional[Settings] = None, patterns: Optional[PatternEngine] = None):
        self.settings = settings or get_settings()
        self.patterns = patterns or PatternEngine(self.settings)

    # ──────────────────────────────────────────
    # Impulse
    # ──────────────────────────────────────────

    def score_impulse(self, window: Sequence[Pivot], candles: Sequence[Candle]) -> Optional[ImpulseLabel]:
        """Validate and score one 5-pivot window; None when a rule is violated."""
        if len(window) != 5:
            return None
        kinds = [p.kind for p in window]
        if any(kinds[i] == kinds[i + 1] for i in range(4)):
            return None

        up = kinds[0] == PivotKind.LOW
        sign = 1.0 if up else -1.0
        p = [w.price for w in window]
        moves = [sign * (p[i + 1] - p[i]) for i in range(4)]
        # impulse legs (1, 3) advance, corrective legs (2, 4) pull back
        if moves[0] <= 0 or moves[1] >= 0 or moves[2] <= 0 or moves[3] >= 0:
            return None
        m1, m2, m3, m4 = (abs(m) for m in moves)

        if m3 <= 0.9 * min(m1, m2, m4):
            return None
        retrace2 = m2 / max(m1, EPS)
        if retrace2 > 1.0:
            return None
        beyond_start = sign * (p[0] - p[4])
        if beyond_start > self.settings.elliott_overlap_tolerance * m1:
            return None

        overlap4 = max(0.0, sign * (p[1] - p[4])) / max(m1, EPS)
        notes = [f"wave2_retrace={retrace2:.1%}", f"wave4_overlap={overlap4:.1%}"]

        quality = 20.0
        if m3 >= max(m1, m2, m4):
            quality += 20
        if retrace2 < 0.618:
            quality += 10
        if sign * (p[3] - p[1]) > 0:
            quality += 10
        if overlap4 <= 0:
            quality += 10
        ratio = m3 / max(m1, EPS)
        quality += 10 * max(0.0, 1 - abs(ratio - GOLDEN) / GOLDEN)

        v1 = _avg_volume(candles, window[0].index, window[1].index)
        v3 = _avg_volume(candles, window[2].index, window[3].index)
        volume_ratio = None
        if v1 > 0 and v3 > 0:
            volume_ratio = v3 / v1
            if volume_ratio >= 1:
                quality += min(5.0, 5 * (volume_ratio - 1))
            else:
                quality -= min(5.0, 5 * (1 - volume_ratio))
            notes.append(f"volume_w3_w1={volume_ratio:.2f}")
        else:
            notes.append("volume_unavailable")

        return ImpulseLabel(
            pivots=list(window),
            waves=[Wave.between(window[i], window[i + 1]) for i in range(4)],
            direction=WaveDirection.UP if up else WaveDirection.DOWN,
            quality=round(min(99.0, max(0.0, quality)), 2),
            wave2_retrace=round(retrace2, 4),
            wave4_overlap=round(overlap4, 4),
            volume_ratio=round(volume_ratio, 4) if volume_ratio is not None else None,
            notes=notes,
        )

    def find_impulse(self, swings: Sequence[Pivot], candles: Sequence[Candle]) -> Optional[ImpulseLabel]:
        """Highest-quality impulse above the floor; later windows win ties."""
        best: Optional[ImpulseLabel] = None
        for i in range(len(swings) - 4):
            label = self.score_impulse(swings[i:i + 5], candles)
            if label is None or label.quality < self.settings.elliott_min_quality:
                continue
            if best is None or label.quality >= best.quality:
                best = label
        return best

    @staticmethod
    def find_correction(swings: Sequence[Pivot], impulse: Optional[ImpulseLabel]) -> Optional[CorrectionLabel]:
        """A-B-C: the first three alternating pivots after the impulse ends."""
        if impulse is None:
            return None
        last = impulse.pivots[-1]
        chain = [last]
        for p in swings:
            if p.index <= last.index:
                continue
            if p.kind != chain[-1].kind:
                chain.append(p)
            if len(chain) == 4:
                break
        if len(chain) < 4:
            return None
        return CorrectionLabel(
            pivots=chain[1:],
            waves=[Wave.between(chain[i], chain[i + 1]) for i in range(3)],
        )

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def analyze(
        self,
        candles: Sequence[Candle],
        pivots: Optional[Sequence[Pivot]] = None,
        patterns: Optional[Sequence[Pattern]] = None,
    ) -> WaveAnalysis:
        s = self.settings
        n = len(candles)
        if n < s.min_wave_candles:
            log.info("wave_engine.insufficient_data", candles=n, required=s.min_wave_candles)
            return WaveAnalysis(ok=False, reason=Reason.INSUFFICIENT_DATA)

        if pivots is None:
            pivots = find_pivots(candles, s.pivot_left, s.pivot_right, s.pivot_min_move_pct)
        if patterns is None:
            patterns = self.patterns.scan(candles, pivots)
        swings = alternate(pivots)

        impulse = self.find_impulse(swings, candles)
        correction = self.find_correction(swings, impulse)

        impulse_component = 0.0
        quality = 0.0
        if impulse is not None:
            quality = impulse.quality
            impulse_component = (1 if impulse.direction == WaveDirection.UP else -1) * quality / 100
        bias = pattern_bias(patterns, n, s.pattern_max_age_bars)
        sentiment = float(np.clip(0.6 * impulse_component + 0.4 * bias, -1, 1))

        fresh = [
            p.confidence for p in patterns
            if p.side != Direction.NEUTRAL and not is_old(p, n, s.pattern_max_age_bars)
        ]
        pattern_conf = float(np.mean(fresh)) if fresh else 0.0
        confidence = float(np.clip(0.6 * quality + 0.4 * pattern_conf, 0, 100))

        reason = Reason.OK if (impulse is not None or patterns) else Reason.NO_STRUCTURE
        return WaveAnalysis(
            ok=True,
            reason=reason,
            pivots=list(pivots),
            patterns=list(patterns),
            impulse=impulse,
            correction=correction,
            sentiment=round(sentiment, 4),
            confidence=round(confidence, 2),
        )
