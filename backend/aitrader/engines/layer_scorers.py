"""
AI Trader — Layer Scorers

Independent pure functions, each mapping its inputs to a bullish
probability in [0, 1] where 0.5 is neutral.

  indicator     RSI, MACD histogram sign, price trend, volume trend
  orderflow     volume-weighted last-candle delta + liquidity sweep
  pattern       net bullish vs bearish fresh pattern count
  elliott       wave sentiment, boosted by impulse quality
  candle_shape  body / wick / momentum / volume-spike heuristic
  news          external sentiment pass-through
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from aitrader.engines.pattern_engine import is_old
from aitrader.models import (
    Candle,
    Direction,
    IndicatorSnapshot,
    LayerScores,
    NewsContext,
    Pattern,
    WaveAnalysis,
)

EPS = 1e-12


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def indicator_layer(ind: IndicatorSnapshot) -> float:
    rsi_norm = _clamp((ind.rsi - 30) / 40)
    if ind.macd_hist > 0:
        macd_bias = 0.62
    elif ind.macd_hist < 0:
        macd_bias = 0.38
    else:
        macd_bias = 0.5
    trend_bias = {"up": 0.6, "down": 0.4}.get(ind.price_trend, 0.5)
    vol_bias = {"rising": 0.55, "falling": 0.45}.get(ind.volume_trend, 0.5)
    return _clamp(rsi_norm * 0.45 + macd_bias * 0.25 + trend_bias * 0.18 + vol_bias * 0.12)


def orderflow_layer(candles: Sequence[Candle], window: int = 5) -> float:
    """Last-candle delta (range- and volume-normalised, tanh compressed) ± sweep."""
    if len(candles) < 2:
        return 0.5
    last = candles[-1]
    prior = candles[-(window + 1):-1]

    avg_range = float(np.mean([c.high - c.low for c in prior]))
    avg_vol = float(np.mean([c.volume for c in prior]))
    vol_weight = last.volume / avg_vol if avg_vol > 0 else 1.0
    delta = (last.close - last.open) / max(avg_range, EPS) * vol_weight

    score = 0.5 + _clamp(math.tanh(delta), -0.45, 0.45)

    swing_high = max(c.high for c in prior)
    swing_low = min(c.low for c in prior)
    if last.high > swing_high and last.close < swing_high:
        score -= 0.12
    elif last.low < swing_low and last.close > swing_low:
        score += 0.12
    return _clamp(score)


def pattern_layer(patterns: Sequence[Pattern], n_candles: int, max_age: int = 50) -> float:
    bull = bear = 0
    for p in patterns:
        if is_old(p, n_candles, max_age):
            continue
        if p.side == Direction.BULLISH:
            bull += 1
        elif p.side == Direction.BEARISH:
            bear += 1
    raw = (bull - bear) / max(1, bull + bear)
    return _clamp(0.5 + raw * 0.35)


def elliott_layer(wave: Optional[WaveAnalysis]) -> float:
    if wave is None or not wave.ok:
        return 0.5
    s = _clamp(wave.sentiment, -1.0, 1.0)
    base = (s + 1) / 2
    quality = wave.impulse.quality if wave.impulse is not None else 0.0
    boost = 0.08 if quality > 65 else 0.04 if quality > 45 else 0.0
    return _clamp(base + math.copysign(boost, s) if s else base)


def candle_shape_layer(candles: Sequence[Candle], lookback: int = 6) -> float:
    """Engulfing / hammer style lean of the last few candles."""
    if not candles:
        return 0.5
    last = list(candles[-lookback:])
    c = last[-1]
    avg_range = float(np.mean([k.high - k.low for k in last])) or EPS
    body = abs(c.close - c.open) or EPS
    lower_wick = min(c.close, c.open) - c.low
    upper_wick = c.high - max(c.close, c.open)

    momentum = (c.close - last[0].close) / max(abs(last[0].close), EPS)
    net = _clamp(momentum * 100, -5.0, 5.0)
    if lower_wick > body * 1.8 and upper_wick < body * 0.6:
        net += 2.5
    if upper_wick > body * 1.8 and lower_wick < body * 0.6:
        net -= 2.5
    if c.close > c.open and body > avg_range * 0.6:
        net += 1.5
    if c.open > c.close and body > avg_range * 0.6:
        net -= 1.5

    vols = [k.volume for k in last[:-1]]
    avg_vol = float(np.mean(vols)) if vols else 0.0
    if avg_vol > 0 and c.volume > avg_vol * 1.3:
        # spike confirms the last candle's direction
        if c.close > c.open:
            net += 0.8
        elif c.close < c.open:
            net -= 0.8
    return _clamp((50 + net * 4) / 100)


def news_layer(news: Optional[NewsContext]) -> float:
    if news is None:
        return 0.5
    return _clamp(news.sentiment)


def score_layers(
    candles: Sequence[Candle],
    indicators: IndicatorSnapshot,
    wave: Optional[WaveAnalysis],
    news: Optional[NewsContext],
    max_age: int = 50,
) -> LayerScores:
    """All six layers for one analysis."""
    patterns = wave.patterns if wave is not None else []
    return LayerScores(
        indicator=indicator_layer(indicators),
        pattern=pattern_layer(patterns, len(candles), max_age),
        elliott=elliott_layer(wave),
        orderflow=orderflow_layer(candles),
        candle_shape=candle_shape_layer(candles),
        news=news_layer(news),
    )
