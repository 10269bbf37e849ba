"""
AI Trader — Reversal Detector

Stateless cross-check of exhaustion evidence against the prevailing price
trend. Each component casts a signed vote (+ bullish, - bearish):

  divergence   RSI divergence or MACD histogram against price    ±12
  flush        volume spike with a wick opposing the trend         ±14
  micro_flip   lower-timeframe slope turning against the trend    ±8
  elliott      stretched wave sentiment with confidence ≥ 50      ±12
  news         high-impact sentiment opposing price direction     ±14

Votes are oriented toward the candidate reversal (against the trend),
likelihood = clamp(50 + Σ, 0, 100), and a signal is only emitted at or
above the trigger threshold.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

import numpy as np

from aitrader.engines.ta_engine import TAEngine
from aitrader.models import (
    Candle,
    Direction,
    IndicatorSnapshot,
    NewsContext,
    NewsImpact,
    ReversalSignal,
    WaveAnalysis,
)

MICRO_TIMEFRAMES = ("1m", "5m")


def _sign(v: float) -> int:
    return (v > 0) - (v < 0)


def _micro_slope(candles: Sequence[Candle], timeframes: Mapping[str, Sequence[Candle]]) -> float:
    source: Sequence[Candle] = candles
    for tf in MICRO_TIMEFRAMES:
        series = timeframes.get(tf) or []
        if len(series) >= 5:
            source = series
            break
    closes = np.array([c.close for c in source[-5:]], dtype=float)
    if len(closes) < 3:
        return 0.0
    return float(np.polyfit(np.arange(len(closes)), closes, 1)[0])


def reversal_votes(
    candles: Sequence[Candle],
    indicators: IndicatorSnapshot,
    wave: Optional[WaveAnalysis] = None,
    news: Optional[NewsContext] = None,
    timeframes: Optional[Mapping[str, Sequence[Candle]]] = None,
    divergence: Optional[int] = None,
) -> dict[str, float]:
    """Signed per-component votes; 0 where a component has no opinion."""
    trend = {"up": 1, "down": -1}.get(indicators.price_trend, 0)
    votes = {"divergence": 0.0, "flush": 0.0, "micro_flip": 0.0, "elliott": 0.0, "news": 0.0}

    div = TAEngine().detect_divergence(candles) if divergence is None else divergence
    if div:
        votes["divergence"] = 12.0 * div
    elif trend and _sign(indicators.macd_hist) == -trend:
        votes["divergence"] = -12.0 * trend

    if trend and len(candles) >= 21:
        last = candles[-1]
        avg_vol = float(np.mean([c.volume for c in candles[-21:-1]]))
        body = abs(last.close - last.open)
        if avg_vol > 0 and last.volume > 1.5 * avg_vol:
            lower_wick = min(last.open, last.close) - last.low
            upper_wick = last.high - max(last.open, last.close)
            if trend < 0 and lower_wick > body:
                votes["flush"] = 14.0
            elif trend > 0 and upper_wick > body:
                votes["flush"] = -14.0

    micro = _sign(_micro_slope(candles, timeframes or {}))
    if trend and micro == -trend:
        votes["micro_flip"] = 8.0 * micro

    if wave is not None and wave.ok and abs(wave.sentiment) > 0.6 and wave.confidence >= 50:
        votes["elliott"] = -12.0 * _sign(wave.sentiment)

    if news is not None and news.impact == NewsImpact.HIGH and trend:
        lean = 1 if news.sentiment >= 0.6 else -1 if news.sentiment <= 0.4 else 0
        if lean == -trend:
            votes["news"] = 14.0 * lean

    return votes


def detect_reversal(
    candles: Sequence[Candle],
    indicators: IndicatorSnapshot,
    wave: Optional[WaveAnalysis] = None,
    news: Optional[NewsContext] = None,
    timeframes: Optional[Mapping[str, Sequence[Candle]]] = None,
    threshold: float = 68.0,
    divergence: Optional[int] = None,
) -> ReversalSignal:
    votes = reversal_votes(candles, indicators, wave, news, timeframes, divergence)
    total = sum(votes.values())
    trend = {"up": 1, "down": -1}.get(indicators.price_trend, 0)

    if trend:
        candidate = Direction.BEARISH if trend > 0 else Direction.BULLISH
        oriented = -trend * total
    else:
        candidate = Direction.BULLISH if total > 0 else Direction.BEARISH if total < 0 else None
        oriented = abs(total)

    likelihood = min(100.0, max(0.0, 50.0 + oriented))
    triggered = candidate is not None and likelihood >= threshold
    return ReversalSignal(
        likelihood=round(likelihood, 2),
        triggered=triggered,
        direction=candidate if triggered else None,
        components=votes,
    )
