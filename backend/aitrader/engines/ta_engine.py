"""
AI Trader — Technical Analysis Engine

Indicator primitives consumed by the layer scorers, the target generator and
the reversal detector: RSI, MACD histogram, ATR, short-term price / volume
trend, RSI divergence and a coarse market-regime label.

Uses the `ta` library for indicator calculations on pandas DataFrames.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator
from ta.trend import MACD
from ta.volatility import AverageTrueRange

from aitrader.models import Candle, IndicatorSnapshot

EPS = 1e-12


class TAEngine:
    """Indicator snapshot for a canonical candle series.

    Usage:
        engine = TAEngine()
        snapshot = engine.compute(candles)
    """

    def __init__(self, atr_period: int = 14):
        self.atr_period = atr_period

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    def compute(self, candles: Sequence[Candle]) -> IndicatorSnapshot:
        if not candles:
            return IndicatorSnapshot()
        df = self._candles_to_dataframe(candles)
        return IndicatorSnapshot(
            rsi=self.rsi(df),
            macd_hist=self.macd_hist(df),
            atr=self.atr(df),
            price_trend=self.price_trend(df["close"]),
            volume_trend=self.volume_trend(df["volume"]),
            regime=self.regime(df["close"]),
        )

    def rsi(self, df: pd.DataFrame, window: int = 14) -> float:
        if len(df) < window + 1:
            return 50.0
        value = RSIIndicator(df["close"], window=window).rsi().iloc[-1]
        return float(value) if not pd.isna(value) else 50.0

    def macd_hist(self, df: pd.DataFrame) -> float:
        if len(df) < 26:
            return 0.0
        value = MACD(df["close"]).macd_diff().iloc[-1]
        return float(value) if not pd.isna(value) else 0.0

    def atr(self, df: pd.DataFrame) -> float:
        """Average True Range; plain mean true range on short series."""
        if len(df) > self.atr_period:
            value = AverageTrueRange(
                df["high"], df["low"], df["close"], window=self.atr_period,
            ).average_true_range().iloc[-1]
            if not pd.isna(value) and value > 0:
                return float(value)
        prev_close = df["close"].shift(1)
        tr = pd.concat([
            df["high"] - df["low"],
            (df["high"] - prev_close).abs(),
            (df["low"] - prev_close).abs(),
        ], axis=1).max(axis=1)
        value = tr.tail(self.atr_period).mean()
        return float(value) if not pd.isna(value) else 0.0

    @staticmethod
    def price_trend(close: pd.Series, window: int = 20, threshold: float = 0.001) -> str:
        """Least-squares drift of the last ``window`` closes: up / down / flat."""
        y = close.tail(window).to_numpy(dtype=float)
        if len(y) < 3:
            return "flat"
        slope = np.polyfit(np.arange(len(y)), y, 1)[0]
        rel = slope * (len(y) - 1) / max(abs(float(y.mean())), EPS)
        if rel > threshold:
            return "up"
        if rel < -threshold:
            return "down"
        return "flat"

    @staticmethod
    def volume_trend(volume: pd.Series) -> str:
        """Last 5 bars' mean volume against the 15 before them."""
        if len(volume) < 20:
            return "flat"
        recent = float(volume.iloc[-5:].mean())
        prior = float(volume.iloc[-20:-5].mean())
        if prior <= 0:
            return "flat"
        ratio = recent / prior
        if ratio > 1.1:
            return "rising"
        if ratio < 0.9:
            return "falling"
        return "flat"

    @staticmethod
    def regime(close: pd.Series) -> str:
        """trending / calm / volatile / ranging / choppy from the last 20 closes."""
        if len(close) < 30:
            return "unknown"
        last20 = close.tail(20).to_numpy(dtype=float)
        m20 = float(last20.mean())
        vol_ratio = float(last20.std()) / max(m20, EPS)
        slope = (last20[-1] - last20[0]) / max(last20[0], EPS)
        if abs(slope) > 0.002 and vol_ratio < 0.015:
            return "trending"
        if vol_ratio < 0.007:
            return "calm"
        if vol_ratio > 0.03:
            return "volatile"
        return "ranging" if abs(slope) < 0.001 else "choppy"

    def detect_divergence(self, candles: Sequence[Candle], lookback: int = 30, order: int = 3) -> int:
        """RSI divergence over the last ``lookback`` bars.

        +1 bullish (price lower low, RSI higher low), -1 bearish
        (price higher high, RSI lower high), 0 otherwise.
        """
        if len(candles) < lookback + 14:
            return 0
        df = self._candles_to_dataframe(candles)
        rsi = RSIIndicator(df["close"], window=14).rsi().iloc[-lookback:]
        recent = df["close"].iloc[-lookback:]

        price_lows = self._find_local_extrema(recent, mode="min", order=order)
        rsi_lows = self._find_local_extrema(rsi, mode="min", order=order)
        if len(price_lows) >= 2 and len(rsi_lows) >= 2:
            if price_lows[-1][1] < price_lows[-2][1] and rsi_lows[-1][1] > rsi_lows[-2][1]:
                return 1

        price_highs = self._find_local_extrema(recent, mode="max", order=order)
        rsi_highs = self._find_local_extrema(rsi, mode="max", order=order)
        if len(price_highs) >= 2 and len(rsi_highs) >= 2:
            if price_highs[-1][1] > price_highs[-2][1] and rsi_highs[-1][1] < rsi_highs[-2][1]:
                return -1
        return 0

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    @staticmethod
    def _candles_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
        """Convert candles to a positionally indexed pandas DataFrame."""
        data = {
            "timestamp": [c.timestamp for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [float(c.volume) for c in candles],
        }
        return pd.DataFrame(data)

    @staticmethod
    def _find_local_extrema(series: pd.Series, mode: str = "min", order: int = 3) -> list[tuple[int, float]]:
        """Find local minima or maxima in a series, skipping NaN."""
        extrema = []
        values = series.to_numpy(dtype=float)
        for i in range(order, len(values) - order):
            window = values[i - order:i + order + 1]
            if np.isnan(window).any():
                continue
            if mode == "min" and values[i] <= window.min():
                extrema.append((i, float(values[i])))
            elif mode == "max" and values[i] >= window.max():
                extrema.append((i, float(values[i])))
        return extrema
