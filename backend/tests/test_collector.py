"""
Input Collector Tests — concurrent candle / sentiment gathering.
"""

import asyncio

import pytest

from conftest import rising_candles


def _raw(n):
    return [[c.timestamp, c.open, c.high, c.low, c.close, c.volume] for c in rising_candles(n)]


class TestGatherInputs:

    def test_prefers_15m_and_keeps_all_timeframes(self):
        from aitrader.data.collector import gather_inputs
        sizes = {"15m": 40, "1h": 30, "5m": 60, "1m": 80}

        async def fetch(symbol, tf):
            return _raw(sizes[tf])

        candles, ctx = asyncio.run(gather_inputs("BTCUSDT", fetch))
        assert len(candles) == 40
        assert ctx.symbol == "BTCUSDT"
        assert ctx.timeframe == "15m"
        assert {tf: len(v) for tf, v in ctx.timeframes.items()} == sizes
        assert ctx.news is None

    def test_explicit_primary(self):
        from aitrader.data.collector import gather_inputs

        async def fetch(symbol, tf):
            return _raw(50 if tf == "5m" else 35)

        candles, ctx = asyncio.run(gather_inputs("X", fetch, primary="5m"))
        assert len(candles) == 50
        assert ctx.timeframe == "5m"

    def test_failing_fetchers_degrade(self):
        from aitrader.data.collector import gather_inputs

        async def fetch(symbol, tf):
            if tf == "15m":
                raise ConnectionError("exchange down")
            return _raw(35)

        async def sentiment(symbol):
            raise TimeoutError("news feed down")

        candles, ctx = asyncio.run(gather_inputs("X", fetch, fetch_sentiment=sentiment))
        assert ctx.timeframe == "1h"
        assert len(candles) == 35
        assert "15m" not in ctx.timeframes
        assert ctx.news is None

    @pytest.mark.parametrize("raw, sentiment, impact", [
        (0.8, 0.8, "low"),
        (1.7, 1.0, "low"),
        ({"sentiment": 0.2, "impact": "high"}, 0.2, "high"),
    ])
    def test_sentiment_shapes(self, raw, sentiment, impact):
        from aitrader.data.collector import gather_inputs

        async def fetch(symbol, tf):
            return _raw(35)

        async def fetch_sentiment(symbol):
            return raw

        _, ctx = asyncio.run(gather_inputs("X", fetch, timeframes=("15m",), fetch_sentiment=fetch_sentiment))
        assert ctx.news.sentiment == pytest.approx(sentiment)
        assert ctx.news.impact.value == impact

    def test_concurrency_is_bounded(self):
        from aitrader.data.collector import gather_inputs
        in_flight = peak = 0

        async def fetch(symbol, tf):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _raw(31)

        tfs = ("1m", "3m", "5m", "15m", "30m", "1h")
        asyncio.run(gather_inputs("X", fetch, timeframes=tfs, max_concurrency=2))
        assert peak <= 2

    def test_timeout_degrades_to_empty(self):
        from aitrader.data.collector import gather_inputs

        async def fetch(symbol, tf):
            if tf == "15m":
                await asyncio.sleep(1)
            return _raw(32)

        candles, ctx = asyncio.run(gather_inputs("X", fetch, timeframes=("15m", "1h"), timeout=0.05))
        assert ctx.timeframe == "1h"
        assert len(candles) == 32

    def test_result_feeds_signal_engine(self, settings):
        from aitrader.data.collector import gather_inputs
        from aitrader.engines.analysis_engine import SignalEngine
        from aitrader.store import ModelStore

        async def fetch(symbol, tf):
            return _raw(40)

        candles, ctx = asyncio.run(gather_inputs("X", fetch))
        result = SignalEngine(ModelStore(settings=settings)).analyze(candles, ctx)
        assert result.ok is True
        assert result.symbol == "X"
