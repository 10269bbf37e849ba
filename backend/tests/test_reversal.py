"""
Reversal Detector Tests
"""

import pytest

from conftest import T0, STEP, flat_candles, rising_candles


def _snapshot(**kw):
    from aitrader.models import IndicatorSnapshot
    return IndicatorSnapshot(**kw)


class TestReversal:

    def test_quiet_market_stays_neutral(self):
        from aitrader.engines.reversal_engine import detect_reversal
        signal = detect_reversal(flat_candles([100.0] * 40), _snapshot(), divergence=0)
        assert signal.likelihood == 50
        assert signal.triggered is False
        assert signal.direction is None
        assert all(v == 0 for v in signal.components.values())

    def test_exhausted_uptrend_triggers_bearish(self, uptrend):
        from aitrader.engines.reversal_engine import detect_reversal
        from aitrader.models import Direction, NewsContext, NewsImpact, WaveAnalysis
        signal = detect_reversal(
            uptrend,
            _snapshot(price_trend="up", macd_hist=-0.5),
            wave=WaveAnalysis(sentiment=0.8, confidence=60),
            news=NewsContext(sentiment=0.2, impact=NewsImpact.HIGH),
            divergence=0,
        )
        assert signal.components == {
            "divergence": -12.0, "flush": 0.0, "micro_flip": 0.0, "elliott": -12.0, "news": -14.0,
        }
        assert signal.likelihood == 88
        assert signal.triggered is True
        assert signal.direction == Direction.BEARISH

    @pytest.mark.parametrize("sentiment, vote", [(0.6, 0.0), (0.61, -12.0), (-0.6, 0.0), (-0.61, 12.0)])
    def test_elliott_vote_needs_sentiment_beyond_threshold(self, uptrend, sentiment, vote):
        from aitrader.engines.reversal_engine import reversal_votes
        from aitrader.models import WaveAnalysis
        votes = reversal_votes(
            uptrend, _snapshot(), wave=WaveAnalysis(sentiment=sentiment, confidence=60), divergence=0,
        )
        assert votes["elliott"] == vote

    def test_micro_timeframe_flip(self, uptrend):
        from aitrader.engines.reversal_engine import detect_reversal
        falling = flat_candles([105, 104, 103, 102, 101])
        signal = detect_reversal(uptrend, _snapshot(price_trend="up"), timeframes={"1m": falling}, divergence=0)
        assert signal.components["micro_flip"] == -8.0
        assert signal.likelihood == 58
        assert signal.triggered is False

    def test_capitulation_flush_in_downtrend(self):
        from aitrader.engines.reversal_engine import reversal_votes
        from aitrader.models import Candle
        candles = list(flat_candles([100.0] * 21))
        candles.append(Candle(timestamp=T0 + 21 * STEP, open=100, high=100.3, low=98, close=100.2, volume=3000))
        votes = reversal_votes(candles, _snapshot(price_trend="down"), divergence=0)
        assert votes["flush"] == 14.0

    def test_news_needs_high_impact(self, uptrend):
        from aitrader.engines.reversal_engine import reversal_votes
        from aitrader.models import NewsContext, NewsImpact
        votes = reversal_votes(
            uptrend, _snapshot(price_trend="up"),
            news=NewsContext(sentiment=0.1, impact=NewsImpact.MODERATE), divergence=0,
        )
        assert votes["news"] == 0.0

    def test_flat_trend_uses_vote_sign(self):
        from aitrader.engines.reversal_engine import detect_reversal
        from aitrader.models import Direction
        signal = detect_reversal(flat_candles([100.0] * 40), _snapshot(), divergence=1, threshold=60)
        assert signal.likelihood == 62
        assert signal.triggered is True
        assert signal.direction == Direction.BULLISH

    @pytest.mark.parametrize("threshold, triggered", [(88, True), (88.01, False)])
    def test_threshold_inclusive(self, uptrend, threshold, triggered):
        from aitrader.engines.reversal_engine import detect_reversal
        from aitrader.models import NewsContext, NewsImpact, WaveAnalysis
        signal = detect_reversal(
            uptrend,
            _snapshot(price_trend="up", macd_hist=-0.5),
            wave=WaveAnalysis(sentiment=0.8, confidence=60),
            news=NewsContext(sentiment=0.2, impact=NewsImpact.HIGH),
            threshold=threshold,
            divergence=0,
        )
        assert signal.triggered is triggered

    def test_divergence_computed_when_not_given(self):
        from aitrader.engines.reversal_engine import reversal_votes
        votes = reversal_votes(rising_candles(20), _snapshot(), divergence=None)
        assert votes["divergence"] == 0.0
