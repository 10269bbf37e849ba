"""
Fibonacci Ladder & Target / Stop Generator Tests
"""

import numpy as np
import pytest

from conftest import flat_candles, pivot


@pytest.fixture
def targets(settings):
    from aitrader.engines.target_engine import TargetEngine
    return TargetEngine(settings)


@pytest.fixture
def fib_up():
    from aitrader.engines.fib_engine import fib_levels
    from aitrader.models import WaveDirection
    return fib_levels(90, 100, WaveDirection.UP)


# ════════════════════════════════════════════════
#  FIBONACCI
# ════════════════════════════════════════════════


class TestFibonacci:

    def test_up_swing_levels(self, fib_up):
        assert fib_up.retracements["0.5"] == pytest.approx(95)
        assert fib_up.retracements["0.618"] == pytest.approx(93.82)
        assert fib_up.extensions["1.272"] == pytest.approx(102.72)
        assert fib_up.extensions["2.0"] == pytest.approx(110)

    def test_down_swing_levels(self):
        from aitrader.engines.fib_engine import fib_levels
        from aitrader.models import WaveDirection
        fib = fib_levels(90, 100, WaveDirection.DOWN)
        assert fib.retracements["0.618"] == pytest.approx(96.18)
        assert fib.extensions["1.272"] == pytest.approx(87.28)

    def test_swapped_bounds(self):
        from aitrader.engines.fib_engine import fib_levels
        fib = fib_levels(100, 90)
        assert (fib.low, fib.high) == (90, 100)

    def test_from_candles_direction(self):
        from aitrader.engines.fib_engine import fib_from_candles
        from aitrader.models import WaveDirection
        up = fib_from_candles(flat_candles([90, 92, 95, 100, 98]))
        down = fib_from_candles(flat_candles([100, 98, 95, 90, 93]))
        assert up.direction == WaveDirection.UP
        assert down.direction == WaveDirection.DOWN
        assert (down.low, down.high) == (90, 100)

    def test_from_candles_window(self):
        from aitrader.engines.fib_engine import fib_from_candles
        fib = fib_from_candles(flat_candles([50, 200] + [90, 100] * 10), window=10)
        assert (fib.low, fib.high) == (90, 100)

    def test_from_candles_empty(self):
        from aitrader.engines.fib_engine import fib_from_candles
        assert fib_from_candles([]) is None

    @pytest.mark.parametrize("seed", [3, 11, 29])
    def test_levels_stay_ordered_for_any_swing(self, seed):
        from aitrader.engines.fib_engine import fib_levels
        from aitrader.models import WaveDirection
        rng = np.random.default_rng(seed)
        for a, b in rng.uniform(0.01, 5000, size=(300, 2)):
            for direction in WaveDirection:
                fib = fib_levels(a, b, direction)
                assert fib.low <= fib.high
                retr = list(fib.retracements.values())
                ext = list(fib.extensions.values())
                assert all(fib.low - 1e-9 <= r <= fib.high + 1e-9 for r in retr)
                if direction == WaveDirection.UP:
                    assert retr == sorted(retr, reverse=True)
                    assert all(e >= fib.high - 1e-9 for e in ext)
                    assert ext == sorted(ext)
                else:
                    assert retr == sorted(retr)
                    assert all(e <= fib.low + 1e-9 for e in ext)
                    assert ext == sorted(ext, reverse=True)

    @pytest.mark.parametrize("seed", range(5))
    def test_from_candles_spans_window_extremes(self, seed):
        from aitrader.engines.fib_engine import fib_from_candles
        rng = np.random.default_rng(seed)
        closes = (100 * np.exp(np.cumsum(rng.normal(0, 0.02, 120)))).tolist()
        candles = flat_candles(closes)
        fib = fib_from_candles(candles, window=60)
        recent = closes[-60:]
        assert fib.low == pytest.approx(min(recent))
        assert fib.high == pytest.approx(max(recent))
        assert all(fib.low - 1e-9 <= r <= fib.high + 1e-9 for r in fib.retracements.values())


# ════════════════════════════════════════════════
#  CANDIDATE POOL
# ════════════════════════════════════════════════


class TestCandidates:

    def test_price_unit(self):
        from aitrader.engines.target_engine import price_unit
        assert price_unit(123.45) == pytest.approx(0.1)
        assert price_unit(0.00123) == pytest.approx(1e-6)
        assert price_unit(0) == 1.0

    def test_atr_projection_only_when_pool_empty(self, targets, fib_up):
        pool = targets.candidates(100, 1, [], None, [], 0)
        assert sorted(c.price for c in pool) == [98, 102]
        assert {c.source for c in pool} == {"atr"}
        pool = targets.candidates(100, 1, [], fib_up, [], 0)
        assert "atr" not in {c.source for c in pool}

    def test_swings_and_fib_sources(self, targets, fib_up):
        pivots = [pivot(i, 95 + i, "HIGH" if i % 2 else "LOW") for i in range(15)]
        pool = targets.candidates(100, 1, [], fib_up, pivots, 20)
        swing = [c for c in pool if c.source.startswith("swing_")]
        assert len(swing) == 10
        assert min(c.price for c in swing) == 100
        assert any(c.source == "fib:1.272" and c.confidence == 45 for c in pool)

    def test_old_pattern_confidence_decays(self, targets):
        from aitrader.models import Direction, Pattern, PatternKind
        old = Pattern(kind=PatternKind.DOUBLE_TOP, name="Double Top", side=Direction.BEARISH,
                      confidence=80, target=90, start_index=0, end_index=0)
        pool = targets.candidates(100, 1, [old], None, [], 100)
        assert pool[0].confidence == pytest.approx(80 * 0.6)
        assert pool[0].source == "pattern:Double Top"

    def test_dedup_keeps_most_confident(self):
        from aitrader.engines.target_engine import TargetEngine
        from aitrader.models import TargetCandidate
        pool = [
            TargetCandidate(price=100.01, confidence=30, source="a"),
            TargetCandidate(price=100.04, confidence=50, source="b"),
            TargetCandidate(price=101.0, confidence=10, source="c"),
        ]
        out = TargetEngine.dedup(pool, 0.1)
        assert [c.source for c in out] == ["b", "c"]


# ════════════════════════════════════════════════
#  PLAN SELECTION
# ════════════════════════════════════════════════


class TestPlan:

    def test_bullish_picks_nearest_extension(self, targets, fib_up):
        from aitrader.models import Direction, Reason
        plan = targets.plan(100, 1, Direction.BULLISH, fib=fib_up)
        assert plan.reason == Reason.OK
        assert plan.target == pytest.approx(102.72)
        assert plan.source == "fib:1.272"
        assert plan.stop == pytest.approx(98.5)
        assert plan.reward_risk == pytest.approx(1.813, abs=1e-3)
        assert plan.hedge_target is None

    def test_bearish_without_candidates_falls_back(self, targets, fib_up):
        from aitrader.models import Direction, Reason
        plan = targets.plan(100, 1, Direction.BEARISH, fib=fib_up)
        assert plan.reason == Reason.FALLBACK
        assert plan.source == "atr"
        assert plan.target == pytest.approx(98)
        assert plan.stop == pytest.approx(101.5)
        assert plan.hedge_target == pytest.approx(102.72)

    def test_neutral_has_no_target(self, targets, fib_up):
        from aitrader.models import Direction, Reason
        plan = targets.plan(100, 1, Direction.NEUTRAL, fib=fib_up)
        assert plan.reason == Reason.NEUTRAL_DIRECTION
        assert plan.target is None and plan.stop is None
        assert len(plan.candidates) == 3

    @pytest.mark.parametrize("mode, stop", [
        ("aggressive", 98.0), ("normal", 98.5), ("conservative", 99.0),
    ])
    def test_stop_follows_mode(self, targets, fib_up, mode, stop):
        from aitrader.models import Direction, TradeMode
        plan = targets.plan(100, 1, Direction.BULLISH, fib=fib_up, mode=TradeMode(mode))
        assert plan.stop == pytest.approx(stop)

    def test_reward_risk_ceiling(self, targets, fib_up):
        from aitrader.models import Direction, Reason
        plan = targets.plan(100, 0.01, Direction.BULLISH, fib=fib_up)
        assert plan.reason == Reason.FALLBACK

    def test_zero_atr_uses_price_floor(self, targets):
        from aitrader.models import Direction
        plan = targets.plan(100, 0, Direction.BULLISH)
        assert plan.target > 100 > plan.stop

    def test_candidates_ranked_by_score(self, targets, fib_up):
        from aitrader.models import Direction
        plan = targets.plan(100, 1, Direction.BULLISH, fib=fib_up)
        scores = [c.score for c in plan.candidates]
        assert scores == sorted(scores, reverse=True)
