"""
AI Trader — Target / Stop Generator

Pools take-profit candidates from pattern targets, Fibonacci extensions and
recent swing extremes (ATR projection only when nothing else exists), dedups
them on a price grid, then picks the best-scoring candidate in the trade
direction whose paired ATR stop gives a sane reward:risk.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import structlog

from aitrader.config import Settings, get_settings
from aitrader.engines.pattern_engine import is_old
from aitrader.models import (
    Direction,
    FibonacciLevels,
    Pattern,
    Pivot,
    Reason,
    TargetCandidate,
    TradeMode,
    TradePlan,
)

log = structlog.get_logger(__name__)

EPS = 1e-12
FIB_EXTENSION_CONFIDENCE = {"1.272": 45.0, "1.618": 40.0, "2.0": 30.0}
SWING_CONFIDENCE = 35.0
ATR_CONFIDENCE = 20.0
RECENT_SWINGS = 10


def price_unit(price: float) -> float:
    """Grid step giving four significant digits at ``price``."""
    if price <= 0 or not math.isfinite(price):
        return 1.0
    return 10.0 ** (math.floor(math.log10(price)) - 3)


class TargetEngine:
    """Candidate pooling and selection.

    Usage:
        plan = TargetEngine().plan(price, atr, Direction.BULLISH, patterns, fib, pivots, n)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # ──────────────────────────────────────────
    # Candidate pool
    # ──────────────────────────────────────────

    def candidates(
        self,
        price: float,
        atr: float,
        patterns: Sequence[Pattern],
        fib: Optional[FibonacciLevels],
        pivots: Sequence[Pivot],
        n_candles: int,
    ) -> list[TargetCandidate]:
        s = self.settings
        pool: list[TargetCandidate] = []

        for p in patterns:
            if p.target is None or not math.isfinite(p.target) or p.target <= 0:
                continue
            conf = p.confidence * (s.pattern_age_decay if is_old(p, n_candles, s.pattern_max_age_bars) else 1.0)
            pool.append(TargetCandidate(price=p.target, confidence=conf, source=f"pattern:{p.name}"))

        if fib is not None:
            for key, level in fib.extensions.items():
                if level > 0:
                    pool.append(TargetCandidate(
                        price=level, confidence=FIB_EXTENSION_CONFIDENCE.get(key, 30.0), source=f"fib:{key}",
                    ))

        for pv in list(pivots)[-RECENT_SWINGS:]:
            pool.append(TargetCandidate(
                price=pv.price, confidence=SWING_CONFIDENCE, source=f"swing_{pv.kind.value.lower()}",
            ))

        if not pool and atr > 0:
            step = s.fallback_target_atr * atr
            pool.append(TargetCandidate(price=price + step, confidence=ATR_CONFIDENCE, source="atr"))
            if price - step > 0:
                pool.append(TargetCandidate(price=price - step, confidence=ATR_CONFIDENCE, source="atr"))

        return self.dedup(pool, s.price_unit or price_unit(price))

    @staticmethod
    def dedup(pool: Sequence[TargetCandidate], unit: float) -> list[TargetCandidate]:
        """Snap to the ``unit`` grid; the most confident candidate per cell survives."""
        best: dict[int, TargetCandidate] = {}
        for c in pool:
            key = round(c.price / unit)
            if key not in best or c.confidence > best[key].confidence:
                best[key] = c
        return [best[k] for k in sorted(best)]

    # ──────────────────────────────────────────
    # Selection
    # ──────────────────────────────────────────

    def score(self, candidate: TargetCandidate, price: float, atr: float) -> float:
        """confidence × proximity decay × volatility factor."""
        dist = abs(candidate.price - price)
        proximity = math.exp(-dist / (6 * atr))
        volatility = 1 / (1 + max(0.0, dist / atr - 5) * 0.1)
        return candidate.confidence * proximity * volatility

    def stop_for(self, price: float, atr: float, direction: Direction, mode: TradeMode) -> float:
        risk = self.settings.stop_multiple(mode) * atr
        return price - risk if direction == Direction.BULLISH else price + risk

    def plan(
        self,
        price: float,
        atr: float,
        direction: Direction,
        patterns: Sequence[Pattern] = (),
        fib: Optional[FibonacciLevels] = None,
        pivots: Sequence[Pivot] = (),
        n_candles: int = 0,
        mode: TradeMode = TradeMode.NORMAL,
    ) -> TradePlan:
        s = self.settings
        atr_eff = max(atr, abs(price) * 1e-4, EPS)
        pool = self.candidates(price, atr_eff, patterns, fib, pivots, n_candles)
        for c in pool:
            c.score = round(self.score(c, price, atr_eff), 6)
        ranked = sorted(pool, key=lambda c: c.score, reverse=True)

        if direction == Direction.NEUTRAL:
            return TradePlan(reason=Reason.NEUTRAL_DIRECTION, candidates=ranked)

        sign = 1 if direction == Direction.BULLISH else -1
        min_dist = max(s.min_target_atr * atr_eff, s.min_target_pct * abs(price))
        stop = self.stop_for(price, atr_eff, direction, mode)
        risk = abs(price - stop)

        hedge = next((c.price for c in ranked if sign * (c.price - price) < -min_dist), None)

        for c in ranked:
            reward = sign * (c.price - price)
            if reward < min_dist:
                continue
            rr = reward / max(risk, EPS)
            if rr <= 0 or rr > s.reward_risk_ceiling:
                continue
            return TradePlan(
                target=c.price, stop=stop, hedge_target=hedge,
                reward_risk=round(rr, 3), source=c.source,
                reason=Reason.OK, candidates=ranked,
            )

        target = price + sign * s.fallback_target_atr * atr_eff
        log.debug("target_engine.fallback", price=price, atr=atr_eff, direction=direction.value)
        return TradePlan(
            target=target, stop=stop, hedge_target=hedge,
            reward_risk=round(abs(target - price) / max(risk, EPS), 3),
            source="atr", reason=Reason.FALLBACK, candidates=ranked,
        )
