"""
AI Trader — Signal Engine

The synchronous ``analyze(candles, context)`` entry point. Runs the whole
pipeline over already-fetched candles:

  normalize → pivots → patterns / waves → indicators / fib → layer scores
  → fusion + online model blend → direction & probabilities → target / stop
  → reversal check → explanation

Always returns a structurally valid ``AnalysisResult``. Short series come
back Neutral with confidence 0 and reason ``insufficient_data``.

Also hosts the feedback loop: model training, fusion tuning and outcome
recording against the injected ``ModelStore``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, Optional, Union

import structlog

from aitrader.config import Settings, get_settings
from aitrader.engines.feature_engine import extract_features
from aitrader.engines.fib_engine import fib_from_candles
from aitrader.engines.layer_scorers import score_layers
from aitrader.engines.normalizer import normalize_candles
from aitrader.engines.online_model import blend, blend_factor
from aitrader.engines.pattern_engine import PatternEngine, is_old
from aitrader.engines.pivot_engine import find_pivots
from aitrader.engines.reversal_engine import detect_reversal
from aitrader.engines.ta_engine import TAEngine
from aitrader.engines.target_engine import TargetEngine
from aitrader.engines.wave_engine import WaveEngine
from aitrader.models import (
    LAYERS,
    AnalysisContext,
    AnalysisResult,
    Direction,
    FusionSample,
    FusionWeights,
    OutcomeSample,
    Probabilities,
    Reason,
)
from aitrader.observability import stage_metrics, trace_span
from aitrader.store import ModelStore

log = structlog.get_logger(__name__)

NEUTRAL_MASS = 30.0


def probabilities_from(bull_prob: float) -> Probabilities:
    """Split 100 points into bull / bear / neutral.

    Neutral mass peaks at 30 when the probability is 0.5 and vanishes at the
    extremes; the remainder is shared in proportion to ``bull_prob``.
    """
    b = min(1.0, max(0.0, bull_prob))
    neutral = round(NEUTRAL_MASS * (1 - abs(2 * b - 1)), 2)
    bull = round((100 - neutral) * b, 2)
    bear = round(100 - bull - neutral, 2)
    return Probabilities(bull=bull, bear=bear, neutral=neutral)


def direction_from(bull_prob: float, margin: float) -> Direction:
    if bull_prob - 0.5 > margin:
        return Direction.BULLISH
    if 0.5 - bull_prob > margin:
        return Direction.BEARISH
    return Direction.NEUTRAL


def _coerce_context(context: Union[AnalysisContext, Mapping, None]) -> AnalysisContext:
    if context is None:
        return AnalysisContext()
    if isinstance(context, AnalysisContext):
        return context
    data = dict(context)
    data["timeframes"] = {
        tf: normalize_candles(series) for tf, series in (data.get("timeframes") or {}).items()
    }
    return AnalysisContext.model_validate(data)


class SignalEngine:
    """Pipeline orchestrator bound to one ``ModelStore``.

    Usage:
        engine = SignalEngine(ModelStore.from_settings())
        result = engine.analyze(raw_candles, {"symbol": "BTCUSDT"})
    """

    def __init__(self, store: Optional[ModelStore] = None, settings: Optional[Settings] = None):
        self.settings = settings or (store.settings if store is not None else get_settings())
        self.store = store or ModelStore(settings=self.settings)
        self.ta = TAEngine(self.settings.atr_period)
        self.patterns = PatternEngine(self.settings)
        self.waves = WaveEngine(self.settings, self.patterns)
        self.targets = TargetEngine(self.settings)

    # ──────────────────────────────────────────
    # Analysis
    # ──────────────────────────────────────────

    def analyze(self, candles: Any, context: Union[AnalysisContext, Mapping, None] = None) -> AnalysisResult:
        symbol = ""
        try:
            ctx = _coerce_context(context)
            symbol = ctx.symbol
            with trace_span("analysis.total", slow_ms=self.settings.trace_slow_ms, metadata={"symbol": symbol}):
                return self._analyze(candles, ctx)
        except Exception:
            log.exception("analysis.failed", symbol=symbol)
            return AnalysisResult(
                ok=False, reason=Reason.INTERNAL_ERROR, symbol=symbol,
                probabilities=probabilities_from(0.5),
                explanation="Analysis failed; neutral fallback returned.",
            )

    def _analyze(self, candles: Any, ctx: AnalysisContext) -> AnalysisResult:
        s = self.settings
        slow = s.trace_slow_ms
        series = normalize_candles(candles)[-s.lookback:]
        n = len(series)

        if n < s.min_wave_candles:
            log.info("analysis.insufficient_data", symbol=ctx.symbol, candles=n, required=s.min_wave_candles)
            return AnalysisResult(
                ok=False, reason=Reason.INSUFFICIENT_DATA, symbol=ctx.symbol,
                direction=Direction.NEUTRAL, confidence=0.0,
                probabilities=probabilities_from(0.5),
                price=series[-1].close if series else None,
                explanation=f"Insufficient data: {n} candles, {s.min_wave_candles} required.",
            )

        price = series[-1].close

        with trace_span("analysis.structure", slow_ms=slow):
            pivots = find_pivots(series, s.pivot_left, s.pivot_right, s.pivot_min_move_pct)
            patterns = self.patterns.scan(series, pivots)
            wave = self.waves.analyze(series, pivots, patterns)

        with trace_span("analysis.scoring", slow_ms=slow):
            indicators = self.ta.compute(series)
            fib = fib_from_candles(series, s.fib_window)
            layers = score_layers(series, indicators, wave, ctx.news, s.pattern_max_age_bars)
            fused = self.store.fusion.fuse(layers)
            features = extract_features(series, wave, fib, indicators.atr)
            model_prob = self.store.model.predict(features)
            factor = blend_factor(self.store.model.trained_samples, s.blend_base, s.blend_cap, s.blend_slope)
            blended = blend(fused, model_prob, factor)

        direction = direction_from(blended, s.neutral_margin)

        with trace_span("analysis.targets", slow_ms=slow):
            plan = self.targets.plan(
                price, indicators.atr, direction, patterns, fib, pivots, n, ctx.mode,
            )
            reversal = detect_reversal(
                series, indicators, wave, ctx.news, ctx.timeframes, s.reversal_threshold,
                divergence=self.ta.detect_divergence(series),
            )

        result = AnalysisResult(
            ok=True,
            reason=Reason.OK,
            symbol=ctx.symbol,
            direction=direction,
            confidence=round(abs(blended - 0.5) * 200, 2),
            probabilities=probabilities_from(blended),
            fused_probability=round(fused, 4),
            model_probability=round(model_prob, 4),
            blended_probability=round(blended, 4),
            price=price,
            chosen_target=plan.target,
            chosen_stop=plan.stop,
            hedge_target=plan.hedge_target,
            reward_risk=plan.reward_risk,
            target_reason=plan.reason,
            reversal=reversal,
            patterns=patterns,
            impulse=wave.impulse,
            fib=fib,
            features=features,
            layers=layers,
            indicators=indicators,
            regime=indicators.regime,
        )
        result.explanation = self.explain(result, n)

        self.store.record_analysis()
        log.info(
            "analysis.completed",
            symbol=ctx.symbol,
            direction=direction.value,
            blended=result.blended_probability,
            patterns=len(patterns),
            reversal=reversal.triggered,
        )
        return result

    def analyze_many(
        self,
        series_by_symbol: Mapping[str, Any],
        context: Union[AnalysisContext, Mapping, None] = None,
    ) -> dict[str, AnalysisResult]:
        """Analyze several symbols sharing one context template."""
        base = _coerce_context(context)
        return {
            symbol: self.analyze(candles, base.model_copy(update={"symbol": symbol}))
            for symbol, candles in series_by_symbol.items()
        }

    def explain(self, result: AnalysisResult, n_candles: int) -> str:
        """One-line summary of the dominant drivers."""
        weights = self.store.fusion.weights
        drivers = sorted(
            LAYERS,
            key=lambda name: abs(getattr(result.layers, name) - 0.5) * getattr(weights, name),
            reverse=True,
        )[:2]
        parts = [
            f"{result.direction.value} {result.blended_probability:.0%}",
            "drivers: " + ", ".join(f"{name}={getattr(result.layers, name):.2f}" for name in drivers),
        ]

        fresh = [
            p.name for p in result.patterns
            if p.side != Direction.NEUTRAL and not is_old(p, n_candles, self.settings.pattern_max_age_bars)
        ]
        if fresh:
            parts.append("patterns: " + ", ".join(fresh[-3:]))
        if result.impulse is not None:
            parts.append(f"impulse {result.impulse.direction.value} q={result.impulse.quality:.0f}")
        if result.reversal is not None and result.reversal.triggered:
            parts.append(f"reversal risk {result.reversal.likelihood:.0f} toward {result.reversal.direction.value}")
        if result.target_reason == Reason.FALLBACK:
            parts.append("target: ATR fallback")
        parts.append(f"regime {result.regime}")
        return "; ".join(parts)

    # ──────────────────────────────────────────
    # Feedback Loop
    # ──────────────────────────────────────────

    def train_model(self, samples: Iterable[Union[OutcomeSample, Mapping]]) -> int:
        """SGD over labeled feature vectors, then persist the model."""
        parsed = [s if isinstance(s, OutcomeSample) else OutcomeSample.model_validate(s) for s in samples]
        trained = self.store.model.train(parsed)
        if trained:
            self.store.save_model()
        return trained

    def train_from_analyses(self, batch: Iterable[tuple[AnalysisResult, Any]]) -> int:
        """Train on ``(analysis, true_label)`` pairs; analyses without features are skipped."""
        samples = [
            OutcomeSample(features=analysis.features, label=label)
            for analysis, label in batch
            if analysis.features
        ]
        return self.train_model(samples)

    def tune_fusion(self, samples: Iterable[Union[FusionSample, Mapping]]) -> FusionWeights:
        """Adaptive fusion update, then persist the weights."""
        parsed = [s if isinstance(s, FusionSample) else FusionSample.model_validate(s) for s in samples]
        weights = self.store.fusion.tune(parsed)
        if parsed:
            self.store.save_fusion()
        return weights

    def record_outcome(self, result: AnalysisResult, true_label: Any) -> dict:
        """Feed one realized outcome back into both the model and the fusion weights."""
        trained = 0
        if result.ok and result.features:
            trained = self.store.model.train([OutcomeSample(features=result.features, label=true_label)])
        weights = self.store.fusion.tune([
            FusionSample(label=true_label, predicted=result.fused_probability, layers=result.layers),
        ])
        self.store.save()
        log.info("analysis.outcome_recorded", symbol=result.symbol, trained=trained)
        return {"trained": trained, "fusion_weights": weights.model_dump()}

    def stats(self) -> dict:
        return {**self.store.stats(), "stages": stage_metrics.get_stats()}

    def reset(self) -> None:
        self.store.reset()
