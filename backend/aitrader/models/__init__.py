"""
AI Trader — Pydantic Models

All I/O schemas for the signal core. Engines return these, the analysis
engine assembles them, API routes serialize them.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class PivotKind(str, Enum):
    """Swing point type."""
    HIGH = "HIGH"
    LOW = "LOW"


class WaveDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class Direction(str, Enum):
    """Directional bias of a signal or a pattern."""
    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"


class PatternKind(str, Enum):
    """Structures recognised by the pattern & wave engine."""
    DOUBLE_TOP = "DoubleTop"
    DOUBLE_BOTTOM = "DoubleBottom"
    HEAD_AND_SHOULDERS = "HeadAndShoulders"
    INVERSE_HEAD_AND_SHOULDERS = "InverseHeadAndShoulders"
    TRIANGLE = "Triangle"
    CHANNEL = "Channel"
    ORDER_BLOCK = "OrderBlock"
    FAIR_VALUE_GAP = "FairValueGap"
    STOP_RUN_FAILURE = "StopRunFailure"
    MARKET_STRUCTURE_BREAK = "MarketStructureBreak"


class NewsImpact(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class TradeMode(str, Enum):
    """Stop placement profile."""
    AGGRESSIVE = "aggressive"
    NORMAL = "normal"
    CONSERVATIVE = "conservative"


class Reason(str, Enum):
    """Outcome codes attached to results instead of raised errors."""
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    NO_STRUCTURE = "no_structure"
    FALLBACK = "fallback"
    NEUTRAL_DIRECTION = "neutral_direction"
    INTERNAL_ERROR = "internal_error"


# ──────────────────────────────────────────────
# Market Data Models
# ──────────────────────────────────────────────

class Candle(BaseModel):
    """Single canonical OHLCV bar. Timestamp is epoch milliseconds."""
    model_config = ConfigDict(frozen=True)

    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class Pivot(BaseModel):
    """Confirmed swing point."""
    index: int
    timestamp: float
    price: float
    kind: PivotKind


class Wave(BaseModel):
    """Price leg between two consecutive pivots."""
    from_pivot: Pivot
    to_pivot: Pivot
    direction: WaveDirection
    magnitude: float
    percent_magnitude: float

    @classmethod
    def between(cls, a: Pivot, b: Pivot) -> "Wave":
        move = b.price - a.price
        return cls(
            from_pivot=a,
            to_pivot=b,
            direction=WaveDirection.UP if move >= 0 else WaveDirection.DOWN,
            magnitude=abs(move),
            percent_magnitude=abs(move) / a.price * 100 if a.price else 0.0,
        )


# ──────────────────────────────────────────────
# Pattern & Wave Models
# ──────────────────────────────────────────────

class Pattern(BaseModel):
    """A detected chart / smart-money structure."""
    kind: PatternKind
    name: str
    side: Direction
    confidence: float = Field(ge=0, le=100)
    target: Optional[float] = None
    neckline: Optional[float] = None
    pivots: list[Pivot] = Field(default_factory=list)
    start_index: int = 0
    end_index: int = 0
    description: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)


class ImpulseLabel(BaseModel):
    """Scored 5-pivot Elliott impulse candidate."""
    pivots: list[Pivot]
    waves: list[Wave]
    direction: WaveDirection
    quality: float = Field(ge=0, le=99)
    wave2_retrace: float
    wave4_overlap: float
    volume_ratio: Optional[float] = None
    notes: list[str] = Field(default_factory=list)


class CorrectionLabel(BaseModel):
    """A-B-C correction following an impulse."""
    pivots: list[Pivot]
    waves: list[Wave]


class WaveAnalysis(BaseModel):
    """Output of the pattern & wave engine."""
    ok: bool = True
    reason: Reason = Reason.OK
    pivots: list[Pivot] = Field(default_factory=list)
    patterns: list[Pattern] = Field(default_factory=list)
    impulse: Optional[ImpulseLabel] = None
    correction: Optional[CorrectionLabel] = None
    sentiment: float = 0.0
    confidence: float = 0.0


class FibonacciLevels(BaseModel):
    """Retracement / extension ladder of the active swing."""
    low: float
    high: float
    direction: WaveDirection
    retracements: dict[str, float]
    extensions: dict[str, float]


# ──────────────────────────────────────────────
# Targets & Indicators
# ──────────────────────────────────────────────

class TargetCandidate(BaseModel):
    price: float
    confidence: float
    source: str
    score: float = 0.0


class TradePlan(BaseModel):
    """Chosen target / stop pair plus the pooled candidates it came from."""
    target: Optional[float] = None
    stop: Optional[float] = None
    hedge_target: Optional[float] = None
    reward_risk: Optional[float] = None
    source: Optional[str] = None
    reason: Reason = Reason.OK
    candidates: list[TargetCandidate] = Field(default_factory=list)


class IndicatorSnapshot(BaseModel):
    """Indicator readings consumed by the layer scorers and reversal check."""
    rsi: float = 50.0
    macd_hist: float = 0.0
    atr: float = 0.0
    price_trend: str = "flat"       # "up" | "down" | "flat"
    volume_trend: str = "flat"      # "rising" | "falling" | "flat"
    regime: str = "ranging"


# ──────────────────────────────────────────────
# Fusion & Model State
# ──────────────────────────────────────────────

LAYERS: tuple[str, ...] = ("indicator", "pattern", "elliott", "orderflow", "candle_shape", "news")


class LayerScores(BaseModel):
    """Per-layer bullish probability, 0.5 is neutral."""
    indicator: float = 0.5
    pattern: float = 0.5
    elliott: float = 0.5
    orderflow: float = 0.5
    candle_shape: float = 0.5
    news: float = 0.5


class FusionWeights(BaseModel):
    """Relative trust per scoring layer; kept normalised to sum to 1."""
    indicator: float = 0.35
    pattern: float = 0.18
    elliott: float = 0.15
    orderflow: float = 0.12
    candle_shape: float = 0.08
    news: float = 0.08

    def total(self) -> float:
        return sum(getattr(self, name) for name in LAYERS)

    def normalized(self) -> "FusionWeights":
        s = self.total()
        if s <= 0:
            return FusionWeights()
        return FusionWeights(**{name: getattr(self, name) / s for name in LAYERS})


class ModelState(BaseModel):
    """Serializable snapshot of the online logistic model."""
    dimension: Optional[int] = None
    weights: list[float] = Field(default_factory=list)
    bias: float = 0.0
    learning_rate: float = 0.01
    trained_samples: int = 0


def _coerce_label(value: Union[str, float, int, bool]) -> float:
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("bullish", "bull", "up", "long"):
            return 1.0
        if text in ("bearish", "bear", "down", "short"):
            return 0.0
        if text in ("neutral", "flat"):
            return 0.5
        value = float(text)
    label = float(value)
    if not math.isfinite(label):
        raise ValueError("label must be finite")
    return min(1.0, max(0.0, label))


class OutcomeSample(BaseModel):
    """Labeled feature vector for online model training."""
    features: list[float]
    label: float

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, v):
        return _coerce_label(v)


class FusionSample(BaseModel):
    """Labeled layer breakdown for adaptive fusion tuning."""
    label: float
    predicted: float
    layers: LayerScores

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, v):
        return _coerce_label(v)


# ──────────────────────────────────────────────
# Analysis I/O
# ──────────────────────────────────────────────

class ReversalSignal(BaseModel):
    likelihood: float = Field(ge=0, le=100)
    triggered: bool = False
    direction: Optional[Direction] = None
    components: dict[str, float] = Field(default_factory=dict)


class Probabilities(BaseModel):
    """Percentages summing to 100."""
    bull: float = 35.0
    bear: float = 35.0
    neutral: float = 30.0


class NewsContext(BaseModel):
    """Headline sentiment. A bare number is read as the sentiment score."""
    sentiment: float = Field(default=0.5, ge=0, le=1)
    impact: NewsImpact = NewsImpact.LOW

    @model_validator(mode="before")
    @classmethod
    def _from_scalar(cls, data):
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            score = float(data)
            return {"sentiment": min(1.0, max(0.0, score)) if math.isfinite(score) else 0.5}
        return data


class AnalysisContext(BaseModel):
    """Caller-supplied context for one analysis call."""
    symbol: str = ""
    timeframe: Optional[str] = None
    news: Optional[NewsContext] = None
    timeframes: dict[str, list[Candle]] = Field(default_factory=dict)
    mode: TradeMode = TradeMode.NORMAL


class AnalysisResult(BaseModel):
    """Terminal output of one analysis call."""
    ok: bool = True
    reason: Reason = Reason.OK
    symbol: str = ""
    direction: Direction = Direction.NEUTRAL
    confidence: float = 0.0
    probabilities: Probabilities = Field(default_factory=Probabilities)
    fused_probability: float = 0.5
    model_probability: float = 0.5
    blended_probability: float = 0.5
    price: Optional[float] = None
    chosen_target: Optional[float] = None
    chosen_stop: Optional[float] = None
    hedge_target: Optional[float] = None
    reward_risk: Optional[float] = None
    target_reason: Optional[Reason] = None
    reversal: Optional[ReversalSignal] = None
    patterns: list[Pattern] = Field(default_factory=list)
    impulse: Optional[ImpulseLabel] = None
    fib: Optional[FibonacciLevels] = None
    features: list[float] = Field(default_factory=list)
    layers: LayerScores = Field(default_factory=LayerScores)
    indicators: Optional[IndicatorSnapshot] = None
    regime: str = "unknown"
    explanation: str = ""


# ──────────────────────────────────────────────
# API Requests
# ──────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    """Raw candles in tuple or object form plus optional context."""
    candles: list[Any] = Field(default_factory=list)
    symbol: str = ""
    timeframe: Optional[str] = None
    news: Optional[NewsContext] = None
    timeframes: dict[str, list[Any]] = Field(default_factory=dict)
    mode: TradeMode = TradeMode.NORMAL


class TrainRequest(BaseModel):
    samples: list[OutcomeSample] = Field(min_length=1)


class TuneRequest(BaseModel):
    samples: list[FusionSample] = Field(min_length=1)


class OutcomeRequest(BaseModel):
    analysis: AnalysisResult
    label: float

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, v):
        return _coerce_label(v)
