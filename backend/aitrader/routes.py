"""
AI Trader — API Routes

All HTTP endpoints. Thin layer — delegates to the SignalEngine.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter

from aitrader.config import get_settings
from aitrader.engines.analysis_engine import SignalEngine
from aitrader.models import (
    AnalysisResult,
    AnalyzeRequest,
    FusionWeights,
    OutcomeRequest,
    TrainRequest,
    TuneRequest,
)
from aitrader.store import ModelStore

_engine: Optional[SignalEngine] = None


def get_engine() -> SignalEngine:
    """Process-wide engine bound to the configured ModelStore."""
    global _engine
    if _engine is None:
        _engine = SignalEngine(ModelStore.from_settings(get_settings()))
    return _engine


def current_engine() -> Optional[SignalEngine]:
    """The bound engine, without building one."""
    return _engine


def set_engine(engine: Optional[SignalEngine]) -> None:
    global _engine
    _engine = engine


# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────

health_router = APIRouter(tags=["Health"])


@health_router.get("/health")
async def health_check():
    """Liveness plus a summary of the learning state."""
    engine = get_engine()
    stats = engine.store.stats()
    return {
        "status": "ok",
        "env": engine.settings.app_env,
        "model_dimension": stats["model_dimension"],
        "trained_samples": stats["trained_samples"],
        "persistent": stats["persistent"],
    }


# ──────────────────────────────────────────────
# Analysis
# ──────────────────────────────────────────────

analysis_router = APIRouter(prefix="/v1", tags=["Analysis"])


@analysis_router.post("/analyze", response_model=AnalysisResult)
def analyze(req: AnalyzeRequest):
    """Run the full signal pipeline over the posted candles."""
    context = {
        "symbol": req.symbol,
        "timeframe": req.timeframe,
        "news": req.news,
        "timeframes": req.timeframes,
        "mode": req.mode,
    }
    return get_engine().analyze(req.candles, context)


# ──────────────────────────────────────────────
# Model & Fusion
# ──────────────────────────────────────────────

model_router = APIRouter(prefix="/v1", tags=["Model"])


@model_router.post("/model/train")
def train_model(req: TrainRequest):
    """Online SGD over labeled feature vectors."""
    engine = get_engine()
    trained = engine.train_model(req.samples)
    return {"trained": trained, "trained_samples": engine.store.model.trained_samples}


@model_router.post("/fusion/tune", response_model=FusionWeights)
def tune_fusion(req: TuneRequest):
    """Adaptive fusion-weight update from labeled layer breakdowns."""
    return get_engine().tune_fusion(req.samples)


@model_router.post("/outcome")
def record_outcome(req: OutcomeRequest):
    """Feed a realized outcome for a previous analysis back into the learners."""
    return get_engine().record_outcome(req.analysis, req.label)


@model_router.get("/model")
def model_stats():
    return get_engine().stats()


@model_router.delete("/model")
def reset_model():
    """Reset to an untrained model and default fusion weights."""
    engine = get_engine()
    engine.reset()
    return engine.stats()
