"""
AI Trader — Pipeline Observability

Lightweight timing spans over structlog plus per-stage latency counters.

Usage:
  with trace_span("analysis.patterns"):
      patterns = engine.scan(candles, pivots)

  @traced("gather_inputs")
  async def gather_inputs(...): ...
"""

from __future__ import annotations

import asyncio
import functools
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Stage Metrics
# ──────────────────────────────────────────────

class StageMetrics:
    """Call counts and latency per pipeline stage."""

    def __init__(self):
        self._call_counts: dict[str, int] = {}
        self._total_latency: dict[str, float] = {}
        self._error_counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def record(self, stage: str, latency_ms: float, success: bool = True):
        with self._lock:
            self._call_counts[stage] = self._call_counts.get(stage, 0) + 1
            self._total_latency[stage] = self._total_latency.get(stage, 0.0) + latency_ms
            if not success:
                self._error_counts[stage] = self._error_counts.get(stage, 0) + 1

    def get_stats(self) -> dict[str, dict]:
        stats = {}
        with self._lock:
            for stage, calls in self._call_counts.items():
                stats[stage] = {
                    "total_calls": calls,
                    "avg_latency_ms": round(self._total_latency.get(stage, 0) / max(calls, 1), 3),
                    "error_count": self._error_counts.get(stage, 0),
                }
        return stats

    def reset(self):
        with self._lock:
            self._call_counts.clear()
            self._total_latency.clear()
            self._error_counts.clear()


# Module-level shared instance
stage_metrics = StageMetrics()


# ──────────────────────────────────────────────
# Spans
# ──────────────────────────────────────────────

@contextmanager
def trace_span(name: str, slow_ms: float = 250.0, metadata: Optional[dict] = None):
    """Time a block; debug log on exit, warning when slower than ``slow_ms``.

    Exceptions propagate unchanged after being counted against the stage.
    """
    start = time.perf_counter()
    extra = {"span_name": name, **(metadata or {})}
    success = True
    try:
        yield
    except Exception:
        success = False
        raise
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        stage_metrics.record(name, elapsed_ms, success)
        logger.debug("trace_span_end", elapsed_ms=round(elapsed_ms, 2), success=success, **extra)
        if elapsed_ms > slow_ms:
            logger.warning("trace_span_slow", elapsed_ms=round(elapsed_ms, 2), **extra)


def traced(name: Optional[str] = None, slow_ms: float = 250.0):
    """Decorator form of ``trace_span`` for sync and async callables."""
    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with trace_span(span_name, slow_ms=slow_ms):
                return func(*args, **kwargs)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            with trace_span(span_name, slow_ms=slow_ms):
                return await func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return wrapper

    return decorator
