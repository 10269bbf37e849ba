"""
AI Trader — Online Model

Logistic regression trained one sample at a time:

    p = sigmoid(w · x + b)
    error = label - p
    w[i] += lr * error * x[i]
    b += lr * error

The dimension is fixed by the first vector seen. A vector of a different
length reinitialises the model (logged, trained weights are discarded).
Updates are serialised by a lock; predictions only read the state.
"""

from __future__ import annotations

import math
import threading
from typing import Iterable, Optional, Sequence

import numpy as np
import structlog

from aitrader.models import ModelState, OutcomeSample

log = structlog.get_logger(__name__)


def sigmoid(z: float) -> float:
    """Overflow-safe logistic function."""
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    e = math.exp(z)
    return e / (1.0 + e)


def blend_factor(trained_samples: int, base: float = 0.2, cap: float = 0.6, slope: float = 0.1) -> float:
    """Model share in the final probability; non-decreasing in training volume."""
    return min(cap, base + slope * math.log10(1 + max(0, trained_samples)))


def blend(fused: float, model_prob: float, factor: float) -> float:
    return min(1.0, max(0.0, fused * (1 - factor) + model_prob * factor))


class OnlineModel:
    """SGD logistic model around a ``ModelState`` snapshot."""

    def __init__(self, state: Optional[ModelState] = None, learning_rate: float = 0.01):
        self.state = state or ModelState(learning_rate=learning_rate)
        self._lock = threading.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self.state.dimension

    @property
    def trained_samples(self) -> int:
        return self.state.trained_samples

    def _ensure_dimension(self, dim: int) -> None:
        st = self.state
        if st.dimension == dim and len(st.weights) == dim:
            return
        if st.dimension is not None:
            log.warning(
                "online_model.reinitialized",
                old_dimension=st.dimension,
                new_dimension=dim,
                discarded_samples=st.trained_samples,
            )
        self.state = ModelState(dimension=dim, weights=[0.0] * dim, learning_rate=st.learning_rate)

    def _logit(self, x: np.ndarray) -> float:
        return float(np.dot(np.asarray(self.state.weights, dtype=float), x)) + self.state.bias

    def predict(self, features: Sequence[float]) -> float:
        """Bullish probability for one feature vector."""
        x = np.nan_to_num(np.asarray(features, dtype=float))
        if self.state.dimension != x.size:
            with self._lock:
                self._ensure_dimension(x.size)
        return sigmoid(self._logit(x))

    def update(self, features: Sequence[float], label: float, learning_rate: Optional[float] = None) -> float:
        """One SGD step; returns the pre-update prediction."""
        x = np.nan_to_num(np.asarray(features, dtype=float))
        with self._lock:
            self._ensure_dimension(x.size)
            st = self.state
            lr = st.learning_rate if learning_rate is None else learning_rate
            p = sigmoid(self._logit(x))
            error = label - p
            st.weights = (np.asarray(st.weights, dtype=float) + lr * error * x).tolist()
            st.bias += lr * error
            st.trained_samples += 1
        return p

    def train(self, samples: Iterable[OutcomeSample], learning_rate: Optional[float] = None) -> int:
        trained = 0
        for sample in samples:
            self.update(sample.features, sample.label, learning_rate)
            trained += 1
        if trained:
            log.debug("online_model.trained", samples=trained, total=self.state.trained_samples)
        return trained

    def reset(self) -> None:
        with self._lock:
            self.state = ModelState(learning_rate=self.state.learning_rate)
