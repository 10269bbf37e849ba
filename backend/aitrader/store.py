"""
AI Trader — Model Store

Explicitly owned container for the mutable learning state: the online
model and the fusion weights. Each is loaded / saved independently as a
versioned JSON snapshot. A missing, unreadable or out-of-date snapshot
yields fresh state (untrained model, default weights), never an error.
With no directory configured the store lives purely in memory.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from aitrader.config import Settings, get_settings
from aitrader.engines.feature_engine import FEATURE_SCHEMA_VERSION
from aitrader.engines.fusion_engine import FusionEngine
from aitrader.engines.online_model import OnlineModel
from aitrader.models import FusionWeights, ModelState

log = structlog.get_logger(__name__)

SNAPSHOT_VERSION = 1
MODEL_FILE = "model.json"
FUSION_FILE = "fusion.json"


def default_fusion_weights(settings: Settings) -> FusionWeights:
    return FusionWeights(
        indicator=settings.fusion_indicator,
        pattern=settings.fusion_pattern,
        elliott=settings.fusion_elliott,
        orderflow=settings.fusion_orderflow,
        candle_shape=settings.fusion_candle,
        news=settings.fusion_news,
    ).normalized()


class ModelStore:
    """Model + fusion weights with explicit load / save.

    Usage:
        store = ModelStore("/var/lib/aitrader").load()
        ...
        store.save()
    """

    def __init__(self, directory: Union[str, Path, None] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.directory = Path(directory) if directory else None
        self.model = OnlineModel(learning_rate=self.settings.model_learning_rate)
        self.fusion = FusionEngine(default_fusion_weights(self.settings), self.settings.fusion_learning_rate)
        self.analyses = 0
        self.last_updated: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ModelStore":
        settings = settings or get_settings()
        return cls(settings.store_dir, settings).load()

    # ──────────────────────────────────────────
    # Snapshot I/O
    # ──────────────────────────────────────────

    def _path(self, name: str) -> Optional[Path]:
        return self.directory / name if self.directory is not None else None

    def _read(self, name: str) -> Optional[dict]:
        path = self._path(name)
        if path is None:
            return None
        if not path.exists():
            log.debug("model_store.snapshot_missing", path=str(path))
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("model_store.snapshot_unreadable", path=str(path), error=str(e))
            return None
        if not isinstance(payload, dict) or payload.get("version") != SNAPSHOT_VERSION:
            log.warning(
                "model_store.snapshot_version_mismatch",
                path=str(path),
                found=payload.get("version") if isinstance(payload, dict) else None,
                expected=SNAPSHOT_VERSION,
            )
            return None
        return payload

    def _write(self, name: str, payload: dict) -> None:
        path = self._path(name)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, path)
        log.debug("model_store.snapshot_saved", path=str(path))

    def load_model(self) -> OnlineModel:
        payload = self._read(MODEL_FILE)
        state = None
        if payload is not None:
            if payload.get("feature_schema") != FEATURE_SCHEMA_VERSION:
                log.warning(
                    "model_store.feature_schema_changed",
                    found=payload.get("feature_schema"),
                    expected=FEATURE_SCHEMA_VERSION,
                )
            else:
                try:
                    state = ModelState.model_validate(payload.get("state", {}))
                except ValidationError as e:
                    log.warning("model_store.model_invalid", error=str(e))
        self.model = OnlineModel(state, learning_rate=self.settings.model_learning_rate)
        return self.model

    def load_fusion(self) -> FusionEngine:
        payload = self._read(FUSION_FILE)
        weights = None
        lr = self.settings.fusion_learning_rate
        if payload is not None:
            try:
                weights = FusionWeights.model_validate(payload.get("weights", {}))
                lr = float(payload.get("learning_rate", lr))
            except (ValidationError, TypeError, ValueError) as e:
                log.warning("model_store.fusion_invalid", error=str(e))
                weights = None
        self.fusion = FusionEngine(weights or default_fusion_weights(self.settings), lr)
        return self.fusion

    def load(self) -> "ModelStore":
        self.load_model()
        self.load_fusion()
        return self

    def save_model(self) -> None:
        self._touch()
        self._write(MODEL_FILE, {
            "version": SNAPSHOT_VERSION,
            "feature_schema": FEATURE_SCHEMA_VERSION,
            "saved_at": self.last_updated,
            "state": self.model.state.model_dump(),
        })

    def save_fusion(self) -> None:
        self._touch()
        self._write(FUSION_FILE, {
            "version": SNAPSHOT_VERSION,
            "saved_at": self.last_updated,
            "weights": self.fusion.weights.model_dump(),
            "learning_rate": self.fusion.learning_rate,
        })

    def save(self) -> None:
        self.save_model()
        self.save_fusion()

    # ──────────────────────────────────────────
    # Bookkeeping
    # ──────────────────────────────────────────

    def _touch(self) -> None:
        self.last_updated = datetime.now(timezone.utc).isoformat()

    def record_analysis(self) -> None:
        with self._lock:
            self.analyses += 1

    def stats(self) -> dict:
        return {
            "analyses": self.analyses,
            "trained_samples": self.model.trained_samples,
            "model_dimension": self.model.dimension,
            "fusion_weights": self.fusion.weights.model_dump(),
            "persistent": self.directory is not None,
            "last_updated": self.last_updated,
        }

    def reset(self) -> None:
        """Fresh model and default weights; persisted when a directory is set."""
        self.model.reset()
        self.fusion.reset(default_fusion_weights(self.settings))
        with self._lock:
            self.analyses = 0
        log.info("model_store.reset")
        self.save()
