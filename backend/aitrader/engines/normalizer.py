"""
AI Trader — Candle Normalizer

Single boundary step turning heterogeneous OHLCV records into the canonical
ordered ``Candle`` series every downstream engine consumes.

Accepted record shapes:
  tuple / list   [timestamp, open, high, low, close, volume]
  mapping        {"timestamp"|"time"|"t": ..., "open"|"o": ..., ...}
  objects        ``Candle`` instances or anything with matching attributes

A ``{timeframe: records}`` map is also accepted; the preferred timeframe is
picked via ``select_timeframe``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from aitrader.models import Candle

log = structlog.get_logger(__name__)

PREFERRED_TIMEFRAMES = ("15m", "1h", "30m", "5m", "1m")

_KEYS = {
    "timestamp": ("timestamp", "time", "t", "ts", "open_time", "openTime", "date"),
    "open": ("open", "o"),
    "high": ("high", "h"),
    "low": ("low", "l"),
    "close": ("close", "c"),
    "volume": ("volume", "v", "vol"),
}


# ──────────────────────────────────────────────
# Field coercion
# ──────────────────────────────────────────────

def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _to_timestamp(value: Any) -> Optional[float]:
    """Epoch milliseconds from a number, numeric string, datetime or ISO string."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp() * 1000.0
    numeric = _to_float(value)
    if numeric is not None:
        return numeric
    if isinstance(value, str) and value.strip():
        try:
            return _to_timestamp(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _lookup(record: Any, field: str) -> Any:
    if isinstance(record, Mapping):
        for key in _KEYS[field]:
            if key in record:
                return record[key]
        return None
    for key in _KEYS[field]:
        if hasattr(record, key):
            return getattr(record, key)
    return None


def _coerce(record: Any) -> Optional[Candle]:
    """One raw record → Candle, or None when timestamp/close are unusable."""
    if isinstance(record, Candle):
        raw = record.model_dump()
    elif isinstance(record, (list, tuple)):
        padded = list(record) + [None] * (6 - len(record))
        raw = dict(zip(("timestamp", "open", "high", "low", "close", "volume"), padded[:6]))
    else:
        raw = {field: _lookup(record, field) for field in _KEYS}

    ts = _to_timestamp(raw["timestamp"])
    close = _to_float(raw["close"])
    if ts is None or close is None:
        return None

    open_ = _to_float(raw["open"])
    high = _to_float(raw["high"])
    low = _to_float(raw["low"])
    open_ = close if open_ is None else open_
    high = close if high is None else high
    low = close if low is None else low
    volume = _to_float(raw["volume"]) or 0.0

    return Candle(
        timestamp=ts,
        open=open_,
        high=max(high, open_, close),
        low=min(low, open_, close),
        close=close,
        volume=max(volume, 0.0),
    )


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────

def select_timeframe(series_map: Mapping[str, Any]) -> tuple[Optional[str], list]:
    """Pick the preferred timeframe from a ``{timeframe: records}`` map.

    Falls back to the longest series when none of the preferred keys carry data.
    """
    for tf in PREFERRED_TIMEFRAMES:
        records = series_map.get(tf)
        if records:
            return tf, list(records)
    best_tf, best = None, []
    for tf, records in series_map.items():
        if isinstance(records, (list, tuple)) and len(records) > len(best):
            best_tf, best = tf, list(records)
    return best_tf, best


def _is_timeframe_map(raw: Any) -> bool:
    return (
        isinstance(raw, Mapping)
        and bool(raw)
        and all(isinstance(v, (list, tuple)) for v in raw.values())
    )


def normalize_candles(raw: Any) -> list[Candle]:
    """Validate, sort and dedup raw OHLCV records.

    Records missing a timestamp or close are dropped. On duplicate timestamps
    the later record in input order wins. Never raises: unusable input
    yields an empty list.
    """
    if raw is None:
        return []
    if _is_timeframe_map(raw):
        _, raw = select_timeframe(raw)
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        log.debug("normalizer.unsupported_input", type=type(raw).__name__)
        return []

    by_ts: dict[float, Candle] = {}
    total = dropped = 0
    for record in raw:
        total += 1
        candle = _coerce(record)
        if candle is None:
            dropped += 1
            continue
        by_ts[candle.timestamp] = candle

    if dropped:
        log.debug("normalizer.dropped_records", dropped=dropped, total=total)
    return [by_ts[ts] for ts in sorted(by_ts)]
