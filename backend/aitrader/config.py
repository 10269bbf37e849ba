"""
AI Trader — Configuration Management

Pydantic Settings: loads from .env / AITRADER_* environment variables.
Every empirically chosen threshold used by the engines lives here so it can
be tuned per deployment instead of being baked into the detectors.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AITRADER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Core ──
    app_env: str = "development"
    app_debug: bool = False
    lookback: int = 500
    min_wave_candles: int = 30
    trace_slow_ms: float = 250.0

    # ── Pivots ──
    pivot_left: int = 3
    pivot_right: int = 3
    pivot_min_move_pct: float = 0.001

    # ── Patterns & Waves ──
    double_top_symmetry: float = 0.82
    elliott_overlap_tolerance: float = 0.12
    elliott_min_quality: float = 30.0
    pattern_max_age_bars: int = 50
    pattern_age_decay: float = 0.6
    order_block_body_ratio: float = 0.65
    order_block_min_body_pct: float = 0.002
    sfp_wick_body_ratio: float = 0.8
    channel_parallel_tolerance: float = 0.12

    # ── Targets & Stops ──
    atr_period: int = 14
    fib_window: int = 90
    reward_risk_ceiling: float = 20.0
    fallback_target_atr: float = 2.0
    stop_atr_aggressive: float = 2.0
    stop_atr_normal: float = 1.5
    stop_atr_conservative: float = 1.0
    min_target_atr: float = 0.6
    min_target_pct: float = 0.0005
    price_unit: Optional[float] = None

    # ── Fusion & Model ──
    fusion_indicator: float = 0.35
    fusion_pattern: float = 0.18
    fusion_elliott: float = 0.15
    fusion_orderflow: float = 0.12
    fusion_candle: float = 0.08
    fusion_news: float = 0.08
    fusion_learning_rate: float = 0.02
    model_learning_rate: float = 0.01
    blend_base: float = 0.2
    blend_cap: float = 0.6
    blend_slope: float = 0.1
    neutral_margin: float = 0.03

    # ── Reversal ──
    reversal_threshold: float = 68.0

    # ── Persistence ──
    store_dir: Optional[str] = Field(default=None, description="Snapshot directory; None keeps state in memory")

    def stop_multiple(self, mode: str) -> float:
        """ATR multiple used for the protective stop in a given trade mode."""
        return {
            "aggressive": self.stop_atr_aggressive,
            "conservative": self.stop_atr_conservative,
        }.get(getattr(mode, "value", mode), self.stop_atr_normal)


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
