"""Engine configuration models.

Every option has a default so an empty or partial configuration never
crashes the engine. Loaded from YAML by ``app.engine_config``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class BufferConfig(BaseModel):
    """Tick history retention and data-quality thresholds."""

    max_size: int = Field(300, gt=1)
    max_age: float = Field(900.0, gt=0)  # 15 minutes
    stale_skew: float = Field(2.0, ge=0)
    gap_threshold: float = Field(5.0, gt=0)
    large_gap_threshold: float = Field(60.0, gt=0)
    # Reject ticks older than wall clock minus this lag (None = disabled)
    max_feed_lag: float | None = None


class IndicatorConfig(BaseModel):
    """Indicator periods."""

    rsi_period: int = Field(14, gt=0)
    macd_fast: int = Field(12, gt=0)
    macd_slow: int = Field(26, gt=0)
    macd_signal: int = Field(9, gt=0)
    bollinger_period: int = Field(20, gt=1)
    bollinger_std: float = Field(2.0, gt=0)
    sma_periods: list[int] = [20, 50, 200]
    ema_periods: list[int] = [9, 12, 20, 26]
    atr_period: int = Field(14, gt=0)
    williams_period: int = Field(14, gt=0)
    adx_period: int = Field(14, gt=0)
    history_points: int = Field(5, ge=5)

    @model_validator(mode="after")
    def _validate(self):
        if self.macd_fast >= self.macd_slow:
            raise ValueError(
                f"macd_fast ({self.macd_fast}) must be below macd_slow ({self.macd_slow})"
            )
        if not self.sma_periods or not self.ema_periods:
            raise ValueError("sma_periods and ema_periods must not be empty")
        if any(p <= 0 for p in self.sma_periods + self.ema_periods):
            raise ValueError("moving average periods must be positive")
        return self

    @property
    def min_length(self) -> int:
        """Minimum number of prices needed to compute every indicator."""
        longest = max(
            # RSI and ATR start one bar later than their period; two points give a trend
            self.rsi_period + 1,
            self.macd_slow + self.macd_signal,
            self.bollinger_period,
            max(self.sma_periods),
            max(self.ema_periods),
            self.atr_period + 1,
            self.williams_period,
            2 * self.adx_period,
        )
        return longest + 1


class TimeframeConfig(BaseModel):
    """A trend timeframe: the last ``window`` prices (0 = full buffer)."""

    label: str
    window: int = Field(0, ge=0)
    weight: float = Field(1.0, gt=0)


class TrendConfig(BaseModel):
    """Trend aggregation parameters."""

    timeframes: list[TimeframeConfig] = [
        TimeframeConfig(label="short", window=30, weight=0.2),
        TimeframeConfig(label="medium", window=60, weight=0.3),
        TimeframeConfig(label="long", window=0, weight=0.5),
    ]
    min_move: float = Field(0.00005, ge=0)  # 0.005% relative change
    fast_period: int = Field(9, gt=0)
    slow_period: int = Field(20, gt=1)
    crossover_period: int = Field(50, gt=1)
    volatility_ceiling: float = Field(0.005, gt=0)
    range_reference: float = Field(0.001, gt=0)
    dominance_threshold: float = Field(0.6, gt=0, le=1)

    @model_validator(mode="after")
    def _validate(self):
        if not self.timeframes:
            raise ValueError("at least one trend timeframe is required")
        labels = [tf.label for tf in self.timeframes]
        if len(set(labels)) != len(labels):
            raise ValueError(f"duplicate timeframe labels: {labels}")
        return self


class PatternConfig(BaseModel):
    """Chart pattern tolerances."""

    tolerance: float = Field(0.0003, gt=0)  # relative price tolerance
    min_distance: int = Field(5, gt=0)
    ideal_distance: int = Field(20, gt=0)
    triangle_swings: int = Field(4, ge=2)
    flat_slope: float = Field(0.00001, gt=0)  # relative slope per bar
    symmetry_tolerance: float = Field(0.5, gt=0, le=1)


class MomentumConfig(BaseModel):
    """Momentum and synthetic volume parameters."""

    roc_period: int = Field(14, gt=0)
    acceleration_window: int = Field(5, gt=0)
    acceleration_floor: float = Field(0.05, ge=0)
    volume_window: int = Field(20, gt=1)
    volume_trend_points: int = Field(5, ge=2)
    volume_trend_threshold: float = Field(0.1, ge=0)
    volatility_min: float = Field(0.00001, ge=0)
    volatility_max: float = Field(0.005, gt=0)
    min_move: float = Field(0.00005, ge=0)


class ScoringWeights(BaseModel):
    """Component weights for the final confidence."""

    indicators: float = Field(0.35, ge=0)
    trend: float = Field(0.30, ge=0)
    market: float = Field(0.20, ge=0)
    patterns: float = Field(0.15, ge=0)

    @model_validator(mode="after")
    def _validate(self):
        if self.indicators + self.trend + self.market + self.patterns <= 0:
            raise ValueError("scoring weights must not all be zero")
        return self


class IndicatorWeights(BaseModel):
    """Per-indicator vote weights."""

    rsi: float = Field(0.20, ge=0)
    macd: float = Field(0.25, ge=0)
    bollinger: float = Field(0.15, ge=0)
    ema: float = Field(0.20, ge=0)
    williams: float = Field(0.10, ge=0)
    adx: float = Field(0.10, ge=0)


class ScoringConfig(BaseModel):
    """Scorer thresholds and adjustment factors."""

    weights: ScoringWeights = ScoringWeights()
    indicator_weights: IndicatorWeights = IndicatorWeights()
    rsi_overbought: float = Field(70.0, gt=50, le=100)
    rsi_oversold: float = Field(30.0, ge=0, lt=50)
    adx_trend_floor: float = Field(20.0, ge=0, le=100)
    indicator_dominance: float = Field(0.6, gt=0, le=1)
    vote_threshold: float = Field(0.5, ge=0, lt=1)
    confirmation_strength: float = Field(0.6, ge=0, le=1)
    max_spread: float = Field(0.0003, gt=0)
    unfavorable_market_factor: float = Field(0.85, gt=0, le=1)
    unconfirmed_trend_factor: float = Field(0.8, gt=0, le=1)
    contradiction_factor: float = Field(0.8, gt=0, le=1)
    volatility_factor: float = Field(0.9, gt=0, le=1)
    spread_factor: float = Field(0.85, gt=0, le=1)
    agreement_bonus: float = Field(1.1, ge=1)
    pattern_bonus: float = Field(1.05, ge=1)


class GateConfig(BaseModel):
    """Final admission control."""

    min_confidence: float = Field(0.75, ge=0, le=1)
    cooldown: float = Field(60.0, ge=0)
    require_levels: bool = True
    trading_hours_enabled: bool = False
    trading_days: list[int] = [0, 1, 2, 3, 4]  # Monday..Friday
    trading_hours: tuple[int, int] = (0, 24)  # UTC [start, end)


class CacheConfig(BaseModel):
    """Result cache."""

    enabled: bool = True
    ttl: float = Field(30.0, gt=0)
    # Oldest entries are evicted beyond this many
    max_entries: int = Field(1024, gt=0)
    # Number of trailing prices hashed into the fingerprint (None = whole window)
    fingerprint_points: int | None = Field(None, gt=0)


class SignalLevelsConfig(BaseModel):
    """Entry, exit and expiration suggestions attached to signals."""

    entry_delay: float = Field(30.0, ge=0)
    stop_atr_mult: float = Field(2.0, gt=0)
    target_atr_mult: float = Field(3.0, gt=0)
    volatility_mult: float = Field(2.0, ge=0)
    # (confidence above, expiration seconds), checked in order
    expirations: list[tuple[float, int]] = [(0.95, 60), (0.90, 120), (0.85, 180)]
    default_expiration: int = Field(300, gt=0)


class EngineConfig(BaseModel):
    """Top-level engine configuration."""

    buffer: BufferConfig = BufferConfig()
    indicators: IndicatorConfig = IndicatorConfig()
    trend: TrendConfig = TrendConfig()
    patterns: PatternConfig = PatternConfig()
    momentum: MomentumConfig = MomentumConfig()
    scoring: ScoringConfig = ScoringConfig()
    gate: GateConfig = GateConfig()
    cache: CacheConfig = CacheConfig()
    levels: SignalLevelsConfig = SignalLevelsConfig()

    @model_validator(mode="after")
    def _validate(self):
        if self.buffer.max_size < self.indicators.min_length:
            raise ValueError(
                f"buffer.max_size ({self.buffer.max_size}) is below the indicator "
                f"minimum length ({self.indicators.min_length})"
            )
        return self
