"""Momentum, synthetic volume and volatility estimation.

The tick feed carries no traded volume. ``synthetic_volume`` is an
approximation: each tick's absolute price change divided by the rolling
average absolute change. A value of 1 means "as active as usual". It is only
meant to flag unusually calm or unusually choppy periods and says nothing
about real market participation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from core.indicators import linear_regression, sma
from core.models.config import MomentumConfig
from core.models.indicators import IndicatorSet
from core.models.signal import Direction
from core.trend import weighted_vote

logger = logging.getLogger(__name__)

# Component weights for the combined momentum vote
MOMENTUM_WEIGHTS = {
    "roc": 0.30,
    "rsi": 0.25,
    "macd": 0.25,
    "acceleration": 0.20,
}

# Histogram smaller than this fraction of ATR counts as flat
MACD_FLAT_RATIO = 1e-3


class VolumeTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


_VOLUME_TREND_SCORE = {
    VolumeTrend.INCREASING: 1.0,
    VolumeTrend.STABLE: 0.5,
    VolumeTrend.DECREASING: 0.0,
}


@dataclass(slots=True, frozen=True)
class Vote:
    direction: Direction
    strength: float


@dataclass(slots=True, frozen=True)
class SyntheticVolume:
    current: float
    average: float
    ratio: float
    trend: VolumeTrend
    history: tuple[float, ...]

    @property
    def is_strong(self) -> bool:
        return self.current > self.average * 1.2

    @property
    def trend_score(self) -> float:
        return _VOLUME_TREND_SCORE[self.trend]


@dataclass(slots=True, frozen=True)
class MarketConditions:
    volume: SyntheticVolume
    volatility: float  # mean absolute relative tick change
    volume_quality: float
    volatility_quality: float

    @property
    def quality(self) -> float:
        return (self.volume_quality + self.volatility_quality) / 2

    @property
    def is_favorable(self) -> bool:
        return self.volume_quality > 0.7 and self.volatility_quality > 0.7


@dataclass(slots=True, frozen=True)
class MomentumAnalysis:
    direction: Direction
    strength: float
    roc: float  # percent change over the lookback
    acceleration: float  # normalised second difference
    votes: dict[str, Vote]
    market: MarketConditions


def macd_vote(indicators: IndicatorSet) -> Vote:
    """MACD direction scaled by ATR.

    Uses the histogram when it is meaningfully non-zero, otherwise the side
    of the MACD line at half strength (a steady trend flattens the histogram).
    """
    atr = indicators.atr.current if indicators.atr is not None else 0.0
    if atr <= 0:
        return Vote(Direction.NEUTRAL, 0.0)

    m = indicators.macd
    if abs(m.histogram) > atr * MACD_FLAT_RATIO:
        direction = Direction.UP if m.histogram > 0 else Direction.DOWN
        return Vote(direction, min(abs(m.histogram) / atr, 1.0))
    if abs(m.value) > atr * MACD_FLAT_RATIO:
        direction = Direction.UP if m.value > 0 else Direction.DOWN
        return Vote(direction, 0.5 * min(abs(m.value) / atr, 1.0))
    return Vote(Direction.NEUTRAL, 0.0)


def synthetic_volume(
    prices: Sequence[float],
    window: int = 20,
    trend_points: int = 5,
    trend_threshold: float = 0.1,
) -> SyntheticVolume:
    """Volume proxy from tick-to-tick move size (see module docstring)."""
    arr = np.asarray(prices, dtype=np.float64)
    moves = np.abs(np.diff(arr))
    if len(moves) < window:
        return SyntheticVolume(1.0, 1.0, 1.0, VolumeTrend.STABLE, (1.0,))

    rolling = sma(moves, window)
    with np.errstate(divide="ignore", invalid="ignore"):
        volume = np.where(rolling > 0, moves / rolling, 1.0)
    volume = volume[np.isfinite(rolling)]

    recent = volume[-window:]
    current = float(recent[-1])
    average = float(np.mean(recent))
    ratio = current / average if average > 0 else 1.0

    tail = volume[-trend_points:]
    trend = VolumeTrend.STABLE
    if len(tail) >= 2 and average > 0:
        slope, _ = linear_regression(tail)
        relative = slope * (len(tail) - 1) / average
        if relative > trend_threshold:
            trend = VolumeTrend.INCREASING
        elif relative < -trend_threshold:
            trend = VolumeTrend.DECREASING

    return SyntheticVolume(
        current=current,
        average=average,
        ratio=ratio,
        trend=trend,
        history=tuple(float(v) for v in tail),
    )


class MomentumVolumeEstimator:
    """Rate of change, acceleration and market-condition estimates."""

    def __init__(self, config: MomentumConfig | None = None):
        self.config = config or MomentumConfig()

    def _roc(self, prices: np.ndarray) -> tuple[float, Vote]:
        n = self.config.roc_period
        if len(prices) < n + 1:
            return 0.0, Vote(Direction.NEUTRAL, 0.0)

        window = prices[-(n + 1):]
        change = window[-1] - window[0]
        relative = change / window[0]
        roc = relative * 100

        # Kaufman efficiency ratio: net move over total path length
        path = float(np.sum(np.abs(np.diff(window))))
        efficiency = abs(change) / path if path > 0 else 0.0

        if relative > self.config.min_move:
            return roc, Vote(Direction.UP, efficiency)
        if relative < -self.config.min_move:
            return roc, Vote(Direction.DOWN, efficiency)
        return roc, Vote(Direction.NEUTRAL, 0.0)

    def _acceleration(self, prices: np.ndarray) -> tuple[float, Vote]:
        w = self.config.acceleration_window
        if len(prices) < w + 2:
            return 0.0, Vote(Direction.NEUTRAL, 0.0)

        first = np.diff(prices[-(w + 2):])
        second = np.diff(first)
        scale = float(np.mean(np.abs(first)))
        if scale == 0:
            return 0.0, Vote(Direction.NEUTRAL, 0.0)

        acceleration = float(np.mean(second)) / scale
        if abs(acceleration) <= self.config.acceleration_floor:
            return acceleration, Vote(Direction.NEUTRAL, 0.0)
        direction = Direction.UP if acceleration > 0 else Direction.DOWN
        return acceleration, Vote(direction, min(abs(acceleration), 1.0))

    @staticmethod
    def _rsi_vote(indicators: IndicatorSet) -> Vote:
        value = indicators.rsi.current
        if value > 55:
            return Vote(Direction.UP, min((value - 50) / 50, 1.0))
        if value < 45:
            return Vote(Direction.DOWN, min((50 - value) / 50, 1.0))
        return Vote(Direction.NEUTRAL, 0.0)

    def volatility_quality(self, volatility: float) -> float:
        """1 inside the acceptable band, decaying linearly outside it."""
        low, high = self.config.volatility_min, self.config.volatility_max
        if volatility < low:
            return volatility / low if low > 0 else 1.0
        if volatility > high:
            return max(0.0, 1.0 - (volatility - high) / high)
        return 1.0

    def market_conditions(self, prices: np.ndarray, indicators: IndicatorSet) -> MarketConditions:
        cfg = self.config
        volume = synthetic_volume(
            prices, cfg.volume_window, cfg.volume_trend_points, cfg.volume_trend_threshold
        )
        if indicators.atr is not None and indicators.price > 0:
            volatility = indicators.atr.current / indicators.price
        else:
            volatility = float(np.mean(np.abs(np.diff(prices)) / prices[:-1]))

        volume_quality = min(volume.ratio * 0.7 + volume.trend_score * 0.3, 1.0)
        return MarketConditions(
            volume=volume,
            volatility=float(volatility),
            volume_quality=float(volume_quality),
            volatility_quality=self.volatility_quality(volatility),
        )

    def estimate(self, prices: Sequence[float], indicators: IndicatorSet) -> MomentumAnalysis:
        """
        Estimate momentum and market conditions for the window.

        Args:
            prices: Price window, oldest first
            indicators: IndicatorSet computed over the same window

        Returns:
            MomentumAnalysis with combined direction and strength
        """
        arr = np.asarray(prices, dtype=np.float64)
        roc, roc_vote = self._roc(arr)
        acceleration, acceleration_vote = self._acceleration(arr)

        votes = {
            "roc": roc_vote,
            "rsi": self._rsi_vote(indicators),
            "macd": macd_vote(indicators),
            "acceleration": acceleration_vote,
        }
        direction, _, _ = weighted_vote(
            [(v.direction, MOMENTUM_WEIGHTS[name]) for name, v in votes.items()]
        )
        if direction is Direction.NEUTRAL:
            strength = 0.0
        else:
            strength = sum(
                MOMENTUM_WEIGHTS[name] * v.strength
                for name, v in votes.items()
                if v.direction is direction
            )

        return MomentumAnalysis(
            direction=direction,
            strength=min(max(strength, 0.0), 1.0),
            roc=float(roc),
            acceleration=acceleration,
            votes=votes,
            market=self.market_conditions(arr, indicators),
        )
