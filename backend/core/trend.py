"""Multi-timeframe trend aggregation.

Each configured timeframe is a trailing slice of the price window. Per
timeframe we fit a regression line, compare EMA(fast) with SMA(slow) and
measure the relative move; timeframes are then combined into a weighted
alignment vote where longer timeframes carry more weight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from core.indicators import ema, linear_regression, sma
from core.models.config import TimeframeConfig, TrendConfig
from core.models.signal import Direction

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TrendState:
    """Trend of one timeframe for one cycle."""

    timeframe: str
    direction: Direction
    strength: float
    slope: float
    r_squared: float
    change: float  # relative price change over the window
    volatility: float  # std of per-tick returns
    crossover: Direction  # SMA(slow) vs SMA(crossover), NEUTRAL if window too short


@dataclass(slots=True, frozen=True)
class AlignmentResult:
    direction: Direction
    strength: float  # agreeing weight / total weight
    is_aligned: bool


@dataclass(slots=True, frozen=True)
class TrendAnalysis:
    states: tuple[TrendState, ...]
    alignment: AlignmentResult
    strength: float
    prevailing: Direction  # dominant direction if agreement is high enough

    def state(self, label: str) -> TrendState | None:
        for s in self.states:
            if s.timeframe == label:
                return s
        return None


def weighted_vote(
    votes: Sequence[tuple[Direction, float]],
) -> tuple[Direction, float, float]:
    """Weighted majority over (direction, weight) votes.

    Returns:
        Tuple of (winner, winner weight, total weight). Ties for the top
        weight resolve to NEUTRAL.
    """
    totals = {Direction.UP: 0.0, Direction.DOWN: 0.0, Direction.NEUTRAL: 0.0}
    for direction, weight in votes:
        totals[direction] += weight
    total = sum(totals.values())
    best = max(totals.values())
    leaders = [d for d, w in totals.items() if w == best]
    if len(leaders) != 1:
        return Direction.NEUTRAL, totals[Direction.NEUTRAL], total
    return leaders[0], best, total


class TrendAggregator:
    """Per-timeframe trend states and their cross-timeframe alignment."""

    def __init__(self, config: TrendConfig | None = None):
        self.config = config or TrendConfig()

    def _window(self, prices: np.ndarray, timeframe: TimeframeConfig) -> np.ndarray:
        if timeframe.window and timeframe.window < len(prices):
            return prices[-timeframe.window:]
        return prices

    def analyze_timeframe(self, label: str, window: np.ndarray) -> TrendState:
        """Trend state of a single price window."""
        cfg = self.config
        n = len(window)
        if n < max(cfg.slow_period, cfg.fast_period) + 1:
            return TrendState(label, Direction.NEUTRAL, 0.0, 0.0, 0.0, 0.0, 0.0, Direction.NEUTRAL)

        fast = ema(window, cfg.fast_period)[-1]
        slow = sma(window, cfg.slow_period)[-1]
        slope, r_squared = linear_regression(window)
        first = window[0]
        change = (window[-1] - first) / first

        if fast > slow and change > cfg.min_move and slope > 0:
            direction = Direction.UP
        elif fast < slow and change < -cfg.min_move and slope < 0:
            direction = Direction.DOWN
        else:
            direction = Direction.NEUTRAL

        returns = np.diff(window) / window[:-1]
        volatility = float(np.std(returns))
        range_rel = float((window.max() - window.min()) / first)

        strength = (
            0.4 * r_squared
            + 0.3 * (1.0 - min(volatility / cfg.volatility_ceiling, 1.0))
            + 0.3 * min(range_rel / cfg.range_reference, 1.0)
        )
        strength = min(max(strength, 0.0), 1.0)

        crossover = Direction.NEUTRAL
        if n >= cfg.crossover_period:
            short_ma = sma(window, cfg.slow_period)[-1]
            long_ma = sma(window, cfg.crossover_period)[-1]
            if short_ma > long_ma:
                crossover = Direction.UP
            elif short_ma < long_ma:
                crossover = Direction.DOWN

        return TrendState(
            timeframe=label,
            direction=direction,
            strength=strength,
            slope=float(slope),
            r_squared=float(r_squared),
            change=float(change),
            volatility=volatility,
            crossover=crossover,
        )

    def align(self, states: Sequence[TrendState]) -> AlignmentResult:
        """Combine timeframe directions into a weighted alignment."""
        weights = {tf.label: tf.weight for tf in self.config.timeframes}
        votes = [(s.direction, weights.get(s.timeframe, 1.0)) for s in states]
        direction, weight, total = weighted_vote(votes)
        directions = {s.direction for s in states}
        is_aligned = len(directions) == 1 and Direction.NEUTRAL not in directions
        strength = weight / total if total > 0 else 0.0
        return AlignmentResult(direction=direction, strength=strength, is_aligned=is_aligned)

    def analyze(self, prices: Sequence[float]) -> TrendAnalysis:
        """
        Analyze every configured timeframe over the price window.

        Args:
            prices: Price window, oldest first

        Returns:
            TrendAnalysis with per-timeframe states and their alignment
        """
        arr = np.asarray(prices, dtype=np.float64)
        states = tuple(
            self.analyze_timeframe(tf.label, self._window(arr, tf))
            for tf in self.config.timeframes
        )
        alignment = self.align(states)

        if alignment.direction is Direction.NEUTRAL:
            strength = 0.0
        else:
            agreeing = [s.strength for s in states if s.direction is alignment.direction]
            strength = alignment.strength * (sum(agreeing) / len(agreeing))

        prevailing = (
            alignment.direction
            if alignment.strength >= self.config.dominance_threshold
            else Direction.NEUTRAL
        )
        return TrendAnalysis(
            states=states,
            alignment=alignment,
            strength=strength,
            prevailing=prevailing,
        )
