"""Chart pattern detection on tick windows.

Swing highs/lows are strict local extrema (greater/less than both
neighbours). Patterns are classified from the most recent swings:

- Double top / bottom: two consecutive swing highs (lows) within a relative
  tolerance, at least ``min_distance`` ticks apart, with an opposing swing
  between them that is lower (higher) than both anchors.
- Head-and-shoulders (inverse): three consecutive swing highs (lows) where
  the middle one is the extreme and the shoulders are within tolerance.
- Triangles: regression lines through the recent swing highs (resistance)
  and swing lows (support).

Each match has a geometric ``strength`` and a per-type ``reliability``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from core.indicators import linear_regression
from core.models.config import PatternConfig
from core.models.signal import Direction

logger = logging.getLogger(__name__)


class PatternType(str, Enum):
    DOUBLE_TOP = "doubleTop"
    DOUBLE_BOTTOM = "doubleBottom"
    HEAD_AND_SHOULDERS = "headAndShoulders"
    INVERSE_HEAD_AND_SHOULDERS = "inverseHeadAndShoulders"
    TRIANGLE_ASCENDING = "triangleAscending"
    TRIANGLE_DESCENDING = "triangleDescending"
    TRIANGLE_SYMMETRIC = "triangleSymmetric"


RELIABILITY = {
    PatternType.HEAD_AND_SHOULDERS: 0.9,
    PatternType.INVERSE_HEAD_AND_SHOULDERS: 0.9,
    PatternType.DOUBLE_TOP: 0.85,
    PatternType.DOUBLE_BOTTOM: 0.85,
    PatternType.TRIANGLE_ASCENDING: 0.8,
    PatternType.TRIANGLE_DESCENDING: 0.8,
    PatternType.TRIANGLE_SYMMETRIC: 0.8,
}

REVERSAL_PATTERNS = frozenset({
    PatternType.DOUBLE_TOP,
    PatternType.DOUBLE_BOTTOM,
    PatternType.HEAD_AND_SHOULDERS,
    PatternType.INVERSE_HEAD_AND_SHOULDERS,
})


@dataclass(slots=True, frozen=True)
class PatternMatch:
    type: PatternType
    found: bool
    anchors: tuple[tuple[int, float], ...]  # (index, price), oldest first
    strength: float
    reliability: float
    implied_direction: Direction  # NEUTRAL for symmetric triangles

    @property
    def is_reversal(self) -> bool:
        return self.type in REVERSAL_PATTERNS

    @property
    def score(self) -> float:
        return self.strength * self.reliability

    def is_usable(self, trend: Direction) -> bool:
        """Whether the pattern is consistent with the prevailing trend.

        Reversal patterns need the opposite prevailing trend. Ascending and
        descending triangles need the trend they break out towards; a
        symmetric triangle continues whichever trend prevails.
        """
        if not self.found or trend is Direction.NEUTRAL:
            return False
        if self.is_reversal:
            return self.implied_direction is trend.opposite
        if self.type is PatternType.TRIANGLE_SYMMETRIC:
            return True
        return self.implied_direction is trend

    def direction_for(self, trend: Direction) -> Direction:
        """Direction this pattern votes for under the given trend."""
        if self.type is PatternType.TRIANGLE_SYMMETRIC:
            return trend
        return self.implied_direction


@dataclass(slots=True, frozen=True)
class PatternReport:
    matches: tuple[PatternMatch, ...]
    swing_highs: tuple[int, ...]
    swing_lows: tuple[int, ...]

    def usable(self, trend: Direction) -> tuple[PatternMatch, ...]:
        return tuple(m for m in self.matches if m.is_usable(trend))

    def get(self, pattern_type: PatternType) -> PatternMatch | None:
        for m in self.matches:
            if m.type is pattern_type:
                return m
        return None


def find_swings(prices: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
    """Indices of swing highs and swing lows (strict local extrema)."""
    arr = np.asarray(prices, dtype=np.float64)
    if len(arr) < 3:
        empty = np.array([], dtype=np.int64)
        return empty, empty
    mid = arr[1:-1]
    highs = np.nonzero((mid > arr[:-2]) & (mid > arr[2:]))[0] + 1
    lows = np.nonzero((mid < arr[:-2]) & (mid < arr[2:]))[0] + 1
    return highs, lows


def _clip(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _symmetry(a: float, b: float) -> float:
    """1 when a == b, falling towards 0 as they diverge."""
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 1.0
    return _clip(1.0 - abs(a - b) / largest)


class PatternDetector:
    """Detect double tops/bottoms, head-and-shoulders and triangles."""

    def __init__(self, config: PatternConfig | None = None):
        self.config = config or PatternConfig()

    def detect(self, prices: Sequence[float]) -> PatternReport:
        """
        Scan the window and return every pattern found.

        Args:
            prices: Price window, oldest first

        Returns:
            PatternReport listing found matches (most recent instance per type)
        """
        arr = np.asarray(prices, dtype=np.float64)
        highs, lows = find_swings(arr)

        candidates = [
            self._double(arr, highs, lows, top=True),
            self._double(arr, lows, highs, top=False),
            self._head_and_shoulders(arr, highs, inverse=False),
            self._head_and_shoulders(arr, lows, inverse=True),
            self._triangle(arr, highs, lows),
        ]
        matches = tuple(m for m in candidates if m is not None)
        for m in matches:
            logger.debug("Pattern %s strength=%.3f anchors=%s", m.type.value, m.strength, m.anchors)

        return PatternReport(
            matches=matches,
            swing_highs=tuple(int(i) for i in highs),
            swing_lows=tuple(int(i) for i in lows),
        )

    def _double(
        self,
        prices: np.ndarray,
        swings: np.ndarray,
        opposing: np.ndarray,
        top: bool,
    ) -> PatternMatch | None:
        cfg = self.config
        for k in range(len(swings) - 1, 0, -1):
            i, j = int(swings[k - 1]), int(swings[k])
            distance = j - i
            if distance < cfg.min_distance:
                continue

            a, b = float(prices[i]), float(prices[j])
            diff = abs(a - b) / min(a, b)
            if diff > cfg.tolerance:
                continue

            between = opposing[(opposing > i) & (opposing < j)]
            if len(between) == 0:
                continue
            if top:
                pivot = int(between[np.argmin(prices[between])])
                if prices[pivot] >= min(a, b):
                    continue
            else:
                pivot = int(between[np.argmax(prices[between])])
                if prices[pivot] <= max(a, b):
                    continue

            spacing = min(distance / cfg.ideal_distance, 1.0)
            closeness = 1.0 - diff / (5 * cfg.tolerance)
            pattern_type = PatternType.DOUBLE_TOP if top else PatternType.DOUBLE_BOTTOM
            return PatternMatch(
                type=pattern_type,
                found=True,
                anchors=((i, a), (pivot, float(prices[pivot])), (j, b)),
                strength=_clip(spacing * closeness),
                reliability=RELIABILITY[pattern_type],
                implied_direction=Direction.DOWN if top else Direction.UP,
            )
        return None

    def _head_and_shoulders(
        self,
        prices: np.ndarray,
        swings: np.ndarray,
        inverse: bool,
    ) -> PatternMatch | None:
        cfg = self.config
        for k in range(len(swings) - 1, 1, -1):
            left, head, right = int(swings[k - 2]), int(swings[k - 1]), int(swings[k])
            pl, ph, pr = float(prices[left]), float(prices[head]), float(prices[right])

            if inverse:
                if not (ph < pl and ph < pr):
                    continue
            elif not (ph > pl and ph > pr):
                continue

            if abs(pl - pr) / min(pl, pr) > cfg.tolerance:
                continue

            height_symmetry = _symmetry(abs(ph - pl), abs(ph - pr))
            span_symmetry = _symmetry(head - left, right - head)
            pattern_type = (
                PatternType.INVERSE_HEAD_AND_SHOULDERS if inverse
                else PatternType.HEAD_AND_SHOULDERS
            )
            return PatternMatch(
                type=pattern_type,
                found=True,
                anchors=((left, pl), (head, ph), (right, pr)),
                strength=_clip(height_symmetry * span_symmetry),
                reliability=RELIABILITY[pattern_type],
                implied_direction=Direction.UP if inverse else Direction.DOWN,
            )
        return None

    def _triangle(
        self,
        prices: np.ndarray,
        highs: np.ndarray,
        lows: np.ndarray,
    ) -> PatternMatch | None:
        cfg = self.config
        if len(highs) < 2 or len(lows) < 2:
            return None

        recent_highs = highs[-cfg.triangle_swings:]
        recent_lows = lows[-cfg.triangle_swings:]
        resistance, _ = linear_regression(prices[recent_highs], xs=recent_highs)
        support, _ = linear_regression(prices[recent_lows], xs=recent_lows)

        start = int(min(recent_highs[0], recent_lows[0]))
        scale = float(np.mean(prices[start:]))
        # Slopes relative to price, per tick
        r = resistance / scale
        s = support / scale
        flat = cfg.flat_slope

        if s > flat and abs(r) < flat:
            pattern_type = PatternType.TRIANGLE_ASCENDING
            strength = 0.5 * (1.0 - abs(r) / flat) + 0.5 * min(s / (10 * flat), 1.0)
            implied = Direction.UP
        elif r < -flat and abs(s) < flat:
            pattern_type = PatternType.TRIANGLE_DESCENDING
            strength = 0.5 * (1.0 - abs(s) / flat) + 0.5 * min(-r / (10 * flat), 1.0)
            implied = Direction.DOWN
        elif r < -flat and s > flat:
            symmetry = _symmetry(abs(r), abs(s))
            if 1.0 - symmetry > cfg.symmetry_tolerance:
                return None
            pattern_type = PatternType.TRIANGLE_SYMMETRIC
            strength = symmetry
            implied = Direction.NEUTRAL
        else:
            return None

        points = sorted(
            [(int(i), float(prices[i])) for i in recent_highs]
            + [(int(i), float(prices[i])) for i in recent_lows]
        )
        return PatternMatch(
            type=pattern_type,
            found=True,
            anchors=tuple(points),
            strength=_clip(strength),
            reliability=RELIABILITY[pattern_type],
            implied_direction=implied,
        )
