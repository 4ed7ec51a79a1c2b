"""Tick data and the per-instrument tick buffer.

Ticks are single-price observations, so they use the hot path style
(``@dataclass(slots=True)``, float prices, unix timestamps) rather than
pydantic models.
"""

from __future__ import annotations

import bisect
import math
from collections import Counter, deque
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from core.models.config import BufferConfig


@dataclass(slots=True, frozen=True)
class Tick:
    """A single timestamped price observation."""

    instrument: str
    price: float
    timestamp: float  # Unix timestamp in seconds
    bid: float | None = None
    ask: float | None = None

    @property
    def spread(self) -> float | None:
        """Relative bid/ask spread, or None when quotes are missing."""
        if self.bid is None or self.ask is None or self.bid <= 0:
            return None
        return (self.ask - self.bid) / self.bid


class TickBuffer:
    """Bounded, ordered tick history for one instrument.

    Entries are strictly ordered by timestamp. The buffer holds at most
    ``max_size`` ticks spanning at most ``max_age`` seconds; the oldest
    entries are evicted first.

    Rejected ticks are counted per reason in ``rejected``:

    - ``invalid_price``: non-positive or non-finite price
    - ``stale``: older than the newest tick by more than ``stale_skew``
    - ``lagging``: older than ``now - max_feed_lag`` (only when ``now`` is given)
    """

    def __init__(self, config: BufferConfig | None = None):
        self.config = config or BufferConfig()
        self._ticks: deque[Tick] = deque()
        self._timestamps: deque[float] = deque()
        self.rejected: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._ticks)

    @property
    def ticks(self) -> tuple[Tick, ...]:
        return tuple(self._ticks)

    @property
    def last(self) -> Tick | None:
        return self._ticks[-1] if self._ticks else None

    @property
    def last_price(self) -> float | None:
        return self._ticks[-1].price if self._ticks else None

    @staticmethod
    def _is_valid_price(price: float) -> bool:
        return isinstance(price, (int, float)) and math.isfinite(price) and price > 0

    def append(self, tick: Tick, now: float | None = None) -> bool:
        """Add a tick, returning False if it was rejected.

        A tick older than the newest entry but within ``stale_skew`` is
        inserted at its ordered position. A tick sharing a timestamp with a
        stored entry replaces that entry.
        """
        if not self._is_valid_price(tick.price) or not math.isfinite(tick.timestamp):
            self.rejected["invalid_price"] += 1
            return False

        max_lag = self.config.max_feed_lag
        if now is not None and max_lag is not None and now - tick.timestamp > max_lag:
            self.rejected["lagging"] += 1
            return False

        if not self._ticks or tick.timestamp > self._timestamps[-1]:
            self._ticks.append(tick)
            self._timestamps.append(tick.timestamp)
        elif self._timestamps[-1] - tick.timestamp > self.config.stale_skew:
            self.rejected["stale"] += 1
            return False
        else:
            pos = bisect.bisect_left(self._timestamps, tick.timestamp)
            if pos < len(self._timestamps) and self._timestamps[pos] == tick.timestamp:
                self._ticks[pos] = tick
            else:
                self._ticks.insert(pos, tick)
                self._timestamps.insert(pos, tick.timestamp)

        self._evict()
        return True

    def extend(self, ticks: Iterable[Tick]) -> int:
        """Bulk-load ticks (e.g. history warmup). Returns the number accepted."""
        accepted = 0
        for tick in ticks:
            if self.append(tick):
                accepted += 1
        return accepted

    def _evict(self) -> None:
        while len(self._ticks) > self.config.max_size:
            self._ticks.popleft()
            self._timestamps.popleft()
        newest = self._timestamps[-1]
        while newest - self._timestamps[0] > self.config.max_age:
            self._ticks.popleft()
            self._timestamps.popleft()

    def gaps(self) -> list[tuple[int, float]]:
        """Return (index, delta seconds) for every gap above ``gap_threshold``.

        ``index`` is the position of the tick that follows the gap.
        """
        threshold = self.config.gap_threshold
        result = []
        prev = None
        for i, ts in enumerate(self._timestamps):
            if prev is not None and ts - prev > threshold:
                result.append((i, ts - prev))
            prev = ts
        return result

    def has_large_gap(self) -> bool:
        """True if any gap in the window exceeds ``large_gap_threshold``."""
        limit = self.config.large_gap_threshold
        return any(delta > limit for _, delta in self.gaps())

    def snapshot(self) -> np.ndarray:
        """Read-only copy of the window's prices, oldest first."""
        prices = np.fromiter(
            (t.price for t in self._ticks), dtype=np.float64, count=len(self._ticks)
        )
        prices.flags.writeable = False
        return prices

    def clear(self) -> None:
        self._ticks.clear()
        self._timestamps.clear()
