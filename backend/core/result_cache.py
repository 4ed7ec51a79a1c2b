"""TTL cache for analysis results shared by all instrument workers.

Entries are keyed by ``(instrument, fingerprint)`` where the fingerprint is
a hash of the price window. Expired entries are evicted lazily on read;
``purge_expired`` sweeps the whole cache. Once more than ``max_entries`` are
stored, ``put`` drops expired entries and then the oldest ones.

All access is serialised with a ``threading.Lock`` so the cache stays safe
when analysis runs in executor threads as well as on the event loop.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

import numpy as np

V = TypeVar("V")

CacheKey = tuple[str, str]


def fingerprint(prices: np.ndarray, points: int | None = None) -> str:
    """Hash of the trailing ``points`` prices (whole window when None)."""
    window = prices if points is None else prices[-points:]
    data = np.ascontiguousarray(window, dtype=np.float64).tobytes()
    return hashlib.sha256(data).hexdigest()[:32]


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: float


class ResultCache(Generic[V]):
    """Thread-safe TTL cache with lazy eviction.

    Parameters
    ----------
    ttl : float
        Default time-to-live in seconds for ``put`` without an explicit ttl.
    max_entries : int
        Upper bound on stored entries (expired or not).
    clock : callable
        Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl: float = 30.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[CacheKey, _Entry[V]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: CacheKey) -> V | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def put(self, key: CacheKey, value: V, ttl: float | None = None) -> None:
        now = self._clock()
        expires_at = now + (self.ttl if ttl is None else ttl)
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            self._entries[key] = _Entry(value, expires_at)
            if len(self._entries) > self.max_entries:
                self._shrink(now)

    def _shrink(self, now: float) -> None:
        """Drop expired entries, then the oldest until within ``max_entries``. Lock held."""
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            for k in list(self._entries)[:overflow]:
                del self._entries[k]
        self.evictions += len(expired) + max(overflow, 0)

    def invalidate(self, instrument: str) -> int:
        """Drop every entry of an instrument. Returns the number removed."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == instrument]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def count(self, instrument: str | None = None) -> int:
        """Number of live (unexpired) entries, optionally for one instrument."""
        now = self._clock()
        with self._lock:
            return sum(
                1
                for k, e in self._entries.items()
                if e.expires_at > now and (instrument is None or k[0] == instrument)
            )

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
