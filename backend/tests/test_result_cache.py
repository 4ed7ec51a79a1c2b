"""Tests for the analysis result cache."""

import numpy as np
import pytest

from core.result_cache import ResultCache, fingerprint


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestFingerprint:
    def test_same_prices_same_fingerprint(self):
        a = np.array([1.1, 1.2, 1.3])
        assert fingerprint(a) == fingerprint(a.copy())
        assert len(fingerprint(a)) == 32

    def test_any_change_differs(self):
        assert fingerprint(np.array([1.1, 1.2])) != fingerprint(np.array([1.1, 1.2000001]))

    def test_trailing_points(self):
        a = np.array([1.0, 1.2, 1.3])
        b = np.array([9.0, 1.2, 1.3])
        assert fingerprint(a, points=2) == fingerprint(b, points=2)
        assert fingerprint(a) != fingerprint(b)


class TestResultCache:
    def test_hit_and_miss(self):
        cache = ResultCache(ttl=30, clock=FakeClock())
        assert cache.get(("EUR", "a")) is None
        cache.put(("EUR", "a"), "analysis")

        assert cache.get(("EUR", "a")) == "analysis"
        assert cache.hits == 1
        assert cache.misses == 1

    def test_expired_entry_evicted_on_read(self):
        clock = FakeClock()
        cache = ResultCache(ttl=30, clock=clock)
        cache.put(("EUR", "a"), "analysis")

        clock.now = 30
        assert cache.get(("EUR", "a")) is None
        assert len(cache) == 0

    def test_custom_ttl(self):
        clock = FakeClock()
        cache = ResultCache(ttl=30, clock=clock)
        cache.put(("EUR", "a"), "short", ttl=5)
        clock.now = 10
        assert cache.get(("EUR", "a")) is None

    def test_invalidate_instrument(self):
        cache = ResultCache(clock=FakeClock())
        cache.put(("EUR", "a"), 1)
        cache.put(("EUR", "b"), 2)
        cache.put(("GBP", "a"), 3)

        assert cache.invalidate("EUR") == 2
        assert cache.count() == 1
        assert cache.get(("GBP", "a")) == 3

    def test_count_ignores_expired(self):
        clock = FakeClock()
        cache = ResultCache(ttl=30, clock=clock)
        cache.put(("EUR", "a"), 1)
        cache.put(("EUR", "b"), 2, ttl=60)

        clock.now = 45
        assert cache.count("EUR") == 1
        assert len(cache) == 2
        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_clear(self):
        cache = ResultCache()
        cache.put(("EUR", "a"), 1)
        cache.clear()
        assert len(cache) == 0


class TestBound:
    def test_oldest_evicted_beyond_max_entries(self):
        cache = ResultCache(ttl=30, max_entries=3, clock=FakeClock())
        for i in range(5):
            cache.put(("EUR", str(i)), i)

        assert len(cache) == 3
        assert cache.get(("EUR", "0")) is None
        assert cache.get(("EUR", "1")) is None
        assert cache.get(("EUR", "4")) == 4
        assert cache.evictions == 2

    def test_expired_swept_before_live_entries(self):
        clock = FakeClock()
        cache = ResultCache(ttl=30, max_entries=2, clock=clock)
        cache.put(("EUR", "live"), 1, ttl=100)
        cache.put(("EUR", "stale"), 2, ttl=5)

        clock.now = 10
        cache.put(("EUR", "new"), 3)

        assert len(cache) == 2
        assert cache.get(("EUR", "live")) == 1
        assert cache.get(("EUR", "stale")) is None

    def test_reput_refreshes_position(self):
        cache = ResultCache(ttl=30, max_entries=2, clock=FakeClock())
        cache.put(("EUR", "a"), 1)
        cache.put(("EUR", "b"), 2)
        cache.put(("EUR", "a"), 3)
        cache.put(("EUR", "c"), 4)

        assert cache.get(("EUR", "a")) == 3
        assert cache.get(("EUR", "b")) is None

    def test_max_entries_must_be_positive(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)
