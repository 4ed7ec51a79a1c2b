"""End-to-end tests for SignalEngine.process_tick."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest

from core.gate import BELOW_MIN_CONFIDENCE, COOLDOWN
from core.models.config import EngineConfig, GateConfig
from core.models.signal import Direction, Signal
from core.models.tick import Tick
from core.result_cache import ResultCache
from core.signal_generator import (
    INSUFFICIENT_DATA,
    LARGE_GAP,
    REJECTED_TICK,
    RISK_REJECTED,
    SignalEngine,
)

INSTRUMENT = "frxEURUSD"
T0 = 1704067200.0  # Monday 2024-01-01 00:00 UTC


def make_ticks(prices, start: float = T0, interval: float = 1.0) -> list[Tick]:
    return [Tick(INSTRUMENT, float(p), start + i * interval) for i, p in enumerate(prices)]


def linear(n: int = 300, start: float = 1.1, step: float = 0.0001) -> np.ndarray:
    return start + np.arange(n) * step


def run(engine: SignalEngine, ticks):
    registry = engine.create_registry([INSTRUMENT])
    state = registry[INSTRUMENT]
    results = [engine.process_tick(state, tick) for tick in ticks]
    return state, results


class TestWarmup:
    def test_flat_short_series_emits_nothing(self):
        engine = SignalEngine()
        state, results = run(engine, make_ticks([1.1] * 25))

        assert all(r.signal is None for r in results)
        assert all(r.skipped == INSUFFICIENT_DATA for r in results)
        assert state.skips[INSUFFICIENT_DATA] == 25
        assert state.cycles == 25

    def test_min_ticks(self):
        assert SignalEngine().min_ticks == 201

    def test_flat_full_window_never_emits(self):
        state, results = run(SignalEngine(), make_ticks([1.1] * 300))

        assert state.signals_emitted == 0
        assert results[-1].skipped == BELOW_MIN_CONFIDENCE
        assert results[-1].candidate.direction is Direction.NEUTRAL


class TestLinearTrend:
    """A steady uptrend produces an UP signal once warmed up."""

    def test_uptrend_emits_up_signal(self):
        state, results = run(SignalEngine(), make_ticks(linear()))
        signals = [r.signal for r in results if r.signal is not None]

        assert signals
        first = signals[0]
        assert all(s.direction is Direction.UP for s in signals)
        assert first.confidence >= 0.75
        assert first.stop_loss < first.entry_price < first.take_profit
        assert first.expiration_seconds == 60
        assert next(i for i, r in enumerate(results) if r.signal) == 200

    def test_downtrend_emits_down_signal(self):
        _, results = run(SignalEngine(), make_ticks(linear(start=1.13, step=-0.0001)))
        signals = [r.signal for r in results if r.signal is not None]

        assert signals
        assert all(s.direction is Direction.DOWN for s in signals)
        assert signals[0].take_profit < signals[0].entry_price < signals[0].stop_loss

    def test_cooldown_spacing(self):
        state, results = run(SignalEngine(), make_ticks(linear()))
        signals = [r.signal for r in results if r.signal is not None]

        assert len(signals) == 2
        assert signals[1].created_at - signals[0].created_at >= timedelta(seconds=60)
        assert state.skips[COOLDOWN] == 98
        assert state.signals_emitted == 2
        assert state.last_signal is signals[-1]

    def test_signal_fields(self):
        _, results = run(SignalEngine(), make_ticks(linear()))
        result = next(r for r in results if r.signal is not None)
        signal = result.signal

        tick_time = datetime.fromtimestamp(T0 + 200, tz=timezone.utc)
        assert signal.created_at == tick_time
        assert signal.entry_time == tick_time + timedelta(seconds=30)
        assert signal.entry_price == pytest.approx(1.1 + 200 * 0.0001)
        assert signal.indicators["rsi"] == 100.0
        assert "adx" in signal.indicators
        assert len(signal.id) == 32
        assert result.decision.accepted is True

    def test_strict_mode(self):
        config = EngineConfig(gate=GateConfig(min_confidence=0.95))
        state, _ = run(SignalEngine(config), make_ticks(linear()))
        assert state.signals_emitted == 2

    def test_deterministic_ids(self):
        _, first = run(SignalEngine(), make_ticks(linear()))
        _, second = run(SignalEngine(), make_ticks(linear()))
        ids_a = [r.signal.id for r in first if r.signal]
        ids_b = [r.signal.id for r in second if r.signal]
        assert ids_a == ids_b


class TestDataQuality:
    def test_large_gap_skips_cycle(self):
        ticks = make_ticks(linear(205))
        # Shift everything after tick 100 by two minutes
        ticks = ticks[:100] + [
            Tick(t.instrument, t.price, t.timestamp + 120) for t in ticks[100:]
        ]
        state, results = run(SignalEngine(), ticks)

        assert results[-1].skipped == LARGE_GAP
        assert state.skips[LARGE_GAP] == 5
        assert state.signals_emitted == 0

    def test_rejected_tick(self):
        engine = SignalEngine()
        state = engine.create_registry([INSTRUMENT])[INSTRUMENT]
        result = engine.process_tick(state, Tick(INSTRUMENT, -1.0, T0))

        assert result.accepted is False
        assert result.skipped == REJECTED_TICK
        assert state.buffer.rejected["invalid_price"] == 1
        assert state.cycles == 0

    def test_lagging_tick_with_wall_clock(self):
        config = EngineConfig(buffer={"max_feed_lag": 10})
        engine = SignalEngine(config)
        state = engine.create_registry([INSTRUMENT])[INSTRUMENT]

        result = engine.process_tick(state, Tick(INSTRUMENT, 1.1, T0), now=T0 + 60)
        assert result.accepted is False
        assert state.buffer.rejected["lagging"] == 1


class TestCache:
    def test_unchanged_window_hits_cache(self):
        engine = SignalEngine()
        state = engine.create_registry([INSTRUMENT])[INSTRUMENT]
        ticks = make_ticks(linear(250))
        for tick in ticks:
            engine.process_tick(state, tick)

        # Re-sending the latest tick replaces it in place: same window
        result = engine.process_tick(state, ticks[-1])
        assert result.cache_hit is True
        assert engine.cache.count(INSTRUMENT) >= 1
        assert state.cache_fingerprint is not None

    def test_hit_rescored_with_current_spread(self):
        engine = SignalEngine()
        state = engine.create_registry([INSTRUMENT])[INSTRUMENT]
        ticks = make_ticks(linear(250))
        for tick in ticks:
            engine.process_tick(state, tick)

        last = ticks[-1]
        quoted = Tick(INSTRUMENT, last.price, last.timestamp, bid=last.price - 0.001, ask=last.price + 0.001)
        result = engine.process_tick(state, quoted)

        assert result.cache_hit is True
        assert engine.cache.get((INSTRUMENT, state.cache_fingerprint)) is result.analysis
        assert "wide_spread" in result.candidate.adjustments
        assert "wide_spread" not in engine.score(result.analysis).adjustments

    def test_cache_disabled(self):
        engine = SignalEngine(EngineConfig(cache={"enabled": False}))
        assert engine.cache is None
        state, results = run(engine, make_ticks(linear()))
        assert state.signals_emitted == 2
        assert not any(r.cache_hit for r in results)

    def test_cache_stays_bounded_on_new_windows(self):
        rng = np.random.default_rng(7)
        prices = 1.1 + np.cumsum(rng.normal(0, 0.0001, 600))
        engine = SignalEngine(EngineConfig(cache={"max_entries": 50}))
        run(engine, make_ticks(prices))

        assert len(engine.cache) <= 50
        assert engine.cache.evictions > 0

    def test_shared_cache_instance(self):
        cache = ResultCache(ttl=5)
        assert SignalEngine(cache=cache).cache is cache


class TestRiskSizing:
    def test_amount_attached(self):
        sizer = MagicMock()
        sizer.size.return_value = 12.5
        _, results = run(SignalEngine(sizer=sizer), make_ticks(linear()))
        signal = next(r.signal for r in results if r.signal)

        assert signal.amount == 12.5
        sizer.size.assert_any_call(signal.confidence)

    def test_zero_amount_blocks_emission(self):
        sizer = MagicMock()
        sizer.size.return_value = 0.0
        state, _ = run(SignalEngine(sizer=sizer), make_ticks(linear()))

        assert state.signals_emitted == 0
        assert state.skips[RISK_REJECTED] > 0


class TestSignalHelpers:
    def test_expiration_buckets(self):
        engine = SignalEngine()
        assert engine.expiration_for(0.97) == 60
        assert engine.expiration_for(0.92) == 120
        assert engine.expiration_for(0.86) == 180
        assert engine.expiration_for(0.80) == 300

    def test_timeframe(self):
        assert SignalEngine.timeframe_for(0.9, 1.0) == 60
        assert SignalEngine.timeframe_for(0.7, 1.0) == 900
        assert SignalEngine.timeframe_for(0.9, 0.3) == 300

    def test_levels(self):
        engine = SignalEngine()
        stop, target = engine.suggest_levels(Direction.UP, 1.1, 0.001, 0.0)
        assert stop == pytest.approx(1.098)
        assert target == pytest.approx(1.103)
        assert engine.suggest_levels(Direction.UP, 1.1, 0.0, 0.0) == (None, None)

    def test_signal_rejects_neutral(self):
        with pytest.raises(ValueError):
            Signal(
                instrument=INSTRUMENT,
                direction=Direction.NEUTRAL,
                confidence=0.9,
                entry_price=1.1,
                entry_time=datetime.now(timezone.utc),
                expiration_seconds=60,
            )
