"""Tests for EngineService routing, emission and status."""

import asyncio

import numpy as np
import pytest

from app.config import Settings
from app.services.engine_service import EngineService
from core.models.config import BufferConfig, EngineConfig
from core.models.tick import Tick
from core.risk import RiskSizer

INSTRUMENT = "frxEURUSD"
OTHER = "frxGBPUSD"
T0 = 1704067200.0


def make_settings(**overrides) -> Settings:
    data = dict(instruments=[INSTRUMENT, OTHER], redis_enabled=False, max_feed_lag=None)
    data.update(overrides)
    return Settings(**data)


def worker_tick(price, i: int) -> Tick:
    return Tick(INSTRUMENT, float(price), T0 + i)


def feed(service: EngineService, instrument: str = INSTRUMENT, n: int = 300) -> None:
    prices = 1.1 + np.arange(n) * 0.0001
    for i, price in enumerate(prices):
        service.on_tick(instrument, float(price), T0 + i)


class TestConstruction:
    def test_registry_from_settings(self):
        service = EngineService(make_settings())
        assert service.instruments == [INSTRUMENT, OTHER]
        assert service.worker(INSTRUMENT).instrument == INSTRUMENT

    def test_feed_lag_from_settings(self):
        service = EngineService(make_settings(max_feed_lag=30))
        assert service.config.buffer.max_feed_lag == 30

    def test_explicit_feed_lag_wins(self):
        config = EngineConfig(buffer=BufferConfig(max_feed_lag=5))
        service = EngineService(make_settings(max_feed_lag=30), config=config)
        assert service.config.buffer.max_feed_lag == 5

    def test_risk_sizer_from_balance(self):
        assert EngineService(make_settings()).engine.sizer is None
        service = EngineService(make_settings(account_balance=1000))
        assert isinstance(service.engine.sizer, RiskSizer)


class TestOutcomes:
    def test_loss_streak_reaches_sizer(self):
        service = EngineService(make_settings(account_balance=1000))
        sizer = service.engine.sizer
        full = sizer.risk_fraction()

        for _ in range(3):
            assert service.record_outcome(-10.0) is True

        assert sizer.balance == 970.0
        assert sizer.consecutive_losses == 3
        assert sizer.risk_fraction() == pytest.approx(full / 2)

    def test_win_resets_streak(self):
        service = EngineService(make_settings(account_balance=1000))
        service.record_outcome(-10.0)
        service.record_outcome(5.0)
        assert service.engine.sizer.consecutive_losses == 0

    def test_without_sizer(self):
        assert EngineService(make_settings()).record_outcome(-10.0) is False

    def test_sizer_without_bookkeeping(self):
        class FlatSizer:
            def size(self, confidence: float) -> float:
                return 10.0

        service = EngineService(make_settings(), sizer=FlatSizer())
        assert service.record_outcome(-10.0) is False


class TestRouting:
    @pytest.mark.asyncio
    async def test_unknown_instrument_ignored(self):
        service = EngineService(make_settings())
        assert service.on_tick("frxXAUUSD", 2000.0, T0) is False
        assert service.unknown_ticks == 1

    @pytest.mark.asyncio
    async def test_ticks_queued_per_instrument(self):
        service = EngineService(make_settings())
        service.on_tick(INSTRUMENT, 1.1, T0)
        service.on_tick(INSTRUMENT, 1.1001, T0 + 1)
        service.on_tick(OTHER, 1.27, T0)

        assert service.worker(INSTRUMENT).queue_depth == 2
        assert service.worker(OTHER).queue_depth == 1


class TestEmission:
    @pytest.mark.asyncio
    async def test_signals_reach_ring_and_sinks(self):
        service = EngineService(make_settings())
        received = []
        done = asyncio.Event()

        async def sink(signal):
            received.append(signal)
            if len(received) == 2:
                done.set()

        service.dispatcher.on_signal(sink)
        await service.start()
        try:
            feed(service)
            await service.worker(INSTRUMENT).join()
            await asyncio.wait_for(done.wait(), timeout=2)
        finally:
            await service.stop()

        recent = service.recent_signals()
        assert len(recent) == 2
        assert recent[0].created_at > recent[1].created_at
        assert {s.id for s in received} == {s.id for s in recent}

    def test_recent_signals_filter_and_limit(self):
        service = EngineService(make_settings())
        worker = service.worker(INSTRUMENT)
        prices = 1.1 + np.arange(300) * 0.0001
        for i, price in enumerate(prices):
            worker.process(worker_tick(price, i))

        assert len(service.recent_signals(instrument=INSTRUMENT)) == 2
        assert service.recent_signals(instrument=OTHER) == []
        assert len(service.recent_signals(limit=1)) == 1


class TestStatus:
    def test_instrument_status(self):
        service = EngineService(make_settings())
        worker = service.worker(INSTRUMENT)
        prices = 1.1 + np.arange(250) * 0.0001
        for i, price in enumerate(prices):
            worker.process(worker_tick(price, i))

        status = service.instrument_status(INSTRUMENT)
        assert status.tick_count == 250
        assert status.cycles == 250
        assert status.signals_emitted == 1
        assert status.last_price == pytest.approx(prices[-1])
        assert status.last_tick_at == T0 + 249
        assert status.running is False
        assert status.cache_entries >= 1

    def test_unknown_instrument_status(self):
        with pytest.raises(KeyError):
            EngineService(make_settings()).instrument_status("frxXAUUSD")

    def test_status_lists_every_instrument(self):
        statuses = EngineService(make_settings()).status()
        assert [s.instrument for s in statuses] == [INSTRUMENT, OTHER]
        assert all(s.tick_count == 0 for s in statuses)
