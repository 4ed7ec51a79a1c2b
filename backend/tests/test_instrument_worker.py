"""Tests for InstrumentWorker queueing and fault isolation."""

from unittest.mock import MagicMock

import numpy as np
import pytest

from app.services.instrument_worker import InstrumentWorker
from core.models.tick import Tick
from core.signal_generator import SignalEngine

INSTRUMENT = "frxEURUSD"
T0 = 1704067200.0


def make_ticks(n: int = 300, step: float = 0.0001) -> list[Tick]:
    prices = 1.1 + np.arange(n) * step
    return [Tick(INSTRUMENT, float(p), T0 + i) for i, p in enumerate(prices)]


def make_worker(queue_size: int = 1000, on_signal=None) -> InstrumentWorker:
    engine = SignalEngine()
    state = engine.create_registry([INSTRUMENT])[INSTRUMENT]
    return InstrumentWorker(engine, state, on_signal=on_signal, queue_size=queue_size)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_drop_oldest_when_full(self):
        worker = make_worker(queue_size=2)
        ticks = make_ticks(3)

        assert worker.submit(ticks[0]) is True
        assert worker.submit(ticks[1]) is True
        assert worker.submit(ticks[2]) is False

        assert worker.dropped == 1
        assert worker.queue_depth == 2

    @pytest.mark.asyncio
    async def test_newest_ticks_survive(self):
        worker = make_worker(queue_size=2)
        for tick in make_ticks(5):
            worker.submit(tick)

        await worker.start()
        try:
            await worker.join()
        finally:
            await worker.stop()

        assert worker.state.tick_count == 2
        assert worker.state.last_tick_at == T0 + 4


class TestProcess:
    def test_fault_is_counted_not_raised(self):
        engine = MagicMock()
        engine.process_tick.side_effect = RuntimeError("boom")
        state = SignalEngine().create_registry([INSTRUMENT])[INSTRUMENT]
        worker = InstrumentWorker(engine, state)

        assert worker.process(make_ticks(1)[0]) is None
        assert state.faults == 1

    def test_signal_forwarded(self):
        emitted = []
        worker = make_worker(on_signal=emitted.append)
        for tick in make_ticks():
            worker.process(tick)

        assert len(emitted) == 2
        assert worker.state.signals_emitted == 2

    def test_clock_passed_to_engine(self):
        engine = MagicMock()
        engine.process_tick.return_value.signal = None
        state = SignalEngine().create_registry([INSTRUMENT])[INSTRUMENT]
        worker = InstrumentWorker(engine, state, clock=lambda: 42.0)

        tick = make_ticks(1)[0]
        worker.process(tick)
        engine.process_tick.assert_called_once_with(state, tick, now=42.0)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_background_processing(self):
        emitted = []
        worker = make_worker(on_signal=emitted.append)
        await worker.start()
        assert worker.running is True
        try:
            for tick in make_ticks():
                worker.submit(tick)
            await worker.join()
        finally:
            await worker.stop()

        assert worker.running is False
        assert worker.state.cycles == 300
        assert len(emitted) == 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        worker = make_worker()
        await worker.start()
        task = worker._task
        await worker.start()
        assert worker._task is task
        await worker.stop()
