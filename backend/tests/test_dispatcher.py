"""Tests for SignalDispatcher fan-out and retry."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from app.services.dispatcher import SignalDispatcher
from core.models.signal import Direction, Signal


def make_signal(instrument: str = "frxEURUSD") -> Signal:
    return Signal(
        instrument=instrument,
        direction=Direction.UP,
        confidence=0.9,
        entry_price=1.1,
        entry_time=datetime(2024, 1, 1, 0, 0, 30, tzinfo=timezone.utc),
        expiration_seconds=120,
        stop_loss=1.099,
        take_profit=1.102,
    )


class TestDeliver:
    @pytest.mark.asyncio
    async def test_all_sinks_called(self):
        dispatcher = SignalDispatcher(retry_delay=0)
        first, second = AsyncMock(), AsyncMock()
        dispatcher.on_signal(first)
        dispatcher.on_signal(second)

        signal = make_signal()
        await dispatcher.deliver(signal)

        first.assert_awaited_once_with(signal)
        second.assert_awaited_once_with(signal)
        assert dispatcher.delivered == 2

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        dispatcher = SignalDispatcher(max_retries=3, retry_delay=0)
        sink = AsyncMock(side_effect=[RuntimeError("down"), None])
        dispatcher.on_signal(sink)

        await dispatcher.deliver(make_signal())

        assert sink.await_count == 2
        assert dispatcher.delivered == 1
        assert dispatcher.failed == 0

    @pytest.mark.asyncio
    async def test_gives_up_without_blocking_other_sinks(self):
        dispatcher = SignalDispatcher(max_retries=2, retry_delay=0)
        broken = AsyncMock(side_effect=RuntimeError("down"))
        healthy = AsyncMock()
        dispatcher.on_signal(broken)
        dispatcher.on_signal(healthy)

        await dispatcher.deliver(make_signal())

        assert broken.await_count == 2
        healthy.assert_awaited_once()
        assert dispatcher.failed == 1
        assert dispatcher.delivered == 1

    @pytest.mark.asyncio
    async def test_off_signal(self):
        dispatcher = SignalDispatcher()
        sink = AsyncMock()
        dispatcher.on_signal(sink)
        dispatcher.on_signal(sink)
        dispatcher.off_signal(sink)

        await dispatcher.deliver(make_signal())
        sink.assert_not_awaited()


class TestQueue:
    @pytest.mark.asyncio
    async def test_publish_drops_when_full(self):
        dispatcher = SignalDispatcher(queue_size=1)

        assert dispatcher.publish(make_signal()) is True
        assert dispatcher.publish(make_signal("frxGBPUSD")) is False
        assert dispatcher.dropped == 1
        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_background_delivery(self):
        dispatcher = SignalDispatcher()
        received = asyncio.Event()

        async def sink(signal):
            received.set()

        dispatcher.on_signal(sink)
        await dispatcher.start()
        try:
            dispatcher.publish(make_signal())
            await asyncio.wait_for(received.wait(), timeout=1)
        finally:
            await dispatcher.stop()

        assert dispatcher.delivered == 1
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        dispatcher = SignalDispatcher()
        await dispatcher.stop()
        assert dispatcher.pending == 0
