"""Asynchronous fan-out of emitted signals to collaborators.

Workers publish without awaiting; a background task drains the queue and
calls every registered sink with retry. A slow or failing sink delays only
the dispatcher, never tick processing.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from core.models.signal import Signal

logger = logging.getLogger(__name__)

SignalCallback = Callable[[Signal], Awaitable[Any]]


class SignalDispatcher:
    """Bounded signal queue drained by one background task."""

    def __init__(
        self,
        queue_size: int = 1000,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ):
        self._queue: asyncio.Queue[Signal] = asyncio.Queue(maxsize=queue_size)
        self._callbacks: list[SignalCallback] = []
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._task: asyncio.Task | None = None
        self._running = False
        self.dropped = 0
        self.delivered = 0
        self.failed = 0

    def on_signal(self, callback: SignalCallback) -> None:
        """Register an async sink called with every emitted signal."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def off_signal(self, callback: SignalCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, signal: Signal) -> bool:
        """Queue a signal for delivery. Never blocks.

        Returns:
            False if the queue was full and the signal was dropped
        """
        try:
            self._queue.put_nowait(signal)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Dispatch queue full, dropping signal {signal.id} ({signal.instrument})")
            return False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the drain task. Undelivered signals are discarded."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while self._running:
            signal = await self._queue.get()
            try:
                await self.deliver(signal)
            finally:
                self._queue.task_done()

    async def deliver(self, signal: Signal) -> None:
        """Call every sink for one signal; sink errors are logged, not raised."""
        for callback in list(self._callbacks):
            if await self._call_with_retry(callback, signal):
                self.delivered += 1
            else:
                self.failed += 1

    async def _call_with_retry(self, callback: SignalCallback, signal: Signal) -> bool:
        name = getattr(callback, "__qualname__", repr(callback))
        for attempt in range(1, self._max_retries + 1):
            try:
                await callback(signal)
                return True
            except Exception as e:
                if attempt < self._max_retries:
                    logger.warning(
                        f"Signal sink {name} failed (attempt {attempt}/{self._max_retries}): {e}"
                    )
                    await asyncio.sleep(self._retry_delay * attempt)
                else:
                    logger.error(f"Signal sink {name} gave up on signal {signal.id}: {e}")
        return False
