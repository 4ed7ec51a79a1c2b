"""Per-instrument tick processing task.

Each worker owns one SymbolState and is its only writer. The worker
suspends only while waiting for the next tick; a cycle runs to completion
synchronously once started.
"""

import asyncio
import logging
import time
from typing import Callable

from core.models.signal import Signal
from core.models.state import SymbolState
from core.models.tick import Tick
from core.signal_generator import ProcessTickResult, SignalEngine

logger = logging.getLogger(__name__)


class InstrumentWorker:
    """Bounded tick queue plus the task that drains it into the engine."""

    def __init__(
        self,
        engine: SignalEngine,
        state: SymbolState,
        on_signal: Callable[[Signal], object] | None = None,
        queue_size: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.state = state
        self._on_signal = on_signal
        self._clock = clock
        self._queue: asyncio.Queue[Tick] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task | None = None
        self._running = False
        self.dropped = 0

    @property
    def instrument(self) -> str:
        return self.state.instrument

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._running

    def submit(self, tick: Tick) -> bool:
        """Queue a tick. When the queue is full the oldest tick is dropped.

        Returns:
            False if a queued tick had to be dropped to make room
        """
        dropped_oldest = False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                dropped_oldest = True
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(tick)
        return not dropped_oldest

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"worker-{self.instrument}")

    async def stop(self) -> None:
        """Cancel the worker after its current cycle. Pending ticks are discarded."""
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
            tick = await self._queue.get()
            try:
                self.process(tick)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued tick has been processed."""
        await self._queue.join()

    def process(self, tick: Tick) -> ProcessTickResult | None:
        """Run one engine cycle. Faults are logged and counted, never raised."""
        try:
            result = self.engine.process_tick(self.state, tick, now=self._clock())
        except Exception:
            self.state.faults += 1
            logger.exception(f"Cycle failed for {self.instrument} at {tick.timestamp}")
            return None

        if result.signal is not None and self._on_signal is not None:
            self._on_signal(result.signal)
        return result
