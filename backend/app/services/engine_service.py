"""Live engine runtime: registry, per-instrument workers and signal fan-out.

The service is created once at startup with a fixed instrument list. Ticks
enter through ``on_tick`` (feed adapters, the HTTP API) and are routed to
the owning instrument's worker; emitted signals are kept in a recent-signal
ring and handed to the dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from pydantic import BaseModel

from app.config import Settings, get_settings
from app.services.dispatcher import SignalDispatcher
from app.services.instrument_worker import InstrumentWorker
from core.gate import TradingCalendar
from core.models.config import EngineConfig
from core.models.signal import Signal
from core.models.tick import Tick
from core.risk import OutcomeRecorder, PositionSizer, RiskSizer
from core.signal_generator import SignalEngine

logger = logging.getLogger(__name__)


class InstrumentStatus(BaseModel):
    """Point-in-time view of one instrument's processing state."""

    instrument: str
    running: bool
    tick_count: int
    last_price: float | None = None
    last_tick_at: float | None = None
    last_signal_at: float | None = None
    cache_entries: int = 0
    queue_depth: int = 0
    cycles: int = 0
    signals_emitted: int = 0
    faults: int = 0
    dropped_ticks: int = 0
    rejected: dict[str, int] = {}
    skips: dict[str, int] = {}


async def log_signal(signal: Signal) -> None:
    """Logging sink."""
    logger.info(
        f"Dispatched {signal.id}: {signal.instrument} {signal.direction.value} "
        f"({signal.strength_label}, {signal.confidence:.1%}) entry {signal.entry_time:%H:%M:%S} "
        f"expires in {signal.expiration_seconds}s"
    )


class EngineService:
    """Owns the SignalEngine and one InstrumentWorker per instrument."""

    def __init__(
        self,
        settings: Settings | None = None,
        config: EngineConfig | None = None,
        calendar: TradingCalendar | None = None,
        sizer: PositionSizer | None = None,
    ):
        self.settings = settings or get_settings()
        config = config or EngineConfig()

        # Feed-lag rejection comes from deployment settings unless tuned explicitly
        if config.buffer.max_feed_lag is None and self.settings.max_feed_lag is not None:
            buffer = config.buffer.model_copy(update={"max_feed_lag": self.settings.max_feed_lag})
            config = config.model_copy(update={"buffer": buffer})

        if sizer is None and self.settings.account_balance > 0:
            sizer = RiskSizer(
                self.settings.account_balance,
                max_risk_per_trade=self.settings.max_risk_per_trade,
            )

        self.engine = SignalEngine(config, calendar=calendar, sizer=sizer)
        self.registry = self.engine.create_registry(self.settings.instruments)
        self.dispatcher = SignalDispatcher(
            queue_size=self.settings.dispatch_queue_size,
            max_retries=self.settings.dispatch_max_retries,
            retry_delay=self.settings.dispatch_retry_delay,
        )
        self.dispatcher.on_signal(log_signal)

        self._workers: dict[str, InstrumentWorker] = {
            state.instrument: InstrumentWorker(
                self.engine,
                state,
                on_signal=self._publish,
                queue_size=self.settings.tick_queue_size,
            )
            for state in self.registry
        }
        self._recent: deque[Signal] = deque(maxlen=self.settings.recent_signals_size)
        self._purge_task: asyncio.Task | None = None
        self.unknown_ticks = 0

    @property
    def config(self) -> EngineConfig:
        return self.engine.config

    @property
    def instruments(self) -> list[str]:
        return self.registry.instruments

    def worker(self, instrument: str) -> InstrumentWorker:
        return self._workers[instrument]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        await self.dispatcher.start()
        for worker in self._workers.values():
            await worker.start()
        if self.engine.cache is not None:
            self._purge_task = asyncio.create_task(self._purge_loop())
        logger.info(
            f"Engine started: {len(self._workers)} instruments, "
            f"warmup {self.engine.min_ticks} ticks"
        )

    async def stop(self) -> None:
        if self._purge_task:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
            self._purge_task = None

        for worker in self._workers.values():
            await worker.stop()
        await self.dispatcher.stop()
        logger.info("Engine stopped")

    async def _purge_loop(self) -> None:
        interval = max(self.config.cache.ttl, 1.0)
        while True:
            await asyncio.sleep(interval)
            purged = self.engine.cache.purge_expired()
            if purged:
                logger.debug(f"Purged {purged} expired analysis entries")

    # =========================================================================
    # Ingestion and emission
    # =========================================================================

    def on_tick(
        self,
        instrument: str,
        price: float,
        timestamp: float,
        bid: float | None = None,
        ask: float | None = None,
    ) -> bool:
        """Route a tick to its instrument's worker.

        Returns:
            False for unknown instruments or when the queue dropped a tick
        """
        worker = self._workers.get(instrument)
        if worker is None:
            self.unknown_ticks += 1
            logger.debug(f"Ignoring tick for unknown instrument {instrument}")
            return False
        return worker.submit(Tick(instrument, price, timestamp, bid, ask))

    def _publish(self, signal: Signal) -> None:
        self._recent.append(signal)
        self.dispatcher.publish(signal)

    def record_outcome(self, profit: float) -> bool:
        """Report a closed trade to the position sizer.

        Trade settlement happens outside the engine; whoever settles calls
        this so loss-streak and drawdown limits see real results.

        Returns:
            False when the sizer does not track outcomes
        """
        sizer = self.engine.sizer
        if not isinstance(sizer, OutcomeRecorder):
            logger.debug("Ignoring trade outcome: sizer does not track results")
            return False
        sizer.record_result(profit)
        return True

    def recent_signals(self, instrument: str | None = None, limit: int | None = None) -> list[Signal]:
        """Recently emitted signals, newest first."""
        signals = [s for s in reversed(self._recent) if instrument is None or s.instrument == instrument]
        return signals[:limit] if limit is not None else signals

    # =========================================================================
    # Status
    # =========================================================================

    def instrument_status(self, instrument: str) -> InstrumentStatus:
        """Status for one instrument. Raises KeyError if not registered."""
        state = self.registry[instrument]
        worker = self._workers[instrument]
        cache = self.engine.cache
        return InstrumentStatus(
            instrument=instrument,
            running=worker.running,
            tick_count=state.tick_count,
            last_price=state.last_price,
            last_tick_at=state.last_tick_at,
            last_signal_at=state.last_signal_at,
            cache_entries=cache.count(instrument) if cache is not None else 0,
            queue_depth=worker.queue_depth,
            cycles=state.cycles,
            signals_emitted=state.signals_emitted,
            faults=state.faults,
            dropped_ticks=worker.dropped,
            rejected=dict(state.buffer.rejected),
            skips=dict(state.skips),
        )

    def status(self) -> list[InstrumentStatus]:
        return [self.instrument_status(instrument) for instrument in self.instruments]
