"""Signal engine: one analysis cycle per accepted tick.

This module is pure business logic with no I/O dependencies. Emitted
signals are returned to the caller, which hands them to collaborators
(persistence, notification) asynchronously. The same engine serves the
live asyncio workers and the offline replay script.

Cycle:
    TickBuffer.append -> size / gap checks -> ResultCache lookup
    -> IndicatorEngine, TrendAggregator, PatternDetector,
       MomentumVolumeEstimator (on miss) -> SignalScorer -> SignalGate
    -> optional position sizing -> Signal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

import numpy as np

from core.gate import GateDecision, SignalGate, TradingCalendar
from core.indicators import IndicatorEngine
from core.models.config import EngineConfig
from core.models.indicators import IndicatorSet
from core.models.signal import Direction, Signal
from core.models.state import SymbolRegistry, SymbolState
from core.models.tick import Tick
from core.momentum import MomentumAnalysis, MomentumVolumeEstimator
from core.patterns import PatternDetector, PatternReport
from core.result_cache import ResultCache, fingerprint
from core.risk import PositionSizer
from core.scorer import ScoredCandidate, SignalScorer
from core.trend import TrendAggregator, TrendAnalysis

logger = logging.getLogger(__name__)

# Skip reasons (no analysis or no emission this cycle; never errors)
REJECTED_TICK = "rejected_tick"
INSUFFICIENT_DATA = "insufficient_data"
LARGE_GAP = "large_gap"
NOT_COMPUTABLE = "not_computable"
RISK_REJECTED = "risk_rejected"


@dataclass(slots=True, frozen=True)
class WindowAnalysis:
    """Everything derived from a price window alone (cacheable)."""

    indicators: IndicatorSet
    trend: TrendAnalysis
    patterns: PatternReport
    momentum: MomentumAnalysis


@dataclass
class ProcessTickResult:
    """Result of processing a tick."""
    accepted: bool  # tick stored by the buffer
    signal: Signal | None = None
    skipped: str | None = None  # reason the cycle produced no analysis / signal
    analysis: WindowAnalysis | None = None
    candidate: ScoredCandidate | None = None
    decision: GateDecision | None = None
    cache_hit: bool = False


class SignalEngine:
    """
    Turn per-instrument tick streams into signals.

    The engine itself is stateless between calls apart from the shared
    ResultCache; all per-instrument state lives in the ``SymbolState``
    passed to ``process_tick``. Callers must process one instrument's ticks
    sequentially.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        cache: ResultCache[WindowAnalysis] | None = None,
        calendar: TradingCalendar | None = None,
        sizer: PositionSizer | None = None,
    ):
        self.config = config or EngineConfig()
        cfg = self.config
        self.indicator_engine = IndicatorEngine(cfg.indicators)
        self.trend_aggregator = TrendAggregator(cfg.trend)
        self.pattern_detector = PatternDetector(cfg.patterns)
        self.momentum_estimator = MomentumVolumeEstimator(cfg.momentum)
        self.scorer = SignalScorer(cfg.scoring)
        self.gate = SignalGate(cfg.gate, calendar)
        self.sizer = sizer

        if cache is None and cfg.cache.enabled:
            cache = ResultCache(ttl=cfg.cache.ttl, max_entries=cfg.cache.max_entries)
        self.cache = cache

    @property
    def min_ticks(self) -> int:
        """Ticks needed before the first analysis cycle."""
        return self.indicator_engine.min_length

    def create_registry(self, instruments: Iterable[str]) -> SymbolRegistry:
        return SymbolRegistry(instruments, self.config.buffer)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, prices: Sequence[float]) -> WindowAnalysis | None:
        """Run every analysis stage over a price window.

        Returns None when the window is too short for the indicators.
        """
        arr = np.asarray(prices, dtype=np.float64)
        indicators = self.indicator_engine.compute(arr)
        if indicators is None:
            return None
        return WindowAnalysis(
            indicators=indicators,
            trend=self.trend_aggregator.analyze(arr),
            patterns=self.pattern_detector.detect(arr),
            momentum=self.momentum_estimator.estimate(arr, indicators),
        )

    def _analyze_cached(
        self, state: SymbolState, prices: np.ndarray
    ) -> tuple[WindowAnalysis | None, bool]:
        if self.cache is None:
            return self.analyze(prices), False

        key = (state.instrument, fingerprint(prices, self.config.cache.fingerprint_points))
        state.cache_fingerprint = key[1]
        cached = self.cache.get(key)
        if cached is not None:
            return cached, True

        analysis = self.analyze(prices)
        if analysis is not None:
            self.cache.put(key, analysis)
        return analysis, False

    def score(self, analysis: WindowAnalysis, spread: float | None = None) -> ScoredCandidate:
        return self.scorer.score(
            analysis.indicators,
            analysis.trend,
            analysis.patterns,
            analysis.momentum,
            spread=spread,
        )

    # ------------------------------------------------------------------
    # Signal construction
    # ------------------------------------------------------------------

    def suggest_levels(
        self,
        direction: Direction,
        entry_price: float,
        atr_value: float,
        volatility: float,
    ) -> tuple[float | None, float | None]:
        """
        Calculate stop loss and take profit from ATR.

        Distances widen with volatility:
        - SL distance = ATR × (stop_mult + volatility × volatility_mult)
        - TP distance = ATR × (target_mult + volatility × volatility_mult)

        Returns:
            Tuple of (stop_loss, take_profit), both None without a usable ATR
        """
        levels = self.config.levels
        if atr_value <= 0 or direction is Direction.NEUTRAL:
            return None, None

        widen = volatility * levels.volatility_mult
        stop_distance = atr_value * (levels.stop_atr_mult + widen)
        target_distance = atr_value * (levels.target_atr_mult + widen)

        if direction is Direction.UP:
            return entry_price - stop_distance, entry_price + target_distance
        return entry_price + stop_distance, entry_price - target_distance

    def expiration_for(self, confidence: float) -> int:
        """Suggested expiration in seconds; higher confidence, shorter horizon."""
        levels = self.config.levels
        for threshold, seconds in levels.expirations:
            if confidence > threshold:
                return seconds
        return levels.default_expiration

    @staticmethod
    def timeframe_for(trend_strength: float, volatility_quality: float) -> int:
        """Suggested holding timeframe in seconds."""
        if volatility_quality < 0.5 or trend_strength < 0.6:
            return 300
        if trend_strength > 0.8 and volatility_quality >= 1.0:
            return 60
        return 900

    def build_signal(
        self,
        instrument: str,
        tick_time: float,
        analysis: WindowAnalysis,
        candidate: ScoredCandidate,
        stop_loss: float | None,
        take_profit: float | None,
        amount: float | None = None,
    ) -> Signal:
        market = analysis.momentum.market
        return Signal(
            instrument=instrument,
            direction=candidate.direction,
            confidence=candidate.confidence,
            entry_price=analysis.indicators.price,
            entry_time=datetime.fromtimestamp(
                tick_time + self.config.levels.entry_delay, tz=timezone.utc
            ),
            expiration_seconds=self.expiration_for(candidate.confidence),
            timeframe_seconds=self.timeframe_for(
                analysis.trend.strength, market.volatility_quality
            ),
            stop_loss=stop_loss,
            take_profit=take_profit,
            amount=amount,
            indicators=analysis.indicators.snapshot(),
            created_at=datetime.fromtimestamp(tick_time, tz=timezone.utc),
        )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_tick(
        self,
        state: SymbolState,
        tick: Tick,
        now: float | None = None,
    ) -> ProcessTickResult:
        """
        Process one tick for its instrument and emit a signal if warranted.

        Args:
            state: The instrument's state (mutated: buffer, counters, cooldown)
            tick: Incoming tick
            now: Wall-clock time for feed-lag rejection (None = no lag check)

        Returns:
            ProcessTickResult with the signal, if any, and why a cycle stopped
        """
        buffer = state.buffer
        if not buffer.append(tick, now=now):
            return ProcessTickResult(accepted=False, skipped=REJECTED_TICK)

        state.cycles += 1

        if len(buffer) < self.min_ticks:
            return self._skip(state, INSUFFICIENT_DATA)

        if buffer.has_large_gap():
            logger.debug("%s: large gap in window, skipping cycle", state.instrument)
            return self._skip(state, LARGE_GAP)

        prices = buffer.snapshot()
        analysis, cache_hit = self._analyze_cached(state, prices)
        if analysis is None:
            return self._skip(state, NOT_COMPUTABLE)

        latest = buffer.last
        candidate = self.score(analysis, spread=latest.spread)

        atr_value = analysis.indicators.atr.current if analysis.indicators.atr else 0.0
        stop_loss, take_profit = self.suggest_levels(
            candidate.direction,
            analysis.indicators.price,
            atr_value,
            analysis.momentum.market.volatility,
        )
        decision = self.gate.evaluate(
            candidate,
            now=latest.timestamp,
            last_signal_at=state.last_signal_at,
            entry_price=analysis.indicators.price,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        result = ProcessTickResult(
            accepted=True,
            analysis=analysis,
            candidate=candidate,
            decision=decision,
            cache_hit=cache_hit,
        )
        if not decision.accepted:
            state.skips[decision.reason] += 1
            result.skipped = decision.reason
            return result

        amount = None
        if self.sizer is not None:
            amount = self.sizer.size(candidate.confidence)
            if amount <= 0:
                state.skips[RISK_REJECTED] += 1
                result.skipped = RISK_REJECTED
                return result

        signal = self.build_signal(
            state.instrument,
            latest.timestamp,
            analysis,
            candidate,
            stop_loss,
            take_profit,
            amount,
        )
        state.record_emission(signal, latest.timestamp)
        logger.info(
            f"{signal.direction.value.upper()} signal: {signal.instrument} @ {signal.entry_price} "
            f"confidence={signal.confidence:.3f} SL={signal.stop_loss} TP={signal.take_profit}"
        )
        result.signal = signal
        return result

    @staticmethod
    def _skip(state: SymbolState, reason: str) -> ProcessTickResult:
        state.skips[reason] += 1
        return ProcessTickResult(accepted=True, skipped=reason)
