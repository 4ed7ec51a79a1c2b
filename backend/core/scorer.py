"""Signal scoring.

Combines indicator votes, trend/momentum, market conditions and chart
patterns into a direction and a confidence in [0, 1].

Indicator interpretation:
- Trend-following indicators (MACD, EMA vs SMA, DMI) vote with their sign.
- Oscillators (RSI, Bollinger %B, Williams %R) vote against the move only on
  exhaustion, i.e. at an extreme *and* turning back. Otherwise they vote
  with the side of their midline, so an oscillator pinned at an extreme
  during a steady trend supports the trend.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from core.models.config import ScoringConfig
from core.models.indicators import IndicatorSet, SeriesValue
from core.models.signal import Direction
from core.momentum import MomentumAnalysis, Vote, macd_vote
from core.patterns import PatternMatch, PatternReport
from core.trend import TrendAnalysis, weighted_vote

logger = logging.getLogger(__name__)

# Preferred periods for the EMA vs SMA vote
EMA_VOTE_PERIOD = 20
SMA_VOTE_PERIOD = 50


@dataclass(slots=True, frozen=True)
class IndicatorSummary:
    direction: Direction
    strength: float
    votes: dict[str, Vote]


@dataclass(slots=True, frozen=True)
class ScoredCandidate:
    """Scorer output: the input to SignalGate."""

    direction: Direction
    confidence: float
    score: float  # weighted support before adjustments
    indicators: IndicatorSummary
    trend_direction: Direction
    pattern: PatternMatch | None
    confirmed: bool
    contradictory: bool
    adjustments: tuple[str, ...] = field(default_factory=tuple)


def _closest(series: dict[int, SeriesValue], period: int) -> SeriesValue | None:
    if not series:
        return None
    if period in series:
        return series[period]
    return series[min(series, key=lambda p: abs(p - period))]


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


class SignalScorer:
    """Weighted combination of component outputs into a scored candidate."""

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()

    # ------------------------------------------------------------------
    # Indicator votes
    # ------------------------------------------------------------------

    def _rsi_vote(self, indicators: IndicatorSet) -> Vote:
        cfg = self.config
        value = indicators.rsi.current
        turning = indicators.rsi.trend
        if value >= cfg.rsi_overbought and turning is Direction.DOWN:
            return Vote(Direction.DOWN, (value - cfg.rsi_overbought) / (100 - cfg.rsi_overbought))
        if value <= cfg.rsi_oversold and turning is Direction.UP:
            return Vote(Direction.UP, (cfg.rsi_oversold - value) / cfg.rsi_oversold)
        if value > 55:
            return Vote(Direction.UP, min((value - 50) / (cfg.rsi_overbought - 50), 1.0))
        if value < 45:
            return Vote(Direction.DOWN, min((50 - value) / (50 - cfg.rsi_oversold), 1.0))
        return Vote(Direction.NEUTRAL, 0.0)

    @staticmethod
    def _bollinger_vote(indicators: IndicatorSet) -> Vote:
        bands = indicators.bollinger
        pb = bands.percent_b
        previous = bands.history[-2] if len(bands.history) >= 2 else pb
        if pb >= 0.95 and pb < previous:
            return Vote(Direction.DOWN, min((pb - 0.5) * 2, 1.0))
        if pb <= 0.05 and pb > previous:
            return Vote(Direction.UP, min((0.5 - pb) * 2, 1.0))
        if pb > 0.6:
            return Vote(Direction.UP, min((pb - 0.5) * 2, 1.0))
        if pb < 0.4:
            return Vote(Direction.DOWN, min((0.5 - pb) * 2, 1.0))
        return Vote(Direction.NEUTRAL, 0.0)

    @staticmethod
    def _ema_vote(indicators: IndicatorSet) -> Vote:
        fast = _closest(indicators.ema, EMA_VOTE_PERIOD)
        slow = _closest(indicators.sma, SMA_VOTE_PERIOD)
        atr = indicators.atr.current if indicators.atr is not None else 0.0
        if fast is None or slow is None or atr <= 0:
            return Vote(Direction.NEUTRAL, 0.0)
        diff = fast.current - slow.current
        if diff == 0:
            return Vote(Direction.NEUTRAL, 0.0)
        direction = Direction.UP if diff > 0 else Direction.DOWN
        return Vote(direction, min(abs(diff) / (5 * atr), 1.0))

    @staticmethod
    def _williams_vote(indicators: IndicatorSet) -> Vote:
        if indicators.williams_r is None:
            return Vote(Direction.NEUTRAL, 0.0)
        wr = indicators.williams_r.current
        turning = indicators.williams_r.trend
        if wr >= -20 and turning is Direction.DOWN:
            return Vote(Direction.DOWN, min((wr + 50) / 50, 1.0))
        if wr <= -80 and turning is Direction.UP:
            return Vote(Direction.UP, min((-50 - wr) / 50, 1.0))
        if wr > -40:
            return Vote(Direction.UP, min((wr + 50) / 50, 1.0))
        if wr < -60:
            return Vote(Direction.DOWN, min((-50 - wr) / 50, 1.0))
        return Vote(Direction.NEUTRAL, 0.0)

    def _adx_vote(self, indicators: IndicatorSet) -> Vote:
        dmi = indicators.dmi
        if dmi is None or dmi.adx < self.config.adx_trend_floor or dmi.plus_di == dmi.minus_di:
            return Vote(Direction.NEUTRAL, 0.0)
        direction = Direction.UP if dmi.plus_di > dmi.minus_di else Direction.DOWN
        return Vote(direction, min(dmi.adx / 50, 1.0))

    def summarize_indicators(self, indicators: IndicatorSet) -> IndicatorSummary:
        """Weighted indicator vote.

        A direction wins only when it holds at least ``indicator_dominance``
        of the strength-weighted directional votes. Strength is the winner's
        weighted strength over the total indicator weight.
        """
        weights = self.config.indicator_weights
        votes = {
            "rsi": self._rsi_vote(indicators),
            "macd": macd_vote(indicators),
            "bollinger": self._bollinger_vote(indicators),
            "ema": self._ema_vote(indicators),
            "williams": self._williams_vote(indicators),
            "adx": self._adx_vote(indicators),
        }
        total_weight = sum(getattr(weights, name) for name in votes)
        support = {Direction.UP: 0.0, Direction.DOWN: 0.0}
        for name, vote in votes.items():
            if vote.direction in support:
                support[vote.direction] += getattr(weights, name) * vote.strength

        directional = support[Direction.UP] + support[Direction.DOWN]
        if directional == 0 or total_weight == 0:
            return IndicatorSummary(Direction.NEUTRAL, 0.0, votes)

        leader = Direction.UP if support[Direction.UP] > support[Direction.DOWN] else Direction.DOWN
        if support[leader] / directional < self.config.indicator_dominance:
            return IndicatorSummary(Direction.NEUTRAL, 0.0, votes)
        return IndicatorSummary(leader, support[leader] / total_weight, votes)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def _best_pattern(patterns: PatternReport, trend: Direction) -> PatternMatch | None:
        usable = patterns.usable(trend)
        if not usable:
            return None
        return max(usable, key=lambda m: m.score)

    def score(
        self,
        indicators: IndicatorSet,
        trend: TrendAnalysis,
        patterns: PatternReport,
        momentum: MomentumAnalysis,
        spread: float | None = None,
    ) -> ScoredCandidate:
        """
        Score one analysis cycle.

        Args:
            indicators: IndicatorSet for the window
            trend: TrendAggregator output
            patterns: PatternDetector output
            momentum: MomentumVolumeEstimator output
            spread: Relative bid/ask spread of the latest tick, if known

        Returns:
            ScoredCandidate with confidence clamped to [0, 1]
        """
        cfg = self.config
        w = cfg.weights

        summary = self.summarize_indicators(indicators)
        trend_direction = trend.alignment.direction
        trend_strength = 0.7 * trend.strength
        if momentum.direction is trend_direction:
            trend_strength += 0.3 * momentum.strength

        pattern = self._best_pattern(patterns, trend.prevailing)
        pattern_direction = pattern.direction_for(trend.prevailing) if pattern else Direction.NEUTRAL
        pattern_strength = pattern.score if pattern else 0.0

        # Direction: weighted vote of the directional components
        votes = [
            (summary.direction, w.indicators * summary.strength),
            (trend_direction, w.trend * trend_strength),
            (pattern_direction, w.patterns * pattern_strength),
        ]
        direction, leading, _ = weighted_vote(
            [(d, weight) for d, weight in votes if d is not Direction.NEUTRAL]
        )
        directional = sum(weight for d, weight in votes if d is not Direction.NEUTRAL)
        if direction is not Direction.NEUTRAL and (
            directional == 0 or leading / directional <= cfg.vote_threshold
        ):
            direction = Direction.NEUTRAL

        # Weighted support; components without a usable pattern drop out
        components = [
            (w.indicators, summary.strength if summary.direction is direction else 0.0),
            (w.trend, trend_strength if trend_direction is direction else 0.0),
            (w.market, momentum.market.quality),
        ]
        if pattern is not None:
            components.append(
                (w.patterns, pattern_strength if pattern_direction is direction else 0.0)
            )
        total = sum(weight for weight, _ in components)
        base = sum(weight * value for weight, value in components) / total if total else 0.0

        confirmed = (
            trend.alignment.is_aligned
            and momentum.direction is direction
            and momentum.strength >= cfg.confirmation_strength
        )
        contradictory = (
            summary.direction is not Direction.NEUTRAL
            and trend_direction is not Direction.NEUTRAL
            and summary.direction is not trend_direction
        )

        adjustments: list[str] = []
        confidence = base
        if direction is Direction.NEUTRAL:
            confidence = 0.0
            adjustments.append("neutral")
        else:
            if not momentum.market.is_favorable:
                confidence *= cfg.unfavorable_market_factor
                adjustments.append("unfavorable_market")
            if not confirmed:
                confidence *= cfg.unconfirmed_trend_factor
                adjustments.append("unconfirmed_trend")
            if contradictory:
                confidence *= cfg.contradiction_factor
                adjustments.append("contradictory")
            if momentum.market.volatility_quality < 0.5:
                confidence *= cfg.volatility_factor
                adjustments.append("volatility_out_of_band")
            if spread is not None and spread > cfg.max_spread:
                confidence *= cfg.spread_factor
                adjustments.append("wide_spread")
            if momentum.direction is direction and trend.alignment.is_aligned and trend_direction is direction:
                confidence *= cfg.agreement_bonus
                adjustments.append("momentum_trend_agree")
                if pattern is not None and pattern_direction is direction:
                    confidence *= cfg.pattern_bonus
                    adjustments.append("pattern_agrees")

        return ScoredCandidate(
            direction=direction,
            confidence=_clamp(confidence),
            score=_clamp(base),
            indicators=summary,
            trend_direction=trend_direction,
            pattern=pattern,
            confirmed=confirmed,
            contradictory=contradictory,
            adjustments=tuple(adjustments),
        )
