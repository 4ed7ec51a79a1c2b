"""Final admission control for scored candidates.

Checks, in order:
1. confidence >= minimum
2. per-instrument cooldown since the last emission
3. trading hours (optional calendar)
4. sanity: non-neutral direction and, when required, usable SL/TP levels

A rejection is a normal outcome, reported through ``GateDecision.reason``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Protocol, runtime_checkable

from core.models.config import GateConfig
from core.models.signal import Direction
from core.scorer import ScoredCandidate

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
BELOW_MIN_CONFIDENCE = "below_min_confidence"
COOLDOWN = "cooldown"
OUTSIDE_TRADING_HOURS = "outside_trading_hours"
NEUTRAL_DIRECTION = "neutral_direction"
DEGENERATE_LEVELS = "degenerate_levels"


@runtime_checkable
class TradingCalendar(Protocol):
    """Collaborator deciding whether trading is permitted at a time."""

    def is_open(self, timestamp: float) -> bool:
        """Return True if signals may be emitted at this unix timestamp."""
        ...


class WeekdaySessionCalendar:
    """Open on the given UTC weekdays (0 = Monday) within [start, end) hours."""

    def __init__(
        self,
        days: Iterable[int] = (0, 1, 2, 3, 4),
        hours: tuple[int, int] = (0, 24),
    ):
        self.days = frozenset(days)
        self.start_hour, self.end_hour = hours

    def is_open(self, timestamp: float) -> bool:
        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return dt.weekday() in self.days and self.start_hour <= dt.hour < self.end_hour


@dataclass(slots=True, frozen=True)
class GateDecision:
    accepted: bool
    reason: str


def _usable_level(level: float | None, entry: float) -> bool:
    return level is not None and math.isfinite(level) and level > 0 and level != entry


class SignalGate:
    """Threshold, cooldown, trading hours and sanity checks."""

    def __init__(self, config: GateConfig | None = None, calendar: TradingCalendar | None = None):
        self.config = config or GateConfig()
        if calendar is None and self.config.trading_hours_enabled:
            calendar = WeekdaySessionCalendar(self.config.trading_days, self.config.trading_hours)
        self.calendar = calendar

    def in_cooldown(self, now: float, last_signal_at: float | None) -> bool:
        if last_signal_at is None:
            return False
        return now - last_signal_at < self.config.cooldown

    def evaluate(
        self,
        candidate: ScoredCandidate,
        now: float,
        last_signal_at: float | None,
        entry_price: float,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> GateDecision:
        """
        Decide whether a candidate may be emitted.

        Args:
            candidate: Scorer output
            now: Current time on the tick clock (unix seconds)
            last_signal_at: Time of the instrument's last emission, if any
            entry_price: Proposed entry price
            stop_loss: Proposed stop-loss level
            take_profit: Proposed take-profit level

        Returns:
            GateDecision; ``reason`` names the first failed check
        """
        cfg = self.config
        if candidate.confidence < cfg.min_confidence:
            return GateDecision(False, BELOW_MIN_CONFIDENCE)

        if self.in_cooldown(now, last_signal_at):
            return GateDecision(False, COOLDOWN)

        if self.calendar is not None and not self.calendar.is_open(now):
            return GateDecision(False, OUTSIDE_TRADING_HOURS)

        if candidate.direction is Direction.NEUTRAL:
            return GateDecision(False, NEUTRAL_DIRECTION)

        if cfg.require_levels and not (
            _usable_level(stop_loss, entry_price) and _usable_level(take_profit, entry_price)
        ):
            return GateDecision(False, DEGENERATE_LEVELS)

        return GateDecision(True, ACCEPTED)
