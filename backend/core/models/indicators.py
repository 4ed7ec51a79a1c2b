"""Indicator value objects.

An ``IndicatorSet`` is recomputed every cycle and never mutated, so it can
be shared read-only between the trend, momentum and scoring stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.models.signal import Direction


def _trend_of(current: float, previous: float) -> Direction:
    if current > previous:
        return Direction.UP
    if current < previous:
        return Direction.DOWN
    return Direction.NEUTRAL


def _history_trend(history: tuple[float, ...]) -> Direction:
    if len(history) < 2:
        return Direction.NEUTRAL
    return _trend_of(history[-1], history[-2])


@dataclass(slots=True, frozen=True)
class SeriesValue:
    """Latest value of an indicator series plus its recent history."""

    current: float
    previous: float
    history: tuple[float, ...]  # oldest first, ends with current

    @property
    def trend(self) -> Direction:
        return _trend_of(self.current, self.previous)

    @classmethod
    def from_series(cls, values, points: int) -> SeriesValue:
        tail = tuple(float(v) for v in values[-points:])
        previous = tail[-2] if len(tail) > 1 else tail[-1]
        return cls(current=tail[-1], previous=previous, history=tail)


@dataclass(slots=True, frozen=True)
class MacdValue:
    value: float
    signal: float
    histogram: float
    history: tuple[float, ...]  # histogram history

    @property
    def trend(self) -> Direction:
        return _history_trend(self.history)


@dataclass(slots=True, frozen=True)
class BollingerValue:
    upper: float
    middle: float
    lower: float
    bandwidth: float  # (upper - lower) / middle
    percent_b: float  # position within the band, 0 = lower, 1 = upper
    history: tuple[float, ...]  # %B history


@dataclass(slots=True, frozen=True)
class DmiValue:
    adx: float
    plus_di: float
    minus_di: float
    history: tuple[float, ...]  # ADX history

    @property
    def trend(self) -> Direction:
        return _history_trend(self.history)


@dataclass(slots=True, frozen=True)
class IndicatorSet:
    """All indicators for one price window.

    Histories hold up to ``history_points`` trailing values. Right after
    warm-up the series with the longest period has fewer (two for the
    longest SMA at the default configuration) and its trend compares
    those two points.
    """

    price: float
    rsi: SeriesValue
    macd: MacdValue
    bollinger: BollingerValue
    sma: dict[int, SeriesValue] = field(default_factory=dict)
    ema: dict[int, SeriesValue] = field(default_factory=dict)
    atr: SeriesValue | None = None
    williams_r: SeriesValue | None = None
    dmi: DmiValue | None = None

    def snapshot(self) -> dict[str, float]:
        """Flat view of the headline values, attached to emitted signals."""
        data = {
            "price": self.price,
            "rsi": self.rsi.current,
            "macd": self.macd.value,
            "macd_signal": self.macd.signal,
            "macd_histogram": self.macd.histogram,
            "bb_upper": self.bollinger.upper,
            "bb_middle": self.bollinger.middle,
            "bb_lower": self.bollinger.lower,
            "bb_percent_b": self.bollinger.percent_b,
        }
        if self.atr is not None:
            data["atr"] = self.atr.current
        if self.williams_r is not None:
            data["williams_r"] = self.williams_r.current
        if self.dmi is not None:
            data["adx"] = self.dmi.adx
            data["plus_di"] = self.dmi.plus_di
            data["minus_di"] = self.dmi.minus_di
        for period, value in self.sma.items():
            data[f"sma_{period}"] = value.current
        for period, value in self.ema.items():
            data[f"ema_{period}"] = value.current
        return data
