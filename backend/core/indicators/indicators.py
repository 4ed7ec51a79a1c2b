"""Technical indicators for tick price windows.

All functions are pure NumPy and return an array of the same length as the
input with NaN in the warm-up prefix. A tick carries a single price, so
indicators that normally need bar high/low (ATR, Williams %R, DMI) use the
close series in their place.

Smoothing convention: RSI, ATR and DMI use Wilder's smoothing
(``avg = (prev * (n - 1) + x) / n``) seeded with a simple average of the
first ``n`` values. EMA is seeded with the SMA of the first ``period`` values.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from core.models.config import IndicatorConfig
from core.models.indicators import (
    BollingerValue,
    DmiValue,
    IndicatorSet,
    MacdValue,
    SeriesValue,
)

logger = logging.getLogger(__name__)


def _as_array(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _nan_array(n: int) -> np.ndarray:
    return np.full(n, np.nan, dtype=np.float64)


# =============================================================================
# Moving averages
# =============================================================================

def sma(values: Sequence[float], period: int) -> np.ndarray:
    """
    Calculate Simple Moving Average.

    Args:
        values: Price series (requires at least ``period`` values)
        period: SMA period

    Returns:
        Array of SMA values (NaN for the first ``period - 1`` entries)
    """
    arr = _as_array(values)
    result = _nan_array(len(arr))
    if len(arr) < period:
        return result
    result[period - 1:] = sliding_window_view(arr, period).mean(axis=1)
    return result


def ema(values: Sequence[float], period: int) -> np.ndarray:
    """
    Calculate Exponential Moving Average.

    Args:
        values: Price series (requires at least ``period`` values)
        period: EMA period

    Returns:
        Array of EMA values (NaN for the first ``period - 1`` entries)
    """
    arr = _as_array(values)
    result = _nan_array(len(arr))
    if len(arr) < period:
        return result

    multiplier = 2.0 / (period + 1)
    result[period - 1] = np.mean(arr[:period])
    for i in range(period, len(arr)):
        result[i] = arr[i] * multiplier + result[i - 1] * (1 - multiplier)
    return result


def _wilder(values: np.ndarray, period: int, start: int) -> np.ndarray:
    """Wilder-smooth ``values`` from index ``start`` (seeded with a mean)."""
    result = _nan_array(len(values))
    seed_end = start + period
    if len(values) < seed_end:
        return result
    result[seed_end - 1] = np.mean(values[start:seed_end])
    for i in range(seed_end, len(values)):
        result[i] = (result[i - 1] * (period - 1) + values[i]) / period
    return result


# =============================================================================
# Oscillators
# =============================================================================

def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # No losses: fully overbought, or flat when there were no gains either
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(values: Sequence[float], period: int = 14) -> np.ndarray:
    """
    Calculate Relative Strength Index with Wilder's smoothing.

    RSI is 100 when the average loss is zero (and gains are positive) and
    50 when the window did not move at all.

    Args:
        values: Price series (requires at least ``period + 1`` values)
        period: RSI period

    Returns:
        Array of RSI values in [0, 100] (NaN for the first ``period`` entries)
    """
    arr = _as_array(values)
    result = _nan_array(len(arr))
    if len(arr) < period + 1:
        return result

    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    result[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result[i + 1] = _rsi_value(avg_gain, avg_loss)

    return result


def macd(
    values: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Calculate MACD line, signal line and histogram.

    Args:
        values: Price series (requires at least ``slow + signal - 1`` values)
        fast: Fast EMA period
        slow: Slow EMA period
        signal: Signal EMA period (applied to the MACD line)

    Returns:
        Tuple of (macd_line, signal_line, histogram)
    """
    arr = _as_array(values)
    macd_line = ema(arr, fast) - ema(arr, slow)

    signal_line = _nan_array(len(arr))
    start = slow - 1
    if len(arr) > start:
        signal_line[start:] = ema(macd_line[start:], signal)

    return macd_line, signal_line, macd_line - signal_line


def bollinger_bands(
    values: Sequence[float],
    period: int = 20,
    num_std: float = 2.0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Calculate Bollinger Bands (population standard deviation).

    Args:
        values: Price series (requires at least ``period`` values)
        period: Moving average period
        num_std: Band width in standard deviations

    Returns:
        Tuple of (upper, middle, lower)
    """
    arr = _as_array(values)
    middle = sma(arr, period)
    std = _nan_array(len(arr))
    if len(arr) >= period:
        std[period - 1:] = sliding_window_view(arr, period).std(axis=1)
    return middle + num_std * std, middle, middle - num_std * std


def true_range(
    closes: Sequence[float],
    highs: Sequence[float] | None = None,
    lows: Sequence[float] | None = None,
) -> np.ndarray:
    """
    Calculate True Range.

    TR = max(high - low, abs(high - prev_close), abs(low - prev_close))

    With ticks only ``closes`` is given and TR reduces to
    ``max(|Δ|, |close - prev_close|)``. The first entry is NaN.
    """
    c = _as_array(closes)
    h = c if highs is None else _as_array(highs)
    l = c if lows is None else _as_array(lows)

    result = _nan_array(len(c))
    if len(c) < 2:
        return result
    prev = c[:-1]
    result[1:] = np.maximum.reduce([
        h[1:] - l[1:],
        np.abs(h[1:] - prev),
        np.abs(l[1:] - prev),
    ])
    return result


def atr(
    closes: Sequence[float],
    period: int = 14,
    highs: Sequence[float] | None = None,
    lows: Sequence[float] | None = None,
) -> np.ndarray:
    """
    Calculate Average True Range with Wilder's smoothing.

    Approximated from single-price ticks when ``highs``/``lows`` are not
    given; feed OHLC candles for a true ATR.

    Args:
        closes: Price series (requires at least ``period + 1`` values)
        period: ATR period

    Returns:
        Array of ATR values (NaN for the first ``period`` entries)
    """
    return _wilder(true_range(closes, highs, lows), period, start=1)


def williams_r(values: Sequence[float], period: int = 14) -> np.ndarray:
    """
    Calculate Williams %R from the rolling high/low of the price series.

    Returns values in [-100, 0]; -50 when the lookback range is zero.
    Requires at least ``period`` values.
    """
    arr = _as_array(values)
    result = _nan_array(len(arr))
    if len(arr) < period:
        return result

    windows = sliding_window_view(arr, period)
    highest = windows.max(axis=1)
    lowest = windows.min(axis=1)
    span = highest - lowest
    close = arr[period - 1:]
    with np.errstate(divide="ignore", invalid="ignore"):
        wr = np.where(span > 0, (highest - close) / span * -100.0, -50.0)
    result[period - 1:] = wr
    return result


def dmi(
    values: Sequence[float],
    period: int = 14,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Calculate ADX, +DI and -DI from close-to-close directional movement.

    Requires at least ``2 * period`` values for the first ADX point.

    Returns:
        Tuple of (adx, plus_di, minus_di)
    """
    arr = _as_array(values)
    n = len(arr)
    adx = _nan_array(n)
    plus_di = _nan_array(n)
    minus_di = _nan_array(n)
    if n < period + 1:
        return adx, plus_di, minus_di

    moves = np.diff(arr)
    plus_dm = np.where(moves > 0, moves, 0.0)
    minus_dm = np.where(moves < 0, -moves, 0.0)
    tr = np.abs(moves)

    smooth_tr = _wilder(tr, period, start=0)
    smooth_plus = _wilder(plus_dm, period, start=0)
    smooth_minus = _wilder(minus_dm, period, start=0)

    with np.errstate(divide="ignore", invalid="ignore"):
        pdi = np.where(smooth_tr > 0, 100.0 * smooth_plus / smooth_tr, 0.0)
        mdi = np.where(smooth_tr > 0, 100.0 * smooth_minus / smooth_tr, 0.0)
        di_sum = pdi + mdi
        dx = np.where(di_sum > 0, 100.0 * np.abs(pdi - mdi) / di_sum, 0.0)

    valid = np.isfinite(smooth_tr)
    pdi[~valid] = np.nan
    mdi[~valid] = np.nan
    dx[~valid] = np.nan

    # diff index j maps to price index j + 1
    plus_di[1:] = pdi
    minus_di[1:] = mdi
    adx[1:] = _wilder(dx, period, start=period - 1)
    return adx, plus_di, minus_di


def linear_regression(
    values: Sequence[float],
    xs: Sequence[float] | None = None,
) -> tuple[float, float]:
    """
    Least-squares fit of ``values`` against ``xs`` (default 0..n-1).

    Returns:
        Tuple of (slope, r_squared). A flat series has slope 0 and R² 0.
    """
    y = _as_array(values)
    x = np.arange(len(y), dtype=np.float64) if xs is None else _as_array(xs)
    if len(y) < 2:
        return 0.0, 0.0

    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(np.dot(dx, dx))
    syy = float(np.dot(dy, dy))
    sxy = float(np.dot(dx, dy))
    if sxx == 0:
        return 0.0, 0.0
    slope = sxy / sxx
    r_squared = (sxy * sxy) / (sxx * syy) if syy > 0 else 0.0
    return slope, min(max(r_squared, 0.0), 1.0)


# =============================================================================
# IndicatorEngine
# =============================================================================

class IndicatorEngine:
    """Compute a full ``IndicatorSet`` for a price window.

    ``compute`` is a pure function of its input: the same prices always give
    an equal ``IndicatorSet``.
    """

    def __init__(self, config: IndicatorConfig | None = None):
        self.config = config or IndicatorConfig()

    @property
    def min_length(self) -> int:
        return self.config.min_length

    def _series(self, values: np.ndarray) -> SeriesValue:
        finite = values[np.isfinite(values)]
        return SeriesValue.from_series(finite, self.config.history_points)

    def compute(self, prices: Sequence[float]) -> IndicatorSet | None:
        """
        Calculate every indicator for the given window.

        Args:
            prices: Price window, oldest first

        Returns:
            IndicatorSet, or None if the window is shorter than ``min_length``
        """
        cfg = self.config
        arr = _as_array(prices)
        if len(arr) < self.min_length:
            return None

        points = cfg.history_points

        macd_line, signal_line, histogram = macd(
            arr, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal
        )
        hist_tail = histogram[np.isfinite(histogram)][-points:]
        macd_value = MacdValue(
            value=float(macd_line[-1]),
            signal=float(signal_line[-1]),
            histogram=float(histogram[-1]),
            history=tuple(float(v) for v in hist_tail),
        )

        upper, middle, lower = bollinger_bands(arr, cfg.bollinger_period, cfg.bollinger_std)
        width = upper - lower
        with np.errstate(divide="ignore", invalid="ignore"):
            percent_b = np.where(width > 0, (arr - lower) / width, 0.5)
        percent_b[~np.isfinite(middle)] = np.nan
        pb_tail = percent_b[np.isfinite(percent_b)][-points:]
        bandwidth = float(width[-1] / middle[-1]) if middle[-1] > 0 else 0.0
        bollinger_value = BollingerValue(
            upper=float(upper[-1]),
            middle=float(middle[-1]),
            lower=float(lower[-1]),
            bandwidth=bandwidth,
            percent_b=float(percent_b[-1]),
            history=tuple(float(v) for v in pb_tail),
        )

        adx_values, plus_di, minus_di = dmi(arr, cfg.adx_period)
        adx_tail = adx_values[np.isfinite(adx_values)][-points:]
        dmi_value = DmiValue(
            adx=float(adx_values[-1]),
            plus_di=float(plus_di[-1]),
            minus_di=float(minus_di[-1]),
            history=tuple(float(v) for v in adx_tail),
        )

        return IndicatorSet(
            price=float(arr[-1]),
            rsi=self._series(rsi(arr, cfg.rsi_period)),
            macd=macd_value,
            bollinger=bollinger_value,
            sma={p: self._series(sma(arr, p)) for p in sorted(cfg.sma_periods)},
            ema={p: self._series(ema(arr, p)) for p in sorted(cfg.ema_periods)},
            atr=self._series(atr(arr, cfg.atr_period)),
            williams_r=self._series(williams_r(arr, cfg.williams_period)),
            dmi=dmi_value,
        )
