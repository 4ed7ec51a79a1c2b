"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
    sma,
    ema,
    rsi,
    macd,
    bollinger_bands,
    true_range,
    atr,
    williams_r,
    dmi,
    linear_regression,
    IndicatorEngine,
)

__all__ = [
    "sma",
    "ema",
    "rsi",
    "macd",
    "bollinger_bands",
    "true_range",
    "atr",
    "williams_r",
    "dmi",
    "linear_regression",
    "IndicatorEngine",
]
