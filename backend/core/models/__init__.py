"""Core data models."""

from core.models.config import EngineConfig
from core.models.indicators import (
    BollingerValue,
    DmiValue,
    IndicatorSet,
    MacdValue,
    SeriesValue,
)
from core.models.signal import Direction, Signal
from core.models.state import SymbolRegistry, SymbolState
from core.models.tick import Tick, TickBuffer

__all__ = [
    "EngineConfig",
    "BollingerValue",
    "DmiValue",
    "IndicatorSet",
    "MacdValue",
    "SeriesValue",
    "Direction",
    "Signal",
    "SymbolRegistry",
    "SymbolState",
    "Tick",
    "TickBuffer",
]
