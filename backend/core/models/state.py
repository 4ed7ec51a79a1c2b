"""Per-instrument state and the instrument registry."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from core.models.config import BufferConfig
from core.models.signal import Signal
from core.models.tick import TickBuffer


@dataclass
class SymbolState:
    """Everything one instrument's processing path owns.

    Only that instrument's worker mutates it (single writer).
    """

    instrument: str
    buffer: TickBuffer
    last_signal_at: float | None = None  # tick time of the last emission
    last_signal: Signal | None = None
    cache_fingerprint: str | None = None
    cycles: int = 0
    signals_emitted: int = 0
    faults: int = 0
    skips: Counter[str] = field(default_factory=Counter)

    @property
    def tick_count(self) -> int:
        return len(self.buffer)

    @property
    def last_price(self) -> float | None:
        return self.buffer.last_price

    @property
    def last_tick_at(self) -> float | None:
        last = self.buffer.last
        return last.timestamp if last else None

    def record_emission(self, signal: Signal, at: float) -> None:
        self.last_signal = signal
        self.last_signal_at = at
        self.signals_emitted += 1


class SymbolRegistry:
    """Fixed set of SymbolState instances created at startup.

    Instruments cannot be added after construction; lookups for unknown
    instruments raise ``KeyError``.
    """

    def __init__(self, instruments: Iterable[str], buffer_config: BufferConfig | None = None):
        self._states: dict[str, SymbolState] = {}
        for instrument in instruments:
            if instrument in self._states:
                continue
            self._states[instrument] = SymbolState(
                instrument=instrument,
                buffer=TickBuffer(buffer_config),
            )

    def __getitem__(self, instrument: str) -> SymbolState:
        return self._states[instrument]

    def __contains__(self, instrument: object) -> bool:
        return instrument in self._states

    def __iter__(self) -> Iterator[SymbolState]:
        return iter(self._states.values())

    def __len__(self) -> int:
        return len(self._states)

    @property
    def instruments(self) -> list[str]:
        return list(self._states)

    def get(self, instrument: str) -> SymbolState | None:
        return self._states.get(instrument)
