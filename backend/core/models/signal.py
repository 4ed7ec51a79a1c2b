"""Signal data models."""

import hashlib
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Direction(str, Enum):
    """Directional view of a component or signal."""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    @property
    def opposite(self) -> "Direction":
        if self is Direction.UP:
            return Direction.DOWN
        if self is Direction.DOWN:
            return Direction.UP
        return Direction.NEUTRAL


def _generate_signal_id(instrument: str, entry_time: datetime, direction: str) -> str:
    """Generate deterministic signal ID based on signal attributes.

    Replaying the same tick history yields the same IDs, so collaborators
    can deduplicate.
    """
    ts_str = entry_time.strftime("%Y%m%d%H%M%S%f")
    key = f"{instrument}:{ts_str}:{direction}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class Signal(BaseModel):
    """An emitted trading signal. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = ""  # Will be set in model_post_init
    instrument: str
    direction: Direction
    confidence: float = Field(ge=0, le=1)
    entry_price: float = Field(gt=0)
    entry_time: datetime  # Suggested entry time
    expiration_seconds: int = Field(gt=0)
    timeframe_seconds: int = Field(900, gt=0)  # Suggested holding timeframe
    stop_loss: float | None = None
    take_profit: float | None = None
    amount: float | None = None  # Suggested position amount (risk sizing)
    indicators: dict[str, float] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("direction")
    @classmethod
    def _not_neutral(cls, value: Direction) -> Direction:
        if value is Direction.NEUTRAL:
            raise ValueError("a signal direction must be up or down")
        return value

    def model_post_init(self, __context) -> None:
        """Generate deterministic ID after model initialization."""
        if not self.id:
            object.__setattr__(
                self,
                "id",
                _generate_signal_id(self.instrument, self.entry_time, self.direction.value),
            )

    @property
    def strength_label(self) -> str:
        """Human readable confidence bucket used by notification sinks."""
        if self.confidence >= 0.98:
            return "very strong"
        if self.confidence >= 0.96:
            return "strong"
        return "moderate"
