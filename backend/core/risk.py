"""Position sizing collaborator.

The engine only asks for a suggested amount; a zero amount means "do not
trade". Account bookkeeping lives here, outside the scoring path.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class PositionSizer(Protocol):
    def size(self, confidence: float) -> float:
        """Suggested position amount for a signal of this confidence."""
        ...


@runtime_checkable
class OutcomeRecorder(Protocol):
    def record_result(self, profit: float) -> None:
        """Feed back the realised profit of a closed trade (negative = loss)."""
        ...


class RiskSizer:
    """Fixed-fraction sizing with loss-streak and drawdown brakes.

    - Risk per trade is ``max_risk_per_trade`` of the current balance.
    - After more than ``loss_streak_limit`` consecutive losses the risk is halved.
    - At or beyond ``max_drawdown`` from the peak balance the size is zero.
    - The amount scales linearly with confidence.
    """

    def __init__(
        self,
        balance: float,
        max_risk_per_trade: float = 0.02,
        max_drawdown: float = 0.10,
        loss_streak_limit: int = 2,
    ):
        if balance < 0:
            raise ValueError(f"balance must be non-negative, got {balance}")
        self.balance = balance
        self.peak_balance = balance
        self.max_risk_per_trade = max_risk_per_trade
        self.max_drawdown = max_drawdown
        self.loss_streak_limit = loss_streak_limit
        self.consecutive_losses = 0

    @property
    def drawdown(self) -> float:
        if self.peak_balance <= 0:
            return 0.0
        return (self.peak_balance - self.balance) / self.peak_balance

    def risk_fraction(self) -> float:
        if self.drawdown >= self.max_drawdown:
            return 0.0
        risk = self.max_risk_per_trade
        if self.consecutive_losses > self.loss_streak_limit:
            risk *= 0.5
        return risk

    def size(self, confidence: float) -> float:
        confidence = min(max(confidence, 0.0), 1.0)
        return self.balance * self.risk_fraction() * confidence

    def record_result(self, profit: float) -> None:
        """Update the account after a trade closes (negative = loss)."""
        self.balance += profit
        self.peak_balance = max(self.peak_balance, self.balance)
        if profit < 0:
            self.consecutive_losses += 1
        elif profit > 0:
            self.consecutive_losses = 0
        logger.debug(
            "Risk state: balance=%.2f drawdown=%.4f losses=%d",
            self.balance, self.drawdown, self.consecutive_losses,
        )
