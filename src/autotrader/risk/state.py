# src/autotrader/risk/state.py
"""Shared, lock-guarded risk and portfolio state."""

import threading
from dataclasses import replace
from datetime import date, datetime

from autotrader.risk.models import CircuitBreakerStatus, DailyRiskState, PositionInfo


class RiskState:
    """Mutable state read by every risk assessment.

    All reads and writes go through methods holding ``lock`` so that
    concurrent assessments cannot interleave drawdown checks with updates.
    The lock is re-entrant; ``RiskManager`` holds it for a whole assessment.
    """

    def __init__(self, initial_capital: float, today: date | None = None):
        if initial_capital <= 0:
            raise ValueError("initial_capital must be positive")

        self.lock = threading.RLock()
        self._portfolio_value = initial_capital
        self._initial_value = initial_capital
        self._peak_value = initial_capital
        self._positions: dict[str, PositionInfo] = {}
        self._daily = DailyRiskState(date=today or date.today())
        self._breaker = CircuitBreakerStatus(active=False)

    # Portfolio value / drawdown

    @property
    def portfolio_value(self) -> float:
        """Latest recorded portfolio value."""
        with self.lock:
            return self._portfolio_value

    @property
    def initial_value(self) -> float:
        return self._initial_value

    @property
    def peak_value(self) -> float:
        """Highest portfolio value seen so far."""
        with self.lock:
            return self._peak_value

    def set_portfolio_value(self, value: float) -> None:
        """Record a new portfolio value and raise the peak if exceeded."""
        with self.lock:
            self._portfolio_value = value
            if value > self._peak_value:
                self._peak_value = value

    def current_drawdown(self) -> float:
        """Peak-to-current drawdown as a fraction (0.05 == 5%)."""
        with self.lock:
            if self._peak_value <= 0:
                return 0.0
            return (self._peak_value - self._portfolio_value) / self._peak_value

    # Daily counters

    def roll_day(self, today: date) -> bool:
        """Reset daily counters if ``today`` is a later local day.

        Returns:
            True if the counters were reset.
        """
        with self.lock:
            if today > self._daily.date:
                self._daily = DailyRiskState(date=today)
                return True
            return False

    def increment_trades(self) -> int:
        """Count one more trade today and return the new count."""
        with self.lock:
            self._daily.trades_today += 1
            return self._daily.trades_today

    def decrement_trades(self) -> None:
        """Undo a speculative trade count, never going below zero."""
        with self.lock:
            self._daily.trades_today = max(0, self._daily.trades_today - 1)

    def add_daily_pnl(self, pnl: float) -> None:
        """Add realized PnL to today's total."""
        with self.lock:
            self._daily.daily_pnl += pnl

    def daily_snapshot(self) -> DailyRiskState:
        """Return a copy of today's counters."""
        with self.lock:
            return replace(self._daily)

    # Circuit breaker

    @property
    def circuit_breaker_active(self) -> bool:
        """True while the breaker is tripped."""
        with self.lock:
            return self._breaker.active

    def trigger_circuit_breaker(self, reason: str, when: datetime) -> bool:
        """Activate the breaker.

        Returns:
            True if this call changed the breaker from inactive to active.
        """
        with self.lock:
            if self._breaker.active:
                return False
            self._breaker.active = True
            self._breaker.reason = reason
            self._breaker.triggered_at = when
            self._breaker.history.append(f"{when.isoformat()} triggered: {reason}")
            return True

    def reset_circuit_breaker(self, operator: str, when: datetime) -> None:
        """Deactivate the breaker and log ``operator`` in its history."""
        with self.lock:
            self._breaker.active = False
            self._breaker.reason = None
            self._breaker.triggered_at = None
            self._breaker.history.append(f"{when.isoformat()} reset by {operator}")

    def circuit_breaker_snapshot(self) -> CircuitBreakerStatus:
        """Return a copy of the breaker state, history included."""
        with self.lock:
            return replace(self._breaker, history=list(self._breaker.history))

    # Positions

    def get_position(self, symbol: str) -> PositionInfo | None:
        """Return the live position for ``symbol``, or None."""
        with self.lock:
            return self._positions.get(symbol)

    def set_position(self, position: PositionInfo) -> None:
        """Insert or replace the position for its symbol."""
        with self.lock:
            self._positions[position.symbol] = position

    def remove_position(self, symbol: str) -> PositionInfo | None:
        """Drop the position for ``symbol`` and return it, if any."""
        with self.lock:
            return self._positions.pop(symbol, None)

    def clear_positions(self) -> None:
        with self.lock:
            self._positions.clear()

    def positions(self) -> dict[str, PositionInfo]:
        """Return copies of all positions keyed by symbol."""
        with self.lock:
            return {symbol: replace(pos) for symbol, pos in self._positions.items()}
