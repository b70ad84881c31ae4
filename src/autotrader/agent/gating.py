# src/autotrader/agent/gating.py
"""Per-symbol gating state: signal dedup cache, cooldowns and locks."""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from autotrader.models.trade_signal import SignalSide, TradeSignal


@dataclass
class LastSignal:
    """Most recent signal that passed deduplication for a symbol."""

    side: SignalSide
    price: float
    received_at: datetime
    signal: TradeSignal


@dataclass
class GatingState:
    """Temporal state of one symbol."""

    last_trade_time: datetime | None = None
    last_signal: LastSignal | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class GatingStore:
    """Keyed store of ``GatingState``.

    Callers hold ``lock_for(symbol)`` around a whole read-check-write
    sequence so two signals for one symbol cannot both pass a gate.
    """

    def __init__(self) -> None:
        self._states: dict[str, GatingState] = {}

    def get(self, symbol: str) -> GatingState:
        """Return the gating state for ``symbol``, creating it on first use."""
        state = self._states.get(symbol)
        if state is None:
            state = GatingState()
            self._states[symbol] = state
        return state

    def lock_for(self, symbol: str) -> asyncio.Lock:
        """Return the lock that serializes signals for ``symbol``."""
        return self.get(symbol).lock

    def check_duplicate(
        self,
        signal: TradeSignal,
        now: datetime,
        window: timedelta,
        min_price_change_percent: float,
    ) -> str | None:
        """Return a rejection reason, or None after caching ``signal``.

        A signal is a duplicate when the cached signal for the symbol is
        younger than ``window``, has the same side, and the price moved less
        than ``min_price_change_percent``.
        """
        if not signal.has_valid_price:
            return "Invalid signal price"

        state = self.get(signal.symbol)
        last = state.last_signal
        if last is not None and now - last.received_at < window:
            price_change = abs(signal.price - last.price) / last.price * 100
            if signal.side == last.side and price_change < min_price_change_percent:
                return (
                    f"Duplicate signal: same side ({signal.side.value}), "
                    f"price change {price_change:.2f}% < {min_price_change_percent}%"
                )

        state.last_signal = LastSignal(
            side=signal.side,
            price=signal.price,
            received_at=now,
            signal=signal,
        )
        return None

    def cooldown_remaining(self, symbol: str, now: datetime, cooldown: timedelta) -> int:
        """Seconds (rounded up) until ``symbol`` may trade again; 0 if ready."""
        last_trade = self.get(symbol).last_trade_time
        if last_trade is None:
            return 0
        remaining = (cooldown - (now - last_trade)).total_seconds()
        return math.ceil(remaining) if remaining > 0 else 0

    def record_trade(self, symbol: str, when: datetime) -> None:
        """Start the cooldown for ``symbol`` at ``when``."""
        self.get(symbol).last_trade_time = when

    def last_signals(self) -> dict[str, LastSignal]:
        """Return the cached last signal per symbol."""
        return {
            symbol: state.last_signal
            for symbol, state in self._states.items()
            if state.last_signal is not None
        }

    def trade_times(self) -> dict[str, datetime]:
        """Return the last successful trade time per symbol."""
        return {
            symbol: state.last_trade_time
            for symbol, state in self._states.items()
            if state.last_trade_time is not None
        }
