"""Trade signal model shared by the risk, execution and agent layers."""

import math
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any


class SignalSide(Enum):
    """Direction requested by a signal."""

    BUY = "BUY"
    SELL = "SELL"
    CLOSE = "CLOSE"


@dataclass(frozen=True)
class TradeSignal:
    """Directional trade signal emitted by the signal producer.

    Attributes:
        symbol: Exchange symbol (e.g. "BTCUSDT").
        side: BUY, SELL or CLOSE.
        confidence: Model confidence in [0, 1].
        timestamp: When the signal was produced.
        price: Reference price at signal time, if known.
        win_probability: Estimated probability of a winning trade.
        expected_return: Expected return of a winning trade (0.03 == 3%).
        stop_loss: Stop-loss price requested by the producer.
        take_profit: Take-profit price requested by the producer.
    """

    symbol: str
    side: SignalSide
    confidence: float
    timestamp: datetime
    price: float | None = None
    win_probability: float | None = None
    expected_return: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None

    @property
    def has_valid_price(self) -> bool:
        """Return True if the reference price is positive and finite."""
        return (
            self.price is not None
            and math.isfinite(self.price)
            and self.price > 0
        )

    @property
    def has_valid_confidence(self) -> bool:
        """Return True if confidence is a finite number in [0, 1]."""
        return math.isfinite(self.confidence) and 0 <= self.confidence <= 1

    def with_protection(self, stop_loss: float, take_profit: float) -> "TradeSignal":
        """Return a copy with stop-loss and take-profit set."""
        return replace(self, stop_loss=stop_loss, take_profit=take_profit)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradeSignal":
        """Build a signal from a producer payload.

        Accepts camelCase or snake_case keys. Timestamps may be ISO-8601
        strings or epoch milliseconds; a missing timestamp means "now".
        """
        raw_ts = data.get("timestamp")
        if raw_ts is None:
            timestamp = datetime.now()
        elif isinstance(raw_ts, (int, float)):
            timestamp = datetime.fromtimestamp(raw_ts / 1000)
        else:
            timestamp = datetime.fromisoformat(str(raw_ts))

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        def as_float(value: Any) -> float | None:
            return float(value) if value is not None else None

        return cls(
            symbol=str(data["symbol"]).upper(),
            side=SignalSide(str(data["side"]).upper()),
            confidence=float(data.get("confidence", 0.0)),
            timestamp=timestamp,
            price=as_float(pick("price", "currentPrice", "current_price")),
            win_probability=as_float(pick("win_probability", "winProbability")),
            expected_return=as_float(pick("expected_return", "expectedReturn")),
            stop_loss=as_float(pick("stop_loss", "stopLoss")),
            take_profit=as_float(pick("take_profit", "takeProfit")),
        )
