"""Models shared across the trading pipeline."""

from autotrader.models.rejection import RejectionType
from autotrader.models.trade_signal import SignalSide, TradeSignal

__all__ = [
    "RejectionType",
    "SignalSide",
    "TradeSignal",
]
