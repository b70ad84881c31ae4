"""Data models for portfolio tracking."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Portfolio:
    """Point-in-time view of the account.

    Attributes:
        total_value: Cash plus marked-to-market position value.
        positions: Signed quantity per symbol (negative is short).
        cash: Available cash balance.
    """

    total_value: float
    positions: dict[str, float] = field(default_factory=dict)
    cash: float = 0.0


@dataclass
class Holding:
    """Open position held by the portfolio."""

    symbol: str
    quantity: float
    entry_price: float
    current_price: float
    unrealized_pnl: float
    timestamp: datetime

    @property
    def market_value(self) -> float:
        """Signed value of the holding at the current price."""
        return self.quantity * self.current_price


@dataclass(frozen=True)
class TradeFill:
    """Executed trade to book into the portfolio.

    Attributes:
        symbol: Exchange symbol.
        quantity: Signed quantity (positive buys, negative sells).
        price: Execution price.
        timestamp: Execution time.
    """

    symbol: str
    quantity: float
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class PortfolioMetrics:
    total_value: float
    cash: float
    unrealized_pnl: float
    realized_pnl: float
    open_positions: int
    updated_at: datetime
