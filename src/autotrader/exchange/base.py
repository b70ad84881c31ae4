"""Exchange client protocol and shared order payload."""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


class ExchangeOrderError(Exception):
    """Raised by exchange clients when the exchange refuses a request.

    Sizing violations carry ``LOT_SIZE`` or ``MIN_NOTIONAL`` in the message.
    """


@dataclass(frozen=True)
class OrderSpec:
    """Order payload sent to an exchange client.

    Attributes:
        symbol: Exchange symbol (e.g. "BTCUSDT").
        side: "BUY" or "SELL".
        type: "MARKET", "LIMIT", "STOP_LOSS", "STOP_LOSS_LIMIT" or "TAKE_PROFIT".
        quantity: Lot-formatted quantity string.
        price: Limit price, if any.
        stop_price: Trigger price for stop orders.
        time_in_force: "GTC", "IOC" or "FOK".
        client_order_id: Local order id echoed back by the exchange.
    """

    symbol: str
    side: str
    type: str
    quantity: str
    price: float | None = None
    stop_price: float | None = None
    time_in_force: str = "GTC"
    client_order_id: str | None = None


@runtime_checkable
class ExchangeClient(Protocol):
    """Minimal async exchange surface used by the execution layer."""

    async def place_order(self, spec: OrderSpec) -> dict[str, Any]:
        """Submit an order. The returned dict contains ``order_id``."""
        ...

    async def cancel_order(self, symbol: str, order_id: str) -> dict[str, Any]:
        """Cancel an order by its exchange id."""
        ...

    async def get_order(self, symbol: str, order_id: str) -> dict[str, Any]:
        """Fetch an order. The returned dict contains ``status``."""
        ...

    async def get_ticker_price(self, symbol: str) -> float:
        """Return the latest traded price of ``symbol``."""
        ...
