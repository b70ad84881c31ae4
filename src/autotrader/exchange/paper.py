# src/autotrader/exchange/paper.py
"""In-memory exchange used for paper trading and tests."""

import itertools
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from autotrader.exchange.base import ExchangeOrderError, OrderSpec
from autotrader.exchange.lot_size import LotSizeRules


logger = logging.getLogger(__name__)


class PaperExchangeClient:
    """Simulated exchange that enforces lot-size and min-notional filters.

    Market orders fill immediately at the ticker price; every other order
    type rests as NEW until cancelled or filled with ``fill_order``.
    """

    def __init__(
        self,
        lot_rules: LotSizeRules | None = None,
        prices: dict[str, float] | None = None,
    ):
        self._lot_rules = lot_rules or LotSizeRules()
        self._prices: dict[str, float] = {
            symbol.upper(): price for symbol, price in (prices or {}).items()
        }
        self._orders: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def set_price(self, symbol: str, price: float) -> None:
        """Set the ticker price used for market fills of ``symbol``."""
        self._prices[symbol.upper()] = price

    @property
    def orders(self) -> dict[str, dict[str, Any]]:
        """Copies of every order placed, keyed by order id."""
        return {order_id: dict(order) for order_id, order in self._orders.items()}

    async def place_order(self, spec: OrderSpec) -> dict[str, Any]:
        """Validate ``spec`` against lot and notional filters and record it."""
        quantity = self._validate_quantity(spec)
        price = spec.price or spec.stop_price or self._prices.get(spec.symbol.upper())
        if price is None:
            raise ExchangeOrderError(f"No price available for {spec.symbol}")

        lot = self._lot_rules.filter_for(spec.symbol)
        notional = quantity * Decimal(str(price))
        if notional < Decimal(str(lot.min_notional)):
            raise ExchangeOrderError(
                f"Filter failure: MIN_NOTIONAL ({notional} < {lot.min_notional})"
            )

        order_id = str(next(self._ids))
        status = "FILLED" if spec.type == "MARKET" else "NEW"
        order = {
            "order_id": order_id,
            "client_order_id": spec.client_order_id,
            "symbol": spec.symbol,
            "side": spec.side,
            "type": spec.type,
            "quantity": spec.quantity,
            "price": price,
            "stop_price": spec.stop_price,
            "status": status,
        }
        self._orders[order_id] = order
        logger.info(f"Paper order {order_id}: {spec.side} {spec.quantity} {spec.symbol} ({spec.type}) {status}")
        return dict(order)

    async def cancel_order(self, symbol: str, order_id: str) -> dict[str, Any]:
        """Cancel a resting order."""
        order = self._orders.get(order_id)
        if order is None or order["symbol"] != symbol:
            raise ExchangeOrderError(f"Unknown order {order_id} for {symbol}")
        if order["status"] not in ("NEW", "PARTIALLY_FILLED"):
            raise ExchangeOrderError(f"Order {order_id} is {order['status']} and cannot be cancelled")
        order["status"] = "CANCELED"
        return dict(order)

    async def get_order(self, symbol: str, order_id: str) -> dict[str, Any]:
        """Return the stored state of an order."""
        order = self._orders.get(order_id)
        if order is None or order["symbol"] != symbol:
            raise ExchangeOrderError(f"Unknown order {order_id} for {symbol}")
        return dict(order)

    async def get_ticker_price(self, symbol: str) -> float:
        """Return the last price set for ``symbol``."""
        price = self._prices.get(symbol.upper())
        if price is None:
            raise ExchangeOrderError(f"No ticker price for {symbol}")
        return price

    def fill_order(self, order_id: str) -> None:
        """Mark a resting order as filled."""
        self._orders[order_id]["status"] = "FILLED"

    def _validate_quantity(self, spec: OrderSpec) -> Decimal:
        try:
            quantity = Decimal(spec.quantity)
        except InvalidOperation:
            raise ExchangeOrderError(f"Filter failure: LOT_SIZE (unparseable quantity {spec.quantity!r})")

        lot = self._lot_rules.filter_for(spec.symbol)
        min_qty = Decimal(str(lot.min_qty))
        step = Decimal(str(lot.step_size))
        if not quantity.is_finite() or quantity < min_qty or (quantity - min_qty) % step != 0:
            raise ExchangeOrderError(f"Filter failure: LOT_SIZE (quantity {spec.quantity})")
        return quantity
