# src/autotrader/exchange/alpaca_client.py
"""Alpaca crypto trading client implementing the exchange protocol."""

import asyncio
import logging
from typing import Any, Optional

from alpaca.common.exceptions import APIError
from alpaca.data.historical import CryptoHistoricalDataClient
from alpaca.data.requests import CryptoLatestTradeRequest
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide, TimeInForce
from alpaca.trading.requests import (
    LimitOrderRequest,
    MarketOrderRequest,
    StopLimitOrderRequest,
)

from autotrader.exchange.base import ExchangeOrderError, OrderSpec


logger = logging.getLogger(__name__)

QUOTE_ASSETS = ("USDT", "USDC", "USD", "BTC")


def to_alpaca_symbol(symbol: str) -> str:
    """Convert an exchange symbol (BTCUSDT) to Alpaca's pair form (BTC/USDT)."""
    symbol = symbol.upper()
    if "/" in symbol:
        return symbol
    for quote in QUOTE_ASSETS:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return f"{symbol[: -len(quote)]}/{quote}"
    return symbol


def _enum_value(value: Any) -> str:
    return str(getattr(value, "value", value))


class AlpacaCryptoClient:
    """Crypto order execution through the Alpaca brokerage API.

    The alpaca-py clients are synchronous; each call runs in a worker thread
    so the event loop is never blocked.

    Attributes:
        PAPER_URL: URL for paper trading API.
        LIVE_URL: URL for live trading API.
    """

    PAPER_URL = "https://paper-api.alpaca.markets"
    LIVE_URL = "https://api.alpaca.markets"

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        paper: bool = True,
    ):
        """Initialize AlpacaCryptoClient.

        Args:
            api_key: Alpaca API key.
            secret_key: Alpaca secret key.
            paper: If True, use paper trading (default). If False, use live trading.
        """
        self._api_key = api_key
        self._secret_key = secret_key
        self._paper = paper
        self._base_url = self.PAPER_URL if paper else self.LIVE_URL
        self._trading_client: Optional[TradingClient] = None
        self._data_client: Optional[CryptoHistoricalDataClient] = None

    @property
    def paper(self) -> bool:
        """Return whether client is in paper trading mode."""
        return self._paper

    @property
    def base_url(self) -> str:
        """Return the base API URL being used."""
        return self._base_url

    async def connect(self) -> None:
        """Create the trading and market data clients."""
        self._trading_client = TradingClient(
            api_key=self._api_key,
            secret_key=self._secret_key,
            paper=self._paper,
        )
        self._data_client = CryptoHistoricalDataClient(
            api_key=self._api_key,
            secret_key=self._secret_key,
        )

    async def disconnect(self) -> None:
        """Clean up Alpaca client resources."""
        self._trading_client = None
        self._data_client = None

    async def get_account(self) -> dict:
        """Get account information.

        Returns:
            Dictionary containing cash, portfolio_value and buying_power.
        """
        account = await asyncio.to_thread(self._require_trading().get_account)
        return {
            "cash": float(account.cash),
            "portfolio_value": float(account.portfolio_value),
            "buying_power": float(account.buying_power),
        }

    async def place_order(self, spec: OrderSpec) -> dict[str, Any]:
        """Submit an order.

        STOP_LOSS and STOP_LOSS_LIMIT map to stop-limit orders, LIMIT and
        TAKE_PROFIT to limit orders, MARKET to a market order.

        Raises:
            ExchangeOrderError: If Alpaca rejects the order.
        """
        request = self._build_request(spec)
        try:
            order = await asyncio.to_thread(self._require_trading().submit_order, request)
        except APIError as e:
            raise ExchangeOrderError(self._translate_error(str(e))) from e
        return self._order_to_dict(order)

    async def cancel_order(self, symbol: str, order_id: str) -> dict[str, Any]:
        """Cancel an order by id."""
        try:
            await asyncio.to_thread(self._require_trading().cancel_order_by_id, order_id)
        except APIError as e:
            raise ExchangeOrderError(f"Cancel failed for {symbol} order {order_id}: {e}") from e
        return {"order_id": order_id, "symbol": symbol, "status": "CANCELED"}

    async def get_order(self, symbol: str, order_id: str) -> dict[str, Any]:
        """Fetch an order and map it to the exchange-neutral dict."""
        try:
            order = await asyncio.to_thread(self._require_trading().get_order_by_id, order_id)
        except APIError as e:
            raise ExchangeOrderError(f"Order lookup failed for {symbol} order {order_id}: {e}") from e
        return self._order_to_dict(order)

    async def get_ticker_price(self, symbol: str) -> float:
        """Fetch the latest trade price for ``symbol``."""
        if self._data_client is None:
            raise ExchangeOrderError("Alpaca client not connected")
        pair = to_alpaca_symbol(symbol)
        request = CryptoLatestTradeRequest(symbol_or_symbols=pair)
        try:
            trades = await asyncio.to_thread(self._data_client.get_crypto_latest_trade, request)
        except APIError as e:
            raise ExchangeOrderError(f"Price lookup failed for {symbol}: {e}") from e
        return float(trades[pair].price)

    def _require_trading(self) -> TradingClient:
        if self._trading_client is None:
            raise ExchangeOrderError("Alpaca client not connected")
        return self._trading_client

    def _build_request(self, spec: OrderSpec):
        order_side = OrderSide.BUY if spec.side.upper() == "BUY" else OrderSide.SELL
        tif_map = {
            "GTC": TimeInForce.GTC,
            "IOC": TimeInForce.IOC,
            "FOK": TimeInForce.FOK,
        }
        common = {
            "symbol": to_alpaca_symbol(spec.symbol),
            "qty": float(spec.quantity),
            "side": order_side,
            "time_in_force": tif_map.get(spec.time_in_force.upper(), TimeInForce.GTC),
            "client_order_id": spec.client_order_id,
        }

        order_type = spec.type.upper()
        if order_type == "MARKET":
            return MarketOrderRequest(**common)
        if order_type in ("STOP_LOSS", "STOP_LOSS_LIMIT"):
            stop_price = spec.stop_price or spec.price
            return StopLimitOrderRequest(
                **common,
                stop_price=stop_price,
                limit_price=spec.price or stop_price,
            )
        return LimitOrderRequest(**common, limit_price=spec.price)

    @staticmethod
    def _translate_error(message: str) -> str:
        lowered = message.lower()
        if "notional" in lowered or "cost basis" in lowered:
            return f"Filter failure: MIN_NOTIONAL ({message})"
        if "qty" in lowered or "quantity" in lowered:
            return f"Filter failure: LOT_SIZE ({message})"
        return message

    def _order_to_dict(self, order) -> dict[str, Any]:
        """Convert Alpaca order object to dictionary."""
        result = {
            "order_id": str(order.id),
            "client_order_id": order.client_order_id,
            "status": _enum_value(order.status).upper(),
            "symbol": order.symbol,
            "quantity": str(order.qty),
            "side": _enum_value(order.side).upper(),
            "type": _enum_value(order.type).upper(),
            "filled_qty": float(order.filled_qty) if order.filled_qty else 0.0,
            "filled_avg_price": (
                float(order.filled_avg_price) if order.filled_avg_price else None
            ),
        }

        if getattr(order, "limit_price", None) is not None:
            result["price"] = float(order.limit_price)

        return result
