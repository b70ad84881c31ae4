"""Exchange clients, order payloads and lot-size rules."""

from autotrader.exchange.base import ExchangeClient, ExchangeOrderError, OrderSpec
from autotrader.exchange.lot_size import (
    DEFAULT_FILTERS,
    InvalidQuantityError,
    LotSizeRules,
    SymbolFilter,
)
from autotrader.exchange.paper import PaperExchangeClient

__all__ = [
    "DEFAULT_FILTERS",
    "ExchangeClient",
    "ExchangeOrderError",
    "InvalidQuantityError",
    "LotSizeRules",
    "OrderSpec",
    "PaperExchangeClient",
    "SymbolFilter",
]
