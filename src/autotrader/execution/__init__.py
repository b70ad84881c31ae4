"""Order execution module for placing and tracking exchange orders."""

from autotrader.execution.models import (
    InvalidOrderTransitionError,
    OrderFailure,
    OrderInfo,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    ProtectiveOrders,
    TradeResult,
    TradingStats,
)
from autotrader.execution.order_manager import OrderManager

__all__ = [
    "InvalidOrderTransitionError",
    "OrderFailure",
    "OrderInfo",
    "OrderManager",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "ProtectiveOrders",
    "TradeResult",
    "TradingStats",
]
