# src/autotrader/execution/models.py
"""Data models for the execution system."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from autotrader.models.rejection import RejectionType
from autotrader.models.trade_signal import SignalSide
from autotrader.risk.models import RiskAssessment


class OrderSide(Enum):
    """Side of an exchange order."""

    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def from_signal(cls, side: SignalSide) -> "OrderSide":
        """Map a BUY/SELL signal side; CLOSE raises ValueError."""
        if side == SignalSide.CLOSE:
            raise ValueError("CLOSE signals have no order side")
        return cls(side.value)

    def opposite(self) -> "OrderSide":
        """Side that exits a position opened on this side."""
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_LOSS = "STOP_LOSS"
    STOP_LOSS_LIMIT = "STOP_LOSS_LIMIT"
    TAKE_PROFIT = "TAKE_PROFIT"


class OrderStatus(Enum):
    """Lifecycle of a locally tracked order."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_active(self) -> bool:
        """PENDING and SUBMITTED orders are still live."""
        return self in (OrderStatus.PENDING, OrderStatus.SUBMITTED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.SUBMITTED, OrderStatus.CANCELLED, OrderStatus.REJECTED}
    ),
    OrderStatus.SUBMITTED: frozenset(
        {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED}
    ),
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}


class InvalidOrderTransitionError(ValueError):
    """Raised when an order status would move backwards or out of a terminal state."""


class OrderFailure(Enum):
    """Distinguishable causes of a failed trade."""

    EXECUTION_DISABLED = "EXECUTION_DISABLED"
    RISK_REJECTED = "RISK_REJECTED"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    LOT_SIZE = "LOT_SIZE"
    MIN_NOTIONAL = "MIN_NOTIONAL"
    TIMEOUT = "TIMEOUT"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"


@dataclass
class OrderInfo:
    """Order tracked by the order manager.

    Attributes:
        id: Locally generated order id.
        symbol: Exchange symbol.
        side: BUY or SELL.
        type: Order type as tracked locally.
        quantity: Requested quantity in base units.
        status: Current lifecycle status.
        timestamp: When the order was created.
        price: Limit or trigger price, if any.
        exchange_order_id: Id assigned by the exchange once acknowledged.
        stop_loss: Stop-loss price attached to the trade.
        take_profit: Take-profit price attached to the trade.
        risk_assessment: Assessment that approved the trade.
    """

    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    quantity: float
    status: OrderStatus
    timestamp: datetime
    price: float | None = None
    exchange_order_id: str | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    risk_assessment: RiskAssessment | None = None

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def transition_to(self, status: OrderStatus) -> bool:
        """Move to ``status`` if the transition is forward.

        Returns:
            True if the status changed, False if it was already ``status``.

        Raises:
            InvalidOrderTransitionError: If the transition is not allowed.
        """
        if status == self.status:
            return False
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidOrderTransitionError(
                f"Order {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        return True


@dataclass(frozen=True)
class OrderRequest:
    """Caller-built order to submit as-is."""

    symbol: str
    side: OrderSide
    type: OrderType
    quantity: float
    price: float | None = None
    stop_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None


@dataclass
class ProtectiveOrders:
    """Outcome of placing stop-loss and take-profit orders."""

    stop_loss_order: "TradeResult | None" = None
    take_profit_order: "TradeResult | None" = None

    @property
    def fully_protected(self) -> bool:
        """True if every protective order that was attempted succeeded."""
        placed = [r for r in (self.stop_loss_order, self.take_profit_order) if r is not None]
        return all(r.success for r in placed)


@dataclass
class TradeResult:
    """Result of a trade attempt at any layer.

    Attributes:
        success: Whether an order was placed.
        symbol: Exchange symbol.
        side: Requested side.
        order_id: Local order id of the primary order.
        exchange_order_id: Exchange id of the primary order.
        quantity: Quantity placed (or approved) in base units.
        price: Reference or limit price.
        executed_price: Price the trade is booked at.
        stop_loss: Stop-loss price attached to the trade.
        take_profit: Take-profit price attached to the trade.
        risk_score: Risk score of the approving assessment.
        reason: Explanation for a failure.
        failure: Category of an order-layer failure.
        rejection_type: Category of a gating rejection.
        protective_orders: Protective order outcomes, when placed.
        details: Extra structured context.
        timestamp: When the result was produced.
    """

    success: bool
    symbol: str | None = None
    side: str | None = None
    order_id: str | None = None
    exchange_order_id: str | None = None
    quantity: float = 0.0
    price: float | None = None
    executed_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    risk_score: float | None = None
    reason: str | None = None
    failure: OrderFailure | None = None
    rejection_type: RejectionType | None = None
    protective_orders: ProtectiveOrders | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def failed(
        cls,
        reason: str,
        failure: OrderFailure | None = None,
        rejection_type: RejectionType | None = None,
        **kwargs: Any,
    ) -> "TradeResult":
        """Build an unsuccessful result."""
        return cls(
            success=False,
            reason=reason,
            failure=failure,
            rejection_type=rejection_type,
            **kwargs,
        )


@dataclass(frozen=True)
class TradingStats:
    """Order counts and fill rate over all tracked orders."""

    total_orders: int
    active_orders: int
    filled_orders: int
    cancelled_orders: int
    rejected_orders: int
    success_rate: float
