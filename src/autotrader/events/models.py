"""Typed events published by the trading pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from autotrader.models.rejection import RejectionType
from autotrader.models.trade_signal import TradeSignal
from autotrader.risk.models import RiskAssessment

if TYPE_CHECKING:
    # execution imports the bus, so these are annotation-only
    from autotrader.execution.models import OrderInfo, ProtectiveOrders, TradeResult


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass
class Event:
    """Base class for all pipeline events."""

    event_type: ClassVar[str] = "event"

    timestamp: datetime = field(default_factory=datetime.now, kw_only=True)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict of the event, tagged with its ``event_type``."""
        payload = to_jsonable(self)
        payload["event_type"] = self.event_type
        return payload


@dataclass
class TradeExecutedEvent(Event):
    """A risk-approved market order was placed by the order manager."""

    event_type: ClassVar[str] = "trade_executed"

    signal: TradeSignal
    risk_assessment: RiskAssessment
    main_order: TradeResult
    protective_orders: ProtectiveOrders | None = None


@dataclass
class TradeEvent(Event):
    """The trading agent completed a trade end to end."""

    event_type: ClassVar[str] = "trade"

    signal: TradeSignal
    result: TradeResult
    order: OrderInfo | None = None


@dataclass
class SignalRejectedEvent(Event):
    """A gate in the trading agent refused a signal."""

    event_type: ClassVar[str] = "signal_rejected"

    rejection_type: RejectionType
    symbol: str
    side: str
    price: float | None
    confidence: float
    reason: str
    potential_missed_gain: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorEvent(Event):
    event_type: ClassVar[str] = "error"

    source: str
    message: str
    symbol: str | None = None


@dataclass
class EmergencyStopEvent(Event):
    event_type: ClassVar[str] = "emergency_stop"

    cancelled_orders: int
    failed_cancellations: int
    positions_closed: int


@dataclass
class CircuitBreakerEvent(Event):
    """The risk manager halted trading."""

    event_type: ClassVar[str] = "circuit_breaker"

    reason: str
    portfolio_value: float
    drawdown: float
