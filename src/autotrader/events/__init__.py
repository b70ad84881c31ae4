"""Event models and the publish-subscribe bus."""

from autotrader.events.event_bus import EventBus, Subscription
from autotrader.events.models import (
    CircuitBreakerEvent,
    EmergencyStopEvent,
    ErrorEvent,
    Event,
    SignalRejectedEvent,
    TradeEvent,
    TradeExecutedEvent,
    to_jsonable,
)

__all__ = [
    "CircuitBreakerEvent",
    "EmergencyStopEvent",
    "ErrorEvent",
    "Event",
    "EventBus",
    "SignalRejectedEvent",
    "Subscription",
    "TradeEvent",
    "TradeExecutedEvent",
    "to_jsonable",
]
