"""Tests for EventBus and event serialization."""

import asyncio
from datetime import datetime

import pytest

from autotrader.events import (
    CircuitBreakerEvent,
    ErrorEvent,
    EventBus,
    SignalRejectedEvent,
    TradeEvent,
)
from autotrader.execution import TradeResult
from autotrader.models import RejectionType, SignalSide, TradeSignal


def make_error(message: str = "boom") -> ErrorEvent:
    return ErrorEvent(source="trading_agent", message=message, timestamp=datetime(2024, 1, 15, 10, 0))


class TestEventBus:
    """Tests for subscribe/publish fan-out."""

    @pytest.mark.asyncio
    async def test_every_subscriber_receives_event(self):
        bus = EventBus()
        first = bus.subscribe()
        second = bus.subscribe()

        await bus.publish(make_error())

        assert first.get_nowait().message == "boom"
        assert second.get_nowait().message == "boom"

    @pytest.mark.asyncio
    async def test_type_filtered_subscription(self):
        bus = EventBus()
        breaker_only = bus.subscribe(CircuitBreakerEvent)

        await bus.publish(make_error())
        await bus.publish(CircuitBreakerEvent(reason="Daily drawdown limit exceeded", portfolio_value=9500, drawdown=0.05))

        assert breaker_only.pending() == 1
        assert isinstance(breaker_only.get_nowait(), CircuitBreakerEvent)

    @pytest.mark.asyncio
    async def test_events_arrive_in_order(self):
        bus = EventBus()
        subscription = bus.subscribe()

        for i in range(3):
            await bus.publish(make_error(str(i)))

        assert [subscription.get_nowait().message for _ in range(3)] == ["0", "1", "2"]

    @pytest.mark.asyncio
    async def test_full_queue_applies_backpressure(self):
        bus = EventBus()
        subscription = bus.subscribe(maxsize=1)
        await bus.publish(make_error("first"))

        blocked = asyncio.create_task(bus.publish(make_error("second")))
        await asyncio.sleep(0.01)
        assert not blocked.done()

        assert (await subscription.get()).message == "first"
        await asyncio.wait_for(blocked, timeout=1)
        assert subscription.get_nowait().message == "second"

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_receiving(self):
        bus = EventBus()
        subscription = bus.subscribe()
        subscription.close()

        await bus.publish(make_error())

        assert bus.subscriber_count == 0
        assert subscription.pending() == 0


class TestEventSerialization:
    def test_rejection_to_dict(self):
        event = SignalRejectedEvent(
            rejection_type=RejectionType.TRADE_COOLDOWN,
            symbol="ETHUSDT",
            side="BUY",
            price=3000.0,
            confidence=0.7,
            reason="Trade cooldown active (780s remaining)",
            details={"remaining_cooldown_seconds": 780},
            timestamp=datetime(2024, 1, 15, 10, 2),
        )

        payload = event.to_dict()

        assert payload["event_type"] == "signal_rejected"
        assert payload["rejection_type"] == "TRADE_COOLDOWN"
        assert payload["timestamp"] == "2024-01-15T10:02:00"
        assert payload["details"]["remaining_cooldown_seconds"] == 780

    def test_nested_dataclasses_serialize(self):
        signal = TradeSignal(
            symbol="BTCUSDT",
            side=SignalSide.BUY,
            confidence=0.8,
            timestamp=datetime(2024, 1, 15, 10, 0),
            price=50000.0,
        )
        event = TradeEvent(signal=signal, result=TradeResult(success=True, symbol="BTCUSDT"))

        payload = event.to_dict()

        assert payload["signal"]["side"] == "BUY"
        assert payload["result"]["success"] is True
        assert payload["order"] is None
