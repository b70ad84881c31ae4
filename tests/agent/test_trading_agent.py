"""Tests for TradingAgent."""

import asyncio
import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from autotrader.agent import AgentSettings, AgentState, QueueSignalSource, RejectionType, TradingAgent
from autotrader.events import (
    CircuitBreakerEvent,
    EmergencyStopEvent,
    ErrorEvent,
    EventBus,
    SignalRejectedEvent,
    TradeEvent,
)
from autotrader.exchange import PaperExchangeClient
from autotrader.execution import OrderFailure, OrderManager, OrderStatus, OrderType
from autotrader.models import SignalSide, TradeSignal
from autotrader.portfolio import PortfolioManager, TradeFill
from autotrader.risk import RiskAssessment, RiskLimits, RiskManager, RiskState

T0 = datetime(2024, 1, 15, 10, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_signal(**overrides) -> TradeSignal:
    fields = dict(
        symbol="BTCUSDT",
        side=SignalSide.BUY,
        confidence=0.8,
        timestamp=T0,
        price=50000.0,
        win_probability=0.6,
        expected_return=0.03,
    )
    fields.update(overrides)
    return TradeSignal(**fields)


def drain(subscription) -> list:
    events = []
    while subscription.pending():
        events.append(subscription.get_nowait())
    return events


class Harness:
    """Agent wired to a paper exchange with a shared fake clock."""

    def __init__(self, signal_source=None, **settings):
        self.clock = FakeClock(T0)
        self.exchange = PaperExchangeClient(
            prices={"BTCUSDT": 50000.0, "ETHUSDT": 3000.0, "ADAUSDT": 0.5}
        )
        self.bus = EventBus()
        self.events = self.bus.subscribe()
        limits = RiskLimits(
            max_position_size=0.1,
            max_daily_drawdown=0.05,
            max_total_drawdown=0.15,
            max_correlation=0.7,
            max_leverage=1.0,
            max_trades_per_day=100,
            kelly_fraction=0.25,
        )
        self.risk = RiskManager(
            limits=limits,
            state=RiskState(initial_capital=10000, today=T0.date()),
            clock=self.clock,
        )
        self.orders = OrderManager(
            exchange=self.exchange, risk_manager=self.risk, event_bus=self.bus, clock=self.clock
        )
        self.portfolio = PortfolioManager(
            exchange=self.exchange, initial_capital=10000, clock=self.clock
        )
        self.agent = TradingAgent(
            risk_manager=self.risk,
            order_manager=self.orders,
            portfolio=self.portfolio,
            settings=AgentSettings(**settings),
            event_bus=self.bus,
            signal_source=signal_source,
            clock=self.clock,
        )

    def rejections(self) -> list[SignalRejectedEvent]:
        return [e for e in drain(self.events) if isinstance(e, SignalRejectedEvent)]


class TestSuccessfulTrade:
    """Tests for signals that pass every gate."""

    @pytest.mark.asyncio
    async def test_limit_order_at_signal_price(self):
        h = Harness()

        result = await h.agent.execute_trade(make_signal())

        assert result.success is True
        assert result.quantity == pytest.approx(0.02)
        order = h.orders.get_order(result.order_id)
        assert order.type == OrderType.LIMIT
        assert order.price == 50000.0
        assert order.stop_loss == pytest.approx(49000.0)

    @pytest.mark.asyncio
    async def test_success_updates_portfolio_risk_and_cooldown(self):
        h = Harness()

        await h.agent.execute_trade(make_signal())

        assert (await h.portfolio.get_portfolio()).positions == {"BTCUSDT": pytest.approx(0.02)}
        assert h.risk.get_positions()["BTCUSDT"].size == pytest.approx(0.02)
        assert h.agent.gating.trade_times() == {"BTCUSDT": T0}
        trade_events = [e for e in drain(h.events) if isinstance(e, TradeEvent)]
        assert len(trade_events) == 1
        assert trade_events[0].order.symbol == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_booking_failure_keeps_successful_result(self):
        h = Harness()
        h.portfolio.update_after_trade = AsyncMock(side_effect=RuntimeError("ledger unavailable"))

        result = await h.agent.execute_trade(make_signal())

        assert result.success is True
        assert h.risk.get_positions()["BTCUSDT"].size == pytest.approx(0.02)
        assert h.agent.gating.trade_times() == {"BTCUSDT": T0}
        events = drain(h.events)
        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert errors[0].source == "portfolio"
        assert errors[0].message == "ledger unavailable"
        assert len([e for e in events if isinstance(e, TradeEvent)]) == 1

    @pytest.mark.asyncio
    async def test_sell_books_short(self):
        h = Harness(order_type="MARKET")

        result = await h.agent.execute_trade(make_signal(side=SignalSide.SELL))

        assert result.success is True
        assert h.portfolio.get_holding("BTCUSDT").quantity == pytest.approx(-0.02)

    @pytest.mark.asyncio
    async def test_protective_orders_mode(self):
        h = Harness(protective_orders=True)

        result = await h.agent.execute_trade(make_signal())

        assert result.success is True
        types = sorted(o.type.value for o in h.orders.list_orders())
        assert types == ["MARKET", "STOP_LOSS", "TAKE_PROFIT"]

    @pytest.mark.asyncio
    async def test_latest_predictions(self):
        h = Harness()
        await h.agent.execute_trade(make_signal())

        predictions = h.agent.get_latest_predictions()

        assert predictions["BTCUSDT"]["side"] == "BUY"
        assert predictions["BTCUSDT"]["price"] == 50000.0
        assert predictions["BTCUSDT"]["timestamp"] == T0


class TestGates:
    """Tests for each gate in order."""

    @pytest.mark.asyncio
    async def test_duplicate_signal_within_window(self):
        h = Harness()
        await h.agent.execute_trade(make_signal())

        h.clock.now = T0 + timedelta(seconds=10)
        result = await h.agent.execute_trade(make_signal())

        assert result.success is False
        assert result.rejection_type == RejectionType.DUPLICATE_SIGNAL
        assert result.details["last_signal_time"] == T0
        [event] = h.rejections()
        assert event.rejection_type == RejectionType.DUPLICATE_SIGNAL
        assert event.potential_missed_gain == 0.03

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_trade_once(self):
        h = Harness()

        results = await asyncio.gather(
            h.agent.execute_trade(make_signal()),
            h.agent.execute_trade(make_signal()),
        )

        assert sorted(r.success for r in results) == [False, True]
        assert len(h.orders.list_orders()) == 1

    @pytest.mark.asyncio
    async def test_invalid_price_rejected_at_dedup(self):
        h = Harness()

        result = await h.agent.execute_trade(make_signal(price=None))

        assert result.rejection_type == RejectionType.DUPLICATE_SIGNAL
        assert result.reason == "Invalid signal price"

    @pytest.mark.asyncio
    async def test_low_confidence(self):
        h = Harness()

        result = await h.agent.execute_trade(make_signal(confidence=0.3))

        assert result.rejection_type == RejectionType.LOW_CONFIDENCE
        assert result.reason == "Insufficient confidence level"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("confidence", [float("nan"), -0.2, 7.0])
    async def test_invalid_confidence_rejected(self, confidence):
        h = Harness()

        result = await h.agent.execute_trade(make_signal(confidence=confidence))

        assert result.success is False
        assert result.rejection_type == RejectionType.LOW_CONFIDENCE
        assert result.reason.startswith("Invalid confidence")
        assert h.orders.list_orders() == []
        assert h.risk.get_daily_state().trades_today == 0

    @pytest.mark.asyncio
    async def test_nan_confidence_from_producer_payload(self):
        h = Harness()
        signal = TradeSignal.from_dict(
            json.loads('{"symbol": "BTCUSDT", "side": "BUY", "confidence": NaN, "price": 50000}')
        )

        result = await h.agent.execute_trade(signal)

        assert result.rejection_type == RejectionType.LOW_CONFIDENCE
        assert h.orders.list_orders() == []

    @pytest.mark.asyncio
    async def test_max_orders_per_symbol(self):
        h = Harness()
        await h.agent.execute_trade(make_signal())

        h.clock.now = T0 + timedelta(seconds=30)
        result = await h.agent.execute_trade(make_signal(price=51000.0))

        assert result.rejection_type == RejectionType.MAX_ORDERS_EXCEEDED
        assert result.reason == "Maximum orders per symbol reached (1/1)"

    @pytest.mark.asyncio
    async def test_cooldown_reports_remaining_seconds(self):
        h = Harness(order_type="MARKET", signal_dedup_minutes=1)
        signal = make_signal(symbol="ETHUSDT", price=3000.0)

        first = await h.agent.execute_trade(signal)
        assert first.success is True
        await h.orders.sync_order_statuses()

        h.clock.now = T0 + timedelta(minutes=2)
        result = await h.agent.execute_trade(signal)

        assert result.rejection_type == RejectionType.TRADE_COOLDOWN
        assert result.reason == "Trade cooldown active (780s remaining)"
        assert result.details["remaining_cooldown_seconds"] == 780
        assert result.details["required_cooldown_seconds"] == 900

    @pytest.mark.asyncio
    async def test_close_not_implemented(self):
        h = Harness()

        result = await h.agent.execute_trade(make_signal(side=SignalSide.CLOSE))

        assert result.rejection_type == RejectionType.CLOSE_NOT_IMPLEMENTED
        assert h.orders.list_orders() == []

    @pytest.mark.asyncio
    async def test_risk_manager_denial(self):
        h = Harness()

        result = await h.agent.execute_trade(make_signal(confidence=0.5))

        assert result.rejection_type == RejectionType.RISK_MANAGER_DENIAL
        assert result.reason == "Signal confidence too low"
        assert result.details["risk_score"] == 70

    @pytest.mark.asyncio
    async def test_invalid_position_size(self):
        h = Harness()
        h.risk.assess_trade_risk = Mock(
            return_value=RiskAssessment(approved=True, position_size=0.0, risk_score=10)
        )

        result = await h.agent.execute_trade(make_signal())

        assert result.rejection_type == RejectionType.INVALID_POSITION_SIZE
        assert h.orders.list_orders() == []

    @pytest.mark.asyncio
    async def test_order_failure_is_returned(self):
        # The paper exchange has no SOLUSDT price to fill a market order at
        h = Harness(order_type="MARKET")

        result = await h.agent.execute_trade(make_signal(symbol="SOLUSDT", price=100.0))

        assert result.success is False
        assert result.failure == OrderFailure.EXCHANGE_ERROR
        assert result.reason == "Market order failed: No price available for SOLUSDT"
        assert h.agent.gating.trade_times() == {}

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_result_and_event(self):
        h = Harness()
        h.agent._portfolio = Mock()
        h.agent._portfolio.get_portfolio = AsyncMock(side_effect=RuntimeError("portfolio down"))

        result = await h.agent.execute_trade(make_signal())

        assert result.success is False
        assert result.reason == "Trade execution error: portfolio down"
        errors = [e for e in drain(h.events) if isinstance(e, ErrorEvent)]
        assert errors[0].symbol == "BTCUSDT"


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_drawdown_trip_publishes_event_and_blocks_other_symbols(self):
        h = Harness()
        await h.portfolio.update_after_trade(
            TradeFill(symbol="BTCUSDT", quantity=0.1, price=50000.0, timestamp=T0)
        )
        h.exchange.set_price("BTCUSDT", 45000.0)
        await h.portfolio.update_metrics(force=True)

        first = await h.agent.execute_trade(make_signal(symbol="ETHUSDT", price=3000.0))
        second = await h.agent.execute_trade(make_signal(symbol="ADAUSDT", price=0.5))

        assert first.reason == "Daily drawdown limit exceeded"
        assert second.reason == "Circuit breaker active - trading halted"
        assert second.details["risk_score"] == 100
        events = drain(h.events)
        breaker_events = [e for e in events if isinstance(e, CircuitBreakerEvent)]
        assert len(breaker_events) == 1
        assert breaker_events[0].drawdown == pytest.approx(0.05)


class TestEmergencyStop:
    @pytest.mark.asyncio
    async def test_cancels_orders_and_closes_positions(self):
        h = Harness()
        await h.agent.execute_trade(make_signal())

        result = await h.agent.emergency_stop()

        assert result.cancelled_orders == 1
        assert result.positions_closed == 1
        assert result.clean is True
        assert h.agent.is_active is False
        assert h.orders.execution_enabled is False
        assert h.risk.get_positions() == {}
        assert h.orders.get_active_orders() == []
        stop_events = [e for e in drain(h.events) if isinstance(e, EmergencyStopEvent)]
        assert stop_events[0].cancelled_orders == 1

    @pytest.mark.asyncio
    async def test_no_orders_after_stop_until_reactivated(self):
        h = Harness()
        await h.agent.emergency_stop()

        blocked = await h.agent.execute_trade(make_signal())
        assert blocked.failure == OrderFailure.EXECUTION_DISABLED

        h.agent.set_active(True)
        h.clock.now = T0 + timedelta(minutes=10)
        assert (await h.agent.execute_trade(make_signal())).success is True

    @pytest.mark.asyncio
    async def test_failed_cancellations_are_counted(self):
        order_manager = Mock(spec=OrderManager)
        order_manager.get_active_orders.return_value = [Mock(id="order_1"), Mock(id="order_2")]
        order_manager.cancel_order = AsyncMock(side_effect=[True, RuntimeError("exchange down")])
        portfolio = Mock()
        portfolio.close_all_positions = AsyncMock(side_effect=RuntimeError("no prices"))
        agent = TradingAgent(
            risk_manager=Mock(spec=RiskManager),
            order_manager=order_manager,
            portfolio=portfolio,
            settings=AgentSettings(),
        )

        result = await agent.emergency_stop()

        assert result.cancelled_orders == 1
        assert result.failed_cancellations == 1
        assert result.positions_closed == 0
        assert result.clean is False
        order_manager.set_trade_execution_enabled.assert_called_once_with(False)


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_run_iteration_processes_batch(self):
        source = QueueSignalSource()
        h = Harness(signal_source=source)
        await source.push(make_signal())
        await source.push(make_signal(symbol="ETHUSDT", price=3000.0))

        processed = await h.agent.run_iteration()

        assert processed == 2
        assert {o.symbol for o in h.orders.list_orders()} == {"BTCUSDT", "ETHUSDT"}
        assert all(o.status == OrderStatus.SUBMITTED for o in h.orders.list_orders())

    @pytest.mark.asyncio
    async def test_run_requires_signal_source(self):
        h = Harness()
        with pytest.raises(RuntimeError):
            await h.agent.run()

    @pytest.mark.asyncio
    async def test_disabled_agent_does_not_start(self):
        source = QueueSignalSource()
        h = Harness(signal_source=source, enabled=False, loop_interval_seconds=0.01)
        await source.push(make_signal())

        await asyncio.wait_for(h.agent.run(), timeout=1)

        assert h.agent.state == AgentState.STOPPED
        assert h.agent.is_active is False
        assert source.pending() == 1
        assert h.orders.list_orders() == []

    @pytest.mark.asyncio
    async def test_run_until_stopped(self):
        source = QueueSignalSource()
        h = Harness(signal_source=source, loop_interval_seconds=0.01)
        await source.push(make_signal())

        task = asyncio.create_task(h.agent.run())
        await asyncio.sleep(0.05)
        assert h.agent.state == AgentState.RUNNING

        h.agent.stop()
        await asyncio.wait_for(task, timeout=1)

        assert h.agent.state == AgentState.STOPPED
        assert len(h.orders.list_orders()) == 1

    @pytest.mark.asyncio
    async def test_iteration_errors_are_published(self):
        source = Mock()
        source.get_signals = AsyncMock(side_effect=RuntimeError("feed down"))
        h = Harness(signal_source=source, error_backoff_seconds=10)

        task = asyncio.create_task(h.agent.run())
        await asyncio.sleep(0.05)
        h.agent.stop()
        await asyncio.wait_for(task, timeout=1)

        errors = [e for e in drain(h.events) if isinstance(e, ErrorEvent)]
        assert errors[0].source == "trading_loop"
        assert errors[0].message == "feed down"
