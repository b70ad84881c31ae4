# src/autotrader/agent/trading_agent.py
"""Trading agent that gates signals and coordinates risk and execution."""

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from autotrader.agent.gating import GatingStore
from autotrader.agent.models import AgentState, EmergencyStopResult
from autotrader.agent.settings import AgentSettings
from autotrader.agent.signal_source import SignalSource
from autotrader.events.event_bus import EventBus
from autotrader.events.models import (
    CircuitBreakerEvent,
    EmergencyStopEvent,
    ErrorEvent,
    Event,
    SignalRejectedEvent,
    TradeEvent,
)
from autotrader.execution.models import OrderRequest, OrderSide, OrderType, TradeResult
from autotrader.execution.order_manager import OrderManager
from autotrader.models.rejection import RejectionType
from autotrader.models.trade_signal import SignalSide, TradeSignal
from autotrader.portfolio.base import PortfolioProvider
from autotrader.portfolio.models import TradeFill
from autotrader.risk.risk_manager import RiskManager


logger = logging.getLogger(__name__)


class TradingAgent:
    """Gatekeeper between raw signals and risk-managed execution.

    Each signal runs an ordered gate chain under its symbol's lock:
    dedup -> confidence -> active orders -> cooldown -> CLOSE -> risk ->
    size -> order. The first failing gate rejects the signal with a
    ``RejectionType`` and a ``SignalRejectedEvent``.
    """

    def __init__(
        self,
        risk_manager: RiskManager,
        order_manager: OrderManager,
        portfolio: PortfolioProvider,
        settings: AgentSettings,
        event_bus: EventBus | None = None,
        signal_source: SignalSource | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._risk_manager = risk_manager
        self._order_manager = order_manager
        self._portfolio = portfolio
        self._settings = settings
        self._event_bus = event_bus
        self._signal_source = signal_source
        self._clock = clock

        self._gating = GatingStore()
        self._active = settings.enabled
        self._state = AgentState.STOPPED
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> AgentState:
        """Return the current run-loop state."""
        return self._state

    @property
    def is_active(self) -> bool:
        """Whether the agent currently accepts work."""
        return self._active

    @property
    def gating(self) -> GatingStore:
        return self._gating

    def set_active(self, active: bool) -> None:
        """Activate or deactivate the agent.

        Reactivating also re-enables order execution after an emergency stop.
        """
        self._active = active
        if active:
            self._order_manager.set_trade_execution_enabled(True)
        logger.info(f"Trading agent {'activated' if active else 'deactivated'}")

    # Signal execution

    async def execute_trade(self, signal: TradeSignal) -> TradeResult:
        """Run ``signal`` through the gate chain and execute it if it passes.

        Never raises; unexpected errors become a failed result and an
        ``ErrorEvent``.
        """
        async with self._gating.lock_for(signal.symbol):
            try:
                return await self._execute_gated(signal)
            except Exception as e:
                logger.exception(f"Failed to execute trade for {signal.symbol}: {e}")
                await self._publish(
                    ErrorEvent(source="trading_agent", message=str(e), symbol=signal.symbol)
                )
                return TradeResult.failed(
                    f"Trade execution error: {e}",
                    symbol=signal.symbol,
                    side=signal.side.value,
                )

    async def _execute_gated(self, signal: TradeSignal) -> TradeResult:
        now = self._clock()
        settings = self._settings

        duplicate_reason = self._gating.check_duplicate(
            signal,
            now,
            timedelta(minutes=settings.signal_dedup_minutes),
            settings.min_price_change_percent,
        )
        if duplicate_reason:
            last = self._gating.get(signal.symbol).last_signal
            return await self._reject(
                signal,
                RejectionType.DUPLICATE_SIGNAL,
                duplicate_reason,
                last_signal_time=last.received_at if last else None,
            )

        if not signal.has_valid_confidence:
            return await self._reject(
                signal,
                RejectionType.LOW_CONFIDENCE,
                f"Invalid confidence: {signal.confidence}",
                min_confidence=settings.min_confidence,
            )

        if signal.confidence < settings.min_confidence:
            return await self._reject(
                signal,
                RejectionType.LOW_CONFIDENCE,
                "Insufficient confidence level",
                min_confidence=settings.min_confidence,
            )

        active_orders = self._order_manager.get_active_orders_for_symbol(signal.symbol)
        if len(active_orders) >= settings.max_orders_per_symbol:
            return await self._reject(
                signal,
                RejectionType.MAX_ORDERS_EXCEEDED,
                f"Maximum orders per symbol reached "
                f"({len(active_orders)}/{settings.max_orders_per_symbol})",
                active_order_ids=[order.id for order in active_orders],
            )

        cooldown = timedelta(minutes=settings.trade_cooldown_minutes)
        remaining = self._gating.cooldown_remaining(signal.symbol, now, cooldown)
        if remaining > 0:
            return await self._reject(
                signal,
                RejectionType.TRADE_COOLDOWN,
                f"Trade cooldown active ({remaining}s remaining)",
                remaining_cooldown_seconds=remaining,
                required_cooldown_seconds=int(cooldown.total_seconds()),
            )

        if signal.side == SignalSide.CLOSE:
            return await self._reject(
                signal,
                RejectionType.CLOSE_NOT_IMPLEMENTED,
                "CLOSE signals not yet implemented",
            )

        portfolio = await self._portfolio.get_portfolio()
        self._risk_manager.update_portfolio_value(portfolio.total_value)

        breaker_was_active = self._risk_manager.is_circuit_breaker_active()
        assessment = self._risk_manager.assess_trade_risk(signal, signal.price)
        if not breaker_was_active and self._risk_manager.is_circuit_breaker_active():
            await self._publish(
                CircuitBreakerEvent(
                    reason=self._risk_manager.circuit_breaker_reason() or "unknown",
                    portfolio_value=self._risk_manager.get_portfolio_value(),
                    drawdown=self._risk_manager.state.current_drawdown(),
                )
            )

        if not assessment.approved:
            return await self._reject(
                signal,
                RejectionType.RISK_MANAGER_DENIAL,
                assessment.reason or "Rejected by risk manager",
                risk_score=assessment.risk_score,
            )

        position_size = assessment.position_size
        if not math.isfinite(position_size) or position_size <= 0:
            return await self._reject(
                signal,
                RejectionType.INVALID_POSITION_SIZE,
                f"Invalid position size: {position_size}",
                calculated_position_size=position_size,
            )

        if settings.protective_orders:
            result = await self._order_manager.execute_assessment(signal, signal.price, assessment)
        else:
            adjusted = assessment.adjusted_signal or signal
            order_type = OrderType(settings.order_type)
            result = await self._order_manager.submit_order(
                OrderRequest(
                    symbol=signal.symbol,
                    side=OrderSide.from_signal(signal.side),
                    type=order_type,
                    quantity=position_size,
                    price=signal.price if order_type == OrderType.LIMIT else None,
                    stop_loss=adjusted.stop_loss,
                    take_profit=adjusted.take_profit,
                )
            )

        if not result.success:
            logger.error(f"Order for {signal.symbol} failed: {result.reason}")
            return result

        await self._record_success(signal, result, now)
        return result

    async def _record_success(self, signal: TradeSignal, result: TradeResult, now: datetime) -> None:
        self._gating.record_trade(signal.symbol, now)

        quantity = result.quantity
        price = result.executed_price or signal.price
        result.executed_price = price
        signed_quantity = quantity if signal.side == SignalSide.BUY else -quantity

        self._risk_manager.record_fill(signal.symbol, signal.side, quantity, price)

        # Order is already live; booking errors are reported, not returned
        try:
            realized = await self._portfolio.update_after_trade(
                TradeFill(symbol=signal.symbol, quantity=signed_quantity, price=price, timestamp=now)
            )
        except Exception as e:
            logger.error(f"Failed to book fill for {signal.symbol} (order {result.order_id}): {e}")
            await self._publish(
                ErrorEvent(source="portfolio", message=str(e), symbol=signal.symbol)
            )
            realized = None
        if realized:
            self._risk_manager.record_realized_pnl(realized)

        logger.info(
            f"Trade completed: {signal.side.value} {quantity} {signal.symbol} @ {price} "
            f"(order {result.order_id})"
        )
        await self._publish(
            TradeEvent(
                signal=signal,
                result=result,
                order=self._order_manager.get_order(result.order_id) if result.order_id else None,
            )
        )

    async def _reject(
        self,
        signal: TradeSignal,
        rejection_type: RejectionType,
        reason: str,
        **details: Any,
    ) -> TradeResult:
        logger.warning(
            f"Signal rejected [{rejection_type.value}] {signal.symbol} {signal.side.value}: {reason}"
        )
        await self._publish(
            SignalRejectedEvent(
                rejection_type=rejection_type,
                symbol=signal.symbol,
                side=signal.side.value,
                price=signal.price,
                confidence=signal.confidence,
                reason=reason,
                potential_missed_gain=signal.expected_return or 0.0,
                details=details,
            )
        )
        return TradeResult.failed(
            reason,
            rejection_type=rejection_type,
            symbol=signal.symbol,
            side=signal.side.value,
            price=signal.price,
            details=details,
        )

    # Emergency stop

    async def emergency_stop(self) -> EmergencyStopResult:
        """Halt trading, cancel all active orders and close all positions.

        Cancels are issued concurrently and the stop proceeds once every one
        has settled. Never raises.
        """
        logger.critical("EMERGENCY STOP ACTIVATED")
        result = EmergencyStopResult()
        self._active = False
        self._stop_event.set()

        try:
            self._order_manager.set_trade_execution_enabled(False)
            active_orders = self._order_manager.get_active_orders()
            outcomes = await asyncio.gather(
                *(self._order_manager.cancel_order(order.id) for order in active_orders),
                return_exceptions=True,
            )
            for order, outcome in zip(active_orders, outcomes):
                if outcome is True:
                    result.cancelled_orders += 1
                    logger.info(f"Cancelled order {order.id}")
                else:
                    result.failed_cancellations += 1
                    logger.error(f"Failed to cancel order {order.id}: {outcome}")
        except Exception as e:
            logger.error(f"Order cancellation during emergency stop failed: {e}")
            result.errors.append(f"cancel: {e}")

        try:
            result.positions_closed = await self._portfolio.close_all_positions()
        except Exception as e:
            logger.error(f"Closing positions during emergency stop failed: {e}")
            result.errors.append(f"close: {e}")

        self._risk_manager.clear_positions()

        try:
            await self._publish(
                EmergencyStopEvent(
                    cancelled_orders=result.cancelled_orders,
                    failed_cancellations=result.failed_cancellations,
                    positions_closed=result.positions_closed,
                )
            )
        except Exception as e:
            logger.error(f"Failed to publish emergency stop event: {e}")
            result.errors.append(f"publish: {e}")

        logger.critical(
            f"Emergency stop completed: {result.cancelled_orders} cancelled, "
            f"{result.failed_cancellations} failed, {result.positions_closed} positions closed"
        )
        return result

    # Run loop

    async def run(self) -> None:
        """Poll the signal source until ``stop`` or an emergency stop.

        Returns immediately when the agent is disabled in settings.

        Iteration errors are logged and followed by a longer back-off;
        they never end the loop.
        """
        if self._signal_source is None:
            raise RuntimeError("TradingAgent.run requires a signal source")
        if self._state != AgentState.STOPPED:
            raise RuntimeError("Trading agent already running")
        if not self._settings.enabled:
            logger.warning("Trading agent disabled by configuration, not starting")
            return

        self._active = True
        self._stop_event.clear()
        self._state = AgentState.RUNNING
        logger.info("Starting autonomous trading agent")

        try:
            while self._active:
                try:
                    await self.run_iteration()
                    delay = self._settings.loop_interval_seconds
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Trading loop error: {e}")
                    await self._publish(ErrorEvent(source="trading_loop", message=str(e)))
                    delay = self._settings.error_backoff_seconds

                if self._active:
                    await self._sleep(delay)
        finally:
            self._state = AgentState.STOPPED
            logger.info("Trading agent stopped")

    async def run_iteration(self) -> int:
        """Process one batch of signals and do order/portfolio upkeep.

        Returns:
            Number of signals processed.
        """
        signals = await self._signal_source.get_signals() if self._signal_source else []
        if signals:
            results = await asyncio.gather(
                *(self.execute_trade(signal) for signal in signals),
                return_exceptions=True,
            )
            for signal, result in zip(signals, results):
                if isinstance(result, Exception):
                    logger.error(f"Unhandled error for {signal.symbol}: {result}")
                    await self._publish(
                        ErrorEvent(source="trading_loop", message=str(result), symbol=signal.symbol)
                    )

        await self._order_manager.sync_order_statuses()

        for order in self._order_manager.get_stale_orders(
            timedelta(minutes=self._settings.stale_order_minutes)
        ):
            logger.warning(
                f"Stale order {order.id}: {order.side.value} {order.quantity} {order.symbol} "
                f"{order.status.value} since {order.timestamp.isoformat()}"
            )

        self._order_manager.prune_completed_orders(
            timedelta(hours=self._settings.order_retention_hours)
        )

        metrics = await self._portfolio.update_metrics()
        if metrics is not None:
            self._risk_manager.update_portfolio_value(metrics.total_value)

        return len(signals)

    def stop(self) -> None:
        """Ask the run loop to finish after the current iteration."""
        if self._state == AgentState.RUNNING:
            self._state = AgentState.STOPPING
        self._active = False
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # Introspection

    def get_latest_predictions(self) -> dict[str, dict[str, Any]]:
        """Return the last deduplicated signal per symbol."""
        return {
            symbol: {
                "side": last.side.value,
                "confidence": last.signal.confidence,
                "timestamp": last.received_at,
                "price": last.price,
                "win_probability": last.signal.win_probability,
                "expected_return": last.signal.expected_return,
            }
            for symbol, last in self._gating.last_signals().items()
        }

    def log_configuration(self) -> None:
        """Log the effective gating configuration and cache sizes."""
        settings = self._settings
        logger.info(
            f"Trading agent configuration: active={self._active} "
            f"min_confidence={settings.min_confidence} "
            f"trade_cooldown_minutes={settings.trade_cooldown_minutes} "
            f"max_orders_per_symbol={settings.max_orders_per_symbol} "
            f"min_price_change_percent={settings.min_price_change_percent} "
            f"signal_dedup_minutes={settings.signal_dedup_minutes} "
            f"order_type={settings.order_type} protective_orders={settings.protective_orders} "
            f"cached_signals={len(self._gating.last_signals())} "
            f"last_trade_times={len(self._gating.trade_times())}"
        )

    async def _publish(self, event: Event) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event)
