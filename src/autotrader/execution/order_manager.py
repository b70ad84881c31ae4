# src/autotrader/execution/order_manager.py
"""Order lifecycle management against an exchange client."""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from autotrader.events.event_bus import EventBus
from autotrader.events.models import Event, TradeExecutedEvent
from autotrader.exchange.base import ExchangeClient, OrderSpec
from autotrader.exchange.lot_size import InvalidQuantityError, LotSizeRules
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
from autotrader.models.trade_signal import SignalSide, TradeSignal
from autotrader.risk.models import RiskAssessment
from autotrader.risk.risk_manager import RiskManager


logger = logging.getLogger(__name__)

T = TypeVar("T")

EXCHANGE_STATUS_MAP: dict[str, OrderStatus] = {
    "NEW": OrderStatus.SUBMITTED,
    "PENDING_NEW": OrderStatus.SUBMITTED,
    "ACCEPTED": OrderStatus.SUBMITTED,
    "PARTIALLY_FILLED": OrderStatus.SUBMITTED,
    "PENDING_CANCEL": OrderStatus.SUBMITTED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
}


def generate_order_id() -> str:
    """Return a unique local order id."""
    return f"order_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class OrderManager:
    """Turns approved trades into exchange orders and tracks them.

    Every exchange call is bounded by ``order_timeout_seconds``. Failed
    submissions are final; nothing here retries.

    Attributes:
        order_timeout_seconds: Upper bound for a single exchange call.
        stop_limit_offset: Distance of a stop-limit's limit price beyond its trigger.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        risk_manager: RiskManager,
        event_bus: EventBus | None = None,
        lot_rules: LotSizeRules | None = None,
        order_timeout_seconds: float = 10.0,
        stop_limit_offset: float = 0.001,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._exchange = exchange
        self._risk_manager = risk_manager
        self._event_bus = event_bus
        self._lot_rules = lot_rules or LotSizeRules()
        self.order_timeout_seconds = order_timeout_seconds
        self.stop_limit_offset = stop_limit_offset
        self._clock = clock
        self._orders: dict[str, OrderInfo] = {}
        self._execution_enabled = True

    @property
    def execution_enabled(self) -> bool:
        """Whether new orders may be placed."""
        return self._execution_enabled

    def set_trade_execution_enabled(self, enabled: bool) -> None:
        """Allow or block new orders; cancels and syncs are unaffected."""
        self._execution_enabled = enabled
        logger.info(f"Trade execution {'enabled' if enabled else 'disabled'}")

    # Trade execution

    async def execute_trade_signal(self, signal: TradeSignal, current_price: float) -> TradeResult:
        """Assess, place and protect a trade for ``signal``.

        Args:
            signal: BUY or SELL signal.
            current_price: Current market price used for sizing.

        Returns:
            TradeResult. Risk rejections carry the risk manager's reason
            unchanged; exchange failures carry an ``OrderFailure`` category.
        """
        if not self._execution_enabled:
            return self._disabled_result(signal)

        if signal.side == SignalSide.CLOSE:
            return TradeResult.failed(
                "CLOSE signals cannot be executed as new orders",
                symbol=signal.symbol,
                side=signal.side.value,
            )

        try:
            assessment = self._risk_manager.assess_trade_risk(signal, current_price)
            logger.info(
                f"Risk assessment for {signal.symbol}: approved={assessment.approved} "
                f"size={assessment.position_size} score={assessment.risk_score} "
                f"reason={assessment.reason or 'Approved'}"
            )

            if not assessment.approved:
                logger.warning(f"Trade rejected: {assessment.reason}")
                return TradeResult.failed(
                    assessment.reason or "Rejected by risk manager",
                    OrderFailure.RISK_REJECTED,
                    symbol=signal.symbol,
                    side=signal.side.value,
                    risk_score=assessment.risk_score,
                )

            return await self.execute_assessment(signal, current_price, assessment)

        except Exception as e:
            logger.exception(f"Failed to execute trade for {signal.symbol}: {e}")
            return TradeResult.failed(
                f"Execution error: {e}",
                OrderFailure.EXCHANGE_ERROR,
                symbol=signal.symbol,
                side=signal.side.value,
            )

    async def execute_assessment(
        self,
        signal: TradeSignal,
        current_price: float,
        assessment: RiskAssessment,
    ) -> TradeResult:
        """Place the market order and protective orders for an approved assessment."""
        if not self._execution_enabled:
            return self._disabled_result(signal)

        side = OrderSide.from_signal(signal.side)
        main_order = await self.place_market_order(
            signal.symbol, side, assessment.position_size, assessment
        )
        if not main_order.success:
            return main_order

        adjusted = assessment.adjusted_signal or signal
        protective = await self.place_protective_orders(
            signal.symbol,
            side,
            main_order.quantity,
            stop_loss=adjusted.stop_loss,
            take_profit=adjusted.take_profit,
        )
        if not protective.fully_protected:
            logger.warning(f"Position in {signal.symbol} is open without full protection")

        logger.info(
            f"Trade executed: {side.value} {main_order.quantity} {signal.symbol} "
            f"@ {current_price} (confidence {signal.confidence:.2f}, "
            f"SL {adjusted.stop_loss}, TP {adjusted.take_profit}, score {assessment.risk_score:.1f})"
        )

        await self._publish(
            TradeExecutedEvent(
                signal=signal,
                risk_assessment=assessment,
                main_order=main_order,
                protective_orders=protective,
            )
        )

        return TradeResult(
            success=True,
            symbol=signal.symbol,
            side=side.value,
            order_id=main_order.order_id,
            exchange_order_id=main_order.exchange_order_id,
            quantity=main_order.quantity,
            price=current_price,
            executed_price=current_price,
            stop_loss=adjusted.stop_loss,
            take_profit=adjusted.take_profit,
            risk_score=assessment.risk_score,
            protective_orders=protective,
        )

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        risk_assessment: RiskAssessment | None = None,
    ) -> TradeResult:
        """Format ``quantity`` to the lot grid and submit a market order."""
        return await self._place(
            symbol=symbol,
            side=side,
            quantity=quantity,
            exchange_type="MARKET",
            local_type=OrderType.MARKET,
            risk_assessment=risk_assessment,
        )

    async def place_protective_orders(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> ProtectiveOrders:
        """Place stop-loss and take-profit orders closing a ``side`` entry.

        The two orders are independent; a failure of one is logged and
        reported without affecting the other or the entry order.
        """
        exit_side = side.opposite()
        results = ProtectiveOrders()

        if stop_loss:
            if exit_side == OrderSide.SELL:
                limit_price = stop_loss * (1 - self.stop_limit_offset)
            else:
                limit_price = stop_loss * (1 + self.stop_limit_offset)
            results.stop_loss_order = await self._place(
                symbol=symbol,
                side=exit_side,
                quantity=quantity,
                exchange_type="STOP_LOSS_LIMIT",
                local_type=OrderType.STOP_LOSS,
                price=limit_price,
                stop_price=stop_loss,
                recorded_price=stop_loss,
            )
            if not results.stop_loss_order.success:
                logger.warning(f"Failed to place stop-loss order: {results.stop_loss_order.reason}")

        if take_profit:
            results.take_profit_order = await self._place(
                symbol=symbol,
                side=exit_side,
                quantity=quantity,
                exchange_type="LIMIT",
                local_type=OrderType.TAKE_PROFIT,
                price=take_profit,
            )
            if not results.take_profit_order.success:
                logger.warning(f"Failed to place take-profit order: {results.take_profit_order.reason}")

        return results

    async def submit_order(self, request: OrderRequest) -> TradeResult:
        """Submit a caller-built order as-is (quantity still lot-formatted)."""
        if not self._execution_enabled:
            return TradeResult.failed(
                "Trade execution is disabled",
                OrderFailure.EXECUTION_DISABLED,
                symbol=request.symbol,
                side=request.side.value,
            )

        result = await self._place(
            symbol=request.symbol,
            side=request.side,
            quantity=request.quantity,
            exchange_type=request.type.value,
            local_type=request.type,
            price=request.price,
            stop_price=request.stop_price,
            stop_loss=request.stop_loss,
            take_profit=request.take_profit,
        )
        if result.success:
            result.details = {
                "symbol": request.symbol,
                "side": request.side.value,
                "quantity": request.quantity,
                "price": request.price or 0.0,
                "type": request.type.value,
                "timestamp": result.timestamp.isoformat(),
            }
        return result

    # Order table

    async def cancel_order(self, order_id: str) -> bool:
        """Cancel a tracked order.

        Returns:
            True if the exchange acknowledged the cancel. False if the order
            is unknown, not yet acknowledged by the exchange, already
            terminal, or the exchange call failed.
        """
        order = self._orders.get(order_id)
        if order is None:
            logger.warning(f"Cannot cancel unknown order {order_id}")
            return False
        if not order.exchange_order_id:
            logger.warning(f"Cannot cancel order {order_id}: no exchange order id yet")
            return False
        if not order.is_active:
            logger.info(f"Order {order_id} already {order.status.value}, nothing to cancel")
            return False

        try:
            await self._bounded(self._exchange.cancel_order(order.symbol, order.exchange_order_id))
        except asyncio.TimeoutError:
            logger.error(f"Cancel of order {order_id} timed out after {self.order_timeout_seconds}s")
            return False
        except Exception as e:
            logger.error(f"Failed to cancel order {order_id}: {e}")
            return False

        order.transition_to(OrderStatus.CANCELLED)
        logger.info(f"Order {order_id} cancelled")
        return True

    def get_order(self, order_id: str) -> OrderInfo | None:
        """Return the tracked order with ``order_id``, or None."""
        return self._orders.get(order_id)

    def list_orders(self) -> list[OrderInfo]:
        """Return every tracked order, active or terminal."""
        return list(self._orders.values())

    def get_active_orders(self) -> list[OrderInfo]:
        """Return orders that are PENDING or SUBMITTED."""
        return [order for order in self._orders.values() if order.is_active]

    def has_active_orders_for_symbol(self, symbol: str) -> bool:
        """Return True if ``symbol`` has a PENDING or SUBMITTED order."""
        return any(order.symbol == symbol for order in self.get_active_orders())

    def get_active_orders_for_symbol(self, symbol: str) -> list[OrderInfo]:
        """Return the PENDING or SUBMITTED orders for ``symbol``."""
        return [order for order in self.get_active_orders() if order.symbol == symbol]

    def get_trading_stats(self) -> TradingStats:
        """Get order counts by status and the fill success rate.

        Returns:
            TradingStats with success_rate as a percentage rounded to 2 places.
        """
        orders = list(self._orders.values())
        total = len(orders)
        filled = sum(1 for o in orders if o.status == OrderStatus.FILLED)
        success_rate = round(filled / total * 100, 2) if total > 0 else 0.0
        return TradingStats(
            total_orders=total,
            active_orders=sum(1 for o in orders if o.is_active),
            filled_orders=filled,
            cancelled_orders=sum(1 for o in orders if o.status == OrderStatus.CANCELLED),
            rejected_orders=sum(1 for o in orders if o.status == OrderStatus.REJECTED),
            success_rate=success_rate,
        )

    async def sync_order_statuses(self) -> int:
        """Refresh active orders from the exchange.

        Returns:
            Number of orders whose status changed.
        """
        changed = 0
        for order in self.get_active_orders():
            if not order.exchange_order_id:
                continue
            try:
                data = await self._bounded(
                    self._exchange.get_order(order.symbol, order.exchange_order_id)
                )
            except Exception as e:
                logger.warning(f"Status sync failed for order {order.id}: {e}")
                continue

            raw_status = str(data.get("status", "")).upper()
            status = EXCHANGE_STATUS_MAP.get(raw_status)
            if status is None:
                logger.warning(f"Unknown exchange status {raw_status!r} for order {order.id}")
                continue

            try:
                if order.transition_to(status):
                    changed += 1
                    logger.info(f"Order {order.id} ({order.symbol}) is now {status.value}")
            except InvalidOrderTransitionError as e:
                logger.warning(str(e))

        return changed

    def get_stale_orders(self, max_age: timedelta) -> list[OrderInfo]:
        """Return active orders created more than ``max_age`` ago."""
        cutoff = self._clock() - max_age
        return [order for order in self.get_active_orders() if order.timestamp < cutoff]

    def prune_completed_orders(self, max_age: timedelta) -> int:
        """Evict terminal orders older than ``max_age``. Active orders are kept.

        Returns:
            Number of evicted orders.
        """
        cutoff = self._clock() - max_age
        expired = [
            order_id
            for order_id, order in self._orders.items()
            if not order.is_active and order.timestamp < cutoff
        ]
        for order_id in expired:
            del self._orders[order_id]
        if expired:
            logger.debug(f"Pruned {len(expired)} completed orders")
        return len(expired)

    # Internals

    async def _place(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        exchange_type: str,
        local_type: OrderType,
        price: float | None = None,
        stop_price: float | None = None,
        recorded_price: float | None = None,
        stop_loss: float | None = None,
        take_profit: float | None = None,
        risk_assessment: RiskAssessment | None = None,
    ) -> TradeResult:
        """Record a PENDING order, submit it and move it to SUBMITTED or REJECTED."""
        try:
            formatted = self._lot_rules.format_quantity(symbol, quantity)
        except InvalidQuantityError as e:
            logger.error(f"Invalid quantity {quantity} for {symbol}: {e}")
            return TradeResult.failed(
                str(e), OrderFailure.INVALID_QUANTITY, symbol=symbol, side=side.value
            )

        order = OrderInfo(
            id=generate_order_id(),
            symbol=symbol,
            side=side,
            type=local_type,
            quantity=float(formatted),
            status=OrderStatus.PENDING,
            timestamp=self._clock(),
            price=recorded_price if recorded_price is not None else price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_assessment=risk_assessment,
        )
        self._orders[order.id] = order

        spec = OrderSpec(
            symbol=symbol,
            side=side.value,
            type=exchange_type,
            quantity=formatted,
            price=price,
            stop_price=stop_price,
            client_order_id=order.id,
        )

        try:
            response = await self._bounded(self._exchange.place_order(spec))
        except asyncio.TimeoutError:
            order.transition_to(OrderStatus.REJECTED)
            logger.error(
                f"{exchange_type} order for {symbol} timed out after {self.order_timeout_seconds}s"
            )
            return TradeResult.failed(
                f"Order submission timed out after {self.order_timeout_seconds}s for {symbol}",
                OrderFailure.TIMEOUT,
                symbol=symbol,
                side=side.value,
                order_id=order.id,
            )
        except Exception as e:
            order.transition_to(OrderStatus.REJECTED)
            return self._categorize_failure(order, exchange_type, quantity, formatted, e)

        order.exchange_order_id = str(response.get("order_id", "")) or None
        order.transition_to(OrderStatus.SUBMITTED)
        logger.info(
            f"{exchange_type} order {order.id} submitted: {side.value} {formatted} {symbol} "
            f"(exchange id {order.exchange_order_id})"
        )
        return TradeResult(
            success=True,
            symbol=symbol,
            side=side.value,
            order_id=order.id,
            exchange_order_id=order.exchange_order_id,
            quantity=order.quantity,
            price=order.price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_score=risk_assessment.risk_score if risk_assessment else None,
        )

    def _categorize_failure(
        self,
        order: OrderInfo,
        exchange_type: str,
        quantity: float,
        formatted: str,
        error: Exception,
    ) -> TradeResult:
        message = str(error)
        common: dict[str, Any] = {
            "symbol": order.symbol,
            "side": order.side.value,
            "order_id": order.id,
        }

        if "LOT_SIZE" in message:
            logger.error(
                f"LOT_SIZE filter violation for {order.symbol}: {message} "
                f"(quantity {quantity}, formatted {formatted})"
            )
            return TradeResult.failed(
                f"LOT_SIZE filter violation: Quantity {quantity} invalid for {order.symbol}. "
                f"Check minimum order size requirements.",
                OrderFailure.LOT_SIZE,
                **common,
            )

        if "NOTIONAL" in message:
            logger.error(f"MIN_NOTIONAL filter violation for {order.symbol}: {message}")
            return TradeResult.failed(
                f"Order value too small: Minimum notional value not met for {order.symbol}",
                OrderFailure.MIN_NOTIONAL,
                **common,
            )

        logger.error(f"Failed to place {exchange_type} order for {order.symbol}: {message}")
        return TradeResult.failed(
            f"{exchange_type.replace('_', ' ').title()} order failed: {message}",
            OrderFailure.EXCHANGE_ERROR,
            **common,
        )

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self.order_timeout_seconds)

    async def _publish(self, event: Event) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event)

    def _disabled_result(self, signal: TradeSignal) -> TradeResult:
        return TradeResult.failed(
            "Trade execution is disabled",
            OrderFailure.EXECUTION_DISABLED,
            symbol=signal.symbol,
            side=signal.side.value,
        )
