# src/autotrader/portfolio/portfolio_manager.py
"""In-memory portfolio book marked to exchange prices."""

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from autotrader.exchange.base import ExchangeClient, OrderSpec
from autotrader.exchange.lot_size import LotSizeRules
from autotrader.portfolio.models import Holding, Portfolio, PortfolioMetrics, TradeFill


logger = logging.getLogger(__name__)


class PortfolioManager:
    """Tracks cash and positions and marks them to market.

    Attributes:
        metrics_interval: Minimum time between two metric refreshes.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        initial_capital: float,
        lot_rules: LotSizeRules | None = None,
        metrics_interval_seconds: float = 60.0,
        order_timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if initial_capital <= 0:
            raise ValueError("initial_capital must be positive")

        self._exchange = exchange
        self._lot_rules = lot_rules or LotSizeRules()
        self._cash = initial_capital
        self._holdings: dict[str, Holding] = {}
        self._realized_pnl = 0.0
        self._last_metrics_update: datetime | None = None
        self._order_timeout = order_timeout_seconds
        self._clock = clock
        self.metrics_interval = timedelta(seconds=metrics_interval_seconds)

    @property
    def cash(self) -> float:
        """Uninvested cash balance."""
        return self._cash

    @property
    def realized_pnl(self) -> float:
        """Total realized PnL since start."""
        return self._realized_pnl

    def get_holding(self, symbol: str) -> Holding | None:
        """Return the holding for ``symbol``, or None if flat."""
        return self._holdings.get(symbol)

    def total_value(self) -> float:
        """Cash plus the marked value of every holding."""
        return self._cash + sum(h.market_value for h in self._holdings.values())

    async def get_portfolio(self) -> Portfolio:
        """Return a snapshot of value, positions and cash."""
        return Portfolio(
            total_value=self.total_value(),
            positions={symbol: h.quantity for symbol, h in self._holdings.items()},
            cash=self._cash,
        )

    async def update_after_trade(self, fill: TradeFill) -> float:
        """Book an executed trade.

        Returns:
            Realized PnL of the portion that reduced an existing position.

        Raises:
            ValueError: If the fill has an empty symbol, a non-finite or zero
                quantity, or a non-positive price.
        """
        if not fill.symbol or not fill.symbol.strip():
            raise ValueError("Invalid symbol in trade data")
        if not math.isfinite(fill.quantity) or fill.quantity == 0:
            raise ValueError("Invalid quantity in trade data")
        if not math.isfinite(fill.price) or fill.price <= 0:
            raise ValueError("Invalid price in trade data")

        self._cash -= fill.quantity * fill.price
        realized = 0.0

        holding = self._holdings.get(fill.symbol)
        if holding is None:
            self._holdings[fill.symbol] = Holding(
                symbol=fill.symbol,
                quantity=fill.quantity,
                entry_price=fill.price,
                current_price=fill.price,
                unrealized_pnl=0.0,
                timestamp=fill.timestamp,
            )
            logger.info(f"Opened {fill.symbol} position: {fill.quantity} @ {fill.price}")
            return realized

        old_qty = holding.quantity
        new_qty = old_qty + fill.quantity

        if old_qty * fill.quantity > 0:
            holding.entry_price = (
                old_qty * holding.entry_price + fill.quantity * fill.price
            ) / new_qty
        else:
            closed_qty = min(abs(fill.quantity), abs(old_qty))
            direction = 1 if old_qty > 0 else -1
            realized = (fill.price - holding.entry_price) * closed_qty * direction
            self._realized_pnl += realized
            if old_qty * new_qty < 0:
                holding.entry_price = fill.price

        if abs(new_qty) < 1e-12:
            del self._holdings[fill.symbol]
            logger.info(f"Closed {fill.symbol} position, realized PnL {realized:.2f}")
            return realized

        holding.quantity = new_qty
        holding.current_price = fill.price
        holding.unrealized_pnl = (fill.price - holding.entry_price) * new_qty
        holding.timestamp = fill.timestamp
        logger.info(f"Updated {fill.symbol} position: {new_qty} @ {holding.entry_price:.8f}")
        return realized

    async def close_all_positions(self) -> int:
        """Flatten every position with market orders.

        Positions whose close order fails stay on the book and are logged.

        Returns:
            Number of positions closed.
        """
        holdings = [h for h in self._holdings.values() if h.quantity != 0]
        if not holdings:
            return 0

        results = await asyncio.gather(
            *(self._close_position(h) for h in holdings),
            return_exceptions=True,
        )

        closed = 0
        for holding, result in zip(holdings, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to close {holding.symbol} position: {result}")
            else:
                closed += 1

        logger.info(f"Closed {closed}/{len(holdings)} positions")
        return closed

    async def update_metrics(self, force: bool = False) -> PortfolioMetrics | None:
        """Mark positions to market, at most once per ``metrics_interval``."""
        now = self._clock()
        if (
            not force
            and self._last_metrics_update is not None
            and now - self._last_metrics_update < self.metrics_interval
        ):
            return None

        for holding in list(self._holdings.values()):
            try:
                price = await asyncio.wait_for(
                    self._exchange.get_ticker_price(holding.symbol), timeout=self._order_timeout
                )
            except Exception as e:
                logger.warning(f"Price refresh failed for {holding.symbol}: {e}")
                continue
            holding.current_price = price
            holding.unrealized_pnl = (price - holding.entry_price) * holding.quantity

        self._last_metrics_update = now
        metrics = PortfolioMetrics(
            total_value=self.total_value(),
            cash=self._cash,
            unrealized_pnl=sum(h.unrealized_pnl for h in self._holdings.values()),
            realized_pnl=self._realized_pnl,
            open_positions=len(self._holdings),
            updated_at=now,
        )
        logger.debug(f"Portfolio metrics: value={metrics.total_value:.2f} open={metrics.open_positions}")
        return metrics

    async def _close_position(self, holding: Holding) -> float:
        side = "SELL" if holding.quantity > 0 else "BUY"
        quantity = self._lot_rules.format_quantity(holding.symbol, abs(holding.quantity))
        price = await asyncio.wait_for(
            self._exchange.get_ticker_price(holding.symbol), timeout=self._order_timeout
        )
        await asyncio.wait_for(
            self._exchange.place_order(
                OrderSpec(symbol=holding.symbol, side=side, type="MARKET", quantity=quantity)
            ),
            timeout=self._order_timeout,
        )
        return await self.update_after_trade(
            TradeFill(
                symbol=holding.symbol,
                quantity=-holding.quantity,
                price=price,
                timestamp=self._clock(),
            )
        )
