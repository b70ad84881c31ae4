"""Portfolio provider protocol consumed by the trading agent."""

from typing import Protocol, runtime_checkable

from autotrader.portfolio.models import Portfolio, PortfolioMetrics, TradeFill


@runtime_checkable
class PortfolioProvider(Protocol):
    async def get_portfolio(self) -> Portfolio:
        ...

    async def update_after_trade(self, fill: TradeFill) -> float:
        """Book an executed trade. Returns realized PnL."""
        ...

    async def close_all_positions(self) -> int:
        """Flatten every open position. Returns the number closed."""
        ...

    async def update_metrics(self, force: bool = False) -> PortfolioMetrics | None:
        """Refresh prices. Returns None when throttled."""
        ...
