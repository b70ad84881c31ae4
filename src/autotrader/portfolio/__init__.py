"""Portfolio module tracking cash, positions and metrics."""

from autotrader.portfolio.base import PortfolioProvider
from autotrader.portfolio.models import Holding, Portfolio, PortfolioMetrics, TradeFill
from autotrader.portfolio.portfolio_manager import PortfolioManager

__all__ = [
    "Holding",
    "Portfolio",
    "PortfolioManager",
    "PortfolioMetrics",
    "PortfolioProvider",
    "TradeFill",
]
