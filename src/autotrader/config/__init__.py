from autotrader.config.settings import (
    AlpacaConfig,
    ExecutionSettings,
    RiskSettings,
    Settings,
    SymbolFilterSettings,
    SystemConfig,
    TradingSettings,
)

__all__ = [
    "AlpacaConfig",
    "ExecutionSettings",
    "RiskSettings",
    "Settings",
    "SymbolFilterSettings",
    "SystemConfig",
    "TradingSettings",
]
