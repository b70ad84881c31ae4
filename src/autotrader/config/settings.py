from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autotrader.agent.settings import AgentSettings
from autotrader.exchange.lot_size import DEFAULT_FILTERS, LotSizeRules, SymbolFilter
from autotrader.journal.settings import JournalSettings
from autotrader.risk.models import RiskLimits


class SystemConfig(BaseModel):
    name: str = "Autotrader Execution Core"
    version: str = "1.0.0"
    mode: str = "paper"


class TradingSettings(BaseModel):
    """Settings for the traded universe and account."""

    pairs: list[str] = Field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    initial_capital: float = Field(default=10000.0, gt=0)
    signal_file: str = "data/signals.jsonl"

    @field_validator("pairs")
    @classmethod
    def normalize_pairs(cls, v: list[str]) -> list[str]:
        """Upper-case symbols so lookups are case-insensitive."""
        return [symbol.upper() for symbol in v]


class RiskSettings(BaseModel):
    """Settings for risk management and position sizing."""

    max_position_size: float = Field(default=0.1, gt=0.0, le=1.0)
    max_daily_drawdown: float = Field(default=0.05, gt=0.0, le=1.0)
    max_total_drawdown: float = Field(default=0.2, gt=0.0, le=1.0)
    max_correlation: float = Field(default=0.7, ge=0.0, le=1.0)
    max_leverage: float = Field(default=1.0, ge=1.0, le=10.0)
    max_trades_per_day: int = Field(default=100, ge=1)
    kelly_fraction: float = Field(default=0.25, gt=0.0, le=1.0)

    # Sizing defaults when a signal carries no statistics
    default_avg_win: float = Field(default=0.025, gt=0.0, le=1.0)
    default_avg_loss: float = Field(default=-0.015, lt=0.0, ge=-1.0)
    base_trade_size: Optional[float] = Field(default=None, gt=0.0)

    # Protective order distances
    stop_loss_percent: float = Field(default=0.02, gt=0.0, le=0.5)
    max_take_profit_percent: float = Field(default=0.04, gt=0.0, le=1.0)

    correlations: dict[str, dict[str, float]] = Field(default_factory=dict)

    @field_validator("correlations")
    @classmethod
    def validate_correlations(cls, v: dict[str, dict[str, float]]) -> dict[str, dict[str, float]]:
        """Validate that every correlation lies in [-1, 1]."""
        for symbol, row in v.items():
            for other, value in row.items():
                if not -1.0 <= value <= 1.0:
                    raise ValueError(
                        f"Correlation {symbol}/{other}={value} must be between -1 and 1"
                    )
        return v

    def to_limits(self) -> RiskLimits:
        """Build the RiskLimits used by RiskManager."""
        return RiskLimits(
            max_position_size=self.max_position_size,
            max_daily_drawdown=self.max_daily_drawdown,
            max_total_drawdown=self.max_total_drawdown,
            max_correlation=self.max_correlation,
            max_leverage=self.max_leverage,
            max_trades_per_day=self.max_trades_per_day,
            kelly_fraction=self.kelly_fraction,
        )


class SymbolFilterSettings(BaseModel):
    min_qty: float = Field(gt=0)
    step_size: float = Field(gt=0)
    min_notional: float = Field(default=0.0, ge=0)


def _default_symbol_filters() -> dict[str, SymbolFilterSettings]:
    return {
        symbol: SymbolFilterSettings(
            min_qty=lot.min_qty, step_size=lot.step_size, min_notional=lot.min_notional
        )
        for symbol, lot in DEFAULT_FILTERS.items()
    }


class ExecutionSettings(BaseModel):
    """Settings for order execution."""

    enabled: bool = True
    paper_mode: bool = True
    order_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    stop_limit_offset: float = Field(default=0.001, ge=0.0, le=0.05)
    metrics_interval_seconds: float = Field(default=60.0, gt=0)
    symbol_filters: dict[str, SymbolFilterSettings] = Field(default_factory=_default_symbol_filters)

    def to_lot_rules(self) -> LotSizeRules:
        """Build lot-size rules from the configured symbol filters."""
        return LotSizeRules(
            {
                symbol.upper(): SymbolFilter(
                    min_qty=lot.min_qty, step_size=lot.step_size, min_notional=lot.min_notional
                )
                for symbol, lot in self.symbol_filters.items()
            }
        )


class AlpacaConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ALPACA_")

    api_key: str = ""
    secret_key: str = ""
    paper: bool = True


class Settings(BaseModel):
    system: SystemConfig = Field(default_factory=SystemConfig)
    trading: TradingSettings = Field(default_factory=TradingSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    journal: JournalSettings = Field(default_factory=JournalSettings)
    alpaca: AlpacaConfig = Field(default_factory=AlpacaConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from YAML file with env var overrides."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        data.pop("alpaca", None)
        alpaca = AlpacaConfig()

        return cls(
            **data,
            alpaca=alpaca,
        )
