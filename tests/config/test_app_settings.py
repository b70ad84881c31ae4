# tests/config/test_app_settings.py
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from autotrader.agent import AgentSettings
from autotrader.config import (
    ExecutionSettings,
    RiskSettings,
    Settings,
    TradingSettings,
)


class TestSettings:
    def test_load_settings_from_yaml(self, tmp_path):
        config_content = """
system:
  name: "Test System"
  mode: "paper"

trading:
  pairs: [btcusdt, ethusdt]
  initial_capital: 5000

risk:
  max_position_size: 0.2
  kelly_fraction: 0.5
  correlations:
    BTCUSDT: {ETHUSDT: 0.85}

agent:
  trade_cooldown_minutes: 10
  order_type: MARKET
"""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(config_content)

        settings = Settings.from_yaml(config_file)

        assert settings.system.name == "Test System"
        assert settings.trading.pairs == ["BTCUSDT", "ETHUSDT"]
        assert settings.trading.initial_capital == 5000
        assert settings.risk.max_position_size == 0.2
        assert settings.risk.correlations["BTCUSDT"]["ETHUSDT"] == 0.85
        assert settings.agent.trade_cooldown_minutes == 10
        assert settings.agent.order_type == "MARKET"

    def test_settings_defaults(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text('system:\n  name: "Minimal"\n')

        settings = Settings.from_yaml(config_file)

        assert settings.system.name == "Minimal"
        assert settings.risk.max_daily_drawdown == 0.05
        assert settings.agent.signal_dedup_minutes == 5
        assert settings.agent.min_confidence == 0.45
        assert settings.execution.paper_mode is True
        assert settings.journal.data_dir == "data/journal"

    def test_empty_yaml_uses_defaults(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("")

        settings = Settings.from_yaml(config_file)

        assert settings.trading.pairs == ["BTCUSDT", "ETHUSDT"]

    def test_alpaca_credentials_come_from_env(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("alpaca:\n  api_key: from_yaml\n")

        with patch.dict(os.environ, {"ALPACA_API_KEY": "env_key", "ALPACA_SECRET_KEY": "env_secret"}):
            settings = Settings.from_yaml(config_file)

        assert settings.alpaca.api_key == "env_key"
        assert settings.alpaca.secret_key == "env_secret"

    def test_project_config_loads(self):
        settings = Settings.from_yaml("config/settings.yaml")

        assert "ADAUSDT" in settings.trading.pairs
        assert settings.execution.to_lot_rules().filter_for("ADAUSDT").step_size == 0.1


class TestRiskSettings:
    def test_to_limits(self):
        limits = RiskSettings(max_trades_per_day=20).to_limits()

        assert limits.max_trades_per_day == 20
        assert limits.kelly_fraction == 0.25
        assert limits.max_position_size == 0.1

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_position_size", 0.0),
            ("max_position_size", 1.5),
            ("kelly_fraction", 0.0),
            ("default_avg_loss", 0.01),
            ("max_trades_per_day", 0),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            RiskSettings(**{field: value})

    def test_correlation_out_of_range(self):
        with pytest.raises(ValidationError):
            RiskSettings(correlations={"BTCUSDT": {"ETHUSDT": 1.2}})


class TestExecutionSettings:
    def test_default_lot_rules(self):
        rules = ExecutionSettings().to_lot_rules()

        assert rules.format_quantity("ADAUSDT", 1225.189) == "1225.1"

    def test_custom_filters(self):
        settings = ExecutionSettings(
            symbol_filters={"solusdt": {"min_qty": 0.01, "step_size": 0.01, "min_notional": 5}}
        )

        rules = settings.to_lot_rules()

        assert rules.filter_for("SOLUSDT").min_qty == 0.01
        assert rules.format_quantity("SOLUSDT", 1.239) == "1.23"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            ExecutionSettings(order_timeout_seconds=0)


class TestAgentSettings:
    def test_order_type_is_restricted(self):
        with pytest.raises(ValidationError):
            AgentSettings(order_type="STOP_LOSS")

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            AgentSettings(min_confidence=1.5)


def test_trading_settings_capital_must_be_positive():
    with pytest.raises(ValidationError):
        TradingSettings(initial_capital=0)
