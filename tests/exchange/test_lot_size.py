"""Tests for lot-size rules and quantity formatting."""

from decimal import Decimal

import pytest

from autotrader.exchange.lot_size import (
    FALLBACK_FILTER,
    InvalidQuantityError,
    LotSizeRules,
    SymbolFilter,
)


@pytest.fixture
def rules():
    return LotSizeRules()


class TestSymbolFilter:
    """Tests for SymbolFilter precision."""

    @pytest.mark.parametrize(
        "step,expected",
        [(0.00001, 5), (0.0001, 4), (0.1, 1), (0.001, 3), (1.0, 0)],
    )
    def test_precision_from_step(self, step, expected):
        assert SymbolFilter(min_qty=step, step_size=step).precision == expected


class TestFormatQuantity:
    """Tests for LotSizeRules.format_quantity."""

    def test_ada_rounds_down_to_step(self, rules):
        """1225.189 ADA with step 0.1 formats to 1225.1."""
        assert rules.format_quantity("ADAUSDT", 1225.189) == "1225.1"

    def test_btc_rounds_down_to_five_decimals(self, rules):
        assert rules.format_quantity("BTCUSDT", 0.0200009) == "0.02000"

    def test_eth_uses_four_decimals(self, rules):
        assert rules.format_quantity("ETHUSDT", 1.23456) == "1.2345"

    def test_below_minimum_is_bumped_to_minimum(self, rules):
        assert rules.format_quantity("BTCUSDT", 0.000001) == "0.00001"
        assert rules.format_quantity("ADAUSDT", 0.05) == "0.1"

    def test_unknown_symbol_uses_fallback_filter(self, rules):
        assert rules.filter_for("SOLUSDT") == FALLBACK_FILTER
        assert rules.format_quantity("SOLUSDT", 2.34567) == "2.345"

    def test_symbol_lookup_is_case_insensitive(self, rules):
        assert rules.format_quantity("adausdt", 10.55) == "10.5"

    @pytest.mark.parametrize(
        "symbol,quantity",
        [
            ("BTCUSDT", 0.0123456789),
            ("ETHUSDT", 3.14159),
            ("ADAUSDT", 1225.189),
            ("SOLUSDT", 0.0004),
            ("BTCUSDT", 12.3),
        ],
    )
    def test_formatting_is_idempotent(self, rules, symbol, quantity):
        once = rules.format_quantity(symbol, quantity)
        twice = rules.format_quantity(symbol, once)

        assert once == twice
        assert Decimal(once) >= Decimal(str(rules.min_quantity(symbol)))

    @pytest.mark.parametrize("quantity", [0, -1.0, float("nan"), float("inf"), float("-inf")])
    def test_invalid_quantity_raises(self, rules, quantity):
        with pytest.raises(InvalidQuantityError):
            rules.format_quantity("BTCUSDT", quantity)

    def test_invalid_quantity_is_value_error(self, rules):
        with pytest.raises(ValueError):
            rules.format_quantity("BTCUSDT", "not-a-number")

    def test_custom_filters_replace_defaults(self):
        rules = LotSizeRules({"XRPUSDT": SymbolFilter(min_qty=1.0, step_size=1.0)})

        assert rules.format_quantity("XRPUSDT", 15.9) == "15"
        assert rules.filter_for("BTCUSDT") == FALLBACK_FILTER
