# src/autotrader/exchange/lot_size.py
"""Exchange lot-size filters and quantity formatting."""

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation


logger = logging.getLogger(__name__)


class InvalidQuantityError(ValueError):
    """Raised when a quantity is non-finite or non-positive."""


@dataclass(frozen=True)
class SymbolFilter:
    """Lot constraints for one symbol.

    Attributes:
        min_qty: Smallest quantity the exchange accepts.
        step_size: Quantity increment above ``min_qty``.
        min_notional: Smallest order value (quantity x price) accepted.
    """

    min_qty: float
    step_size: float
    min_notional: float = 0.0

    @property
    def precision(self) -> int:
        """Number of decimal places implied by the step size."""
        exponent = Decimal(str(self.step_size)).normalize().as_tuple().exponent
        return max(0, -exponent)


DEFAULT_FILTERS: dict[str, SymbolFilter] = {
    "BTCUSDT": SymbolFilter(min_qty=0.00001, step_size=0.00001, min_notional=10.0),
    "ETHUSDT": SymbolFilter(min_qty=0.0001, step_size=0.0001, min_notional=10.0),
    "ADAUSDT": SymbolFilter(min_qty=0.1, step_size=0.1, min_notional=5.0),
}

FALLBACK_FILTER = SymbolFilter(min_qty=0.001, step_size=0.001, min_notional=10.0)


class LotSizeRules:
    """Per-symbol lot-size lookup and quantity rounding."""

    def __init__(
        self,
        filters: dict[str, SymbolFilter] | None = None,
        default: SymbolFilter = FALLBACK_FILTER,
    ):
        self._filters = dict(DEFAULT_FILTERS if filters is None else filters)
        self._default = default

    def filter_for(self, symbol: str) -> SymbolFilter:
        """Return the filter for ``symbol`` or the default filter."""
        return self._filters.get(symbol.upper(), self._default)

    def min_quantity(self, symbol: str) -> float:
        """Smallest tradable quantity for ``symbol``."""
        return self.filter_for(symbol).min_qty

    def round_quantity(self, symbol: str, quantity: float | str) -> Decimal:
        """Round ``quantity`` down onto the symbol's lot grid.

        Raises:
            InvalidQuantityError: If ``quantity`` is non-finite or <= 0.
        """
        try:
            qty = Decimal(str(quantity))
        except InvalidOperation:
            qty = Decimal("NaN")
        if isinstance(quantity, bool) or not qty.is_finite() or qty <= 0:
            raise InvalidQuantityError(
                f"Invalid quantity: {quantity}. Must be a positive finite number."
            )

        lot = self.filter_for(symbol)
        min_qty = Decimal(str(lot.min_qty))
        step = Decimal(str(lot.step_size))

        if qty <= min_qty:
            rounded = min_qty
        else:
            steps = ((qty - min_qty) / step).to_integral_value(rounding=ROUND_DOWN)
            rounded = min_qty + steps * step

        quantum = Decimal(1).scaleb(-lot.precision)
        rounded = rounded.quantize(quantum, rounding=ROUND_DOWN)
        if rounded < min_qty:
            rounded = min_qty.quantize(quantum)
        return rounded

    def format_quantity(self, symbol: str, quantity: float | str) -> str:
        """Format ``quantity`` as an exchange-valid string for ``symbol``.

        Rounds down to the nearest step above the minimum, bumps to the
        minimum when below it, and renders with the step's precision.
        Formatting an already valid quantity returns it unchanged.
        """
        rounded = self.round_quantity(symbol, quantity)
        formatted = f"{rounded:.{self.filter_for(symbol).precision}f}"
        logger.debug(f"Formatted quantity for {symbol}: {quantity} -> {formatted}")
        return formatted
