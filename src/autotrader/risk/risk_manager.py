# src/autotrader/risk/risk_manager.py
"""Risk management engine for sizing and approving trades."""

import logging
import math
from collections.abc import Callable, Mapping
from datetime import datetime

from autotrader.exchange.lot_size import LotSizeRules
from autotrader.models.trade_signal import SignalSide, TradeSignal
from autotrader.risk.models import (
    CircuitBreakerStatus,
    DailyRiskState,
    PositionInfo,
    PositionSide,
    RiskAssessment,
    RiskLimits,
)
from autotrader.risk.state import RiskState


logger = logging.getLogger(__name__)

# Signals below this confidence are never traded, whatever the caller's threshold.
CONFIDENCE_FLOOR = 0.6
MIN_KELLY_FRACTION = 0.001
BASE_VOLATILITY_RISK = 20.0
BASE_WIN_RATE = 0.55
FALLBACK_PORTFOLIO_PERCENT = 0.02
MIN_FALLBACK_CONFIDENCE = 0.01


class RiskManager:
    """Sole authority on whether to trade and how much.

    Sizes positions with a capped Kelly criterion, enforces daily trade
    limits, drawdown limits, concentration and correlation limits, and owns
    the circuit breaker. Performs no I/O; all mutable state lives in the
    injected ``RiskState``.

    Attributes:
        limits: Account-level risk limits.
        avg_win: Average winning return used when a signal has none.
        avg_loss: Average losing return (negative) used for the payoff ratio.
    """

    def __init__(
        self,
        limits: RiskLimits,
        state: RiskState,
        lot_rules: LotSizeRules | None = None,
        correlations: Mapping[str, Mapping[str, float]] | None = None,
        avg_win: float = 0.025,
        avg_loss: float = -0.015,
        base_trade_size: float | None = None,
        stop_loss_percent: float = 0.02,
        max_take_profit_percent: float = 0.04,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize RiskManager.

        Args:
            limits: Account-level risk limits.
            state: Shared risk state (portfolio value, positions, breaker).
            lot_rules: Lot-size rules used to floor fallback sizes.
            correlations: Static symbol correlation matrix. Empty means no
                symbols are considered correlated.
            avg_win: Average winning return used when a signal has none.
            avg_loss: Average losing return, must be negative.
            base_trade_size: Fixed fallback size in base units, scaled by
                confidence. None uses a portfolio percentage instead.
            stop_loss_percent: Default stop-loss distance.
            max_take_profit_percent: Take-profit distance at confidence 1.0.
            clock: Source of the current local time.
        """
        self.limits = limits
        self.avg_win = avg_win
        self.avg_loss = avg_loss
        self._state = state
        self._lot_rules = lot_rules or LotSizeRules()
        self._correlations = {
            symbol.upper(): {other.upper(): value for other, value in row.items()}
            for symbol, row in (correlations or {}).items()
        }
        self._base_trade_size = base_trade_size
        self._stop_loss_percent = stop_loss_percent
        self._max_take_profit_percent = max_take_profit_percent
        self._clock = clock

    @property
    def state(self) -> RiskState:
        return self._state

    def assess_trade_risk(self, signal: TradeSignal, current_price: float) -> RiskAssessment:
        """Decide whether ``signal`` may trade at ``current_price`` and how much.

        Checks run in order and the first failure short-circuits:
        1. Price validity
        2. Daily counter rollover
        3. Circuit breaker
        4. Daily trade limit, drawdown limits, confidence validity and floor
        5. Kelly position size
        6. Portfolio concentration
        7. Correlated exposure
        8. Risk score

        Never raises; unexpected errors become a conservative rejection.

        Args:
            signal: Signal to assess.
            current_price: Current market price of the symbol.

        Returns:
            RiskAssessment with approval, size in base units and risk score.
        """
        try:
            if not _is_positive_finite(current_price):
                return RiskAssessment.rejected("Invalid or zero price", 100)

            with self._state.lock:
                self._check_and_reset_daily()

                if self._state.circuit_breaker_active:
                    return RiskAssessment.rejected("Circuit breaker active - trading halted", 100)

                basic = self._perform_basic_risk_checks(signal)
                if basic is not None:
                    return basic

                position_size = self.calculate_kelly_position_size(signal, current_price)

                concentration = self._check_portfolio_concentration(
                    signal.symbol, position_size, current_price
                )
                if not concentration.approved:
                    self._state.decrement_trades()
                    return concentration
                position_size = concentration.position_size

                correlation = self._check_correlation_risk(signal.symbol, position_size)
                if not correlation.approved:
                    self._state.decrement_trades()
                    return correlation

                if not _is_positive_finite(position_size):
                    self._state.decrement_trades()
                    return RiskAssessment.rejected(
                        f"Unable to compute a valid position size ({position_size})", 100
                    )

                risk_score = self._calculate_risk_score(signal, position_size, current_price)

            adjusted = signal.with_protection(
                stop_loss=signal.stop_loss or self.calculate_stop_loss(current_price, signal.side),
                take_profit=signal.take_profit
                or self.calculate_take_profit(current_price, signal.side, signal.confidence),
            )
            logger.info(
                f"Risk approved {signal.symbol} {signal.side.value}: "
                f"size={position_size:.8f} score={risk_score:.1f}"
            )
            return RiskAssessment(
                approved=True,
                position_size=position_size,
                risk_score=risk_score,
                reason=concentration.reason,
                adjusted_signal=adjusted,
            )

        except Exception as e:
            logger.error(f"Risk assessment error for {signal.symbol}: {e}")
            return RiskAssessment.rejected("Risk assessment error", 100)

    def calculate_kelly_position_size(self, signal: TradeSignal, current_price: float) -> float:
        """Size a position with a capped Kelly criterion.

        f = (b*p - q) / b, with b = avg_win / |avg_loss|, p the win
        probability and q = 1 - p. f is clamped to [0, kelly cap], scaled by
        confidence^1.5 and capped at ``max_position_size`` of the portfolio.

        Any invalid intermediate falls back to ``calculate_fallback_position_size``.

        Returns:
            Position size in base units (0 only on unrecoverable input).
        """
        try:
            if not _is_positive_finite(current_price):
                logger.warning(f"Invalid current price {current_price} for sizing, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            portfolio_value = self._state.portfolio_value
            if not _is_positive_finite(portfolio_value):
                logger.warning(f"Invalid portfolio value {portfolio_value}, cannot size position")
                return 0.0

            win_prob = signal.win_probability or self.estimate_win_probability(signal)
            avg_win = signal.expected_return or self.avg_win
            avg_loss = self.avg_loss

            if not math.isfinite(win_prob) or win_prob <= 0 or win_prob >= 1:
                logger.warning(f"Invalid win probability: {win_prob}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            if not math.isfinite(avg_win) or avg_win <= 0:
                logger.warning(f"Invalid average win: {avg_win}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            if not math.isfinite(avg_loss) or avg_loss >= 0:
                logger.warning(f"Invalid average loss: {avg_loss}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            b = avg_win / abs(avg_loss)
            if not math.isfinite(b) or b <= 0:
                logger.warning(f"Invalid payoff ratio: {b}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            p = win_prob
            q = 1 - p
            kelly = (b * p - q) / b
            if not math.isfinite(kelly) or kelly < 0:
                logger.warning(f"Invalid Kelly fraction: {kelly}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            kelly = max(0.0, min(kelly, self.limits.kelly_fraction))
            if kelly < MIN_KELLY_FRACTION:
                logger.warning(f"Kelly fraction too small: {kelly}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            target_value = portfolio_value * kelly * signal.confidence ** 1.5
            max_value = portfolio_value * self.limits.max_position_size
            position_size = min(target_value, max_value) / current_price

            if not _is_positive_finite(position_size):
                logger.warning(f"Invalid final position size: {position_size}, using fallback")
                return self.calculate_fallback_position_size(signal, current_price)

            return position_size

        except Exception as e:
            logger.error(f"Kelly position sizing error: {e}")
            return self.calculate_fallback_position_size(signal, current_price)

    def calculate_fallback_position_size(self, signal: TradeSignal, current_price: float) -> float:
        """Deterministic sizing used when Kelly sizing is not usable.

        Uses ``base_trade_size * confidence`` when a base size is configured,
        otherwise 2% of the portfolio scaled by confidence^1.5 and capped by
        ``max_position_size``. The result is floored to the symbol's minimum
        order quantity.

        Returns:
            Position size in base units, or 0 for a non-finite/non-positive price.
        """
        if not _is_positive_finite(current_price):
            logger.error(f"Fallback sizing impossible for {signal.symbol}: price {current_price}")
            return 0.0

        confidence = signal.confidence
        if not math.isfinite(confidence) or confidence <= 0 or confidence > 1:
            logger.warning(f"Invalid confidence {confidence}, using minimum viable confidence")
            confidence = MIN_FALLBACK_CONFIDENCE

        if self._base_trade_size and self._base_trade_size > 0:
            position_size = self._base_trade_size * confidence
        else:
            portfolio_value = self._state.portfolio_value
            target_value = min(
                portfolio_value * FALLBACK_PORTFOLIO_PERCENT * confidence ** 1.5,
                portfolio_value * self.limits.max_position_size,
            )
            position_size = target_value / current_price

        min_size = self._lot_rules.min_quantity(signal.symbol)
        if not math.isfinite(position_size) or position_size < min_size:
            logger.debug(f"Fallback size {position_size} below minimum {min_size} for {signal.symbol}")
            position_size = min_size

        return position_size

    def estimate_win_probability(self, signal: TradeSignal) -> float:
        """Estimate win probability from confidence, clamped to [0.1, 0.9]."""
        return max(0.1, min(0.9, BASE_WIN_RATE + (signal.confidence - 0.5) * 0.2))

    def calculate_stop_loss(self, price: float, side: SignalSide) -> float:
        """Default stop-loss price ``stop_loss_percent`` away from ``price``.

        The stop sits below the entry for BUY and above it for SELL.
        """
        if side == SignalSide.SELL:
            return price * (1 + self._stop_loss_percent)
        return price * (1 - self._stop_loss_percent)

    def calculate_take_profit(self, price: float, side: SignalSide, confidence: float) -> float:
        """Take-profit price scaled by confidence.

        Distance is ``max_take_profit_percent * confidence`` in the direction
        of the trade.
        """
        take_profit_percent = self._max_take_profit_percent * confidence
        if side == SignalSide.SELL:
            return price * (1 - take_profit_percent)
        return price * (1 + take_profit_percent)

    def evaluate_position(
        self,
        symbol: str,
        confidence: float,
        portfolio_value: float,
        current_price: float,
    ) -> float:
        """Return the approved BUY size for ``symbol``, or 0 if rejected."""
        self.update_portfolio_value(portfolio_value)
        signal = TradeSignal(
            symbol=symbol,
            side=SignalSide.BUY,
            confidence=confidence,
            timestamp=self._clock(),
        )
        assessment = self.assess_trade_risk(signal, current_price)
        if not assessment.approved:
            logger.info(f"Position evaluation rejected: {assessment.reason}")
            return 0.0
        return assessment.position_size

    # State updates

    def update_portfolio_value(self, value: float) -> None:
        """Record the latest portfolio value; non-positive values are ignored."""
        if not _is_positive_finite(value):
            logger.warning(f"Ignoring invalid portfolio value: {value}")
            return
        self._state.set_portfolio_value(value)

    def record_fill(self, symbol: str, side: SignalSide, quantity: float, price: float) -> None:
        """Apply a fill to the tracked position for ``symbol``.

        The position is removed once it is flat.
        """
        signed_qty = quantity if side == SignalSide.BUY else -quantity
        with self._state.lock:
            existing = self._state.get_position(symbol)
            current = 0.0
            entry_price = price
            if existing is not None:
                current = existing.size if existing.side == PositionSide.LONG else -existing.size
                entry_price = existing.entry_price

            net = current + signed_qty
            if abs(net) < 1e-12:
                self._state.remove_position(symbol)
                return

            if existing is None or (current > 0) != (net > 0):
                entry_price = price
            elif abs(net) > abs(current):
                entry_price = (abs(current) * entry_price + quantity * price) / abs(net)

            side_held = PositionSide.LONG if net > 0 else PositionSide.SHORT
            direction = 1 if side_held == PositionSide.LONG else -1
            self._state.set_position(
                PositionInfo(
                    symbol=symbol,
                    size=abs(net),
                    entry_price=entry_price,
                    current_price=price,
                    unrealized_pnl=(price - entry_price) * abs(net) * direction,
                    side=side_held,
                    timestamp=self._clock(),
                )
            )

    def update_position_price(self, symbol: str, price: float) -> None:
        """Mark an open position to ``price`` and refresh its unrealized PnL."""
        with self._state.lock:
            position = self._state.get_position(symbol)
            if position is None or not _is_positive_finite(price):
                return
            direction = 1 if position.side == PositionSide.LONG else -1
            position.current_price = price
            position.unrealized_pnl = (price - position.entry_price) * position.size * direction

    def record_realized_pnl(self, pnl: float) -> None:
        """Add realized PnL to today's running total."""
        with self._state.lock:
            self._check_and_reset_daily()
            self._state.add_daily_pnl(pnl)

    def clear_positions(self) -> None:
        """Forget all tracked positions."""
        self._state.clear_positions()

    # Circuit breaker

    def is_circuit_breaker_active(self) -> bool:
        """Return True while trading is halted by the circuit breaker."""
        return self._state.circuit_breaker_active

    def get_circuit_breaker_status(self) -> CircuitBreakerStatus:
        """Get a snapshot of the circuit breaker state."""
        return self._state.circuit_breaker_snapshot()

    def circuit_breaker_reason(self) -> str | None:
        """Return why the breaker tripped, or None if it never has."""
        return self._state.circuit_breaker_snapshot().reason

    def reset_circuit_breaker(self, operator: str) -> None:
        """Manually re-enable trading after the breaker tripped.

        Args:
            operator: Identity of the person authorizing the reset.

        Raises:
            ValueError: If ``operator`` is empty.
        """
        if not operator or not operator.strip():
            raise ValueError("Circuit breaker reset requires an operator identity")
        self._state.reset_circuit_breaker(operator.strip(), self._clock())
        logger.warning(f"Circuit breaker manually reset by {operator.strip()}")

    # Getters

    def get_portfolio_value(self) -> float:
        """Get the latest recorded portfolio value."""
        return self._state.portfolio_value

    def get_positions(self) -> dict[str, PositionInfo]:
        """Get a copy of the tracked positions keyed by symbol."""
        return self._state.positions()

    def get_risk_limits(self) -> RiskLimits:
        return self.limits

    def get_daily_state(self) -> DailyRiskState:
        """Get current daily risk state."""
        return self._state.daily_snapshot()

    # Internal checks

    def _check_and_reset_daily(self) -> None:
        if self._state.roll_day(self._clock().date()):
            logger.info("New trading day - daily risk counters reset")

    def _trigger_circuit_breaker(self, reason: str) -> None:
        if self._state.trigger_circuit_breaker(reason, self._clock()):
            logger.critical(
                f"CIRCUIT BREAKER TRIGGERED: {reason} "
                f"(portfolio value {self._state.portfolio_value:.2f})"
            )

    def _perform_basic_risk_checks(self, signal: TradeSignal) -> RiskAssessment | None:
        """Daily trade limit, drawdown limits, confidence validity and floor.

        Returns:
            A rejection, or None if all checks passed. The daily counter stays
            incremented only when the checks pass.
        """
        trades = self._state.increment_trades()
        if trades > self.limits.max_trades_per_day:
            self._state.decrement_trades()
            return RiskAssessment.rejected(
                f"Daily trade limit reached ({self.limits.max_trades_per_day})", 80
            )

        drawdown = self._state.current_drawdown()
        if drawdown >= self.limits.max_daily_drawdown:
            self._state.decrement_trades()
            self._trigger_circuit_breaker("Daily drawdown limit exceeded")
            return RiskAssessment.rejected("Daily drawdown limit exceeded", 100)

        if drawdown >= self.limits.max_total_drawdown:
            self._state.decrement_trades()
            self._trigger_circuit_breaker("Total drawdown limit exceeded")
            return RiskAssessment.rejected("Total drawdown limit exceeded", 100)

        if not signal.has_valid_confidence:
            self._state.decrement_trades()
            return RiskAssessment.rejected(f"Invalid signal confidence: {signal.confidence}", 70)

        if signal.confidence < CONFIDENCE_FLOOR:
            self._state.decrement_trades()
            return RiskAssessment.rejected("Signal confidence too low", 70)

        return None

    def _check_portfolio_concentration(
        self, symbol: str, position_size: float, current_price: float
    ) -> RiskAssessment:
        """Shrink or reject a position that would exceed the per-symbol limit."""
        portfolio_value = self._state.portfolio_value
        existing = self._state.get_position(symbol)
        current_exposure = abs(existing.size) * current_price if existing else 0.0
        new_exposure = abs(position_size) * current_price
        max_exposure = portfolio_value * self.limits.max_position_size

        if current_exposure + new_exposure > max_exposure:
            adjusted_value = max(0.0, max_exposure - current_exposure)
            if adjusted_value < new_exposure * 0.5:
                return RiskAssessment.rejected(
                    f"Position would exceed concentration limit for {symbol}", 75
                )
            return RiskAssessment(
                approved=True,
                position_size=adjusted_value / current_price,
                risk_score=60,
                reason="Position size adjusted for concentration limits",
            )

        return RiskAssessment(approved=True, position_size=position_size, risk_score=20)

    def _check_correlation_risk(self, symbol: str, position_size: float) -> RiskAssessment:
        total_correlated = 0.0
        for other, correlation in self._highly_correlated(symbol).items():
            position = self._state.get_position(other)
            if position is not None:
                total_correlated += abs(position.size) * position.current_price * abs(correlation)

        max_correlated = self._state.portfolio_value * self.limits.max_position_size * 2
        if total_correlated > max_correlated:
            return RiskAssessment.rejected("Too much correlated exposure", 85)

        return RiskAssessment(approved=True, position_size=position_size, risk_score=25)

    def _highly_correlated(self, symbol: str) -> dict[str, float]:
        row = self._correlations.get(symbol.upper(), {})
        return {
            other: value
            for other, value in row.items()
            if other != symbol.upper() and abs(value) >= self.limits.max_correlation
        }

    def _calculate_risk_score(
        self, signal: TradeSignal, position_size: float, current_price: float
    ) -> float:
        """Blend size, confidence, volatility and drawdown into a 0-100 score."""
        try:
            portfolio_value = self._state.portfolio_value
            if not _is_positive_finite(portfolio_value):
                return 50.0

            confidence = signal.confidence
            if not math.isfinite(confidence) or not 0 <= confidence <= 1:
                confidence = 0.5

            score = 0.0
            position_ratio = (position_size * current_price) / portfolio_value
            if math.isfinite(position_ratio):
                score += position_ratio * 100
            score += (1 - confidence) * 50
            score += BASE_VOLATILITY_RISK

            drawdown = self._state.current_drawdown()
            if math.isfinite(drawdown):
                score += drawdown * 100

            score = min(100.0, max(0.0, score))
            return score if math.isfinite(score) else 50.0

        except Exception as e:
            logger.warning(f"Risk score calculation error, using fallback: {e}")
            return 50.0


def _is_positive_finite(value: float | None) -> bool:
    return value is not None and isinstance(value, (int, float)) and math.isfinite(value) and value > 0
