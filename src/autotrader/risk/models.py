"""Data models for risk management."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from autotrader.models.trade_signal import TradeSignal


class PositionSide(Enum):
    """Side of an open position."""

    LONG = "LONG"
    SHORT = "SHORT"


@dataclass
class RiskAssessment:
    """Result of assessing a proposed trade.

    Attributes:
        approved: Whether the trade may proceed.
        position_size: Approved size in base units (0 when rejected).
        risk_score: Risk score in [0, 100].
        reason: Human-readable explanation for a rejection or adjustment.
        adjusted_signal: Signal with stop-loss/take-profit filled in (approved only).
    """

    approved: bool
    position_size: float
    risk_score: float
    reason: str | None = None
    adjusted_signal: TradeSignal | None = None

    @classmethod
    def rejected(cls, reason: str, risk_score: float) -> "RiskAssessment":
        """Build a rejection with zero size."""
        return cls(approved=False, position_size=0.0, risk_score=risk_score, reason=reason)


@dataclass(frozen=True)
class RiskLimits:
    """Account-level limits, fixed for the life of the process.

    Attributes:
        max_position_size: Maximum position value as a fraction of portfolio.
        max_daily_drawdown: Drawdown fraction that trips the circuit breaker.
        max_total_drawdown: Hard drawdown fraction that trips the circuit breaker.
        max_correlation: Correlation at or above which symbols count as correlated.
        max_leverage: Maximum account leverage.
        max_trades_per_day: Maximum approved assessments per local day.
        kelly_fraction: Upper bound applied to the Kelly fraction.
    """

    max_position_size: float
    max_daily_drawdown: float
    max_total_drawdown: float
    max_correlation: float
    max_leverage: float
    max_trades_per_day: int
    kelly_fraction: float


@dataclass
class PositionInfo:
    """Open position tracked by the risk layer."""

    symbol: str
    size: float
    entry_price: float
    current_price: float
    unrealized_pnl: float
    side: PositionSide
    timestamp: datetime


@dataclass
class DailyRiskState:
    """Counters for the current local trading day.

    Attributes:
        date: The local day these counters belong to.
        trades_today: Number of assessments counted against the daily limit.
        daily_pnl: Realized profit/loss booked today.
    """

    date: date
    trades_today: int = 0
    daily_pnl: float = 0.0


@dataclass
class CircuitBreakerStatus:
    """Snapshot of the circuit breaker."""

    active: bool
    reason: str | None = None
    triggered_at: datetime | None = None
    history: list[str] = field(default_factory=list)
