"""Risk management module for position sizing and trade approval."""

from autotrader.risk.models import (
    CircuitBreakerStatus,
    DailyRiskState,
    PositionInfo,
    PositionSide,
    RiskAssessment,
    RiskLimits,
)
from autotrader.risk.risk_manager import RiskManager
from autotrader.risk.state import RiskState

__all__ = [
    "CircuitBreakerStatus",
    "DailyRiskState",
    "PositionInfo",
    "PositionSide",
    "RiskAssessment",
    "RiskLimits",
    "RiskManager",
    "RiskState",
]
