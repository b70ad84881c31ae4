"""Rejection categories reported by the signal gating layer."""

from enum import Enum


class RejectionType(Enum):
    """Why the trading agent refused a signal."""

    DUPLICATE_SIGNAL = "DUPLICATE_SIGNAL"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    MAX_ORDERS_EXCEEDED = "MAX_ORDERS_EXCEEDED"
    TRADE_COOLDOWN = "TRADE_COOLDOWN"
    CLOSE_NOT_IMPLEMENTED = "CLOSE_NOT_IMPLEMENTED"
    RISK_MANAGER_DENIAL = "RISK_MANAGER_DENIAL"
    INVALID_POSITION_SIZE = "INVALID_POSITION_SIZE"
