"""Trading agent module for signal gating and trade coordination."""

from autotrader.agent.gating import GatingState, GatingStore
from autotrader.agent.models import AgentState, EmergencyStopResult
from autotrader.agent.settings import AgentSettings
from autotrader.agent.signal_source import (
    JsonlSignalSource,
    PriceRecordingSource,
    QueueSignalSource,
    SignalSource,
)
from autotrader.agent.trading_agent import TradingAgent
from autotrader.models.rejection import RejectionType

__all__ = [
    "AgentSettings",
    "AgentState",
    "EmergencyStopResult",
    "GatingState",
    "GatingStore",
    "JsonlSignalSource",
    "PriceRecordingSource",
    "QueueSignalSource",
    "RejectionType",
    "SignalSource",
    "TradingAgent",
]
