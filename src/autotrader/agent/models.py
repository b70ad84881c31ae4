"""Data models for the trading agent."""

from dataclasses import dataclass, field
from enum import Enum


class AgentState(Enum):
    """Lifecycle of the agent run loop."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class EmergencyStopResult:
    """Outcome of an emergency stop.

    Attributes:
        cancelled_orders: Orders the exchange confirmed as cancelled.
        failed_cancellations: Orders that could not be cancelled.
        positions_closed: Positions flattened by the portfolio.
        errors: Failures encountered along the way.
    """

    cancelled_orders: int = 0
    failed_cancellations: int = 0
    positions_closed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        """True if every cancellation succeeded and no errors were recorded."""
        return self.failed_cancellations == 0 and not self.errors
