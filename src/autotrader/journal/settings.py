"""Settings for the event journal."""

from pydantic import BaseModel, Field


class JournalSettings(BaseModel):
    """Configuration settings for the event journal.

    Attributes:
        enabled: Whether events are persisted.
        data_dir: Directory holding the ``events/`` and ``rejected/`` files.
        queue_maxsize: Bound of the journal's event subscription.
        stats_window_hours: Look-back window for recent rejection counts.
    """

    enabled: bool = True
    data_dir: str = "data/journal"
    queue_maxsize: int = Field(default=1000, ge=1, le=100_000)
    stats_window_hours: int = Field(default=1, ge=1, le=168)
