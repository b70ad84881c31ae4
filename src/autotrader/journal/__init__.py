"""Event journal module for persisting events and rejected signals."""

from autotrader.journal.event_journal import EventJournal
from autotrader.journal.settings import JournalSettings

__all__ = [
    "EventJournal",
    "JournalSettings",
]
