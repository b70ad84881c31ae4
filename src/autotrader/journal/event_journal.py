# src/autotrader/journal/event_journal.py
"""Event journal persisting pipeline events to JSON-lines files."""

import json
import logging
from collections import Counter
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import aiofiles

from autotrader.events.event_bus import EventBus
from autotrader.events.models import Event, SignalRejectedEvent
from autotrader.journal.settings import JournalSettings


logger = logging.getLogger(__name__)


class EventJournal:
    """Subscriber that appends every event to a daily JSON-lines file.

    Files:
        {data_dir}/events/YYYY-MM-DD.jsonl    all events
        {data_dir}/rejected/YYYY-MM-DD.jsonl  rejected-signal records
    """

    def __init__(self, settings: JournalSettings, event_bus: EventBus) -> None:
        """Initialize the journal and subscribe to all events.

        Args:
            settings: Journal configuration settings.
            event_bus: Bus to consume events from.
        """
        self._settings = settings
        self._data_dir = Path(settings.data_dir)
        self._events_dir = self._data_dir / "events"
        self._rejected_dir = self._data_dir / "rejected"
        self._events_dir.mkdir(parents=True, exist_ok=True)
        self._rejected_dir.mkdir(parents=True, exist_ok=True)
        self._subscription = event_bus.subscribe(maxsize=settings.queue_maxsize)
        self._written = 0

    @property
    def events_written(self) -> int:
        """Number of events appended since start."""
        return self._written

    async def run(self) -> None:
        """Consume the subscription until cancelled."""
        logger.info(f"Event journal writing to {self._data_dir}")
        try:
            while True:
                event = await self._subscription.get()
                try:
                    await self.write_event(event)
                except OSError as e:
                    logger.error(f"Failed to journal {event.event_type} event: {e}")
                finally:
                    self._subscription.task_done()
        finally:
            self._subscription.close()

    async def drain(self) -> int:
        """Write every queued event without waiting for new ones."""
        count = 0
        while self._subscription.pending():
            event = self._subscription.get_nowait()
            await self.write_event(event)
            self._subscription.task_done()
            count += 1
        return count

    async def write_event(self, event: Event) -> None:
        """Append ``event`` to the JSONL file for its day; rejections also go under rejected/."""
        record = event.to_dict()
        day = event.timestamp.date()
        await self._append(self._events_dir / f"{day.isoformat()}.jsonl", record)

        if isinstance(event, SignalRejectedEvent):
            await self._append(
                self._rejected_dir / f"{day.isoformat()}.jsonl",
                self._rejection_record(event),
            )
        self._written += 1

    async def read_events(self, day: date) -> list[dict[str, Any]]:
        """Read all events recorded on ``day``."""
        return await self._read_lines(self._events_dir / f"{day.isoformat()}.jsonl")

    async def read_rejected_signals(self, day: date) -> list[dict[str, Any]]:
        """Read all rejected-signal records from ``day``."""
        return await self._read_lines(self._rejected_dir / f"{day.isoformat()}.jsonl")

    async def get_rejected_signal_stats(self, now: datetime | None = None) -> dict[str, Any]:
        """Summarize today's rejected signals.

        Returns:
            Dictionary with:
                - total_rejected: Number of rejections today
                - by_type: Count per rejection type
                - by_symbol: Count per symbol
                - potential_missed_gains: Sum of expected returns of rejected signals
                - recent_rejections: Rejections inside the stats window
        """
        now = now or datetime.now()
        records = await self.read_rejected_signals(now.date())
        window_start = now - timedelta(hours=self._settings.stats_window_hours)

        recent = 0
        for record in records:
            try:
                if datetime.fromisoformat(record["timestamp"]) >= window_start:
                    recent += 1
            except (KeyError, ValueError):
                continue

        return {
            "total_rejected": len(records),
            "by_type": dict(Counter(r.get("rejection_type") for r in records)),
            "by_symbol": dict(Counter(r.get("symbol") for r in records)),
            "potential_missed_gains": sum(
                float(r.get("potential_missed_gain") or 0.0) for r in records
            ),
            "recent_rejections": recent,
        }

    @staticmethod
    def _rejection_record(event: SignalRejectedEvent) -> dict[str, Any]:
        record = event.to_dict()
        record.pop("event_type", None)
        return record

    async def _append(self, file_path: Path, record: dict[str, Any]) -> None:
        async with aiofiles.open(file_path, "a") as f:
            await f.write(json.dumps(record, default=str) + "\n")

    async def _read_lines(self, file_path: Path) -> list[dict[str, Any]]:
        if not file_path.exists():
            return []

        async with aiofiles.open(file_path, "r") as f:
            content = await f.read()

        records = []
        for line_no, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt journal line {line_no} in {file_path}")
        return records
