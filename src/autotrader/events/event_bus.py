"""Publish-subscribe channel for pipeline events."""

import asyncio
import logging

from autotrader.events.models import Event


logger = logging.getLogger(__name__)


class Subscription:
    """Bounded queue of events delivered to one subscriber.

    Iterate with ``async for`` or call ``get``. A full queue makes publishers
    wait, so a slow subscriber applies backpressure instead of losing events.
    """

    def __init__(self, bus: "EventBus", event_types: set[type[Event]] | None, maxsize: int):
        self._bus = bus
        self._event_types = event_types
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)

    def accepts(self, event: Event) -> bool:
        """Return True if this subscriber wants ``event``."""
        return self._event_types is None or type(event) in self._event_types

    async def get(self) -> Event:
        """Wait for the next event."""
        return await self.queue.get()

    def get_nowait(self) -> Event:
        return self.queue.get_nowait()

    def task_done(self) -> None:
        self.queue.task_done()

    def pending(self) -> int:
        """Number of queued events not yet consumed."""
        return self.queue.qsize()

    def close(self) -> None:
        """Stop receiving events."""
        self._bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        return await self.queue.get()


class EventBus:
    """Fan-out of events to independent subscriber queues."""

    def __init__(self, default_maxsize: int = 1000):
        self._default_maxsize = default_maxsize
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        *event_types: type[Event],
        maxsize: int | None = None,
    ) -> Subscription:
        """Register a subscriber.

        Args:
            event_types: Event classes to receive. None means all events.
            maxsize: Queue bound, defaults to the bus default.
        """
        subscription = Subscription(
            self,
            set(event_types) or None,
            maxsize if maxsize is not None else self._default_maxsize,
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove ``subscription``; unknown subscriptions are ignored."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        """Number of registered subscribers."""
        return len(self._subscriptions)

    async def publish(self, event: Event) -> None:
        """Deliver ``event`` to every matching subscriber, waiting on full queues."""
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                await subscription.queue.put(event)
        logger.debug(f"Published {event.event_type} to {len(self._subscriptions)} subscriber(s)")
