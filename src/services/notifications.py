"""In-process event fan-out and the newly-eligible event stream.

When a re-evaluation sweep finds that a profile now qualifies for a
scheme it did not qualify for before, it publishes a
:class:`~src.models.events.NewlyEligible` event here.  Delivery (SMS,
WhatsApp, IVR callback) belongs to the alerting subsystem, which
subscribes to the stream; the engine only produces events.

:class:`EventFeed` is the generic fan-out also used by the reference
stores for their change notifications.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

import structlog

from src.models.events import NewlyEligible

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Subscription(Generic[T]):
    """Async iterator over one subscriber's queue.

    The queue is registered when the subscription is created, so events
    published before the first ``__anext__`` are not lost.
    """

    __slots__ = ("_closed", "_feed", "_queue")

    def __init__(self, feed: EventFeed[T], queue: asyncio.Queue[T | None]) -> None:
        self._feed = feed
        self._queue = queue
        self._closed = False

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            self._closed = True
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> T | None:
        """Return the next queued event, or ``None`` if none is waiting."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is None:
            self._closed = True
        return item

    @property
    def pending(self) -> int:
        """Events queued but not yet consumed."""
        return self._queue.qsize()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._feed._unsubscribe(self._queue)


class EventFeed(Generic[T]):
    """Fan-out of published events to any number of bounded subscriber queues.

    A subscriber that falls ``max_queue`` events behind loses its oldest
    events (logged), so one stalled consumer never blocks publishers.
    """

    __slots__ = ("_max_queue", "_name", "_subscribers")

    def __init__(self, name: str, *, max_queue: int = 10_000) -> None:
        self._name = name
        self._max_queue = max_queue
        self._subscribers: list[asyncio.Queue[T | None]] = []

    def subscribe(self) -> Subscription[T]:
        queue: asyncio.Queue[T | None] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.append(queue)
        return Subscription(self, queue)

    def _unsubscribe(self, queue: asyncio.Queue[T | None]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: T) -> None:
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
                logger.warning("event_feed.subscriber_lagging", feed=self._name)
            queue.put_nowait(event)

    def close(self) -> None:
        """End every subscription."""
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class NewlyEligibleStream(EventFeed[NewlyEligible]):
    """Newly-eligible events plus a bounded buffer of the most recent ones."""

    __slots__ = ("_published", "_recent")

    def __init__(self, *, recent_size: int = 1_000, max_queue: int = 10_000) -> None:
        super().__init__("newly_eligible", max_queue=max_queue)
        self._recent: deque[NewlyEligible] = deque(maxlen=recent_size)
        self._published = 0

    def publish(self, event: NewlyEligible) -> None:
        self._recent.append(event)
        self._published += 1
        super().publish(event)
        logger.info(
            "newly_eligible.published",
            profile_id=event.profile_id,
            scheme_id=event.scheme_id,
            scheme_version=event.scheme_version,
            sweep_id=event.sweep_id,
            reason=event.reason.value,
        )

    def recent(self, *, profile_id: str | None = None, limit: int = 50) -> list[NewlyEligible]:
        """Most recent events first, optionally for one profile."""
        events = [e for e in reversed(self._recent) if profile_id is None or e.profile_id == profile_id]
        return events[:limit]

    @property
    def published_count(self) -> int:
        return self._published
