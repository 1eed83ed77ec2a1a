"""
Progress broadcasting.

Every state change the gallery wants clients to see goes through one
ProgressBroadcaster as a ProgressEvent. Each subscriber gets its own bounded
queue, so events arrive in publish order per subscriber; a subscriber that
has gone away or stopped reading is dropped without affecting the others.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .. import config

logger = logging.getLogger(__name__)


class EventType(Enum):
    TINY_PREVIEW_READY = "tinyPreviewReady"
    THUMBNAIL_READY = "thumbnailReady"
    GLOBAL_PROGRESS = "globalProgress"
    PAUSED = "paused"
    CACHE_INVALIDATED = "cacheInvalidated"
    SCAN_PROGRESS = "scanProgress"


# Replayed to new subscribers so they start with the current state
RETAINED_EVENTS = {EventType.GLOBAL_PROGRESS, EventType.SCAN_PROGRESS, EventType.PAUSED}


@dataclass(frozen=True)
class ProgressEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.data}

    def to_sse(self) -> str:
        """Serialize as a Server-Sent Events frame."""
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_dict())}\n\n"


def tiny_preview_ready(relative_path: str, url: str) -> ProgressEvent:
    return ProgressEvent(EventType.TINY_PREVIEW_READY, {"relativePath": relative_path, "url": url})


def thumbnail_ready(relative_path: str, url: str) -> ProgressEvent:
    return ProgressEvent(EventType.THUMBNAIL_READY, {"relativePath": relative_path, "url": url})


def global_progress(state: dict[str, Any]) -> ProgressEvent:
    return ProgressEvent(EventType.GLOBAL_PROGRESS, dict(state))


def paused(is_paused: bool) -> ProgressEvent:
    return ProgressEvent(EventType.PAUSED, {"isPaused": is_paused})


def cache_invalidated(reason: str) -> ProgressEvent:
    return ProgressEvent(EventType.CACHE_INVALIDATED, {"reason": reason})


def scan_progress(progress: dict[str, Any]) -> ProgressEvent:
    return ProgressEvent(EventType.SCAN_PROGRESS, dict(progress))


class SubscriberGone(Exception):
    """Raised when delivering to a subscriber that can no longer receive."""
    pass


class Subscription:
    """
    One subscriber's view of the event stream.

    Iterate with ``async for``; iteration ends once the subscription is closed
    and its queue has been drained.
    """

    def __init__(self, maxsize: int = config.SUBSCRIBER_QUEUE_SIZE):
        self._queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, event: ProgressEvent) -> None:
        if self.closed:
            raise SubscriberGone("subscription closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as e:
            raise SubscriberGone("subscriber is not keeping up") from e

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)  # wake a pending reader
        except asyncio.QueueFull:
            pass

    def pending(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> Optional[ProgressEvent]:
        """Next queued event, or None if nothing is queued."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ProgressBroadcaster:
    """Fan-out of ProgressEvents to any number of subscribers."""

    def __init__(self, queue_size: int = config.SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: set[Subscription] = set()
        self._latest: dict[EventType, ProgressEvent] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the loop that publish_threadsafe hands events to."""
        self._loop = loop

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(maxsize=self.queue_size)
        for event in self._latest.values():
            subscription.deliver(event)
        self._subscribers.add(subscription)
        logger.debug(f"Progress subscriber added ({len(self._subscribers)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)
        subscription.close()
        logger.debug(f"Progress subscriber removed ({len(self._subscribers)} total)")

    def publish(self, event: ProgressEvent) -> None:
        """Deliver an event to every live subscriber. Must run on the event loop thread."""
        if event.type in RETAINED_EVENTS:
            self._latest[event.type] = event

        for subscription in list(self._subscribers):
            try:
                subscription.deliver(event)
            except SubscriberGone as e:
                logger.debug(f"Dropping progress subscriber: {e}")
                self.unsubscribe(subscription)

    def publish_threadsafe(self, event: ProgressEvent) -> None:
        """Publish from any thread, e.g. from a scan running in a worker thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self.publish(event)
            return
        try:
            loop.call_soon_threadsafe(self.publish, event)
        except RuntimeError:
            # Loop shut down between the check and the call
            logger.debug(f"Event loop closed, dropping {event.type.value} event")
