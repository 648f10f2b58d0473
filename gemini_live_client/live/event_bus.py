"""In-process publish/subscribe bus used by the live session.

Each subscriber owns an unbounded ``asyncio.Queue``; publishing is synchronous
and never blocks the listener loop. Delivery is replay-free: a subscriber only
sees items published after it subscribed. Closing a topic enqueues an end
marker, so subscribers drain what is already buffered before their iterator
stops.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Generic, Iterable, Optional, TypeVar

from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Async iterator over the items published to one topic."""

    def __init__(self, bus: "EventBus", topic: str) -> None:
        self._bus = bus
        self.topic = topic
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def _push(self, item: Any) -> None:
        self._queue.put_nowait(item)

    @property
    def closed(self) -> bool:
        """True once the end marker has been consumed."""
        return self._closed

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item

    async def get(self, timeout: Optional[float] = None) -> T:
        """Return the next item, waiting at most ``timeout`` seconds.

        Raises:
            asyncio.TimeoutError: nothing arrived in time.
            StopAsyncIteration: the topic was closed and fully drained.
        """
        if timeout is None:
            return await self.__anext__()
        return await asyncio.wait_for(self.__anext__(), timeout=timeout)

    def drain(self) -> list[T]:
        """Return every item buffered right now without waiting."""
        items: list[T] = []
        while not self._closed:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                self._closed = True
                break
            items.append(item)
        return items

    def unsubscribe(self) -> None:
        self._bus._remove(self)


class EventBus:
    """Typed topics with independent, replay-free subscribers."""

    def __init__(self, topics: Iterable[str]) -> None:
        self._subscribers: dict[str, list[Subscription[Any]]] = {topic: [] for topic in topics}
        self._closed_topics: set[str] = set()

    @property
    def topics(self) -> tuple[str, ...]:
        return tuple(self._subscribers)

    def _check_topic(self, topic: str) -> list[Subscription[Any]]:
        try:
            return self._subscribers[topic]
        except KeyError:
            raise ValueError(f"Unknown topic: {topic!r}") from None

    def subscribe(self, topic: str) -> Subscription[Any]:
        subscribers = self._check_topic(topic)
        subscription: Subscription[Any] = Subscription(self, topic)
        if topic in self._closed_topics:
            subscription._push(_CLOSED)
        else:
            subscribers.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription[Any]) -> None:
        subscribers = self._subscribers.get(subscription.topic) or []
        if subscription in subscribers:
            subscribers.remove(subscription)

    def publish(self, topic: str, item: Any) -> int:
        """Deliver ``item`` to every current subscriber; return how many received it."""
        subscribers = self._check_topic(topic)
        if topic in self._closed_topics:
            LOGGER.debug("Dropping publish on closed topic %s: %r", topic, item)
            return 0
        for subscription in list(subscribers):
            subscription._push(item)
        return len(subscribers)

    def is_closed(self, topic: str) -> bool:
        self._check_topic(topic)
        return topic in self._closed_topics

    @timed
    def close(self, topic: Optional[str] = None) -> None:
        """Close one topic (or all). Buffered items stay readable. Idempotent."""
        topics = [topic] if topic is not None else list(self._subscribers)
        for name in topics:
            subscribers = self._check_topic(name)
            if name in self._closed_topics:
                continue
            self._closed_topics.add(name)
            for subscription in subscribers:
                subscription._push(_CLOSED)
            subscribers.clear()
