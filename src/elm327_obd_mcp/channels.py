"""Multi-subscriber channels used to publish frames, state and values.

``Broadcast`` fans every published item out to each live subscription.
Each subscription owns a bounded queue (its own cursor). Publishing never
blocks: when a subscriber's queue is full the item is dropped for that
subscriber only. Items published before a subscription exists are never
delivered to it.

``StateChannel`` adds a current value on top, like a watched variable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_QUEUE_SIZE = 64


class Subscription(Generic[T]):
    """One subscriber's cursor into a :class:`Broadcast`.

    Usage::

        with broadcast.subscribe() as sub:
            item = await sub.get()
    """

    def __init__(self, owner: Broadcast[T], maxsize: int) -> None:
        self._owner = owner
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, item: T) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Subscriber queue full, dropping %r", item)

    async def get(self) -> T:
        """Wait for the next item."""
        return await self._queue.get()

    def get_nowait(self) -> T:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop receiving items. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._owner._unsubscribe(self)

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Broadcast(Generic[T]):
    """Fan-out channel without backpressure."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._maxsize = maxsize
        self._subscribers: list[Subscription[T]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription[T]:
        subscription = Subscription(self, self._maxsize)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, item: T) -> None:
        for subscription in list(self._subscribers):
            subscription.offer(item)

    def _unsubscribe(self, subscription: Subscription[T]) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            pass


class StateChannel(Broadcast[T]):
    """A current value plus a stream of its changes.

    Setting an equal value is not republished. Subscribers only see
    changes made after they subscribed; read :attr:`value` for the
    current one.
    """

    def __init__(self, initial: T, maxsize: int = 0) -> None:
        super().__init__(maxsize=maxsize)
        self._value = initial

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> bool:
        """Update the value. Returns ``True`` if it changed."""
        if value == self._value:
            return False
        self._value = value
        self.publish(value)
        return True
