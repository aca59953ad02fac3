"""
Multicast event channel.

A Broadcast fans each published item out to every current subscriber. Each
subscription owns its own queue, so subscribers see their own ordered copy of
the sequence and closing one subscription leaves the others untouched.

Subscriptions are async iterators. Publishing is synchronous and may happen
from any thread; items are handed to the subscriber's event loop.
"""

import asyncio
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """One subscriber's ordered view of a Broadcast."""

    def __init__(self, channel: "Broadcast[T]"):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._finished = False

    def _deliver(self, item) -> None:
        if self._loop is None:
            self._queue.put_nowait(item)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._queue.put_nowait(item)
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            raise StopAsyncIteration
        return item

    async def next(self, timeout: Optional[float] = None) -> T:
        """Wait for the next item; raises StopAsyncIteration once the channel ends."""
        return await asyncio.wait_for(self.__anext__(), timeout)

    def pending(self) -> int:
        """Number of items queued but not yet consumed."""
        return self._queue.qsize()

    def close(self) -> None:
        """Unsubscribe. Items already queued can still be drained."""
        if self._channel._unsubscribe(self):
            self._deliver(_CLOSED)

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class Broadcast(Generic[T]):
    """Fan-out channel with async subscribers and synchronous listeners."""

    def __init__(self):
        self._subscribers: list[Subscription[T]] = []
        self._listeners: list[Callable[[T], None]] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers) + len(self._listeners)

    def subscribe(self) -> Subscription[T]:
        """Open a new subscription. On a closed channel it ends immediately."""
        subscription: Subscription[T] = Subscription(self)
        with self._lock:
            if not self._closed:
                self._subscribers.append(subscription)
                return subscription
        subscription._deliver(_CLOSED)
        return subscription

    def listen(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a synchronous callback invoked on every publish.

        Returns:
            A function that removes the callback
        """
        with self._lock:
            self._listeners.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return remove

    def publish(self, item: T) -> None:
        """Deliver an item to listeners, then to subscribers. No-op once closed."""
        with self._lock:
            if self._closed:
                return
            listeners = list(self._listeners)
            subscribers = list(self._subscribers)

        for callback in listeners:
            try:
                callback(item)
            except Exception:
                logger.exception("Broadcast listener %r failed", callback)

        for subscription in subscribers:
            subscription._deliver(item)

    def close(self) -> None:
        """End every subscription and drop all listeners."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = self._subscribers
            self._subscribers = []
            self._listeners = []

        for subscription in subscribers:
            subscription._deliver(_CLOSED)

    def _unsubscribe(self, subscription: Subscription[T]) -> bool:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
                return True
        return False
