"""In-process mutation bus.

Every subscriber owns a fixed-size ring buffer. Publishing copies the update
into each buffer attached at that moment and never waits on a reader; when a
buffer is full the oldest entry is dropped and the subscriber is told how many
it missed on its next read (``SubscriberLagged``).

Subscriptions are read from an asyncio loop. ``publish`` may be called from
any task or thread.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque

from loguru import logger

from todo_stream.core.errors import BusPublishDegraded, SubscriberLagged, SubscriptionClosed
from todo_stream.core.models import TodoUpdate


class Subscription:
    """A single reader's view of the bus."""

    def __init__(self, bus: "MutationBus", capacity: int):
        self._bus = bus
        self._buffer: deque[TodoUpdate] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._ready = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lagged = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def _push(self, update: TodoUpdate) -> None:
        with self._lock:
            if self._closed:
                return
            if len(self._buffer) == self._buffer.maxlen:
                self._lagged += 1
            self._buffer.append(update)
        self._wake()

    def _wake(self) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._ready.set()
            return
        try:
            loop.call_soon_threadsafe(self._ready.set)
        except RuntimeError:
            # Reader's loop already closed; it can no longer be woken.
            logger.debug("Subscription loop closed; wake-up skipped")

    def _take(self) -> TodoUpdate | None:
        # Caller holds self._lock.
        if self._lagged:
            missed, self._lagged = self._lagged, 0
            raise SubscriberLagged(missed)
        if self._buffer:
            return self._buffer.popleft()
        if self._closed:
            raise SubscriptionClosed()
        return None

    def try_recv(self) -> TodoUpdate | None:
        """Return the next buffered update, or ``None`` when nothing is pending."""
        with self._lock:
            return self._take()

    async def recv(self) -> TodoUpdate:
        """Wait for the next update.

        Raises ``SubscriberLagged`` once after an overflow and
        ``SubscriptionClosed`` when the subscription or the bus is closed.
        """
        self._loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                update = self._take()
                if update is not None:
                    return update
                self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        """Detach from the bus and discard anything still buffered."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._buffer.clear()
            self._lagged = 0
        self._bus._detach(self)
        self._wake()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *_exc) -> None:
        self.close()


class MutationBus:
    """Fan ``TodoUpdate`` values out to every attached subscription."""

    def __init__(self, capacity: int = 10):
        if int(capacity) < 1:
            raise ValueError("bus capacity must be at least 1")
        self.capacity = int(capacity)
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.capacity)
        with self._lock:
            if self._closed:
                sub._closed = True
                return sub
            self._subscribers.add(sub)
        return sub

    def _detach(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(sub)

    def publish(self, update: TodoUpdate) -> int:
        """Enqueue ``update`` for every attached subscriber.

        Returns the number of subscribers reached; zero means the update was
        dropped because nobody is listening. Raises ``BusPublishDegraded`` only
        when the bus has been closed.
        """
        with self._lock:
            if self._closed:
                raise BusPublishDegraded(f"bus closed; dropped {update.mutation_kind.value} for id {update.id}")
            targets = list(self._subscribers)
        for sub in targets:
            sub._push(update)
        return len(targets)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            targets = list(self._subscribers)
            self._subscribers.clear()
        for sub in targets:
            sub.close()
        logger.debug("Mutation bus closed ({} subscriber(s) released)", len(targets))
