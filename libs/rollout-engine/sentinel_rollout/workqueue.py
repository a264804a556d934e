"""Asyncio work queue for reconcile requests."""

import asyncio
import logging
from typing import Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)

_SHUTDOWN = object()


class WorkQueue(Generic[T]):
    """
    De-duplicating work queue.

    - An item added several times before a worker picks it up is handed out
      once.
    - An item is never handed to two workers at the same time: adding it
      while it is being processed defers it until ``done`` is called.
    - Items can be added after a delay, and re-added with a per-item
      exponential backoff after failures.
    """

    def __init__(self, base_delay: float = 0.5, max_delay: float = 60.0):
        """
        Initialize the queue.

        Args:
            base_delay: Backoff after the first failure of an item (seconds)
            max_delay: Upper bound for the failure backoff (seconds)
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: set[T] = set()
        self._processing: set[T] = set()
        self._failures: dict[T, int] = {}
        self._delayed: dict[T, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: T) -> None:
        """Queue an item for processing."""
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.put_nowait(item)

    def add_after(self, item: T, delay: float) -> None:
        """
        Queue an item once ``delay`` seconds have passed.

        When the item is already scheduled, the earlier of both deadlines wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._delayed.get(item)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._delayed[item] = loop.call_at(when, self._fire, item)

    def _fire(self, item: T) -> None:
        self._delayed.pop(item, None)
        self.add(item)

    def rate_limited_add(self, item: T) -> float:
        """
        Re-queue a failed item with exponential backoff.

        Returns:
            The delay applied
        """
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(item, delay)
        return delay

    def forget(self, item: T) -> None:
        """Reset the failure backoff of an item."""
        self._failures.pop(item, None)

    def num_requeues(self, item: T) -> int:
        return self._failures.get(item, 0)

    async def get(self) -> Optional[T]:
        """
        Wait for the next item.

        Returns:
            The item, or None once the queue is shut down
        """
        while True:
            item = await self._queue.get()
            if item is _SHUTDOWN:
                # wake up the next waiting worker as well
                self._queue.put_nowait(_SHUTDOWN)
                return None
            if item not in self._dirty or item in self._processing:
                continue
            self._dirty.discard(item)
            self._processing.add(item)
            return item

    def done(self, item: T) -> None:
        """Mark an item as processed, re-queueing it if it was added meanwhile."""
        self._processing.discard(item)
        if item in self._dirty and not self._shutting_down:
            self._queue.put_nowait(item)

    def shutdown(self) -> None:
        """Stop handing out items and release all waiting workers."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._queue.put_nowait(_SHUTDOWN)
        logger.debug("Work queue shut down")
