"""Non-blocking channel between bus pushes and the sample store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

from .types import BusDelta


logger = logging.getLogger(__name__)

DeltaHandler = Callable[[BusDelta], Union[None, Awaitable[None]]]


@dataclass
class DeltaChannel:
    """
    Bounded message channel for bus deltas.

    Bus callbacks publish into an asyncio queue and return immediately;
    a single processing loop hands each delta to the registered handlers
    in arrival order. Handlers therefore never run concurrently with each
    other, so the sample store needs no lock.
    """
    # Maximum queued deltas before new ones are dropped
    max_queue_size: int = 1000

    # Internal state
    _queue: asyncio.Queue | None = field(default=None, init=False)
    _handlers: list[DeltaHandler] = field(default_factory=list, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "published": 0,
            "processed": 0,
            "dropped": 0,
            "errors": 0,
        }

    async def start(self) -> None:
        """Create the queue (call from the running loop)."""
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        logger.info(f"Delta channel started (max_queue={self.max_queue_size})")

    async def stop(self) -> None:
        """Apply any queued deltas, then detach the queue."""
        if self._queue:
            while not self._queue.empty():
                try:
                    delta = self._queue.get_nowait()
                    await self._deliver(delta)
                except asyncio.QueueEmpty:
                    break
        self._queue = None
        logger.info(f"Delta channel stopped. Stats: {self._stats}")

    def add_handler(self, handler: DeltaHandler) -> None:
        """Register a handler (sync or async) called for every delta."""
        self._handlers.append(handler)

    def publish(self, delta: BusDelta) -> bool:
        """
        Queue a delta (non-blocking).

        Returns True if queued, False if dropped.
        """
        if self._queue is None:
            logger.warning("Delta channel not started, dropping delta")
            self._stats["dropped"] += 1
            return False

        try:
            self._queue.put_nowait(delta)
            self._stats["published"] += 1
            return True
        except asyncio.QueueFull:
            self._stats["dropped"] += 1
            return False

    async def process_loop(self) -> None:
        """
        Main processing loop - runs until cancelled.

        Call this as a background task.
        """
        if self._queue is None:
            raise RuntimeError("Channel not started")

        logger.info("Delta processing loop started")
        queue = self._queue

        while True:
            try:
                delta = await queue.get()
            except asyncio.CancelledError:
                logger.info("Delta processing loop cancelled")
                break

            try:
                await self._deliver(delta)
            except Exception as e:
                logger.error(f"Error processing delta: {e}")
                self._stats["errors"] += 1
            finally:
                queue.task_done()

    async def join(self) -> None:
        """Wait until every queued delta has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _deliver(self, delta: BusDelta) -> None:
        for handler in self._handlers:
            try:
                result = handler(delta)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Delta handler error: {e}")
                self._stats["errors"] += 1
        self._stats["processed"] += 1

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue else 0

    @property
    def stats(self) -> dict:
        return {
            **self._stats,
            "queue_depth": self.queue_depth,
            "handlers": len(self._handlers),
        }
