"""Wall-clock aligned periodic scheduler."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


def delay_until_next_interval(now: datetime, interval_minutes: float) -> float:
    """
    Seconds until the next multiple of ``interval_minutes`` within the hour.

    Only the minute of the hour is aligned, so an interval of 10 gives
    :00, :10, :20, ... and an interval that does not divide 60 lands on
    the next multiple past the current minute (possibly in the next hour).
    When the current minute already is a boundary the delay is 0 and the
    first send happens immediately.

    >>> delay_until_next_interval(datetime(2024, 5, 1, 9, 23), 10)
    420.0
    """
    if interval_minutes < 1:
        raise ValueError(f"interval_minutes must be >= 1, got {interval_minutes}")

    minute = now.minute
    next_boundary = math.ceil(minute / interval_minutes) * interval_minutes
    if next_boundary == minute:
        return 0.0

    delay = (next_boundary - minute) * 60 - now.second - now.microsecond / 1_000_000
    return max(0.0, float(delay))


@dataclass
class IntervalScheduler:
    """
    Fires a coroutine on a fixed, wall-clock aligned cadence.

    After the initial alignment delay one tick fires immediately, then one
    every ``interval_minutes`` against fixed deadlines. Each tick runs as
    its own task: a slow or failing tick never delays or skips the next
    one, and ticks may overlap.
    """
    interval_minutes: float
    callback: Callable[[], Awaitable[Any]]

    # Align the first tick to a wall-clock boundary (False = fire at once)
    align: bool = True

    # Injected time sources (tests). Deadlines are measured with
    # ``monotonic`` (the event loop clock by default), waits use ``sleep``.
    clock: Callable[[], datetime] = datetime.now
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    monotonic: Callable[[], float] | None = None

    # Internal state
    _runner: asyncio.Task | None = field(default=None, init=False)
    _inflight: set[asyncio.Task] = field(default_factory=set, init=False)
    _next_fire_at: datetime | None = field(default=None, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        if self.interval_minutes < 1:
            raise ValueError(f"interval_minutes must be >= 1, got {self.interval_minutes}")
        self._stats = {
            "ticks": 0,
            "tick_errors": 0,
        }

    @property
    def period_seconds(self) -> float:
        return self.interval_minutes * 60.0

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    @property
    def next_fire_at(self) -> datetime | None:
        """Wall-clock estimate of the next tick."""
        return self._next_fire_at if self.running else None

    def start(self) -> None:
        """Start the runner task (requires a running event loop)."""
        if self.running:
            return
        self._runner = asyncio.create_task(self._run())

    async def stop(self, wait: bool = True) -> None:
        """Stop scheduling; optionally wait for in-flight ticks."""
        if self._runner:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None

        if wait and self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        logger.info(f"Scheduler stopped. Stats: {self._stats}")

    async def _run(self) -> None:
        monotonic = self.monotonic or asyncio.get_running_loop().time

        delay = delay_until_next_interval(self.clock(), self.interval_minutes) if self.align else 0.0
        self._next_fire_at = self.clock() + timedelta(seconds=delay)
        logger.info(
            f"First send at {self._next_fire_at:%H:%M:%S}, "
            f"then every {self.interval_minutes} minute(s)"
        )
        await self.sleep(delay)

        origin = monotonic()
        fired = 0
        while True:
            self._fire()
            fired += 1
            remaining = max(0.0, origin + fired * self.period_seconds - monotonic())
            self._next_fire_at = self.clock() + timedelta(seconds=remaining)
            await self.sleep(remaining)

    def _fire(self) -> None:
        task = asyncio.create_task(self._run_tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        self._stats["ticks"] += 1

    async def _run_tick(self) -> None:
        try:
            await self.callback()
        except Exception as e:
            self._stats["tick_errors"] += 1
            logger.error(f"Scheduled tick failed: {e!r}")

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    @property
    def stats(self) -> dict:
        return {
            **self._stats,
            "inflight": self.inflight,
            "next_fire_at": self.next_fire_at.isoformat() if self.next_fire_at else None,
        }
