"""
Scheduling Module
=================

Clock abstraction, drift-free interval schedules and the flush scheduler.

Deadlines are ``anchor + k * interval``: the next firing is measured from the
previous scheduled instant, not from when the previous work finished, so slow
work never shifts the grid. If a loop falls a full interval or more behind,
the missed deadlines are skipped and counted rather than fired back to back.

Usage:
    clock = SystemClock()
    scheduler = FlushScheduler(aggregator, interval=300.0, clock=clock)
    while await scheduler.wait_next(stop_event):
        record = scheduler.drain()
"""

import asyncio
import logging
import time
from typing import Protocol

from spreadbot.aggregator import SpreadAggregator
from spreadbot.types import FlushRecord
from spreadbot.utils_time import now_ms

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def time(self) -> float:
        """Monotonic seconds, used for scheduling."""
        ...

    def wall_ms(self) -> int:
        """Epoch milliseconds, used for record timestamps."""
        ...

    async def sleep(self, delay: float) -> None: ...


class SystemClock:
    """Real time: time.monotonic for deadlines, asyncio.sleep to wait."""

    def time(self) -> float:
        return time.monotonic()

    def wall_ms(self) -> int:
        return now_ms()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


async def wait_or_stop(clock: Clock, delay: float, stop_event: asyncio.Event) -> bool:
    """
    Sleep for ``delay`` seconds unless ``stop_event`` fires first.

    Returns:
        True if stop was requested, False if the delay elapsed.
    """
    if stop_event.is_set():
        return True
    if delay <= 0:
        # Still yield so a busy loop cannot starve the other tasks
        await asyncio.sleep(0)
        return stop_event.is_set()

    sleeper = asyncio.ensure_future(clock.sleep(delay))
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        pending = [t for t in (sleeper, stopper) if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    return stop_event.is_set()


class IntervalSchedule:
    """
    Deadlines on a fixed grid: anchor, anchor + interval, anchor + 2*interval...

    Args:
        interval: Seconds between deadlines
        anchor: Monotonic time of deadline 0
    """

    def __init__(self, interval: float, anchor: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.anchor = anchor
        self._index = 0
        self.skipped = 0

    @property
    def deadline(self) -> float:
        """Current deadline."""
        return self.anchor + self._index * self.interval

    def advance(self, now: float) -> float:
        """
        Move to the next deadline and return it.

        Deadlines already a full interval or more in the past are skipped.
        """
        self._index += 1
        lag = now - self.deadline
        if lag >= self.interval:
            behind = int(lag // self.interval)
            self._index += behind
            self.skipped += behind
            logger.warning(
                "schedule_deadlines_skipped",
                extra={"interval": self.interval, "skipped": behind, "skipped_total": self.skipped},
            )
        return self.deadline


class FlushScheduler:
    """
    Fires a drain of the aggregator every ``interval`` seconds from start.

    Empty windows still fire; whether to persist them is the caller's call.

    Args:
        aggregator: Window owner to drain
        interval: Seconds per window
        clock: Time source
        anchor: Monotonic start time (default: clock.time() at construction)
    """

    def __init__(
        self,
        aggregator: SpreadAggregator,
        interval: float,
        clock: Clock,
        anchor: float | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._clock = clock
        self.schedule = IntervalSchedule(
            interval, anchor if anchor is not None else clock.time()
        )
        self.fired = 0

    async def wait_next(self, stop_event: asyncio.Event) -> bool:
        """
        Wait for the next flush deadline.

        Returns:
            True when the deadline is reached, False if stop was requested.
        """
        deadline = self.schedule.advance(self._clock.time())
        stopped = await wait_or_stop(self._clock, deadline - self._clock.time(), stop_event)
        if stopped:
            return False
        self.fired += 1
        return True

    def drain(self) -> FlushRecord:
        """Drain the aggregator, stamping the record with wall-clock time."""
        return self._aggregator.drain(self._clock.wall_ms())
