"""
Spread Aggregator Module
========================

Running min/max of the bid/ask spread since the last flush.

Features:
- O(1) update per reading
- Readings with ask < bid are rejected, never recorded
- Drain-and-reset is one critical section: no reading can land between
  capturing a window and starting the next
- Spread-percentage bucket counters (<0.2%, 0.2-0.3%, 0.3-0.4%, >=0.4%)

Thread-safe: a single lock guards the window. It is held only for the update
or the drain, never across I/O.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from spreadbot.types import FlushRecord, SpreadReading, bucket_for, empty_buckets
from spreadbot.utils_time import now_ms

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SpreadWindow:
    """
    Mutable aggregation state for one window.

    Invariant: sample_count == 0 implies all bounds are None; otherwise
    min_spread <= max_spread.
    """
    window_start_ms: int
    min_spread: Optional[Decimal] = None
    max_spread: Optional[Decimal] = None
    min_percent: Optional[Decimal] = None
    max_percent: Optional[Decimal] = None
    sample_count: int = 0
    rejected_count: int = 0
    bucket_counts: dict[str, int] = field(default_factory=empty_buckets)

    def add(self, spread: Decimal, percent: Decimal) -> None:
        if self.min_spread is None or spread < self.min_spread:
            self.min_spread = spread
        if self.max_spread is None or spread > self.max_spread:
            self.max_spread = spread

        if self.min_percent is None or percent < self.min_percent:
            self.min_percent = percent
        if self.max_percent is None or percent > self.max_percent:
            self.max_percent = percent

        self.bucket_counts[bucket_for(percent)] += 1
        self.sample_count += 1

    def to_record(self, window_end_ms: int) -> FlushRecord:
        return FlushRecord(
            window_start_ms=self.window_start_ms,
            window_end_ms=max(window_end_ms, self.window_start_ms),
            min_spread=self.min_spread,
            max_spread=self.max_spread,
            sample_count=self.sample_count,
            min_percent=self.min_percent,
            max_percent=self.max_percent,
            rejected_count=self.rejected_count,
            bucket_counts=dict(self.bucket_counts),
        )


class SpreadAggregator:
    """
    Tracks the spread window shared by the sample and flush loops.

    Usage:
        aggregator = SpreadAggregator()
        aggregator.observe(reading)      # sample loop
        record = aggregator.drain()      # flush loop
    """

    def __init__(self, window_start_ms: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._window = SpreadWindow(
            window_start_ms=window_start_ms if window_start_ms is not None else now_ms()
        )

        # Lifetime stats
        self._observed_total = 0
        self._rejected_total = 0
        self._windows_drained = 0

    def observe(self, reading: SpreadReading) -> bool:
        """
        Add a reading to the current window.

        Returns:
            True if recorded, False if rejected (ask < bid).
        """
        if not reading.is_valid:
            with self._lock:
                self._window.rejected_count += 1
                self._rejected_total += 1
            logger.warning(
                "aggregator_reading_rejected",
                extra={"bid": reading.bid, "ask": reading.ask, "reason": "ask_below_bid"},
            )
            return False

        spread = reading.spread
        percent = reading.percent

        with self._lock:
            self._window.add(spread, percent)
            self._observed_total += 1
        return True

    def drain(self, now: Optional[int] = None) -> FlushRecord:
        """
        Capture the current window and start a fresh one, atomically.

        Args:
            now: Drain time in epoch ms (default: current time). Becomes the
                record's window_end and the next window's start.

        Returns:
            FlushRecord for the captured window (possibly empty).
        """
        drain_ms = now if now is not None else now_ms()

        with self._lock:
            record = self._window.to_record(drain_ms)
            self._window = SpreadWindow(window_start_ms=record.window_end_ms)
            self._windows_drained += 1

        return record

    @property
    def sample_count(self) -> int:
        with self._lock:
            return self._window.sample_count

    def snapshot(self) -> dict:
        """Current window and lifetime counters."""
        with self._lock:
            w = self._window
            return {
                "window_start_ms": w.window_start_ms,
                "sample_count": w.sample_count,
                "rejected_count": w.rejected_count,
                "min_spread": w.min_spread,
                "max_spread": w.max_spread,
                "min_percent": w.min_percent,
                "max_percent": w.max_percent,
                "buckets": dict(w.bucket_counts),
                "observed_total": self._observed_total,
                "rejected_total": self._rejected_total,
                "windows_drained": self._windows_drained,
            }
