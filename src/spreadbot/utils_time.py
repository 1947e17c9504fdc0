"""
Time Utilities Module
=====================

Utility functions for working with timestamps.
Wall-clock timestamps are epoch milliseconds; the flush log renders them as
ISO8601 UTC strings.
"""

import time
from datetime import datetime, timedelta, timezone


def now_ms() -> int:
    """
    Get current timestamp in milliseconds.

    Returns:
        Current Unix timestamp in milliseconds.

    Example:
        >>> ts = now_ms()
        >>> print(ts)  # 1706356800000
    """
    return int(time.time() * 1000)


def ms_to_iso(ts_ms: int) -> str:
    """
    Render a millisecond timestamp as ISO8601 UTC with millisecond precision.

    Example:
        >>> ms_to_iso(1706356800000)
        '2024-01-27T12:00:00.000+00:00'
    """
    seconds, millis = divmod(int(ts_ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
    return dt.isoformat(timespec="milliseconds")


def iso_to_ms(value: str) -> int:
    """
    Parse an ISO8601 timestamp back to epoch milliseconds.

    Naive timestamps are taken as UTC.
    """
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return round(dt.timestamp() * 1000)

