"""
Type Definitions Module
=======================

Data structures shared across the collector: the currency pair, a single
spread reading, the flush record written per window, and the supervisor's
state / stop reason.

Record version: 1.0
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from spreadbot import __record_version__
from spreadbot.orderbook import spread_percent
from spreadbot.utils_time import iso_to_ms, ms_to_iso


RECORD_VERSION = __record_version__

# Spread-percentage bucket upper bounds (fractions, 0.002 == 0.2%).
# A reading falls into the first bucket whose bound it is below; anything at
# or above the last bound is counted in "gte_0_4".
PERCENT_BUCKETS: tuple[tuple[str, Optional[Decimal]], ...] = (
    ("lt_0_2", Decimal("0.002")),
    ("0_2_to_0_3", Decimal("0.003")),
    ("0_3_to_0_4", Decimal("0.004")),
    ("gte_0_4", None),
)

_PAIR_RE = re.compile(r"^\s*([A-Za-z0-9]{2,10})\s*[/\-_]\s*([A-Za-z0-9]{2,10})\s*$")


def bucket_for(percent: Decimal) -> str:
    """Return the bucket label for a spread percentage (fraction)."""
    for label, upper in PERCENT_BUCKETS:
        if upper is None or percent < upper:
            return label
    return PERCENT_BUCKETS[-1][0]


def empty_buckets() -> dict[str, int]:
    return {label: 0 for label, _ in PERCENT_BUCKETS}


def format_decimal(value: Optional[Decimal]) -> Optional[str]:
    """Render a Decimal in plain notation (never exponent form)."""
    if value is None:
        return None
    return format(value, "f")


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


@dataclass(slots=True, frozen=True)
class CurrencyPair:
    """
    Currency pair, e.g. XBT/AUD.

    Independent Reserve calls the base the "primary" currency and the quote the
    "secondary" currency, and expects codes in title case ("Xbt", "Aud").
    """
    base: str
    quote: str

    @classmethod
    def parse(cls, value: str) -> "CurrencyPair":
        """
        Parse "XBT/AUD", "xbt-aud" or "XBT_AUD".

        Raises:
            ValueError: If the value has no separator or bad codes.
        """
        match = _PAIR_RE.match(value or "")
        if not match:
            raise ValueError(
                f"invalid currency pair {value!r}, expected BASE/QUOTE (e.g. XBT/AUD)"
            )
        return cls(base=match.group(1).upper(), quote=match.group(2).upper())

    @property
    def primary_code(self) -> str:
        return self.base.capitalize()

    @property
    def secondary_code(self) -> str:
        return self.quote.capitalize()

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass(slots=True, frozen=True)
class SpreadReading:
    """
    Best bid/ask observed at one poll.

    Created by the exchange client, consumed immediately by the aggregator and
    never retained.
    """
    ts_ms: int
    bid: Decimal
    ask: Decimal

    @property
    def is_valid(self) -> bool:
        return self.ask >= self.bid

    @property
    def spread(self) -> Decimal:
        return self.ask - self.bid

    @property
    def percent(self) -> Decimal:
        """Spread as a fraction of the ask (0.0025 == 0.25%)."""
        return spread_percent(self.bid, self.ask)[1]


@dataclass(slots=True, frozen=True)
class FlushRecord:
    """
    Summary of one aggregation window.

    min/max fields are None when the window saw no accepted readings.
    """
    window_start_ms: int
    window_end_ms: int
    min_spread: Optional[Decimal]
    max_spread: Optional[Decimal]
    sample_count: int
    min_percent: Optional[Decimal] = None
    max_percent: Optional[Decimal] = None
    rejected_count: int = 0
    bucket_counts: dict[str, int] = field(default_factory=empty_buckets)

    @property
    def is_empty(self) -> bool:
        return self.sample_count == 0

    def to_dict(self) -> dict[str, Any]:
        """
        Render as the output line's JSON object.

        The five summary fields come first so the line reads left to right.
        """
        return {
            "window_start": ms_to_iso(self.window_start_ms),
            "window_end": ms_to_iso(self.window_end_ms),
            "min_spread": format_decimal(self.min_spread),
            "max_spread": format_decimal(self.max_spread),
            "sample_count": self.sample_count,
            "min_percent": format_decimal(self.min_percent),
            "max_percent": format_decimal(self.max_percent),
            "rejected_count": self.rejected_count,
            "buckets": dict(self.bucket_counts),
            "v": RECORD_VERSION,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FlushRecord":
        return cls(
            window_start_ms=iso_to_ms(data["window_start"]),
            window_end_ms=iso_to_ms(data["window_end"]),
            min_spread=parse_decimal(data.get("min_spread")),
            max_spread=parse_decimal(data.get("max_spread")),
            sample_count=int(data["sample_count"]),
            min_percent=parse_decimal(data.get("min_percent")),
            max_percent=parse_decimal(data.get("max_percent")),
            rejected_count=int(data.get("rejected_count", 0)),
            bucket_counts={**empty_buckets(), **data.get("buckets", {})},
        )


class SupervisorState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    BACKOFF = "backoff"
    DRAINING = "draining"
    STOPPED = "stopped"


class StopKind(str, Enum):
    NORMAL = "normal"
    FATAL_AUTH = "fatal_auth"
    FATAL_CONSECUTIVE_FAILURES = "fatal_consecutive_failures"
    FATAL_PERSISTENCE = "fatal_persistence"


# Process exit codes. Config errors never reach the supervisor.
EXIT_OK = 0
EXIT_CRASH = 1
EXIT_CONFIG = 2

_EXIT_CODES = {
    StopKind.NORMAL: EXIT_OK,
    StopKind.FATAL_AUTH: 3,
    StopKind.FATAL_CONSECUTIVE_FAILURES: 4,
    StopKind.FATAL_PERSISTENCE: 5,
}


@dataclass(slots=True, frozen=True)
class StopReason:
    """Why the supervisor reached STOPPED."""
    kind: StopKind
    component: str = "supervisor"
    detail: str = ""

    @property
    def is_fatal(self) -> bool:
        return self.kind is not StopKind.NORMAL

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.kind]
