"""
Logging Setup Module
====================

Structured logs, one JSON object per line on stdout.

    {"ts": "2024-01-27T12:00:00.000+00:00", "level": "INFO",
     "logger": "spreadbot.supervisor", "event": "flush_record_written",
     "sample_count": 720, "min_spread": "0.5"}

``event`` is the log message, kept to a short snake_case name. Context goes
into ``extra=`` and lands as top-level keys. Decimals keep their exact text.
"""

import logging
import sys
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

import orjson

from spreadbot.utils_time import ms_to_iso

# Attributes every LogRecord has; anything else came in through ``extra``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Libraries that log too much at INFO
_QUIET_LOGGERS = ("aiohttp", "aiohttp.access", "asyncio")


def _plain(value: Any) -> Any:
    """Reduce ``value`` to something orjson serialises losslessly."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)


class JsonFormatter(logging.Formatter):
    """Renders a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": ms_to_iso(int(record.created * 1000)),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update(
            (key, _plain(value))
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        )
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return orjson.dumps(entry).decode()


class JsonLogHandler(logging.StreamHandler):
    """StreamHandler preset with JsonFormatter, stdout by default."""

    def __init__(self, stream: TextIO | None = None):
        super().__init__(stream=stream or sys.stdout)
        self.setFormatter(JsonFormatter())


def setup_logging(log_level: str = "INFO", stream: TextIO | None = None) -> None:
    """
    Route all logging through one JSON handler at ``log_level``.

    Safe to call again (e.g. once the config's level is known); previous
    root handlers are replaced.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.addHandler(JsonLogHandler(stream))
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
