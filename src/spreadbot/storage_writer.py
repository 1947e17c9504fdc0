"""
Storage Writer — Flush Record Persistence
==========================================

Appends one JSON line per flush window to the output file.

Write discipline:
- File opened in append mode for every record; prior lines are never
  rewritten
- One write() call per record, then flush + fsync before close
- A crash mid-append can at worst leave one truncated final line;
  ``read_records`` skips it

Usage:
    writer = FlushRecordWriter("spread-bot.log")
    writer.ensure_writable()   # at startup
    writer.append(record)      # per flush

Line format:
    {"window_start": "...", "window_end": "...", "min_spread": "0.5",
     "max_spread": "3", "sample_count": 3, ...}
"""

import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Union

import orjson

from spreadbot.errors import PersistenceError
from spreadbot.types import FlushRecord

logger = logging.getLogger(__name__)


def encode_record(record: FlushRecord) -> bytes:
    return orjson.dumps(record.to_dict()) + b"\n"


class FlushRecordWriter:
    """
    Append-only writer for flush records.

    Only the flush loop writes, so no locking beyond the OS append guarantee.

    Args:
        path: Output file; parent directories are created on demand
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

        self._total_written: int = 0
        self._total_failed: int = 0
        self._last_window_end_ms: Optional[int] = None

    def ensure_writable(self) -> None:
        """
        Create the parent directory and the file if absent.

        Raises:
            PersistenceError: If the file cannot be created or opened.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "ab"):
                pass
        except OSError as e:
            raise PersistenceError(f"cannot create output file {self.path}: {e}", str(self.path)) from e

        logger.info("storage_writer_ready", extra={"path": str(self.path)})

    def append(self, record: FlushRecord) -> None:
        """
        Append one record as one line.

        Raises:
            PersistenceError: On any OS-level failure. Nothing is retried here.
        """
        if self._last_window_end_ms is not None and record.window_end_ms < self._last_window_end_ms:
            logger.error(
                "storage_record_out_of_order",
                extra={
                    "window_end_ms": record.window_end_ms,
                    "last_window_end_ms": self._last_window_end_ms,
                },
            )

        line = encode_record(record)

        try:
            with open(self.path, "ab") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self._total_failed += 1
            raise PersistenceError(f"append to {self.path} failed: {e}", str(self.path)) from e

        self._total_written += 1
        self._last_window_end_ms = max(record.window_end_ms, self._last_window_end_ms or 0)

        logger.debug(
            "storage_record_appended",
            extra={"path": str(self.path), "bytes": len(line), "total_written": self._total_written},
        )

    @property
    def total_written(self) -> int:
        return self._total_written

    @property
    def last_window_end_ms(self) -> Optional[int]:
        return self._last_window_end_ms

    def get_stats(self) -> dict:
        return {
            "path": str(self.path),
            "total_written": self._total_written,
            "total_failed": self._total_failed,
            "last_window_end_ms": self._last_window_end_ms,
        }


def iter_records(path: Union[str, Path]) -> Iterator[FlushRecord]:
    """
    Yield records from a flush log.

    Blank and undecodable lines (e.g. a line cut short by a crash) are
    skipped with a warning.
    """
    with open(path, "rb") as f:
        for lineno, raw in enumerate(f, start=1):
            if not raw.strip():
                continue
            try:
                yield FlushRecord.from_dict(orjson.loads(raw))
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.warning(
                    "storage_line_skipped",
                    extra={"path": str(path), "line": lineno, "error": str(e)},
                )


def read_records(path: Union[str, Path]) -> list[FlushRecord]:
    return list(iter_records(path))


def summarize(records: list[FlushRecord]) -> dict:
    """Aggregate over a sequence of flush records."""
    with_samples = [r for r in records if not r.is_empty]
    return {
        "records": len(records),
        "empty_windows": len(records) - len(with_samples),
        "total_samples": sum(r.sample_count for r in records),
        "total_rejected": sum(r.rejected_count for r in records),
        "min_spread": min((r.min_spread for r in with_samples), default=None),
        "max_spread": max((r.max_spread for r in with_samples), default=None),
        "first_window_start_ms": records[0].window_start_ms if records else None,
        "last_window_end_ms": records[-1].window_end_ms if records else None,
    }
