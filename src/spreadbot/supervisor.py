"""
Supervisor — Control Loop
=========================

Runs the sample loop and the flush loop against one shared aggregator and
decides between retry and stop.

States:
    STARTING -> RUNNING -> DRAINING (external stop) -> STOPPED
    RUNNING <-> BACKOFF (retryable fetch failure in the sample loop)
    RUNNING / BACKOFF -> STOPPED (fatal)

Failure policy:
    TransportError, RateLimitedError  backoff (exponential, capped), retry
    ProtocolError                     retry on the next tick; fatal once the
                                      consecutive count exceeds the limit
    AuthError                         fatal immediately
    PersistenceError                  retried with the record held; then the
                                      record is logged as lost and the loop
                                      either continues or stops fatally

The two loops run on independent fixed grids measured from start; neither
waits for the other. A fatal stop skips the final drain. A final drain that
cannot be written ends the run as a persistence failure unless loss is
tolerated.

Usage:
    supervisor = Supervisor(client, aggregator, writer, sampler, options)
    reason = await supervisor.run()          # until stop or fatal
    supervisor.request_stop()                # from a signal handler
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from spreadbot.aggregator import SpreadAggregator
from spreadbot.backoff import ExponentialBackoff
from spreadbot.config import Settings
from spreadbot.errors import (
    AuthError,
    FetchError,
    PersistenceError,
    ProtocolError,
    RateLimitedError,
    TransportError,
)
from spreadbot.sampler import SpreadSampler, SpreadSource
from spreadbot.scheduler import Clock, FlushScheduler, IntervalSchedule, SystemClock, wait_or_stop
from spreadbot.storage_writer import FlushRecordWriter
from spreadbot.types import FlushRecord, StopKind, StopReason, SupervisorState

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SupervisorOptions:
    """Timing and failure-handling knobs (seconds unless noted)."""
    poll_interval: float
    flush_interval: float
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    protocol_retry_limit: int = 5
    persist_max_attempts: int = 3
    persist_retry_delay: float = 1.0
    tolerate_persistence_loss: bool = False
    drain_timeout: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupervisorOptions":
        return cls(
            poll_interval=settings.poll_interval_seconds,
            flush_interval=settings.flush_interval_seconds,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            protocol_retry_limit=settings.protocol_retry_limit,
            persist_max_attempts=settings.persist_max_attempts,
            persist_retry_delay=settings.persist_retry_delay_seconds,
            tolerate_persistence_loss=settings.tolerate_persistence_loss,
            drain_timeout=settings.drain_timeout_seconds,
        )


class Supervisor:
    """
    Owns the collector's lifecycle.

    Args:
        client: Spread source (the exchange client)
        aggregator: Shared window state
        sink: Flush record writer
        sampler: Poller bound to the currency pair
        options: Timing and failure knobs
        clock: Time source (default: SystemClock)

    Attributes:
        transitions: Ordered (from, to) state changes
        backoff_entries: Number of times BACKOFF was entered
    """

    def __init__(
        self,
        client: SpreadSource,
        aggregator: SpreadAggregator,
        sink: FlushRecordWriter,
        sampler: SpreadSampler,
        options: SupervisorOptions,
        clock: Optional[Clock] = None,
    ) -> None:
        self._client = client
        self._aggregator = aggregator
        self._sink = sink
        self._sampler = sampler
        self._options = options
        self._clock = clock or SystemClock()

        self._stop_event = asyncio.Event()
        self._state = SupervisorState.STARTING
        self._fatal: Optional[StopReason] = None
        self._backoff = ExponentialBackoff(options.backoff_base, options.backoff_max)
        self._consecutive_protocol_errors = 0

        self.transitions: list[tuple[SupervisorState, SupervisorState]] = []
        self.backoff_entries = 0
        self.records_written = 0
        self.records_lost = 0
        self.stop_reason: Optional[StopReason] = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    def _transition(self, new_state: SupervisorState) -> None:
        old_state = self._state
        if new_state is old_state:
            return
        self._state = new_state
        self.transitions.append((old_state, new_state))
        logger.info(
            "supervisor_state",
            extra={"from_state": old_state, "to_state": new_state},
        )

    def request_stop(self) -> None:
        """Ask both loops to finish; safe to call repeatedly."""
        if not self._stop_event.is_set():
            logger.info("supervisor_stop_requested", extra={"state": self._state})
            self._stop_event.set()

    def _fail(self, reason: StopReason) -> None:
        if self._fatal is None:
            self._fatal = reason
            logger.critical(
                "supervisor_fatal",
                extra={
                    "reason": reason.kind,
                    "component": reason.component,
                    "detail": reason.detail,
                },
            )
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> StopReason:
        """
        Run until an external stop or a fatal error.

        Returns:
            The StopReason (also kept in ``stop_reason``).
        """
        if self._state is not SupervisorState.STARTING:
            raise RuntimeError("supervisor can only run once")

        anchor = self._clock.time()
        self._transition(SupervisorState.RUNNING)

        sample_task = asyncio.create_task(self._sample_loop(anchor), name="sample_loop")
        flush_task = asyncio.create_task(self._flush_loop(anchor), name="flush_loop")
        tasks = [sample_task, flush_task]

        try:
            await self._stop_event.wait()

            # The sample loop may be inside a network call; do not wait it out
            sample_task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, result in zip(tasks, results):
                if isinstance(result, Exception):
                    logger.error(
                        "supervisor_task_error",
                        extra={"task": task.get_name(), "error": str(result)},
                    )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        if self._fatal is None:
            self._transition(SupervisorState.DRAINING)
            if await self._final_drain() or self._options.tolerate_persistence_loss:
                reason = StopReason(StopKind.NORMAL, detail="stop requested")
            else:
                reason = StopReason(
                    StopKind.FATAL_PERSISTENCE,
                    component="storage_writer",
                    detail=f"final window not written to {self._sink.path}",
                )
                logger.critical(
                    "supervisor_fatal",
                    extra={"reason": reason.kind, "component": reason.component, "detail": reason.detail},
                )
        else:
            reason = self._fatal
            window = self._aggregator.snapshot()
            if window["sample_count"]:
                logger.warning(
                    "supervisor_window_discarded",
                    extra={
                        "sample_count": window["sample_count"],
                        "min_spread": window["min_spread"],
                        "max_spread": window["max_spread"],
                    },
                )

        self.stop_reason = reason
        self._transition(SupervisorState.STOPPED)
        logger.info(
            "supervisor_stopped",
            extra={
                "reason": reason.kind,
                "records_written": self.records_written,
                "records_lost": self.records_lost,
                "backoff_entries": self.backoff_entries,
                **self._sampler.stats(),
            },
        )
        return reason

    # ------------------------------------------------------------------
    # Sample loop
    # ------------------------------------------------------------------

    async def _sample_loop(self, anchor: float) -> None:
        schedule = IntervalSchedule(self._options.poll_interval, anchor)
        logger.info("sample_loop_started", extra={"poll_interval": self._options.poll_interval})

        try:
            while not self._stop_event.is_set():
                await self._poll_with_backoff()
                if self._stop_event.is_set():
                    break

                deadline = schedule.advance(self._clock.time())
                if await wait_or_stop(self._clock, deadline - self._clock.time(), self._stop_event):
                    break
        except asyncio.CancelledError:
            pass

        logger.info("sample_loop_stopped", extra={"deadlines_skipped": schedule.skipped})

    async def _poll_with_backoff(self) -> None:
        """
        Poll until one attempt settles: success, non-retryable error, or stop.

        Retryable failures back off and retry immediately afterwards.
        """
        while not self._stop_event.is_set():
            try:
                await self._sampler.poll_once(self._client, self._aggregator)

            except (TransportError, RateLimitedError) as e:
                delay = self._backoff.next_delay(getattr(e, "retry_after", None))
                self.backoff_entries += 1
                self._transition(SupervisorState.BACKOFF)
                logger.warning(
                    "sample_backoff",
                    extra={
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "delay_sec": delay,
                        "attempt": self._backoff.attempts,
                    },
                )
                if await wait_or_stop(self._clock, delay, self._stop_event):
                    return
                self._transition(SupervisorState.RUNNING)
                continue

            except AuthError as e:
                self._fail(StopReason(StopKind.FATAL_AUTH, component="exchange_client", detail=str(e)))
                return

            except FetchError as e:
                # ProtocolError, or an unclassified fetch failure
                self._on_protocol_error(e)
                return

            except Exception as e:
                logger.exception(
                    "sample_unexpected_error",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
                self._on_protocol_error(ProtocolError(f"unexpected {type(e).__name__}: {e}"))
                return

            self._backoff.reset()
            self._consecutive_protocol_errors = 0
            return

    def _on_protocol_error(self, error: FetchError) -> None:
        self._consecutive_protocol_errors += 1
        count = self._consecutive_protocol_errors
        limit = self._options.protocol_retry_limit

        if count > limit:
            self._fail(
                StopReason(
                    StopKind.FATAL_CONSECUTIVE_FAILURES,
                    component="exchange_client",
                    detail=f"{count} consecutive protocol errors, last: {error}",
                )
            )
            return

        logger.warning(
            "sample_protocol_error",
            extra={"error": str(error), "consecutive": count, "limit": limit},
        )

    # ------------------------------------------------------------------
    # Flush loop
    # ------------------------------------------------------------------

    async def _flush_loop(self, anchor: float) -> None:
        scheduler = FlushScheduler(
            self._aggregator, self._options.flush_interval, self._clock, anchor=anchor
        )
        logger.info("flush_loop_started", extra={"flush_interval": self._options.flush_interval})

        try:
            while await scheduler.wait_next(self._stop_event):
                record = scheduler.drain()
                if await self._persist(record):
                    continue
                if not self._options.tolerate_persistence_loss:
                    self._fail(
                        StopReason(
                            StopKind.FATAL_PERSISTENCE,
                            component="storage_writer",
                            detail=f"could not write to {self._sink.path}",
                        )
                    )
                    break
        except asyncio.CancelledError:
            pass

        logger.info(
            "flush_loop_stopped",
            extra={"flushes": scheduler.fired, "deadlines_skipped": scheduler.schedule.skipped},
        )

    async def _persist(self, record: FlushRecord) -> bool:
        """
        Append ``record``, retrying on PersistenceError.

        Returns:
            True if written, False if every attempt failed (record logged as lost).
        """
        attempts = self._options.persist_max_attempts

        for attempt in range(1, attempts + 1):
            try:
                self._sink.append(record)
            except PersistenceError as e:
                logger.warning(
                    "flush_append_failed",
                    extra={"error": str(e), "attempt": attempt, "max_attempts": attempts},
                )
                if attempt < attempts:
                    await self._clock.sleep(self._options.persist_retry_delay)
                continue

            self.records_written += 1
            logger.info("flush_record_written", extra=record.to_dict())
            return True

        self.records_lost += 1
        logger.error("flush_record_lost", extra={**record.to_dict(), "attempts": attempts})
        return False

    async def _final_drain(self) -> bool:
        """
        Persist the partial window, bounded by drain_timeout.

        Returns:
            False if the record was lost, True otherwise (including nothing to write).
        """
        record = self._aggregator.drain(self._clock.wall_ms())
        if record.is_empty and record.window_end_ms == record.window_start_ms:
            return True

        try:
            return await asyncio.wait_for(self._persist(record), timeout=self._options.drain_timeout)
        except asyncio.TimeoutError:
            self.records_lost += 1
            logger.error(
                "flush_record_lost",
                extra={**record.to_dict(), "reason": "drain_timeout"},
            )
            return False
