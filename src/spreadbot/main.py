"""
Main Entry Point
================

Entry point for the spread collector.

Usage:
    spreadbot [-c spreadbot.toml] [--log-level DEBUG] [run]
    spreadbot test-api        # one pass over the API surface
    spreadbot dump-config     # effective settings, secrets masked
    spreadbot summary         # aggregate of the flush log

The run command will:
1. Load and validate configuration (exit 2 on error)
2. Setup JSON logging
3. Check the output file can be created (exit 5 otherwise)
4. Sample the spread every poll interval and flush a summary line every
   flush interval until SIGINT/SIGTERM or a fatal error
5. Exit with the stop reason's code
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import orjson

from spreadbot import __record_version__, __version__
from spreadbot.aggregator import SpreadAggregator
from spreadbot.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from spreadbot.errors import ConfigError, PersistenceError
from spreadbot.exchange import ExchangeClient
from spreadbot.logging_setup import setup_logging
from spreadbot.sampler import SpreadSampler
from spreadbot.smoke import run_smoke_test
from spreadbot.storage_writer import FlushRecordWriter, read_records, summarize
from spreadbot.supervisor import Supervisor, SupervisorOptions
from spreadbot.types import EXIT_CONFIG, EXIT_CRASH, EXIT_OK, StopKind, StopReason

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spreadbot",
        description="Collect min/max bid/ask spread summaries from Independent Reserve.",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"TOML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Override the configured log level",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the collector (default)")
    sub.add_parser("test-api", help="Smoke-test the public and read-only API")
    sub.add_parser("dump-config", help="Print the effective configuration")
    sub.add_parser("summary", help="Summarise the flush log")
    return parser


async def collect(settings: Settings, writer: FlushRecordWriter) -> StopReason:
    """Run the supervisor until a signal or a fatal error."""
    logger.info(
        "collector_starting",
        extra={
            "version": __version__,
            "record_version": __record_version__,
            "pair": settings.currency_pair,
            "poll_interval_seconds": settings.poll_interval_seconds,
            "flush_interval_seconds": settings.flush_interval_seconds,
            "output_path": str(settings.output_path),
        },
    )

    async with ExchangeClient.from_settings(settings) as client:
        supervisor = Supervisor(
            client=client,
            aggregator=SpreadAggregator(),
            sink=writer,
            sampler=SpreadSampler(settings.pair),
            options=SupervisorOptions.from_settings(settings),
        )

        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("shutdown_signal", extra={"signal": sig.name})
            supervisor.request_stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

        try:
            return await supervisor.run()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)


async def test_api(settings: Settings) -> bool:
    async with ExchangeClient.from_settings(settings) as client:
        return await run_smoke_test(client, settings.pair)


def cmd_run(settings: Settings) -> int:
    writer = FlushRecordWriter(settings.output_path)
    try:
        writer.ensure_writable()
    except PersistenceError as e:
        logger.critical("startup_failed", extra={"component": "storage_writer", "error": str(e)})
        return StopReason(StopKind.FATAL_PERSISTENCE, component="storage_writer").exit_code

    reason = asyncio.run(collect(settings, writer))
    logger.info("collector_exit", extra={"reason": reason.kind, "exit_code": reason.exit_code})
    return reason.exit_code


def cmd_test_api(settings: Settings) -> int:
    return EXIT_OK if asyncio.run(test_api(settings)) else EXIT_CRASH


def cmd_dump_config(settings: Settings) -> int:
    sys.stdout.write(orjson.dumps(settings.dump(), option=orjson.OPT_INDENT_2).decode() + "\n")
    return EXIT_OK


def cmd_summary(settings: Settings) -> int:
    try:
        records = read_records(settings.output_path)
    except OSError as e:
        logger.error("summary_read_failed", extra={"path": str(settings.output_path), "error": str(e)})
        return EXIT_CRASH

    summary = summarize(records)
    sys.stdout.write(
        orjson.dumps(summary, default=str, option=orjson.OPT_INDENT_2).decode() + "\n"
    )
    return EXIT_OK


COMMANDS = {
    "run": cmd_run,
    "test-api": cmd_test_api,
    "dump-config": cmd_dump_config,
    "summary": cmd_summary,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, load settings and dispatch; returns the exit code."""
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    setup_logging(args.log_level or "INFO")

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.critical("config_error", extra={"path": args.config, "error": str(e)})
        return EXIT_CONFIG

    if args.log_level is None:
        setup_logging(settings.log_level)

    return COMMANDS[command](settings)


def run() -> None:
    """Synchronous entry point for the console script."""
    try:
        code = main()
    except KeyboardInterrupt:
        code = EXIT_OK
    except Exception:
        logger.exception("collector_crashed")
        code = EXIT_CRASH
    sys.exit(code)


if __name__ == "__main__":
    run()
