"""
API Smoke Test
==============

One pass over the exchange API surface the collector depends on.

Steps:
1. Public order book (and the spread derived from it)
2. Public market summary
3. With a read-only key: accounts, open orders, brokerage fees

Each step is logged with its outcome. Nothing here touches the sampler,
the aggregator or the output file.

Usage:
    async with ExchangeClient.from_settings(settings) as client:
        ok = await run_smoke_test(client, settings.pair)
"""

import logging
import time
from typing import Any, Awaitable, Callable

from spreadbot.errors import FetchError
from spreadbot.exchange import ExchangeClient
from spreadbot.types import CurrencyPair

logger = logging.getLogger(__name__)


async def _step(name: str, call: Callable[[], Awaitable[Any]]) -> bool:
    start = time.perf_counter()
    try:
        result = await call()
    except FetchError as e:
        logger.error(
            "smoke_step_failed",
            extra={
                "step": name,
                "error": str(e),
                "error_type": type(e).__name__,
                "status": e.status,
            },
        )
        return False

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    logger.info("smoke_step_ok", extra={"step": name, "elapsed_ms": elapsed_ms, "result": _describe(result)})
    return True


def _describe(result: Any) -> Any:
    """Short, log-friendly view of a response."""
    if isinstance(result, list):
        return {"items": len(result)}
    if isinstance(result, dict):
        return {"keys": sorted(result)[:10]}
    return str(result)


async def run_smoke_test(client: ExchangeClient, pair: CurrencyPair) -> bool:
    """
    Run every step once, continuing past failures.

    Returns:
        True if all steps succeeded.
    """
    logger.info("smoke_test_starting", extra={"pair": str(pair), "authenticated": client.has_credentials})

    async def spread() -> dict:
        reading = await client.fetch_spread(pair)
        return {"bid": reading.bid, "ask": reading.ask, "spread": reading.spread}

    steps: list[tuple[str, Callable[[], Awaitable[Any]]]] = [
        ("order_book", spread),
        ("market_summary", lambda: client.get_market_summary(pair)),
    ]
    if client.has_credentials:
        steps += [
            ("accounts", client.get_accounts),
            ("open_orders", lambda: client.get_open_orders(pair)),
            ("brokerage_fees", client.get_brokerage_fees),
        ]
    else:
        logger.warning("smoke_private_skipped", extra={"reason": "no read_only key"})

    results = {}
    for name, call in steps:
        results[name] = await _step(name, call)

    passed = all(results.values())
    logger.info(
        "smoke_test_finished",
        extra={"passed": passed, "failed_steps": [n for n, ok in results.items() if not ok]},
    )
    return passed
