"""
Spread Sampler Module
=====================

One poll of the exchange, forwarded to the aggregator.

A failed poll leaves the aggregator untouched: an outage shrinks the
window's sample_count, it never adds zero-spread readings.
"""

import logging
from typing import Protocol

from spreadbot.aggregator import SpreadAggregator
from spreadbot.errors import FetchError
from spreadbot.types import CurrencyPair, SpreadReading

logger = logging.getLogger(__name__)


class SpreadSource(Protocol):
    async def fetch_spread(self, pair: CurrencyPair) -> SpreadReading: ...


class SpreadSampler:
    """
    Polls a SpreadSource for one pair.

    Args:
        pair: Currency pair to sample
    """

    def __init__(self, pair: CurrencyPair) -> None:
        self.pair = pair

        self.polls_ok = 0
        self.polls_failed = 0
        self.readings_rejected = 0

    async def poll_once(self, client: SpreadSource, aggregator: SpreadAggregator) -> SpreadReading:
        """
        Fetch one reading and record it.

        The network call happens before the aggregator lock is taken.

        Returns:
            The reading (recorded, or rejected by the aggregator if ask < bid).

        Raises:
            FetchError: Propagated unchanged; the aggregator is not touched.
        """
        try:
            reading = await client.fetch_spread(self.pair)
        except FetchError as e:
            self.polls_failed += 1
            logger.info(
                "sampler_poll_failed",
                extra={
                    "pair": str(self.pair),
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "polls_failed": self.polls_failed,
                },
            )
            raise

        self.polls_ok += 1
        accepted = aggregator.observe(reading)
        if not accepted:
            self.readings_rejected += 1

        logger.debug(
            "sampler_poll_ok",
            extra={
                "pair": str(self.pair),
                "bid": reading.bid,
                "ask": reading.ask,
                "spread": reading.spread,
                "percent": reading.percent,
                "accepted": accepted,
            },
        )
        return reading

    def stats(self) -> dict:
        return {
            "polls_ok": self.polls_ok,
            "polls_failed": self.polls_failed,
            "readings_rejected": self.readings_rejected,
        }
