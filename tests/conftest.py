"""
Shared fixtures: a virtual clock for the supervisor and scheduler tests,
sample readings and a minimal config file.
"""

import asyncio
import heapq
import itertools
import os
from decimal import Decimal

import pytest

from fake_exchange import FakeExchange
from spreadbot.types import SpreadReading

WALL_START_MS = 1_700_000_000_000


class FakeClock:
    """
    Virtual time for code that sleeps through a Clock.

    ``sleep`` parks the caller until the test advances time past its wake-up
    point. Wall time moves in step with monotonic time.
    """

    def __init__(self, start: float = 0.0, wall_start_ms: int = WALL_START_MS) -> None:
        self._start = start
        self._now = start
        self._wall_start_ms = wall_start_ms
        self._waiters: list = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def wall_ms(self) -> int:
        return self._wall_start_ms + int(round((self._now - self._start) * 1000))

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._waiters, (self._now + delay, next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, _, f in self._waiters if not f.done())

    async def settle(self, rounds: int = 50) -> None:
        """Let every runnable task run until it blocks again."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance_to(self, target: float) -> None:
        """Move time to ``target``, waking sleepers in deadline order."""
        await self.settle()
        while self._waiters and self._waiters[0][0] <= target:
            wake, _, future = heapq.heappop(self._waiters)
            if future.done():
                continue
            self._now = max(self._now, wake)
            future.set_result(None)
            await self.settle()
        self._now = max(self._now, target)
        await self.settle()

    async def advance(self, delta: float) -> None:
        await self.advance_to(self._now + delta)


@pytest.fixture
def clock():
    return FakeClock()


def make_reading(bid: str, ask: str, ts_ms: int = WALL_START_MS) -> SpreadReading:
    return SpreadReading(ts_ms=ts_ms, bid=Decimal(bid), ask=Decimal(ask))


@pytest.fixture
def reading():
    return make_reading("100", "101")


CONFIG_TOML = """\
currency_pair = "XBT/AUD"
poll_interval_seconds = 5
flush_interval_seconds = 3600
output_path = "{output}"

[read_only]
api_key = "b2111111-4b1c-4880-b4c4-036d81f3de59"
api_secret = "11111193333335555558888888111111"
"""


@pytest.fixture
def config_file(tmp_path):
    """Path to a valid config whose output goes to tmp_path."""
    path = tmp_path / "spreadbot.toml"
    output = (tmp_path / "out" / "spread-bot.log").as_posix()
    path.write_text(CONFIG_TOML.format(output=output))
    return path


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    """Keep SPREADBOT_* variables from the host out of the tests."""
    for name in list(os.environ):
        if name.upper().startswith("SPREADBOT_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
async def exchange():
    """A running FakeExchange; see fake_exchange.py."""
    fake = await FakeExchange().start()
    yield fake
    await fake.close()
