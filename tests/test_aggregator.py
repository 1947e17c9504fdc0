"""
Spread aggregator tests: running min/max, rejection of crossed books and
atomic drain-and-reset.
"""

import random
import threading
from decimal import Decimal

import pytest

from conftest import WALL_START_MS, make_reading
from spreadbot.aggregator import SpreadAggregator


class TestObserve:

    def test_min_max_over_three_readings(self):
        """Spreads 1, 3, 0.5 give min 0.5, max 3, count 3."""
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        for bid, ask in [("100", "101"), ("99", "102"), ("100", "100.5")]:
            assert aggregator.observe(make_reading(bid, ask))

        record = aggregator.drain(WALL_START_MS + 60_000)

        assert record.min_spread == Decimal("0.5")
        assert record.max_spread == Decimal("3")
        assert record.sample_count == 3
        assert record.window_start_ms == WALL_START_MS
        assert record.window_end_ms == WALL_START_MS + 60_000

    @pytest.mark.parametrize("seed", range(5))
    def test_bounds_hold_for_any_sequence(self, seed):
        rng = random.Random(seed)
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        spreads = []
        for _ in range(rng.randint(1, 50)):
            bid = Decimal(rng.randint(9_000, 10_000)) / 100
            spread = Decimal(rng.randint(0, 500)) / 100
            aggregator.observe(make_reading(str(bid), str(bid + spread)))
            spreads.append(spread)

        record = aggregator.drain(WALL_START_MS + 1)
        assert record.sample_count == len(spreads)
        assert all(record.min_spread <= s <= record.max_spread for s in spreads)
        assert record.min_spread == min(spreads)
        assert record.max_spread == max(spreads)

    def test_zero_spread_is_valid(self):
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        assert aggregator.observe(make_reading("100", "100"))

        record = aggregator.drain(WALL_START_MS + 1)
        assert record.min_spread == record.max_spread == Decimal("0")
        assert record.sample_count == 1

    def test_crossed_book_rejected(self):
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        assert aggregator.observe(make_reading("100", "101"))
        assert not aggregator.observe(make_reading("101", "100"))

        record = aggregator.drain(WALL_START_MS + 1)
        assert record.sample_count == 1
        assert record.rejected_count == 1
        assert record.min_spread == record.max_spread == Decimal("1")

    def test_percent_buckets(self):
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        # 0.1%, 0.25%, 0.35%, 0.5% of a 1000 ask
        for bid in ("999", "997.5", "996.5", "995"):
            aggregator.observe(make_reading(bid, "1000"))

        record = aggregator.drain(WALL_START_MS + 1)
        assert record.bucket_counts == {
            "lt_0_2": 1,
            "0_2_to_0_3": 1,
            "0_3_to_0_4": 1,
            "gte_0_4": 1,
        }
        assert record.min_percent == Decimal("0.001")
        assert record.max_percent == Decimal("0.005")


class TestDrain:

    def test_drain_resets_window(self):
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        aggregator.observe(make_reading("100", "102"))

        first = aggregator.drain(WALL_START_MS + 5_000)
        second = aggregator.drain(WALL_START_MS + 10_000)

        assert first.sample_count == 1
        assert second.is_empty
        assert second.min_spread is None and second.max_spread is None
        assert second.window_start_ms == first.window_end_ms

    def test_observe_after_drain_starts_fresh(self):
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        aggregator.observe(make_reading("100", "105"))
        aggregator.drain(WALL_START_MS + 1)
        aggregator.observe(make_reading("100", "101.5"))

        record = aggregator.drain(WALL_START_MS + 2)
        assert record.sample_count == 1
        assert record.min_spread == record.max_spread == Decimal("1.5")

    def test_empty_drain_keeps_window_order(self):
        """A drain time earlier than the window start is clamped."""
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        record = aggregator.drain(WALL_START_MS - 500)
        assert record.window_end_ms >= record.window_start_ms

    def test_snapshot_does_not_reset(self):
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        aggregator.observe(make_reading("100", "101"))

        snapshot = aggregator.snapshot()
        assert snapshot["sample_count"] == 1
        assert aggregator.sample_count == 1

    def test_concurrent_observe_and_drain_loses_nothing(self):
        """Readings from several threads all land in exactly one window."""
        aggregator = SpreadAggregator(window_start_ms=WALL_START_MS)
        per_thread = 500
        threads = 4
        drained = []

        def produce():
            for _ in range(per_thread):
                aggregator.observe(make_reading("100", "101"))

        workers = [threading.Thread(target=produce) for _ in range(threads)]
        for worker in workers:
            worker.start()
        for i in range(20):
            drained.append(aggregator.drain(WALL_START_MS + i))
        for worker in workers:
            worker.join()
        drained.append(aggregator.drain(WALL_START_MS + 100))

        assert sum(r.sample_count for r in drained) == per_thread * threads
