"""
Unit tests for monthly rollup aggregation.
"""

import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from cloud_cost_tracker.core.billable import EntityRef
from cloud_cost_tracker.core.rollup import RollupAggregator, month_start


ORG = EntityRef("Organization", "1")


class TestMonthStart:
    """Test period computation."""

    def test_first_of_month(self):
        assert month_start(datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)) == date(2025, 6, 1)

    def test_converts_to_utc_first(self):
        # 00:30 on July 1st at UTC+2 is still June 30th in UTC
        moment = datetime(2025, 7, 1, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        assert month_start(moment) == date(2025, 6, 1)


class TestRollupAggregator:
    """Test increments against a real database."""

    def test_increment_uses_clock_month(self, repository):
        aggregator = RollupAggregator(
            repository, clock=lambda: datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
        )

        aggregator.increment(ORG, "import", 100.0, 0.5)
        aggregator.increment(ORG, "import", 50.0, 0.25)

        rollups = repository.fetch_usage_rollups(entity=ORG)
        assert len(rollups) == 1
        assert rollups[0].period_start == date(2025, 6, 1)
        assert rollups[0].total_execution_ms == 150.0
        assert rollups[0].total_cost == pytest.approx(0.75)
        assert rollups[0].event_count == 2

    def test_month_boundary_starts_new_row(self, repository):
        moments = iter([
            datetime(2025, 5, 31, 23, 59, tzinfo=timezone.utc),
            datetime(2025, 6, 1, 0, 0, tzinfo=timezone.utc),
        ])
        aggregator = RollupAggregator(repository, clock=lambda: next(moments))

        aggregator.increment(ORG, "import", 1.0, 0.1)
        aggregator.increment(ORG, "import", 1.0, 0.1)

        periods = sorted(r.period_start for r in repository.fetch_usage_rollups(entity=ORG))
        assert periods == [date(2025, 5, 1), date(2025, 6, 1)]

    def test_concurrent_increments_are_not_lost(self, repository):
        """Parallel writers on one key all land in the same row."""
        aggregator = RollupAggregator(
            repository, clock=lambda: datetime(2025, 6, 15, tzinfo=timezone.utc)
        )
        threads_count = 8
        per_thread = 5
        errors = []

        def worker():
            try:
                for _ in range(per_thread):
                    aggregator.increment(ORG, "import", 10.0, 0.01)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        rollups = repository.fetch_usage_rollups(entity=ORG)
        total = threads_count * per_thread
        assert len(rollups) == 1
        assert rollups[0].event_count == total
        assert rollups[0].total_execution_ms == pytest.approx(total * 10.0)
        assert rollups[0].total_cost == pytest.approx(total * 0.01)
