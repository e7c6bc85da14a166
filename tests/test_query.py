"""
Unit tests for read-side cost reporting.

Seeds June and May usage for two workspaces and checks every filter and
aggregate against known totals.
"""

from datetime import date, datetime, timezone

import pytest

from cloud_cost_tracker.core.billable import Billable, EntityRef
from cloud_cost_tracker.core.query import CostQuery, period_bounds
from cloud_cost_tracker.storage.models import UsageEvent, UsageRollup


JUNE = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
MAY = datetime(2025, 5, 10, 12, 0, 0, tzinfo=timezone.utc)


class Workspace(Billable):
    def __init__(self, id):
        self.id = id


WORKSPACE_A = Workspace(1)
WORKSPACE_B = Workspace(2)


def _record(repository, entity, feature, cost, dimensions, moment):
    ref = EntityRef(entity.billable_type, entity.billable_id)
    repository.insert_usage_event(UsageEvent(
        entity=ref,
        feature=feature,
        execution_time_ms=100.0,
        computed_cost=cost,
        cost_dimensions=dimensions,
        created_at=moment,
    ))
    repository.increment_rollup(
        ref, feature, date(moment.year, moment.month, 1), 100.0, cost, now=moment
    )


@pytest.fixture
def query(repository):
    """Query over seeded usage.

    June: A import 3 x 0.50, A merge 2 x 0.25, B import 1 x 1.00.
    May: A import 1 x 0.75.
    """
    for _ in range(3):
        _record(repository, WORKSPACE_A, "import", 0.50, {
            "compute": {"ms": 100, "cost": 0.30},
            "postgres": {"ms": 50, "cost": 0.20},
        }, JUNE)
    for _ in range(2):
        _record(repository, WORKSPACE_A, "merge", 0.25, {
            "compute": {"ms": 80, "cost": 0.15},
            "cache": {"quantity": 10, "cost": 0.10},
        }, JUNE)
    _record(repository, WORKSPACE_B, "import", 1.00, {
        "compute": {"ms": 200, "cost": 0.60},
        "postgres": {"ms": 100, "cost": 0.40},
    }, JUNE)
    _record(repository, WORKSPACE_A, "import", 0.75, {
        "compute": {"ms": 150, "cost": 0.75},
    }, MAY)

    return CostQuery(repository)


class TestSum:
    """Test total cost with filters."""

    def test_sum_from_rollups(self, query):
        assert query.period("month", date(2025, 6, 1)).sum() == pytest.approx(3.00)

    def test_sum_from_events(self, query):
        assert query.period("month", date(2025, 6, 1)).from_events().sum() == pytest.approx(3.00)

    def test_sum_for_entity(self, query):
        total = query.for_entity(WORKSPACE_A).period("month", date(2025, 6, 1)).sum()
        assert total == pytest.approx(2.00)

    def test_sum_for_type(self, query):
        total = query.for_type(Workspace).period("month", date(2025, 6, 1)).sum()
        assert total == pytest.approx(3.00)

    def test_sum_for_unknown_type_is_zero(self, query):
        assert query.for_type("Team").sum() == 0.0

    def test_single_feature(self, query):
        total = query.feature("import").period("month", date(2025, 6, 1)).sum()
        assert total == pytest.approx(2.50)

    def test_multiple_features(self, query):
        total = query.features(["import", "merge"]).period("month", date(2025, 6, 1)).sum()
        assert total == pytest.approx(3.00)

    def test_previous_month(self, query):
        total = query.for_entity(WORKSPACE_A).period("month", date(2025, 5, 1)).sum()
        assert total == pytest.approx(0.75)

    def test_date_range_is_inclusive(self, query):
        total = query.for_entity(WORKSPACE_A).date_range(date(2025, 5, 1), date(2025, 6, 30)).sum()
        assert total == pytest.approx(2.75)

    def test_date_range_on_events_includes_end_day(self, query):
        total = query.from_events().date_range(date(2025, 6, 1), date(2025, 6, 15)).sum()
        assert total == pytest.approx(3.00)

    def test_quarter_covers_both_months(self, query):
        total = query.period("quarter", date(2025, 4, 20)).sum()
        assert total == pytest.approx(3.75)

    def test_no_filters_returns_everything(self, query):
        assert query.sum() == pytest.approx(3.75)


class TestBreakdowns:
    """Test grouped aggregates."""

    def test_sum_by_feature_from_rollups(self, query):
        results = query.for_entity(WORKSPACE_A).period("month", date(2025, 6, 1)).sum_by_feature()

        by_feature = {r.feature: r for r in results}
        assert set(by_feature) == {"import", "merge"}
        assert by_feature["import"].total_cost == pytest.approx(1.50)
        assert by_feature["import"].event_count == 3
        assert by_feature["merge"].total_cost == pytest.approx(0.50)
        assert results[0].feature == "import"

    def test_sum_by_feature_from_events(self, query):
        results = (
            query.for_entity(WORKSPACE_A)
            .period("month", date(2025, 6, 1))
            .from_events()
            .sum_by_feature()
        )

        by_feature = {r.feature: r for r in results}
        assert by_feature["import"].event_count == 3
        assert by_feature["merge"].event_count == 2

    def test_sum_by_dimension(self, query):
        results = query.for_entity(WORKSPACE_A).period("month", date(2025, 6, 1)).sum_by_dimension()

        by_dimension = {r.dimension: r.total_cost for r in results}
        assert by_dimension["compute"] == pytest.approx(1.20)
        assert by_dimension["postgres"] == pytest.approx(0.60)
        assert by_dimension["cache"] == pytest.approx(0.20)
        assert [r.dimension for r in results] == ["compute", "postgres", "cache"]

    def test_sum_by_entity(self, query):
        results = query.period("month", date(2025, 6, 1)).sum_by_entity(limit=10)

        assert len(results) == 2
        assert results[0].entity == EntityRef("Workspace", "1")
        assert results[0].total_cost == pytest.approx(2.00)
        assert results[1].total_cost == pytest.approx(1.00)

    def test_sum_by_entity_respects_limit(self, query):
        assert len(query.period("month", date(2025, 6, 1)).sum_by_entity(limit=1)) == 1


class TestTimeSeries:
    """Test bucketed cost over time."""

    def test_daily_from_events(self, query):
        results = (
            query.for_entity(WORKSPACE_A)
            .period("month", date(2025, 6, 1))
            .from_events()
            .time_series("day")
        )

        assert len(results) == 1
        assert results[0].date == "2025-06-15"
        assert results[0].total_cost == pytest.approx(2.00)

    def test_monthly_from_rollups(self, query):
        results = query.for_entity(WORKSPACE_A).date_range(date(2025, 5, 1), date(2025, 6, 30)).time_series("month")

        assert [point.date for point in results] == ["2025-05-01", "2025-06-01"]
        assert results[1].total_cost == pytest.approx(2.00)

    def test_weekly_buckets_start_monday(self, query):
        results = query.from_events().for_entity(WORKSPACE_B).time_series("week")

        # 2025-06-15 is a Sunday
        assert [point.date for point in results] == ["2025-06-09"]

    def test_unknown_interval_raises(self, query):
        with pytest.raises(ValueError, match="Unsupported interval"):
            query.time_series("hour")


class TestRecords:
    """Test raw record access and source switching."""

    def test_get_rollups_by_default(self, query):
        results = query.for_entity(WORKSPACE_A).period("month", date(2025, 6, 1)).get()

        assert len(results) == 2
        assert all(isinstance(r, UsageRollup) for r in results)

    def test_get_events(self, query):
        results = query.for_entity(WORKSPACE_A).period("month", date(2025, 6, 1)).from_events().get()

        assert len(results) == 5
        assert all(isinstance(r, UsageEvent) for r in results)

    def test_from_rollups_resets_source(self, query):
        results = (
            query.from_events()
            .from_rollups()
            .for_entity(WORKSPACE_A)
            .period("month", date(2025, 6, 1))
            .get()
        )

        assert isinstance(results[0], UsageRollup)

    def test_filters_return_new_queries(self, query):
        narrowed = query.feature("import")

        assert narrowed is not query
        assert query.feature_filters == ()


class TestPeriodBounds:
    """Test named period boundaries."""

    def test_month(self):
        assert period_bounds("month", date(2025, 12, 31)) == (date(2025, 12, 1), date(2026, 1, 1))

    def test_quarter(self):
        assert period_bounds("quarter", date(2025, 5, 10)) == (date(2025, 4, 1), date(2025, 7, 1))

    def test_year(self):
        assert period_bounds("year", datetime(2025, 6, 15)) == (date(2025, 1, 1), date(2026, 1, 1))

    def test_unknown_period_raises(self):
        with pytest.raises(ValueError, match="Unsupported period"):
            period_bounds("week", date(2025, 6, 15))
