"""
Read-side cost reporting.

Filters and sums recorded usage from either the rollups table (fast, no
per-dimension detail) or the events table (granular). Every filter method
returns a new query, so partially built queries can be reused.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional, Tuple, Union

from cloud_cost_tracker.storage.repository import event_from_row, rollup_from_row
from .billable import EntityLike, EntityRef, entity_ref

SOURCES = ("rollups", "events")

# SQLite expressions bucketing a date column
_INTERVALS = {
    "day": "DATE({column})",
    "week": "DATE({column}, 'weekday 0', '-6 days')",
    "month": "strftime('%Y-%m-01', {column})",
}


@dataclass(frozen=True)
class FeatureTotal:
    feature: str
    total_cost: float
    event_count: int


@dataclass(frozen=True)
class DimensionTotal:
    dimension: str
    total_cost: float


@dataclass(frozen=True)
class EntityTotal:
    entity: EntityRef
    total_cost: float


@dataclass(frozen=True)
class SeriesPoint:
    date: str
    total_cost: float


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def _add_months(day: date, months: int) -> date:
    index = day.month - 1 + months
    return date(day.year + index // 12, index % 12 + 1, 1)


def period_bounds(period: str, reference: Union[date, datetime]) -> Tuple[date, date]:
    """Start (inclusive) and end (exclusive) of the named period around a date.

    Raises:
        ValueError: If the period is not month, quarter or year
    """
    day = _as_date(reference)
    if period == "month":
        start = date(day.year, day.month, 1)
        return start, _add_months(start, 1)
    if period == "quarter":
        start = date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)
        return start, _add_months(start, 3)
    if period == "year":
        return date(day.year, 1, 1), date(day.year + 1, 1, 1)
    raise ValueError(f"Unsupported period: {period} (expected month, quarter or year)")


@dataclass(frozen=True)
class CostQuery:
    """Immutable query over recorded usage.

    Example:
        tracker.query().for_entity(org).period("month").sum_by_feature()
    """
    repository: Any = field(repr=False, compare=False)
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    feature_filters: Tuple[str, ...] = ()
    start: Optional[date] = None
    end: Optional[date] = None
    source: str = "rollups"

    # Filters

    def for_entity(self, entity: EntityLike) -> "CostQuery":
        """Restrict to one billable entity."""
        ref = entity_ref(entity)
        return replace(self, entity_type=ref.type, entity_id=ref.id)

    def for_type(self, entity_type: Union[str, type]) -> "CostQuery":
        """Restrict to every entity of a type; classes map to their name."""
        name = entity_type.__name__ if isinstance(entity_type, type) else entity_type
        return replace(self, entity_type=name, entity_id=None)

    def feature(self, feature: str) -> "CostQuery":
        return replace(self, feature_filters=(feature,))

    def features(self, features: Iterable[str]) -> "CostQuery":
        return replace(self, feature_filters=tuple(features))

    def period(self, period: str, reference: Optional[Union[date, datetime]] = None) -> "CostQuery":
        """Restrict to the month, quarter or year containing ``reference`` (default today, UTC)."""
        start, end = period_bounds(period, reference or datetime.now(timezone.utc))
        return replace(self, start=start, end=end)

    def date_range(self, start: Union[date, datetime], end: Union[date, datetime]) -> "CostQuery":
        """Restrict to calendar dates from ``start`` through ``end``, inclusive."""
        return replace(self, start=_as_date(start), end=_as_date(end) + timedelta(days=1))

    def from_rollups(self) -> "CostQuery":
        return replace(self, source="rollups")

    def from_events(self) -> "CostQuery":
        return replace(self, source="events")

    # Terminals

    def sum(self) -> float:
        """Total cost across every matching row."""
        where, params = self._where()
        rows = self.repository.fetch_all(
            f"SELECT COALESCE(SUM({self._cost_column}), 0) AS total FROM {self._table}{where}",
            params,
        )
        return float(rows[0]["total"])

    def sum_by_feature(self) -> List[FeatureTotal]:
        """Cost and event count per feature, most expensive first."""
        where, params = self._where()
        count = "SUM(event_count)" if self.source == "rollups" else "COUNT(*)"
        rows = self.repository.fetch_all(
            f"""
            SELECT feature, SUM({self._cost_column}) AS total_cost, {count} AS event_count
            FROM {self._table}{where}
            GROUP BY feature
            ORDER BY total_cost DESC
            """,
            params,
        )
        return [
            FeatureTotal(row["feature"], float(row["total_cost"] or 0), int(row["event_count"] or 0))
            for row in rows
        ]

    def sum_by_dimension(self) -> List[DimensionTotal]:
        """Cost per dimension, most expensive first.

        Always reads events: rollups don't keep per-dimension breakdowns.
        """
        totals = {}
        for event in self.from_events().get():
            for dimension, data in (event.cost_dimensions or {}).items():
                cost = data.get("cost", 0.0) if isinstance(data, dict) else float(data)
                totals[dimension] = totals.get(dimension, 0.0) + cost

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [DimensionTotal(dimension, cost) for dimension, cost in ranked]

    def sum_by_entity(self, limit: int = 20) -> List[EntityTotal]:
        """Top ``limit`` entities by cost."""
        where, params = self._where()
        rows = self.repository.fetch_all(
            f"""
            SELECT entity_type, entity_id, SUM({self._cost_column}) AS total_cost
            FROM {self._table}{where}
            GROUP BY entity_type, entity_id
            ORDER BY total_cost DESC
            LIMIT ?
            """,
            params + [limit],
        )
        return [
            EntityTotal(EntityRef(row["entity_type"], row["entity_id"]), float(row["total_cost"] or 0))
            for row in rows
        ]

    def time_series(self, interval: str = "day") -> List[SeriesPoint]:
        """Cost bucketed by day, week (starting Monday) or month.

        Raises:
            ValueError: If the interval is unsupported
        """
        if interval not in _INTERVALS:
            raise ValueError(f"Unsupported interval: {interval} (expected day, week or month)")

        bucket = _INTERVALS[interval].format(column=self._date_column)
        where, params = self._where()
        rows = self.repository.fetch_all(
            f"""
            SELECT {bucket} AS bucket, SUM({self._cost_column}) AS total_cost
            FROM {self._table}{where}
            GROUP BY bucket
            ORDER BY bucket
            """,
            params,
        )
        return [SeriesPoint(row["bucket"], float(row["total_cost"] or 0)) for row in rows]

    def get(self) -> list:
        """Matching UsageRollup or UsageEvent records."""
        where, params = self._where()
        order = "period_start DESC, feature" if self.source == "rollups" else "created_at DESC, id DESC"
        rows = self.repository.fetch_all(
            f"SELECT * FROM {self._table}{where} ORDER BY {order}", params
        )
        to_record = rollup_from_row if self.source == "rollups" else event_from_row
        return [to_record(row) for row in rows]

    # Query building

    @property
    def _table(self) -> str:
        return "usage_rollups" if self.source == "rollups" else "usage_events"

    @property
    def _cost_column(self) -> str:
        return "total_cost" if self.source == "rollups" else "computed_cost"

    @property
    def _date_column(self) -> str:
        return "period_start" if self.source == "rollups" else "created_at"

    def _date_param(self, day: date) -> str:
        if self.source == "rollups":
            return day.isoformat()
        return f"{day.isoformat()} 00:00:00"

    def _where(self) -> Tuple[str, List[Any]]:
        if self.source not in SOURCES:
            raise ValueError(f"Unsupported source: {self.source}")

        conditions = []
        params: List[Any] = []

        if self.entity_type is not None:
            conditions.append("entity_type = ?")
            params.append(self.entity_type)
        if self.entity_id is not None:
            conditions.append("entity_id = ?")
            params.append(self.entity_id)

        if len(self.feature_filters) == 1:
            conditions.append("feature = ?")
            params.append(self.feature_filters[0])
        elif self.feature_filters:
            placeholders = ", ".join("?" for _ in self.feature_filters)
            conditions.append(f"feature IN ({placeholders})")
            params.extend(self.feature_filters)

        if self.start is not None:
            conditions.append(f"{self._date_column} >= ?")
            params.append(self._date_param(self.start))
        if self.end is not None:
            conditions.append(f"{self._date_column} < ?")
            params.append(self._date_param(self.end))

        if not conditions:
            return "", params
        return " WHERE " + " AND ".join(conditions), params
