"""
Monthly rollup aggregation.

Keeps one running total per (entity, feature, calendar month).
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional

from cloud_cost_tracker.storage.models import UsageEvent
from .billable import EntityLike, entity_ref


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_start(moment: datetime) -> date:
    """First day of the UTC calendar month containing ``moment``."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return date(moment.year, moment.month, 1)


class RollupAggregator:
    """Adds tracked invocations to their monthly rollup row."""

    def __init__(self, repository, clock: Optional[Callable[[], datetime]] = None):
        """Initialize the aggregator.

        Args:
            repository: Object with atomic ``increment_rollup`` and
                ``record_usage`` operations
            clock: Returns the current UTC time; injectable for tests
        """
        self.repository = repository
        self.clock = clock or utc_now

    def increment(
        self,
        entity: EntityLike,
        feature: str,
        execution_time_ms: float,
        cost: float,
        now: Optional[datetime] = None
    ) -> None:
        """Add one invocation to the totals of the month containing ``now``.

        The add happens in one upsert statement; there is no read step.
        """
        self.record(entity, feature, execution_time_ms, cost, now=now)

    def record(
        self,
        entity: EntityLike,
        feature: str,
        execution_time_ms: float,
        cost: float,
        event: Optional[UsageEvent] = None,
        now: Optional[datetime] = None
    ) -> None:
        """Write ``event`` (if any) and the rollup increment together.

        ``now`` picks the rollup month and defaults to one clock read.
        """
        if now is None:
            now = self.clock()
        self.repository.record_usage(
            event=event,
            entity=entity_ref(entity),
            feature=feature,
            period_start=month_start(now),
            execution_time_ms=execution_time_ms,
            cost=cost,
            now=now,
        )
