"""
Usage tracking pipeline.

Wraps a unit of work with a billable entity and a feature name, times it,
prices it and records an event plus the monthly rollup.

Decision order for every call:
1. Master switch - ``enabled`` in config
2. Environment gate - current environment must be allowed
3. Tracking policy - skipped when the request is forced

When any of these says no, the callback still runs and its result (or
exception) reaches the caller unchanged; only the metering is absent.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from cloud_cost_tracker.config.loader import TrackerConfig, load_tracker_config
from cloud_cost_tracker.storage.models import UsageEvent
from cloud_cost_tracker.storage.repository import UsageRepository
from .billable import EntityLike, EntityRef, entity_ref
from .calculator import CostCalculator
from .errors import ConfigurationError, MissingEntityError, MissingFeatureError
from .policy import TrackingPolicyResolver
from .query import CostQuery
from .rollup import RollupAggregator

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TrackingRequest:
    """Everything one tracked invocation needs, assembled up front."""
    entity: Optional[EntityRef] = None
    feature: Optional[str] = None
    dimensions: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    forced: bool = False


class CostTracker:
    """Stateless tracking service.

    One instance can be shared by any number of threads or tasks; all
    per-call state travels in the TrackingRequest.
    """

    def __init__(
        self,
        config: TrackerConfig,
        repository: UsageRepository,
        policy_resolver: Optional[TrackingPolicyResolver] = None,
        calculator: Optional[CostCalculator] = None,
        aggregator: Optional[RollupAggregator] = None
    ):
        """Wire the tracker to its collaborators.

        Args:
            config: TrackerConfig with switches and the rate table
            repository: UsageRepository used for events, rollups and policies
            policy_resolver: Defaults to a resolver over ``repository``
            calculator: Defaults to a calculator over ``config.costs``
            aggregator: Defaults to an aggregator over ``repository``
        """
        self.config = config
        self.repository = repository
        self.policy_resolver = policy_resolver or TrackingPolicyResolver(repository)
        self.calculator = calculator or CostCalculator(config.cost_model())
        self.aggregator = aggregator or RollupAggregator(repository)

    @classmethod
    def from_config(
        cls,
        path: Optional[str] = None,
        db_path: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None
    ) -> "CostTracker":
        """Build a tracker from a YAML config file and create its tables.

        Args:
            path: Config file; built-in defaults when None
            db_path: Overrides the configured database path
            env: Environment mapping for overrides (defaults to os.environ)
        """
        config = load_tracker_config(path, env=env)
        if db_path is not None:
            config = config.with_overrides(database=db_path)

        repository = UsageRepository(config.database)
        repository.initialize_schema()
        return cls(config, repository)

    def session(self) -> "TrackingSession":
        return TrackingSession(self)

    def for_entity(self, entity: Optional[EntityLike]) -> "TrackingSession":
        """Start a fluent session for a billable entity."""
        return self.session().for_entity(entity)

    def feature(self, name: str) -> "TrackingSession":
        """Start a fluent session with the feature set first."""
        return self.session().feature(name)

    def query(self) -> CostQuery:
        """Read-side reporting over the recorded usage."""
        return CostQuery(self.repository)

    def track(self, request: TrackingRequest, callback: Callable[[], T]) -> T:
        """Run the callback and meter it according to the request.

        Args:
            request: Entity, feature, dimensions, metadata and force flag
            callback: The unit of work; called with no arguments

        Returns:
            The callback's return value, always passed through

        Raises:
            MissingEntityError: If the request has no entity
            MissingFeatureError: If the request has no feature
            ConfigurationError: If the cost cannot be computed
            Callback and database errors: Propagated without modification
        """
        entity = self._validate(request)

        if not self._enabled(entity, request):
            return callback()

        start = time.perf_counter_ns()
        result = callback()
        execution_time_ms = (time.perf_counter_ns() - start) / 1_000_000

        self._record(entity, request, execution_time_ms)
        return result

    async def track_async(self, request: TrackingRequest, callback: Callable[[], Awaitable[T]]) -> T:
        """Async variant of :meth:`track` for coroutine callbacks."""
        entity = self._validate(request)

        if not self._enabled(entity, request):
            return await callback()

        start = time.perf_counter_ns()
        result = await callback()
        execution_time_ms = (time.perf_counter_ns() - start) / 1_000_000

        self._record(entity, request, execution_time_ms)
        return result

    def _validate(self, request: TrackingRequest) -> EntityRef:
        if request.entity is None:
            raise MissingEntityError(
                "A billable entity is required. Use .for_entity(entity) before .track()."
            )
        if not request.feature:
            raise MissingFeatureError(
                "A feature name is required. Use .feature(\"name\") before .track()."
            )
        return entity_ref(request.entity)

    def _enabled(self, entity: EntityRef, request: TrackingRequest) -> bool:
        if not self.config.enabled:
            logger.debug("tracking_skipped reason=disabled feature=%s", request.feature)
            return False

        if not self.config.environment_allowed:
            logger.debug(
                "tracking_skipped reason=environment environment=%s feature=%s",
                self.config.environment, request.feature,
            )
            return False

        if request.forced:
            return True

        if not self.policy_resolver.should_track(entity, request.feature):
            logger.debug("tracking_skipped reason=policy entity=%s feature=%s", entity.key, request.feature)
            return False

        return True

    def _record(self, entity: EntityRef, request: TrackingRequest, execution_time_ms: float) -> None:
        """Price the invocation, write the event and bump the rollup."""
        dimensions: Dict[str, Mapping[str, Any]] = dict(request.dimensions)
        if not dimensions:
            dimensions[self.config.default_dimension] = {"quantity": 0}

        multiplier = self.policy_resolver.get_multiplier(entity)
        try:
            result = self.calculator.calculate(execution_time_ms, dimensions, multiplier)
        except ConfigurationError as e:
            logger.warning(
                "cost_calculation_failed entity=%s feature=%s error=%s",
                entity.key, request.feature, e,
            )
            raise

        # One clock read so the event and its rollup land in the same month
        now = self.aggregator.clock()
        event = None
        if self.config.log_events:
            event = UsageEvent(
                entity=entity,
                feature=request.feature,
                execution_time_ms=execution_time_ms,
                computed_cost=result.total_cost,
                cost_dimensions=result.dimensions,
                metadata=dict(request.metadata) if request.metadata else None,
                created_at=now,
            )

        self.aggregator.record(
            entity, request.feature, execution_time_ms, result.total_cost, event=event, now=now,
        )

        logger.debug(
            "usage_recorded entity=%s feature=%s ms=%.3f cost=%.10f",
            entity.key, request.feature, execution_time_ms, result.total_cost,
        )


class TrackingSession:
    """Fluent builder for one tracked invocation.

    Builder calls only collect state. ``track()`` hands a TrackingRequest to
    the tracker and resets the session whether the call succeeds or raises,
    so a session can be reused for the next chain.

    Example:
        tracker.for_entity(org).feature("import").dimension("bandwidth", 2).track(run_import)
    """

    def __init__(self, tracker: CostTracker):
        self._tracker = tracker
        self.reset()

    def for_entity(self, entity: Optional[EntityLike]) -> "TrackingSession":
        self._entity = entity_ref(entity) if entity is not None else None
        return self

    def feature(self, name: str) -> "TrackingSession":
        self._feature = name
        return self

    def dimension(self, name: str, quantity: float = 0) -> "TrackingSession":
        """Add a cost dimension; quantity matters for count and flat dimensions."""
        self._dimensions[name] = {"quantity": quantity}
        return self

    def force(self) -> "TrackingSession":
        """Bypass the tracking policy. Config and environment still apply."""
        self._forced = True
        return self

    def with_metadata(self, metadata: Mapping[str, Any]) -> "TrackingSession":
        """Merge key-value context into the event metadata."""
        self._metadata.update(metadata)
        return self

    def request(self) -> TrackingRequest:
        """Snapshot of the collected state."""
        return TrackingRequest(
            entity=self._entity,
            feature=self._feature,
            dimensions=dict(self._dimensions),
            metadata=dict(self._metadata),
            forced=self._forced,
        )

    def track(self, callback: Callable[[], T]) -> T:
        request = self.request()
        try:
            return self._tracker.track(request, callback)
        finally:
            self.reset()

    async def track_async(self, callback: Callable[[], Awaitable[T]]) -> T:
        request = self.request()
        try:
            return await self._tracker.track_async(request, callback)
        finally:
            self.reset()

    def reset(self) -> None:
        self._entity: Optional[EntityRef] = None
        self._feature: Optional[str] = None
        self._forced = False
        self._dimensions: Dict[str, Dict[str, Any]] = {}
        self._metadata: Dict[str, Any] = {}
