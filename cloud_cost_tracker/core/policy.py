"""
Tracking policy resolution.

Decides whether an (entity, feature) invocation is recorded and at what
cost multiplier. Policy rows are cached per resolver until ``flush()``.
"""

import logging
import threading
from typing import Callable, Dict, Generic, Optional, TypeVar

from cloud_cost_tracker.storage.models import TrackingMode, TrackingPolicy
from .billable import EntityLike, entity_ref

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MULTIPLIER = 1.0


class PolicyCache(Generic[T]):
    """Get-or-resolve cache with explicit flush.

    Misses are resolved once and stored, including ``None`` results. There
    is no automatic invalidation: whoever writes policy rows must call
    ``flush()`` for the change to be seen.
    """

    def __init__(self):
        self._entries: Dict[str, Optional[T]] = {}
        self._lock = threading.Lock()

    def get_or_resolve(self, key: str, resolve: Callable[[], Optional[T]]) -> Optional[T]:
        with self._lock:
            if key in self._entries:
                return self._entries[key]
        value = resolve()
        with self._lock:
            return self._entries.setdefault(key, value)

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def policy_allows(policy: Optional[TrackingPolicy], feature: str) -> bool:
    """Apply a policy's mode to a feature; no policy tracks everything."""
    if policy is None:
        return True

    return {
        TrackingMode.ALL: lambda: True,
        TrackingMode.NONE: lambda: False,
        TrackingMode.ALLOWLIST: lambda: feature in policy.tracking_features,
        TrackingMode.DENYLIST: lambda: feature not in policy.tracking_features,
    }[policy.tracking_mode]()


class TrackingPolicyResolver:
    """Resolves tracking policies from the repository.

    Results are cached for the lifetime of the resolver. Code that saves or
    deletes policy rows must call ``flush()`` afterwards.
    """

    def __init__(self, repository, cache: Optional[PolicyCache[TrackingPolicy]] = None):
        """Initialize the resolver.

        Args:
            repository: Object with ``get_tracking_policy(entity)``
            cache: Cache to use; a private one is created when omitted
        """
        self.repository = repository
        self.cache = cache if cache is not None else PolicyCache()

    def resolve(self, entity: EntityLike) -> Optional[TrackingPolicy]:
        """Cached policy for an entity, or None when it has none."""
        ref = entity_ref(entity)
        return self.cache.get_or_resolve(
            ref.key, lambda: self._load(ref)
        )

    def should_track(self, entity: EntityLike, feature: str) -> bool:
        return policy_allows(self.resolve(entity), feature)

    def get_multiplier(self, entity: EntityLike) -> float:
        policy = self.resolve(entity)
        if policy is None or policy.usage_multiplier is None:
            return DEFAULT_MULTIPLIER
        return float(policy.usage_multiplier)

    def flush(self) -> None:
        """Drop every cached resolution."""
        self.cache.flush()

    def _load(self, ref) -> Optional[TrackingPolicy]:
        policy = self.repository.get_tracking_policy(ref)
        logger.debug(
            "tracking_policy_resolved entity=%s mode=%s",
            ref.key, policy.tracking_mode.value if policy else "default",
        )
        return policy
