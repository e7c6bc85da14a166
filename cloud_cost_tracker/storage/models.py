"""
Data models for storage layer.

Defines the persisted usage records and tracking policies.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from cloud_cost_tracker.core.billable import EntityRef


class TrackingMode(Enum):
    """Which features of an entity get tracked."""
    ALL = "all"
    NONE = "none"
    ALLOWLIST = "allowlist"
    DENYLIST = "denylist"

    @property
    def label(self) -> str:
        return {
            TrackingMode.ALL: "Track All Features",
            TrackingMode.NONE: "Track Nothing",
            TrackingMode.ALLOWLIST: "Allowlist Only",
            TrackingMode.DENYLIST: "Denylist (Exclude Listed)",
        }[self]


@dataclass(frozen=True)
class TrackingPolicy:
    """Per-entity tracking configuration. At most one per entity."""
    entity: EntityRef
    tracking_mode: TrackingMode = TrackingMode.ALL
    tracking_features: FrozenSet[str] = field(default_factory=frozenset)
    usage_multiplier: float = 1.0

    def __post_init__(self):
        """Normalize the feature set.

        The multiplier is not range-checked: zero prices a free-tier entity
        at nothing, and the policy owner is responsible for its value.
        """
        object.__setattr__(self, "tracking_features", frozenset(self.tracking_features))


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one tracked invocation.

    Append-only: once written, an event is never modified.
    """
    entity: EntityRef
    feature: str
    execution_time_ms: float
    computed_cost: float
    cost_dimensions: Dict[str, Dict[str, float]]
    created_at: datetime
    metadata: Optional[Dict[str, Any]] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class UsageRollup:
    """Monthly running totals for one (entity, feature)."""
    entity: EntityRef
    feature: str
    period_start: date
    total_execution_ms: float
    total_cost: float
    event_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None
