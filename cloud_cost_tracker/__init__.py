"""
Cloud Cost Tracker.

Per-entity usage metering: wrap a unit of work with a billable entity and a
feature name, and get an estimated infrastructure cost recorded as an event
plus a monthly rollup.
"""

from .core.billable import Billable, EntityRef
from .core.errors import (
    CloudCostError,
    ConfigurationError,
    MissingEntityError,
    MissingFeatureError,
)
from .core.tracker import CostTracker, TrackingRequest, TrackingSession

__version__ = "0.1.0"

__all__ = [
    "Billable",
    "CloudCostError",
    "ConfigurationError",
    "CostTracker",
    "EntityRef",
    "MissingEntityError",
    "MissingFeatureError",
    "TrackingRequest",
    "TrackingSession",
]
