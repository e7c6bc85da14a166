"""
Error taxonomy for usage tracking.

Missing entity/feature errors are programmer errors raised before any side
effect. Configuration errors are raised during cost calculation, after the
tracked callback has already run.
"""


class CloudCostError(Exception):
    """Base class for all tracker errors."""


class MissingEntityError(CloudCostError, ValueError):
    """Raised when track() is called without a billable entity."""


class MissingFeatureError(CloudCostError, ValueError):
    """Raised when track() is called without a feature name."""


class ConfigurationError(CloudCostError, ValueError):
    """Raised when the cost configuration cannot price a dimension."""
