"""
Configuration management and loading.

Handles tracker settings from YAML files and environment variables.
"""

import copy
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

import yaml

from cloud_cost_tracker.core.cost_model import CostModel
from cloud_cost_tracker.storage.db import DEFAULT_DB_PATH
from .defaults import DEFAULT_COSTS, DEFAULT_ENVIRONMENTS, SUPPORTED_PLANS

ENV_PREFIX = "CLOUD_TRACKER_"

ALLOWED_KEYS = {
    'enabled', 'environment', 'environments', 'log_events', 'default_dimension',
    'timeframe', 'plan', 'database', 'costs'
}

SUPPORTED_TIMEFRAMES = ("monthly",)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class TrackerConfig:
    """Static tracker configuration, loaded once at process start."""
    enabled: bool = True
    environment: str = "production"
    environments: FrozenSet[str] = frozenset(DEFAULT_ENVIRONMENTS)
    log_events: bool = True
    default_dimension: str = "compute"
    timeframe: str = "monthly"
    plan: str = "growth"
    database: str = DEFAULT_DB_PATH
    costs: Dict[str, Dict[str, Any]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_COSTS))

    def __post_init__(self):
        """Validate settings that no code path can recover from."""
        object.__setattr__(self, "environments", frozenset(self.environments))
        if not self.default_dimension:
            raise ValueError("default_dimension cannot be empty")
        if self.timeframe not in SUPPORTED_TIMEFRAMES:
            raise ValueError(f"timeframe must be one of: {list(SUPPORTED_TIMEFRAMES)}")
        if self.plan not in SUPPORTED_PLANS:
            raise ValueError(f"plan must be one of: {list(SUPPORTED_PLANS)}")

    @property
    def environment_allowed(self) -> bool:
        """Whether tracking is live in the current environment."""
        return self.environment in self.environments

    def cost_model(self) -> CostModel:
        return CostModel(self.costs)

    def with_overrides(self, **changes: Any) -> "TrackerConfig":
        return replace(self, **changes)


def _parse_bool(value: Any, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValueError(f"'{path}' must be a boolean")


def _parse_str(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{path}' must be a non-empty string")
    return value.strip()


def _parse_costs(data: Any) -> Dict[str, Dict[str, Any]]:
    """Validate the shape of the rate table.

    Only structure is checked here. Unit kinds and rates are validated when
    a dimension is priced, so one bad entry doesn't stop the process.
    """
    if not isinstance(data, dict):
        raise ValueError("'costs' must be a dictionary")

    costs = {}
    for name, dimension in data.items():
        if not isinstance(dimension, dict):
            raise ValueError(f"Cost dimension '{name}' must be a dictionary")
        if 'unit' in dimension and not isinstance(dimension['unit'], str):
            raise ValueError(f"'unit' in costs.{name} must be a string")
        costs[str(name)] = dict(dimension)
    return costs


def _apply_env_overrides(settings: Dict[str, Any], env: Mapping[str, str]) -> None:
    """Apply CLOUD_TRACKER_* environment variables on top of file settings."""
    if f"{ENV_PREFIX}ENABLED" in env:
        settings['enabled'] = _parse_bool(env[f"{ENV_PREFIX}ENABLED"], f"{ENV_PREFIX}ENABLED")
    if env.get(f"{ENV_PREFIX}ENV"):
        settings['environment'] = env[f"{ENV_PREFIX}ENV"]
    if env.get(f"{ENV_PREFIX}PLAN"):
        settings['plan'] = env[f"{ENV_PREFIX}PLAN"]
    if env.get(f"{ENV_PREFIX}DATABASE"):
        settings['database'] = env[f"{ENV_PREFIX}DATABASE"]

    # CLOUD_TRACKER_<DIMENSION>_ACTIVE selects an instance or tier
    for name, dimension in settings['costs'].items():
        active = env.get(f"{ENV_PREFIX}{name.upper()}_ACTIVE")
        if active:
            dimension['active'] = active


def load_tracker_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> TrackerConfig:
    """Load and validate tracker configuration.

    Strict validation rejects unknown keys and wrong types so that a typo
    never silently disables tracking or misprices usage.

    Args:
        path: Path to YAML configuration file; built-in defaults when None
        env: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Validated TrackerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if env is None else env
    raw_config: Dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Tracker config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

        if not raw_config:
            raise ValueError("Configuration file is empty")
        if not isinstance(raw_config, dict):
            raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    settings: Dict[str, Any] = {
        'costs': copy.deepcopy(DEFAULT_COSTS),
    }

    for key in ('enabled', 'log_events'):
        if key in raw_config:
            settings[key] = _parse_bool(raw_config[key], key)

    for key in ('environment', 'default_dimension', 'timeframe', 'plan', 'database'):
        if key in raw_config:
            settings[key] = _parse_str(raw_config[key], key)

    if 'environments' in raw_config:
        environments = raw_config['environments']
        if not isinstance(environments, list) or not all(isinstance(e, str) for e in environments):
            raise ValueError("'environments' must be a list of strings")
        settings['environments'] = frozenset(environments)

    if 'costs' in raw_config:
        settings['costs'] = _parse_costs(raw_config['costs'])

    _apply_env_overrides(settings, env)

    return TrackerConfig(**settings)
