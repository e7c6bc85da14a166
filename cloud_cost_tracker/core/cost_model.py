"""
Cost model and rate resolution.

Turns the raw ``costs`` rate table from configuration into typed rate
variants. Resolution is lazy: a dimension is only validated when it is
priced, so a broken entry fails the call that uses it and nothing else.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from .errors import ConfigurationError


DEFAULT_ESTIMATED_UNITS_PER_MONTH = 1_000_000

# Checked in order when amortizing a flat monthly rate
ESTIMATE_KEYS = (
    "estimated_units_per_month",
    "estimated_operations_per_month",
    "estimated_messages_per_month",
)


class UnitKind(Enum):
    """How a dimension is billed."""
    TIME = "time"
    COUNT = "count"
    FLAT_MONTHLY = "flat_monthly"


@dataclass(frozen=True)
class TimeRate:
    """Billed per second of execution time."""
    per_second: float


@dataclass(frozen=True)
class CountRate:
    """Billed per unit of quantity, or per thousand units."""
    rate_key: Optional[str]
    rate: float

    @property
    def per_thousand(self) -> bool:
        return self.rate_key is not None and "1k" in self.rate_key


@dataclass(frozen=True)
class FlatMonthlyRate:
    """Flat monthly charge amortized over an estimated monthly volume."""
    monthly: float
    estimated_units_per_month: float

    @property
    def per_unit(self) -> float:
        if self.estimated_units_per_month <= 0:
            return 0.0
        return self.monthly / self.estimated_units_per_month


Rate = Union[TimeRate, CountRate, FlatMonthlyRate]


def _as_number(value: Any) -> Optional[float]:
    """Return value as float if it is numeric, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _select(name: str, config: Mapping[str, Any], table_key: str, rate_key: str) -> float:
    """Pick a rate out of an ``instances``/``tiers`` table via ``active``."""
    table = config[table_key]
    if not isinstance(table, Mapping):
        raise ConfigurationError(f"'{table_key}' of cost dimension '{name}' must be a mapping")

    active = config.get("active")
    if active is None or active == "":
        raise ConfigurationError(
            f"Cost dimension '{name}' defines '{table_key}' but no 'active' selection"
        )

    entry = table.get(active)
    if entry is None:
        raise ConfigurationError(
            f"{table_key[:-1].capitalize()} '{active}' not found in cost dimension '{name}'"
        )

    value = _as_number(entry.get(rate_key)) if isinstance(entry, Mapping) else None
    if value is None:
        raise ConfigurationError(
            f"{table_key[:-1].capitalize()} '{active}' of cost dimension '{name}' "
            f"has no numeric '{rate_key}'"
        )
    return value


def _resolve_time(name: str, config: Mapping[str, Any]) -> TimeRate:
    if "per_second" in config:
        value = _as_number(config["per_second"])
        if value is None:
            raise ConfigurationError(f"'per_second' of cost dimension '{name}' must be numeric")
        return TimeRate(per_second=value)

    if "instances" in config:
        return TimeRate(per_second=_select(name, config, "instances", "per_second"))

    raise ConfigurationError(
        f"Time dimension '{name}' needs 'per_second' or 'instances' with 'active'"
    )


def _resolve_count(name: str, config: Mapping[str, Any]) -> CountRate:
    for key, value in config.items():
        if key == "unit" or not str(key).startswith("per_"):
            continue
        number = _as_number(value)
        if number is None:
            continue
        return CountRate(rate_key=key, rate=number)

    # No rate key prices the dimension at zero
    return CountRate(rate_key=None, rate=0.0)


def _resolve_flat_monthly(name: str, config: Mapping[str, Any]) -> FlatMonthlyRate:
    if "monthly" in config:
        monthly = _as_number(config["monthly"])
        if monthly is None:
            raise ConfigurationError(f"'monthly' of cost dimension '{name}' must be numeric")
    elif "tiers" in config:
        monthly = _select(name, config, "tiers", "monthly")
    else:
        raise ConfigurationError(
            f"Flat monthly dimension '{name}' needs 'monthly' or 'tiers' with 'active'"
        )

    estimate = float(DEFAULT_ESTIMATED_UNITS_PER_MONTH)
    for key in ESTIMATE_KEYS:
        if key in config:
            estimate = _as_number(config[key])
            if estimate is None:
                raise ConfigurationError(f"'{key}' of cost dimension '{name}' must be numeric")
            break

    return FlatMonthlyRate(monthly=monthly, estimated_units_per_month=estimate)


_RESOLVERS = {
    UnitKind.TIME: _resolve_time,
    UnitKind.COUNT: _resolve_count,
    UnitKind.FLAT_MONTHLY: _resolve_flat_monthly,
}


class CostModel:
    """Rate table keyed by dimension name."""

    def __init__(self, costs: Mapping[str, Mapping[str, Any]]):
        self._costs: Dict[str, Mapping[str, Any]] = dict(costs)

    def names(self) -> Iterable[str]:
        """Configured dimension names in declared order."""
        return list(self._costs)

    def __contains__(self, name: str) -> bool:
        return name in self._costs

    def unit_kind(self, name: str) -> UnitKind:
        """Declared unit kind of a dimension; ``time`` when omitted.

        Raises:
            ConfigurationError: If the dimension is unknown or its unit is invalid
        """
        config = self._config(name)
        unit = config.get("unit", UnitKind.TIME.value)
        try:
            return UnitKind(unit)
        except ValueError:
            raise ConfigurationError(f"Unknown cost unit type: {unit}")

    def resolve(self, name: str) -> Rate:
        """Resolve a dimension to its rate variant.

        Raises:
            ConfigurationError: If the dimension is unknown or misconfigured
        """
        kind = self.unit_kind(name)
        return _RESOLVERS[kind](name, self._config(name))

    def _config(self, name: str) -> Mapping[str, Any]:
        config = self._costs.get(name)
        if config is None:
            raise ConfigurationError(
                f"Cost dimension '{name}' is not defined in cloud cost tracker config."
            )
        if not isinstance(config, Mapping):
            raise ConfigurationError(f"Cost dimension '{name}' must be a mapping")
        return config
