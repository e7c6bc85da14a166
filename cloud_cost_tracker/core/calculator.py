"""
Cost calculation across heterogeneous dimensions.

Turns an elapsed time and a set of requested dimensions into a
per-dimension breakdown and a multiplied total.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .cost_model import CostModel, CountRate, FlatMonthlyRate, Rate, TimeRate


Breakdown = Dict[str, float]


@dataclass(frozen=True)
class CostResult:
    """Per-dimension breakdown plus the multiplied total."""
    dimensions: Dict[str, Breakdown]
    total_cost: float


def _quantity(params: Optional[Mapping[str, Any]]) -> float:
    if not params:
        return 0
    quantity = params.get("quantity")
    return 0 if quantity is None else quantity


def _time_cost(rate: TimeRate, execution_time_ms: float, params: Mapping[str, Any]) -> Breakdown:
    return {
        "ms": execution_time_ms,
        "cost": (execution_time_ms / 1000) * rate.per_second,
    }


def _count_cost(rate: CountRate, execution_time_ms: float, params: Mapping[str, Any]) -> Breakdown:
    quantity = _quantity(params)
    units = quantity / 1000 if rate.per_thousand else quantity
    return {
        "quantity": quantity,
        "cost": units * rate.rate,
    }


def _flat_monthly_cost(rate: FlatMonthlyRate, execution_time_ms: float, params: Mapping[str, Any]) -> Breakdown:
    quantity = _quantity(params)
    return {
        "ms": execution_time_ms,
        "quantity": quantity,
        "cost": quantity * rate.per_unit if quantity > 0 else 0.0,
    }


# One pricing function per rate variant
_CALCULATORS: Dict[type, Callable[[Any, float, Mapping[str, Any]], Breakdown]] = {
    TimeRate: _time_cost,
    CountRate: _count_cost,
    FlatMonthlyRate: _flat_monthly_cost,
}


class CostCalculator:
    """Prices requested dimensions against a cost model."""

    def __init__(self, cost_model: CostModel):
        self.cost_model = cost_model

    def calculate(
        self,
        execution_time_ms: float,
        dimensions: Mapping[str, Optional[Mapping[str, Any]]],
        multiplier: float = 1.0
    ) -> CostResult:
        """Calculate the cost of one tracked invocation.

        Every requested dimension is resolved before anything is priced, so
        a single misconfigured dimension fails the whole calculation.

        Args:
            execution_time_ms: Measured wall-clock time in milliseconds
            dimensions: Dimension name -> params (optional ``quantity``)
            multiplier: Per-entity scale applied to the summed cost

        Returns:
            CostResult with the breakdown and total

        Raises:
            ConfigurationError: If any dimension cannot be priced
        """
        rates: Dict[str, Rate] = {
            name: self.cost_model.resolve(name) for name in dimensions
        }

        breakdown: Dict[str, Breakdown] = {}
        total_cost = 0.0
        for name, rate in rates.items():
            cost = _CALCULATORS[type(rate)](rate, execution_time_ms, dimensions[name] or {})
            breakdown[name] = cost
            total_cost += cost["cost"]

        return CostResult(dimensions=breakdown, total_cost=total_cost * multiplier)
