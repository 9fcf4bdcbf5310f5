"""
Rule-based fallback: charge on cheap periods, discharge on expensive ones.

The rules only produce a dispatch vector; feasibility is left to the same
ScheduleSimulator the main pipeline uses.
"""

from typing import Any, Mapping, Optional, Sequence, Union
import time

import numpy as np

from ..models import BatteryParams, OptimizationStatus, Schedule
from ..simulation import ScheduleSimulator, join_dispatch, repair_dispatch
from ..validation import PriceValidator, coerce_battery_params
from .base import DispatchProblem, DispatchSolution, RuleBasedDispatcher


class SimpleDispatchRules(RuleBasedDispatcher):
    """Percentile rules: full charge at or below the low band, full discharge at or above the high band."""

    def __init__(self, low_percentile: float = 30.0, high_percentile: float = 70.0):
        super().__init__("simple_dispatch_rules")
        self.low_percentile = low_percentile
        self.high_percentile = high_percentile

    def dispatch(self, prices: np.ndarray, p_max: float) -> np.ndarray:
        """Rule-based dispatch vector for a price series."""
        low, high = np.percentile(prices, [self.low_percentile, self.high_percentile])
        charge = np.where(prices <= low, p_max, 0.0)
        discharge = np.where(prices >= high, p_max, 0.0)
        # Flat prices hit both bands; repair cancels those periods to idle
        return repair_dispatch(join_dispatch(charge, discharge), p_max)

    def solve(self, problem: DispatchProblem) -> DispatchSolution:
        """Solve using the percentile rules."""
        start_time = time.time()
        dispatch = self.dispatch(problem.prices, problem.params.p_max)

        simulator = ScheduleSimulator(problem.params, problem.prices, problem.period_hours)
        revenue, _ = simulator.simulate_batch(dispatch[None, :], problem.initial_soc)

        return DispatchSolution(
            status=OptimizationStatus.FALLBACK_USED,
            dispatch=dispatch,
            objective_value=-float(revenue[0]),
            solve_time=time.time() - start_time,
            metadata={
                "method": "percentile_rules",
                "low_percentile": self.low_percentile,
                "high_percentile": self.high_percentile
            },
            fallback_used=True
        )


def simple_optimize(
    prices: Sequence[float],
    params: Union[BatteryParams, Mapping[str, Any]],
    period_hours: float = 1.0,
    initial_soc: Optional[float] = None,
    timestamps: Optional[Sequence[Any]] = None
) -> Schedule:
    """Valid, non-optimal schedule from the charge-low/discharge-high rules."""
    battery = coerce_battery_params(params)
    price_array = PriceValidator.validate_prices(prices, min_periods=1)
    PriceValidator.validate_timestamps(timestamps, len(price_array))

    problem = DispatchProblem(
        prices=price_array,
        params=battery,
        period_hours=period_hours,
        initial_soc=initial_soc,
        timestamps=None if timestamps is None else list(timestamps),
    )
    solution = SimpleDispatchRules().solve(problem)

    simulator = ScheduleSimulator(battery, price_array, period_hours)
    return simulator.simulate(solution.dispatch, initial_soc, problem.timestamps)
