"""Perfect-foresight linear program used as a revenue upper bound."""

from typing import Optional
import time

import numpy as np
from pulp import (
    LpProblem, LpMaximize, LpVariable, lpSum, LpStatus, PULP_CBC_CMD, value
)

from ..config import BenchmarkConfig
from ..exceptions import InvalidParametersError, OptimizationError
from ..models import OptimizationStatus
from ..simulation import join_dispatch
from .base import DispatchProblem, DispatchSolution, DispatchSolver


class PerfectForesightBenchmark(DispatchSolver):
    """LP relaxation of the dispatch problem with all prices known in advance.

    Any schedule the simulator accepts is feasible for this LP, so its
    optimum bounds the revenue of every other solver from above.
    """

    def __init__(self, config: Optional[BenchmarkConfig] = None):
        super().__init__("perfect_foresight")
        self.config = config or BenchmarkConfig()

    def solve(self, problem: DispatchProblem, initial_population: Optional[np.ndarray] = None) -> DispatchSolution:
        """Solve the LP with CBC."""
        if not self.validate_problem(problem):
            raise InvalidParametersError(
                f"Infeasible dispatch problem: {problem.num_periods} periods, p_max={problem.params.p_max}"
            )

        start_time = time.time()
        params = problem.params
        dt = problem.period_hours
        eta_c = params.charge_efficiency
        eta_d = params.discharge_efficiency
        periods = range(problem.num_periods)

        prob = LpProblem("Battery_Perfect_Foresight", LpMaximize)

        # Decision variables
        charge = [LpVariable(f"charge_{t}", 0, params.p_max) for t in periods]
        discharge = [LpVariable(f"discharge_{t}", 0, params.p_max) for t in periods]
        soc = [LpVariable(f"soc_{t}", params.soc_min, params.soc_max) for t in periods]

        # Objective: arbitrage revenue
        prob += lpSum(
            float(problem.prices[t]) * (discharge[t] - charge[t]) * dt for t in periods
        )

        # Energy balance
        previous = problem.start_soc
        for t in periods:
            prob += soc[t] == previous + charge[t] * (dt * eta_c) - discharge[t] * (dt / eta_d)
            previous = soc[t]

        solver = PULP_CBC_CMD(msg=self.config.solver_msg, timeLimit=self.config.time_limit_s)
        prob.solve(solver)

        status = LpStatus[prob.status]
        solve_time = time.time() - start_time
        if status != "Optimal":
            self._record_solve_attempt(False, solve_time)
            raise OptimizationError(f"Benchmark solver status: {status}")

        charge_values = np.array([v.value() or 0.0 for v in charge])
        discharge_values = np.array([v.value() or 0.0 for v in discharge])
        revenue = float(value(prob.objective) or 0.0)

        self._record_solve_attempt(True, solve_time)
        self.logger.debug(f"Perfect-foresight revenue {revenue:.2f} in {solve_time:.3f}s")

        return DispatchSolution(
            status=OptimizationStatus.SUCCESS,
            dispatch=join_dispatch(charge_values, discharge_values),
            objective_value=revenue,
            solve_time=solve_time,
            metadata={
                "solver_status": status,
                "soc": [v.value() for v in soc]
            }
        )
