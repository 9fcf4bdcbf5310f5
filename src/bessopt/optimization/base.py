"""
Base classes and interfaces for dispatch solvers.
Search-based solvers and rule-based fallbacks share one problem and
solution type so the pipeline can swap between them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
import logging

import numpy as np

from ..models import BatteryParams, OptimizationStatus


@dataclass
class DispatchProblem:
    """One battery dispatch problem over a price horizon."""
    prices: np.ndarray
    params: BatteryParams
    period_hours: float = 1.0  # hours
    initial_soc: Optional[float] = None  # MWh, defaults to params.start_soc
    timestamps: Optional[List[Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.prices = np.asarray(self.prices, dtype=float)

    @property
    def num_periods(self) -> int:
        return len(self.prices)

    @property
    def start_soc(self) -> float:
        return self.params.start_soc if self.initial_soc is None else float(self.initial_soc)


@dataclass
class DispatchSolution:
    """Result of a solver run: the dispatch vector and how it was found."""
    status: OptimizationStatus
    dispatch: np.ndarray
    objective_value: float
    solve_time: float
    iterations: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    fallback_used: bool = False


class DispatchSolver(ABC):
    """Base class for search-based dispatch solvers."""

    def __init__(self, name: str, version: str = "1.0"):
        self.name = name
        self.version = version
        self.logger = logging.getLogger(f"bessopt.optimization.{name}")
        self._last_solve_time = 0.0
        self._solve_count = 0
        self._success_count = 0

    @abstractmethod
    def solve(self, problem: DispatchProblem, initial_population: Optional[np.ndarray] = None) -> DispatchSolution:
        """Solve the dispatch problem."""
        pass

    def validate_problem(self, problem: DispatchProblem) -> bool:
        """Check that the problem has a non-empty search box."""
        return (
            problem.num_periods > 0
            and np.isfinite(problem.params.p_max)
            and problem.params.p_max > 0
            and problem.period_hours > 0
        )

    def get_metadata(self) -> Dict[str, Any]:
        """Return solver information for logging/debugging."""
        return {
            "name": self.name,
            "version": self.version,
            "solve_count": self._solve_count,
            "success_rate": self._success_count / max(1, self._solve_count),
            "last_solve_time": self._last_solve_time
        }

    def _record_solve_attempt(self, success: bool, solve_time: float) -> None:
        """Record solve statistics."""
        self._solve_count += 1
        if success:
            self._success_count += 1
        self._last_solve_time = solve_time


class RuleBasedDispatcher(ABC):
    """Base class for rule-based dispatch fallbacks."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"bessopt.rules.{name}")

    @abstractmethod
    def solve(self, problem: DispatchProblem) -> DispatchSolution:
        """Solve using a rule-based approach."""
        pass

    def get_metadata(self) -> Dict[str, Any]:
        """Return rule engine metadata."""
        return {
            "name": self.name,
            "type": "rule_based",
            "always_available": True
        }
