"""
Dispatch optimization for the battery optimizer.

This package provides:
- Viterbi-seeded population initialization
- Constrained differential evolution over dispatch vectors
- A rule-based fallback that always yields a valid schedule
- A perfect-foresight LP benchmark for optimality gaps
"""

from .base import (
    DispatchProblem,
    DispatchSolution,
    DispatchSolver,
    RuleBasedDispatcher
)

from .seeding import SeedBuilder

from .differential_evolution import (
    DispatchSpace,
    DEResult,
    DispatchOptimizer,
    build_fitness
)

from .heuristic import (
    SimpleDispatchRules,
    simple_optimize
)

from .benchmark import PerfectForesightBenchmark

__all__ = [
    # Base framework
    "DispatchProblem",
    "DispatchSolution",
    "DispatchSolver",
    "RuleBasedDispatcher",

    # Seeding and search
    "SeedBuilder",
    "DispatchSpace",
    "DEResult",
    "DispatchOptimizer",
    "build_fitness",

    # Fallback and benchmark
    "SimpleDispatchRules",
    "simple_optimize",
    "PerfectForesightBenchmark",
]
