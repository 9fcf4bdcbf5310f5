"""Core battery optimizer: categorize, train, decode, seed, evolve, report."""

from typing import Any, List, Mapping, Optional, Sequence, Union
import logging
import time

import numpy as np

from .categorization import PriceCategorizer, normalize_options
from .config import OptimizerConfig
from .diagnostics import DiagnosticsReporter
from .exceptions import (
    ConfigurationError, InvalidInputError, InvalidParametersError, OptimizationError,
    SimulationInconsistencyError
)
from .hmm import RegimeModel
from .models import (
    BatteryParams, CategorizationResult, OptimizationResult, OptimizationStatus,
    Schedule, StatePath, TrainingResult
)
from .optimization import (
    DispatchOptimizer, DispatchProblem, PerfectForesightBenchmark, SeedBuilder, simple_optimize
)
from .simulation import ScheduleSimulator
from .validation import PriceValidator, coerce_battery_params

logger = logging.getLogger("bessopt.core")

Params = Union[BatteryParams, Mapping[str, Any]]


def infer_period_hours(timestamps: Optional[Sequence[Any]]) -> Optional[float]:
    """Median spacing of the timestamps in hours, or None if it cannot be told."""
    if timestamps is None or len(timestamps) < 2:
        return None
    index = PriceValidator.parse_timestamps(timestamps)

    spacing = index.to_series().diff().dropna().dt.total_seconds().median() / 3600.0
    if not np.isfinite(spacing) or spacing <= 0:
        raise InvalidInputError("Timestamps must be strictly increasing")
    return float(spacing)


class BatteryOptimizer:
    """HMM-seeded differential-evolution battery dispatch optimizer.

    Every call to ``optimize`` builds its models and random generator from
    scratch; ``last_result`` is kept for callers only and never read back.
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()
        validation = self.config.validate()
        if not validation.is_valid:
            raise ConfigurationError("; ".join(validation.errors))
        self.last_result: Optional[OptimizationResult] = None

    def reset(self) -> None:
        """Drop the cached result. Safe to call any number of times."""
        self.last_result = None

    def _random_state(self) -> np.random.RandomState:
        return np.random.RandomState(self.config.random_seed)

    def _period_hours(self, timestamps: Optional[Sequence[Any]], period_hours: Optional[float]) -> float:
        if period_hours is not None:
            if not np.isfinite(period_hours) or period_hours <= 0:
                raise InvalidInputError(f"Period length must be > 0 hours, got {period_hours}")
            return float(period_hours)
        inferred = infer_period_hours(timestamps)
        return 1.0 if inferred is None else inferred

    def simple_optimize(
        self,
        prices: Sequence[float],
        params: Params,
        period_hours: float = 1.0,
        timestamps: Optional[Sequence[Any]] = None
    ) -> Schedule:
        """Rule-based charge-low/discharge-high schedule."""
        return simple_optimize(prices, params, period_hours, timestamps=timestamps)

    def optimize(
        self,
        prices: Sequence[float],
        params: Params,
        categorization_method: Optional[str] = None,
        categorization_options: Optional[Mapping[str, Any]] = None,
        timestamps: Optional[Sequence[Any]] = None,
        period_hours: Optional[float] = None
    ) -> OptimizationResult:
        """Optimize a dispatch schedule for the given prices and battery."""
        start_time = time.time()
        cfg = self.config

        try:
            battery = coerce_battery_params(params)
            price_array = PriceValidator.validate_prices(prices, cfg.categorization.min_periods)
            PriceValidator.validate_timestamps(timestamps, len(price_array))
            dt = self._period_hours(timestamps, period_hours)

            options = cfg.categorization.options()
            options.update(normalize_options(categorization_options))
            categories = PriceCategorizer(cfg.categorization.min_periods).categorize(
                price_array, categorization_method or cfg.categorization.method, options
            )
        except InvalidInputError as e:
            logger.error(f"Invalid optimization input: {e}")
            return self._finish(OptimizationResult.failure(str(e), time.time() - start_time))

        problem = DispatchProblem(
            prices=price_array,
            params=battery,
            period_hours=dt,
            timestamps=None if timestamps is None else list(timestamps),
        )
        rng = self._random_state()
        training: Optional[TrainingResult] = None
        path: Optional[StatePath] = None

        try:
            model = RegimeModel(cfg.hmm.initialization, cfg.hmm.probability_floor, rng)
            training = model.train(
                categories.observations,
                max_iterations=cfg.hmm.max_iterations,
                tolerance=cfg.hmm.tolerance,
                prices=price_array,
            )
            path = model.viterbi(categories.observations)

            population = SeedBuilder(cfg.seeding).build_population(
                path, battery, cfg.evolution.population_size, rng
            )
            solver = DispatchOptimizer(cfg.evolution, rng)
            solution = solver.solve(problem, initial_population=population)

            schedule = ScheduleSimulator(battery, price_array, dt).simulate(
                solution.dispatch, timestamps=problem.timestamps
            )
        except InvalidParametersError as e:
            logger.error(f"Infeasible dispatch problem: {e}")
            return self._finish(OptimizationResult.failure(str(e), time.time() - start_time))
        except (OptimizationError, SimulationInconsistencyError, InvalidInputError) as e:
            logger.warning(f"Optimization failed, using fallback heuristic: {e}")
            return self._fallback(problem, categories, training, path, str(e), start_time)
        except Exception as e:
            logger.exception(f"Unexpected optimization error, using fallback heuristic: {e}")
            return self._fallback(problem, categories, training, path, str(e), start_time)

        warnings = []
        if not training.converged:
            warnings.append(
                f"HMM did not converge within {cfg.hmm.max_iterations} iterations; "
                "regime path has low confidence"
            )
        if solution.metadata.get("timed_out"):
            warnings.append(f"Optimization stopped at the {cfg.evolution.timeout_s}s time limit")

        result = self._build_result(
            schedule, battery, categories, training, path,
            status=solution.status,
            warnings=warnings,
            generations=solution.iterations,
            fitness_history=solution.metadata.get("history", []),
        )
        self._attach_benchmark(result, problem)
        result.solve_time = time.time() - start_time
        logger.info(
            f"Optimized {len(price_array)} periods: revenue {result.total_revenue:.2f}, "
            f"{result.generations} generations in {result.solve_time:.2f}s"
        )
        return self._finish(result)

    def _fallback(
        self,
        problem: DispatchProblem,
        categories: CategorizationResult,
        training: Optional[TrainingResult],
        path: Optional[StatePath],
        reason: str,
        start_time: float
    ) -> OptimizationResult:
        try:
            schedule = simple_optimize(
                problem.prices, problem.params, problem.period_hours, timestamps=problem.timestamps
            )
        except (InvalidInputError, SimulationInconsistencyError) as e:
            logger.error(f"Fallback heuristic failed: {e}")
            return self._finish(OptimizationResult.failure(
                f"Optimization failed ({reason}) and fallback heuristic failed ({e})",
                time.time() - start_time
            ))

        result = self._build_result(
            schedule, problem.params, categories, training, path,
            status=OptimizationStatus.FALLBACK_USED,
            warnings=[f"Fallback heuristic used: {reason}"],
        )
        result.fallback_used = True
        result.solve_time = time.time() - start_time
        return self._finish(result)

    def _build_result(
        self,
        schedule: Schedule,
        battery: BatteryParams,
        categories: CategorizationResult,
        training: Optional[TrainingResult],
        path: Optional[StatePath],
        status: OptimizationStatus,
        warnings: List[str],
        generations: int = 0,
        fitness_history: Optional[List[float]] = None
    ) -> OptimizationResult:
        converged = training is not None and training.converged
        # Without a decoded path the categories stand in for the regimes
        states = path.states if path is not None else categories.categories
        schedule.debug_report = DiagnosticsReporter(self.config.diagnostics).report(
            schedule, battery, states, hmm_converged=converged
        )

        return OptimizationResult(
            success=True,
            status=status,
            schedule=schedule,
            total_revenue=schedule.total_revenue,
            total_energy_charged=schedule.total_energy_charged,
            total_energy_discharged=schedule.total_energy_discharged,
            operational_efficiency=schedule.operational_efficiency,
            avg_price=float(np.mean(schedule.prices)),
            cycles=schedule.cycles(battery.usable_capacity),
            vwap_charge=schedule.vwap_charge,
            vwap_discharge=schedule.vwap_discharge,
            price_categories=np.asarray(categories.categories),
            categorization_method=categories.method,
            hmm_parameters=None if training is None else training.parameters,
            viterbi_path=None if path is None else np.asarray(path.states),
            hmm_converged=converged,
            hmm_iterations=0 if training is None else training.iterations,
            generations=generations,
            fitness_history=list(fitness_history or []),
            warnings=warnings,
        )

    def _attach_benchmark(self, result: OptimizationResult, problem: DispatchProblem) -> None:
        if not self.config.benchmark.enabled:
            return
        try:
            solution = PerfectForesightBenchmark(self.config.benchmark).solve(problem)
        except Exception as e:
            logger.warning(f"Perfect-foresight benchmark failed: {e}")
            result.warnings.append(f"Benchmark unavailable: {e}")
            return
        result.benchmark_revenue = solution.objective_value

    def _finish(self, result: OptimizationResult) -> OptimizationResult:
        self.last_result = result
        return result


_default_optimizer: Optional[BatteryOptimizer] = None


def _optimizer() -> BatteryOptimizer:
    global _default_optimizer
    if _default_optimizer is None:
        _default_optimizer = BatteryOptimizer()
    return _default_optimizer


def optimize(
    prices: Sequence[float],
    params: Params,
    categorization_method: Optional[str] = None,
    categorization_options: Optional[Mapping[str, Any]] = None,
    timestamps: Optional[Sequence[Any]] = None,
    period_hours: Optional[float] = None
) -> OptimizationResult:
    """Optimize with the default configuration."""
    return _optimizer().optimize(
        prices, params, categorization_method, categorization_options, timestamps, period_hours
    )


def reset() -> None:
    """Reset the default optimizer."""
    _optimizer().reset()
