"""
Differential evolution (DE/rand/1/bin) over dispatch vectors.

Every candidate is repaired into the feasible box before evaluation and
the whole population is scored in one vectorized fitness call. Selection
is greedy, so the best fitness never gets worse between generations.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional
import time

import numpy as np

from ..config import DifferentialEvolutionConfig
from ..exceptions import InvalidParametersError, OptimizationError
from ..models import OptimizationStatus
from ..simulation import ScheduleSimulator, repair_dispatch
from .base import DispatchProblem, DispatchSolution, DispatchSolver

FitnessFunction = Callable[[np.ndarray], np.ndarray]


@dataclass
class DispatchSpace:
    """Search box: 2T genes, each in ``[0, p_max]``."""
    num_periods: int
    p_max: float

    @property
    def dimension(self) -> int:
        return 2 * self.num_periods

    def is_empty(self) -> bool:
        return self.num_periods <= 0 or not np.isfinite(self.p_max) or self.p_max <= 0

    def repair(self, population: np.ndarray) -> np.ndarray:
        return repair_dispatch(population, self.p_max)

    def sample(self, rng: np.random.RandomState, size: int) -> np.ndarray:
        return rng.uniform(0.0, self.p_max, size=(size, self.dimension))


@dataclass
class DEResult:
    """Outcome of one evolutionary search."""
    best_vector: np.ndarray
    best_fitness: float
    history: List[float] = field(default_factory=list)
    generations: int = 0
    stopped_early: bool = False
    timed_out: bool = False
    evaluations: int = 0


def build_fitness(problem: DispatchProblem, penalty_factor: float = 0.1) -> FitnessFunction:
    """Fitness to minimize: negative revenue plus a curtailment penalty.

    Curtailment is the energy the simulator had to withhold to keep the SoC
    inside its bounds; it is weighted by ``penalty_factor * mean(price)``.
    """
    simulator = ScheduleSimulator(problem.params, problem.prices, problem.period_hours)
    penalty_weight = penalty_factor * float(np.mean(problem.prices))
    initial_soc = problem.initial_soc

    def fitness(population: np.ndarray) -> np.ndarray:
        revenue, curtailed = simulator.simulate_batch(population, initial_soc)
        return -revenue + penalty_weight * curtailed

    return fitness


class DispatchOptimizer(DispatchSolver):
    """Constrained differential evolution for battery dispatch."""

    def __init__(
        self,
        config: Optional[DifferentialEvolutionConfig] = None,
        random_state: Optional[np.random.RandomState] = None
    ):
        super().__init__("differential_evolution")
        self.config = config or DifferentialEvolutionConfig()
        self.random_state = random_state

    def _rng(self) -> np.random.RandomState:
        if self.random_state is None:
            self.random_state = np.random.RandomState()
        return self.random_state

    def _evaluate(self, fitness_fn: FitnessFunction, population: np.ndarray) -> np.ndarray:
        scores = np.asarray(fitness_fn(population), dtype=float).reshape(-1)
        if scores.shape[0] != population.shape[0]:
            raise OptimizationError(
                f"Fitness function returned {scores.shape[0]} values for {population.shape[0]} candidates"
            )
        # Non-finite candidates can never win selection
        return np.where(np.isfinite(scores), scores, np.inf)

    @staticmethod
    def _donors(rng: np.random.RandomState, size: int) -> np.ndarray:
        """Three distinct member indices per target, none equal to the target."""
        donors = np.empty((size, 3), dtype=int)
        for i in range(size):
            candidates = np.delete(np.arange(size), i)
            donors[i] = rng.choice(candidates, 3, replace=False)
        return donors

    def optimize(
        self,
        space: DispatchSpace,
        fitness_fn: FitnessFunction,
        population_size: Optional[int] = None,
        max_generations: Optional[int] = None,
        initial_population: Optional[np.ndarray] = None
    ) -> DEResult:
        """Run DE/rand/1/bin until a generation, patience or time budget is exhausted."""
        cfg = self.config
        population_size = cfg.population_size if population_size is None else int(population_size)
        max_generations = cfg.max_generations if max_generations is None else int(max_generations)

        if space.is_empty():
            raise InvalidParametersError(
                f"Empty search space: {space.num_periods} periods with p_max={space.p_max}"
            )
        if max_generations < 0:
            raise InvalidParametersError(f"Max generations must be >= 0, got {max_generations}")

        rng = self._rng()
        if initial_population is None:
            if population_size < 4:
                raise InvalidParametersError(f"Population size must be >= 4, got {population_size}")
            population = space.sample(rng, population_size)
        else:
            population = np.array(initial_population, dtype=float, ndmin=2)
            if population.shape[1] != space.dimension:
                raise InvalidParametersError(
                    f"Initial population rows must have {space.dimension} genes, got {population.shape[1]}"
                )
            if population.shape[0] < 4:
                raise InvalidParametersError(f"Population size must be >= 4, got {population.shape[0]}")
            if not np.all(np.isfinite(population)):
                raise InvalidParametersError("Initial population contains non-finite values")

        population = space.repair(population)
        size, dimension = population.shape
        fitness = self._evaluate(fitness_fn, population)
        evaluations = size
        if not np.any(np.isfinite(fitness)):
            raise OptimizationError("No candidate in the initial population has a finite fitness")

        best = float(fitness.min())
        history = [best]
        stall = 0
        generations = 0
        stopped_early = False
        timed_out = False
        start_time = time.time()

        for generation in range(1, max_generations + 1):
            if cfg.timeout_s is not None and time.time() - start_time > cfg.timeout_s:
                timed_out = True
                self.logger.warning(f"Timeout after {generations} generations ({cfg.timeout_s}s)")
                break

            donors = self._donors(rng, size)
            mutants = population[donors[:, 0]] + cfg.mutation_factor * (
                population[donors[:, 1]] - population[donors[:, 2]]
            )

            cross = rng.rand(size, dimension) < cfg.crossover_probability
            forced = rng.randint(0, dimension, size=size)
            cross[np.arange(size), forced] = True
            trials = space.repair(np.where(cross, mutants, population))

            trial_fitness = self._evaluate(fitness_fn, trials)
            evaluations += size

            accepted = trial_fitness <= fitness
            population[accepted] = trials[accepted]
            fitness[accepted] = trial_fitness[accepted]

            generation_best = float(fitness.min())
            if best - generation_best > cfg.epsilon:
                stall = 0
            else:
                stall += 1
            best = min(best, generation_best)
            history.append(best)
            generations = generation

            if stall >= cfg.patience:
                stopped_early = True
                self.logger.debug(f"No improvement for {cfg.patience} generations, stopping at {generation}")
                break

        best_index = int(np.argmin(fitness))
        return DEResult(
            best_vector=population[best_index].copy(),
            best_fitness=float(fitness[best_index]),
            history=history,
            generations=generations,
            stopped_early=stopped_early,
            timed_out=timed_out,
            evaluations=evaluations,
        )

    def solve(self, problem: DispatchProblem, initial_population: Optional[np.ndarray] = None) -> DispatchSolution:
        """Optimize a dispatch problem, optionally from a seeded population."""
        if not self.validate_problem(problem):
            raise InvalidParametersError(
                f"Infeasible dispatch problem: {problem.num_periods} periods, p_max={problem.params.p_max}"
            )

        start_time = time.time()
        space = DispatchSpace(problem.num_periods, problem.params.p_max)
        fitness_fn = build_fitness(problem, self.config.penalty_factor)

        try:
            result = self.optimize(space, fitness_fn, initial_population=initial_population)
        except OptimizationError:
            self._record_solve_attempt(False, time.time() - start_time)
            raise

        solve_time = time.time() - start_time
        self._record_solve_attempt(True, solve_time)
        self.logger.debug(
            f"DE finished after {result.generations} generations, best fitness {result.best_fitness:.4f}"
        )

        return DispatchSolution(
            status=OptimizationStatus.TIMEOUT if result.timed_out else OptimizationStatus.SUCCESS,
            dispatch=result.best_vector,
            objective_value=result.best_fitness,
            solve_time=solve_time,
            iterations=result.generations,
            metadata={
                "history": result.history,
                "stopped_early": result.stopped_early,
                "timed_out": result.timed_out,
                "evaluations": result.evaluations,
            }
        )
