"""
Population seeding from the decoded regime path.

The Viterbi path is turned into a heuristic dispatch (charge in Low
regimes, discharge in High regimes, a little of both in Medium) which
anchors most of the initial population.
"""

from typing import Optional, Sequence, Union
import logging

import numpy as np

from ..config import SeedingConfig
from ..exceptions import InvalidInputError
from ..models import BatteryParams, StatePath
from ..simulation import join_dispatch, repair_dispatch

GOLDEN_RATIO_CONJUGATE = 0.6180339887


class SeedBuilder:
    """Builds a seed dispatch and an initial population from a state path."""

    def __init__(self, config: Optional[SeedingConfig] = None):
        self.config = config or SeedingConfig()
        self.logger = logging.getLogger("bessopt.optimization.seeding")

    @staticmethod
    def _states(state_path: Union[StatePath, Sequence[int]]) -> np.ndarray:
        states = state_path.states if isinstance(state_path, StatePath) else state_path
        states = np.asarray(states, dtype=int)
        if states.ndim != 1 or states.size == 0:
            raise InvalidInputError("State path must be a non-empty sequence")
        if np.any((states < 1) | (states > 3)):
            raise InvalidInputError("State path values must be 1 (Low), 2 (Medium) or 3 (High)")
        return states

    def build_seed(self, state_path: Union[StatePath, Sequence[int]], battery_params: BatteryParams) -> np.ndarray:
        """Heuristic dispatch vector implied by the regime path."""
        states = self._states(state_path)
        p_max = battery_params.p_max
        cfg = self.config

        charge_levels = np.array([cfg.low_charge_fraction, cfg.medium_fraction, 0.0]) * p_max
        discharge_levels = np.array([0.0, cfg.medium_fraction, cfg.high_discharge_fraction]) * p_max

        # Medium keeps both legs at the same level; repair turns that into idle
        charge = charge_levels[states - 1]
        discharge = discharge_levels[states - 1]
        return join_dispatch(charge, discharge)

    def build_population(
        self,
        state_path: Union[StatePath, Sequence[int]],
        battery_params: BatteryParams,
        population_size: int,
        rng: np.random.RandomState
    ) -> np.ndarray:
        """Initial population: perturbed copies of the seed plus uniform draws."""
        if population_size <= 0:
            raise InvalidInputError(f"Population size must be > 0, got {population_size}")

        seed = self.build_seed(state_path, battery_params)
        p_max = battery_params.p_max
        dimension = seed.size

        num_seeded = int(round(self.config.seed_fraction * population_size))
        if self.config.seed_fraction > 0:
            num_seeded = max(1, num_seeded)
        num_seeded = min(num_seeded, population_size)

        genes = np.arange(dimension)
        seeded = np.empty((num_seeded, dimension))
        for k in range(num_seeded):
            if k == 0:
                seeded[k] = seed
                continue
            # Fixed low-discrepancy offset per slot and gene
            offset = ((k * (genes + 1) * GOLDEN_RATIO_CONJUGATE) % 1.0) - 0.5
            seeded[k] = seed + self.config.perturbation * p_max * offset

        random_part = rng.uniform(0.0, p_max, size=(population_size - num_seeded, dimension))
        population = np.vstack([seeded, random_part])

        self.logger.debug(
            f"Built population of {population_size} ({num_seeded} seeded, "
            f"{population_size - num_seeded} random)"
        )
        return repair_dispatch(population, p_max)
