"""
Deterministic replay of dispatch vectors against prices and battery limits.

A dispatch vector holds 2T genes laid out as ``[c_0, d_0, c_1, d_1, ...]``
(charge and discharge power per period, MW). The simulator enforces the
physics: it repairs simultaneous actions, saturates power at the SoC
limits and applies

    soc_t = soc_{t-1} + c_t * dt * sqrt(eta) - d_t * dt / sqrt(eta)

The same step function serves single schedules and whole populations.
"""

from typing import Any, Optional, Sequence, Tuple
import logging

import numpy as np

from .exceptions import InvalidInputError, SimulationInconsistencyError
from .models import BatteryParams, Schedule

logger = logging.getLogger("bessopt.simulation")

BOUND_TOLERANCE = 1e-9


def split_dispatch(dispatch: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Charge and discharge columns of one vector or a (P, 2T) population."""
    dispatch = np.asarray(dispatch, dtype=float)
    if dispatch.shape[-1] % 2:
        raise InvalidInputError(f"Dispatch length must be even, got {dispatch.shape[-1]}")
    return dispatch[..., 0::2], dispatch[..., 1::2]


def join_dispatch(charge: np.ndarray, discharge: np.ndarray) -> np.ndarray:
    """Interleave charge and discharge into dispatch layout."""
    charge = np.asarray(charge, dtype=float)
    discharge = np.asarray(discharge, dtype=float)
    dispatch = np.empty(charge.shape[:-1] + (2 * charge.shape[-1],))
    dispatch[..., 0::2] = charge
    dispatch[..., 1::2] = discharge
    return dispatch


def enforce_exclusive(charge: np.ndarray, discharge: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Zero the smaller of charge/discharge where both are active.

    Equal requests cancel to idle.
    """
    both = (charge > 0) & (discharge > 0)
    keep_charge = both & (charge > discharge)
    keep_discharge = both & (discharge > charge)
    charge = np.where(both & ~keep_charge, 0.0, charge)
    discharge = np.where(both & ~keep_discharge, 0.0, discharge)
    return charge, discharge


def repair_dispatch(dispatch: np.ndarray, p_max: float) -> np.ndarray:
    """Project into ``[0, p_max]`` and remove simultaneous actions."""
    clipped = np.clip(np.asarray(dispatch, dtype=float), 0.0, p_max)
    charge, discharge = enforce_exclusive(*split_dispatch(clipped))
    return join_dispatch(charge, discharge)


class ScheduleSimulator:
    """Replays dispatch vectors period by period."""

    def __init__(self, params: BatteryParams, prices: Sequence[float], period_hours: float = 1.0):
        if period_hours <= 0 or not np.isfinite(period_hours):
            raise InvalidInputError(f"Period length must be > 0 hours, got {period_hours}")
        self.params = params
        self.prices = np.asarray(prices, dtype=float)
        self.period_hours = float(period_hours)

    @property
    def num_periods(self) -> int:
        return len(self.prices)

    def _start_soc(self, initial_soc: Optional[float]) -> float:
        soc = self.params.start_soc if initial_soc is None else float(initial_soc)
        if not self.params.soc_min <= soc <= self.params.soc_max:
            raise InvalidInputError(
                f"Initial SoC {soc} outside [{self.params.soc_min}, {self.params.soc_max}]"
            )
        return soc

    def _run(self, charge: np.ndarray, discharge: np.ndarray, initial_soc: float, record: bool):
        """Vectorized walk over periods for P rows at once."""
        params = self.params
        dt = self.period_hours
        eta_c = params.charge_efficiency
        eta_d = params.discharge_efficiency
        rows, periods = charge.shape

        soc = np.full(rows, initial_soc)
        revenue = np.zeros(rows)
        curtailed = np.zeros(rows)
        trace = None
        if record:
            trace = {
                "soc": np.zeros((rows, periods)),
                "charging": np.zeros((rows, periods)),
                "discharging": np.zeros((rows, periods)),
                "revenue": np.zeros((rows, periods)),
                "curtailed": np.zeros((rows, periods)),
            }

        for t in range(periods):
            c = np.clip(charge[:, t], 0.0, params.p_max)
            d = np.clip(discharge[:, t], 0.0, params.p_max)
            c, d = enforce_exclusive(c, d)

            # Saturate at the energy limits
            headroom = np.maximum((params.soc_max - soc) / (dt * eta_c), 0.0)
            available = np.maximum((soc - params.soc_min) * eta_d / dt, 0.0)
            c_actual = np.minimum(c, headroom)
            d_actual = np.minimum(d, available)

            withheld = ((c - c_actual) + (d - d_actual)) * dt
            soc = soc + c_actual * dt * eta_c - d_actual * dt / eta_d
            soc = np.clip(soc, params.soc_min, params.soc_max)
            step_revenue = self.prices[t] * (d_actual - c_actual) * dt

            revenue += step_revenue
            curtailed += withheld
            if record:
                trace["soc"][:, t] = soc
                trace["charging"][:, t] = c_actual
                trace["discharging"][:, t] = d_actual
                trace["revenue"][:, t] = step_revenue
                trace["curtailed"][:, t] = withheld

        return revenue, curtailed, trace

    def simulate(
        self,
        dispatch: Sequence[float],
        initial_soc: Optional[float] = None,
        timestamps: Optional[Sequence[Any]] = None
    ) -> Schedule:
        """Simulate one dispatch vector into a schedule."""
        vector = np.asarray(dispatch, dtype=float)
        if vector.shape != (2 * self.num_periods,):
            raise InvalidInputError(
                f"Dispatch vector must have {2 * self.num_periods} values, got {vector.shape}"
            )
        if not np.all(np.isfinite(vector)):
            raise SimulationInconsistencyError("Dispatch vector contains non-finite values")

        start = self._start_soc(initial_soc)
        charge, discharge = split_dispatch(vector[None, :])
        _, _, trace = self._run(charge, discharge, start, record=True)

        schedule = Schedule(
            prices=self.prices.copy(),
            soc=trace["soc"][0],
            charging=trace["charging"][0],
            discharging=trace["discharging"][0],
            revenue=trace["revenue"][0],
            curtailed=trace["curtailed"][0],
            period_hours=self.period_hours,
            initial_soc=start,
            timestamps=None if timestamps is None else list(timestamps),
        )
        self.verify(schedule)
        return schedule

    def simulate_batch(
        self,
        population: np.ndarray,
        initial_soc: Optional[float] = None
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Total revenue and curtailed energy for every row of a population."""
        population = np.atleast_2d(np.asarray(population, dtype=float))
        if population.shape[1] != 2 * self.num_periods:
            raise InvalidInputError(
                f"Population rows must have {2 * self.num_periods} values, got {population.shape[1]}"
            )
        charge, discharge = split_dispatch(population)
        revenue, curtailed, _ = self._run(charge, discharge, self._start_soc(initial_soc), record=False)
        return revenue, curtailed

    def verify(self, schedule: Schedule) -> None:
        """Check schedule invariants, raising on any violation."""
        params = self.params
        for name in ("soc", "charging", "discharging", "revenue"):
            values = getattr(schedule, name)
            if not np.all(np.isfinite(values)):
                raise SimulationInconsistencyError(f"Simulated {name} contains non-finite values")

        tolerance = BOUND_TOLERANCE * max(1.0, params.soc_max)
        if np.any(schedule.soc < params.soc_min - tolerance) or np.any(schedule.soc > params.soc_max + tolerance):
            raise SimulationInconsistencyError("Simulated SoC left its bounds")
        if np.any(schedule.charging < 0) or np.any(schedule.charging > params.p_max + tolerance):
            raise SimulationInconsistencyError("Charging power outside [0, p_max]")
        if np.any(schedule.discharging < 0) or np.any(schedule.discharging > params.p_max + tolerance):
            raise SimulationInconsistencyError("Discharging power outside [0, p_max]")
        if np.any(np.minimum(schedule.charging, schedule.discharging) > 0):
            raise SimulationInconsistencyError("Simultaneous charge and discharge in schedule")


def simulate(
    dispatch: Sequence[float],
    prices: Sequence[float],
    params: BatteryParams,
    initial_soc: Optional[float] = None,
    period_hours: float = 1.0,
    timestamps: Optional[Sequence[Any]] = None
) -> Schedule:
    """Simulate a dispatch vector against prices and battery limits."""
    simulator = ScheduleSimulator(params, prices, period_hours)
    return simulator.simulate(dispatch, initial_soc, timestamps)
