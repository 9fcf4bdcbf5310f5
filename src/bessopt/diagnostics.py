"""
Debug report for a simulated schedule.

Summarizes how the schedule used the battery (energy, SoC range, power)
and how dispatch lines up with the decoded price regimes, and flags the
usual reasons for a disappointing schedule.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union
import logging

import numpy as np

from .config import DiagnosticsConfig
from .exceptions import InvalidInputError
from .models import STATE_NAMES, BatteryParams, Schedule, StatePath

logger = logging.getLogger("bessopt.diagnostics")


@dataclass
class DebugReport:
    """Structured diagnostics for one optimization run."""
    params: Dict[str, Any] = field(default_factory=dict)
    optimization: Dict[str, Any] = field(default_factory=dict)
    energy_balance: Dict[str, Any] = field(default_factory=dict)
    soc_analysis: Dict[str, Any] = field(default_factory=dict)
    hmm_analysis: Dict[str, Any] = field(default_factory=dict)
    constraints: Dict[str, bool] = field(default_factory=dict)
    soc_evolution: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def flags(self) -> List[str]:
        """Names of the constraint flags that are raised."""
        return [name for name, raised in self.constraints.items() if raised]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": dict(self.params),
            "optimization": dict(self.optimization),
            "energy_balance": dict(self.energy_balance),
            "soc_analysis": dict(self.soc_analysis),
            "hmm_analysis": dict(self.hmm_analysis),
            "constraints": dict(self.constraints),
            "soc_evolution": [dict(moment) for moment in self.soc_evolution],
        }


class DiagnosticsReporter:
    """Builds a DebugReport from a schedule and its regime path."""

    def __init__(self, config: Optional[DiagnosticsConfig] = None):
        self.config = config or DiagnosticsConfig()

    def report(
        self,
        schedule: Schedule,
        battery_params: BatteryParams,
        state_path: Union[StatePath, Sequence[int]],
        hmm_converged: bool = True
    ) -> DebugReport:
        states = np.asarray(state_path.states if isinstance(state_path, StatePath) else state_path, dtype=int)
        if len(states) != len(schedule):
            raise InvalidInputError(
                f"State path length {len(states)} does not match schedule length {len(schedule)}"
            )

        cfg = self.config
        dt = schedule.period_hours
        prices = schedule.prices
        avg_price = float(np.mean(prices))
        capacity = battery_params.usable_capacity
        p_max = battery_params.p_max

        params = {
            "soc_min": battery_params.soc_min,
            "soc_max": battery_params.soc_max,
            "soc_range": capacity,
            "p_max": p_max,
            "efficiency": battery_params.efficiency,
            "avg_price": avg_price,
            # Discharge threshold of the emission heuristic
            "price_threshold": 1.2 * avg_price,
            "period_hours": dt,
            "num_periods": len(schedule),
        }

        optimization = {
            "max_charging_power": float(np.max(schedule.charging)),
            "max_discharging_power": float(np.max(schedule.discharging)),
            "total_charging_energy": schedule.total_energy_charged,
            "total_discharging_energy": schedule.total_energy_discharged,
            "total_revenue": schedule.total_revenue,
            "total_curtailed_energy": float(np.sum(schedule.curtailed)),
        }

        energy_balance = {
            "initial_soc": schedule.initial_soc,
            "final_soc": float(schedule.soc[-1]),
            "net_energy_change": float(schedule.soc[-1] - schedule.initial_soc),
            "required_discharge_to_min": float(schedule.initial_soc - battery_params.soc_min),
            "max_possible_discharge_1h": p_max,
            "max_possible_discharge_total": p_max * dt * len(schedule),
        }

        near = cfg.near_bound_tolerance * capacity
        min_soc = float(min(np.min(schedule.soc), schedule.initial_soc))
        max_soc = float(max(np.max(schedule.soc), schedule.initial_soc))
        reached_min = min_soc <= battery_params.soc_min + near
        reached_max = max_soc >= battery_params.soc_max - near
        soc_analysis = {
            "min_soc": min_soc,
            "max_soc": max_soc,
            "soc_range_used": max_soc - min_soc,
            "soc_range_utilization": 100.0 * (max_soc - min_soc) / capacity,
            "reached_min_soc": bool(reached_min),
            "reached_max_soc": bool(reached_max),
        }

        hmm_analysis = self._hmm_analysis(schedule, states)

        # Discharge in High regimes compared with what those periods could deliver
        high_periods = hmm_analysis["state_distribution"][3]
        deliverable = min(high_periods * p_max * dt, capacity)
        high_discharge = hmm_analysis["discharge_energy_by_state"][3]
        underutilized = high_periods > 0 and high_discharge < cfg.underutilization_fraction * deliverable

        power_limit = p_max * (1.0 - cfg.power_tolerance)
        power_bound = bool(
            np.any(schedule.charging >= power_limit) or np.any(schedule.discharging >= power_limit)
        )

        constraints = {
            "never_reached_min_soc": not reached_min,
            "never_reached_max_soc": not reached_max,
            "hmm_discharge_underutilized": bool(underutilized),
            "energy_constraint": bool(reached_min or reached_max),
            "power_constraint": power_bound,
            "low_confidence": not hmm_converged,
        }

        report = DebugReport(
            params=params,
            optimization=optimization,
            energy_balance=energy_balance,
            soc_analysis=soc_analysis,
            hmm_analysis=hmm_analysis,
            constraints=constraints,
            soc_evolution=self._key_moments(schedule, states, battery_params, near),
        )
        if report.flags:
            logger.debug(f"Diagnostics flags raised: {', '.join(report.flags)}")
        return report

    @staticmethod
    def _hmm_analysis(schedule: Schedule, states: np.ndarray) -> Dict[str, Any]:
        dt = schedule.period_hours
        distribution = {}
        charge_energy = {}
        discharge_energy = {}
        for state in STATE_NAMES:
            mask = states == state
            distribution[state] = int(np.sum(mask))
            charge_energy[state] = float(np.sum(schedule.charging[mask]) * dt)
            discharge_energy[state] = float(np.sum(schedule.discharging[mask]) * dt)

        high = states == 3
        low = states == 1
        return {
            "state_distribution": distribution,
            "charge_energy_by_state": charge_energy,
            "discharge_energy_by_state": discharge_energy,
            "avg_discharge_in_high": float(np.mean(schedule.discharging[high])) if high.any() else 0.0,
            "avg_charge_in_low": float(np.mean(schedule.charging[low])) if low.any() else 0.0,
        }

    def _key_moments(
        self,
        schedule: Schedule,
        states: np.ndarray,
        battery_params: BatteryParams,
        near: float
    ) -> List[Dict[str, Any]]:
        """Largest SoC moves, plus every period that touches a bound."""
        limit = self.config.max_evolution_moments
        if limit == 0:
            return []

        soc_start = np.concatenate([[schedule.initial_soc], schedule.soc[:-1]])
        change = schedule.soc - soc_start
        near_min = schedule.soc <= battery_params.soc_min + near
        near_max = schedule.soc >= battery_params.soc_max - near

        # Bound contacts first, then by size of the move
        priority = np.lexsort((-np.abs(change), ~(near_min | near_max)))
        candidates = [t for t in priority if abs(change[t]) > 0 or near_min[t] or near_max[t]]
        selected = sorted(candidates[:limit])

        moments = []
        for t in selected:
            time = schedule.timestamps[t] if schedule.timestamps is not None else t
            moments.append({
                "time": str(time),
                "period": int(t),
                "soc_start": float(soc_start[t]),
                "charge": float(schedule.charging[t]),
                "discharge": float(schedule.discharging[t]),
                "soc_change": float(change[t]),
                "soc_end": float(schedule.soc[t]),
                "hmm_state": int(states[t]),
                "price": float(schedule.prices[t]),
                "near_min_soc": bool(near_min[t]),
                "near_max_soc": bool(near_max[t]),
            })
        return moments
