"""Data models for the battery dispatch optimizer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

NUM_STATES = 3
STATE_NAMES = {1: "Low", 2: "Medium", 3: "High"}


def _readonly(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=float)
    array.setflags(write=False)
    return array


class OptimizationStatus(Enum):
    """Status of an optimization run."""
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    INFEASIBLE = "infeasible"
    FALLBACK_USED = "fallback_used"


@dataclass(frozen=True)
class BatteryParams:
    """Physical limits of the battery."""
    p_max: float  # MW
    soc_min: float  # MWh
    soc_max: float  # MWh
    efficiency: float  # round-trip, (0, 1]
    initial_soc: Optional[float] = None  # MWh, defaults to mid-range

    @property
    def usable_capacity(self) -> float:
        return self.soc_max - self.soc_min

    @property
    def start_soc(self) -> float:
        """SoC at the start of the horizon."""
        if self.initial_soc is None:
            return (self.soc_min + self.soc_max) / 2.0
        return float(self.initial_soc)

    @property
    def charge_efficiency(self) -> float:
        # Round-trip loss is split evenly across both legs
        return float(np.sqrt(self.efficiency))

    @property
    def discharge_efficiency(self) -> float:
        return float(np.sqrt(self.efficiency))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "p_max": self.p_max,
            "soc_min": self.soc_min,
            "soc_max": self.soc_max,
            "efficiency": self.efficiency,
            "initial_soc": self.start_soc,
        }


@dataclass
class CategorizationResult:
    """Price categories (1=Low, 2=Medium, 3=High) and the thresholds used."""
    categories: np.ndarray
    method: str
    thresholds: Dict[str, Any] = field(default_factory=dict)

    @property
    def observations(self) -> np.ndarray:
        """Zero-based symbols for the HMM."""
        return np.asarray(self.categories, dtype=int) - 1

    def counts(self) -> Dict[int, int]:
        return {k: int(np.sum(self.categories == k)) for k in STATE_NAMES}


@dataclass(frozen=True)
class HMMParameters:
    """Trained HMM parameters. Arrays are read-only."""
    transition_matrix: np.ndarray
    emission_matrix: np.ndarray
    initial_distribution: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "transition_matrix", _readonly(self.transition_matrix))
        object.__setattr__(self, "emission_matrix", _readonly(self.emission_matrix))
        object.__setattr__(self, "initial_distribution", _readonly(self.initial_distribution))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transition_matrix": self.transition_matrix.tolist(),
            "emission_matrix": self.emission_matrix.tolist(),
            "initial_distribution": self.initial_distribution.tolist(),
        }


@dataclass
class TrainingResult:
    """Outcome of Baum-Welch training."""
    parameters: HMMParameters
    iterations: int
    converged: bool
    log_likelihood: float
    history: List[float] = field(default_factory=list)


@dataclass
class StatePath:
    """Viterbi-decoded regimes (1=Low, 2=Medium, 3=High)."""
    states: np.ndarray
    log_likelihood: float

    def __len__(self) -> int:
        return len(self.states)


@dataclass
class Schedule:
    """Simulated dispatch schedule.

    ``soc[t]`` is the state of charge at the end of period ``t``;
    ``charging``/``discharging`` are grid-side powers in MW and
    ``revenue[t] = price[t] * (discharging[t] - charging[t]) * period_hours``.
    """
    prices: np.ndarray
    soc: np.ndarray
    charging: np.ndarray
    discharging: np.ndarray
    revenue: np.ndarray
    curtailed: np.ndarray
    period_hours: float
    initial_soc: float
    timestamps: Optional[List[Any]] = None
    debug_report: Optional[Any] = None

    def __len__(self) -> int:
        return len(self.prices)

    @property
    def total_revenue(self) -> float:
        return float(np.sum(self.revenue))

    @property
    def total_energy_charged(self) -> float:
        return float(np.sum(self.charging) * self.period_hours)

    @property
    def total_energy_discharged(self) -> float:
        return float(np.sum(self.discharging) * self.period_hours)

    @property
    def operational_efficiency(self) -> float:
        charged = self.total_energy_charged
        return self.total_energy_discharged / charged if charged > 0 else 0.0

    @property
    def vwap_charge(self) -> float:
        volume = float(np.sum(self.charging))
        return float(np.dot(self.charging, self.prices) / volume) if volume > 0 else 0.0

    @property
    def vwap_discharge(self) -> float:
        volume = float(np.sum(self.discharging))
        return float(np.dot(self.discharging, self.prices) / volume) if volume > 0 else 0.0

    def cycles(self, usable_capacity: float) -> float:
        """Full-cycle equivalents: discharged energy over usable capacity."""
        if usable_capacity <= 0:
            return 0.0
        return self.total_energy_discharged / usable_capacity

    def actions(self) -> List[str]:
        """Per-period action label."""
        labels = []
        for c, d in zip(self.charging, self.discharging):
            if c > 0:
                labels.append("charge")
            elif d > 0:
                labels.append("discharge")
            else:
                labels.append("idle")
        return labels

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "soc": self.soc.tolist(),
            "charging": self.charging.tolist(),
            "discharging": self.discharging.tolist(),
            "revenue": self.revenue.tolist(),
            "actions": self.actions(),
            "period_hours": self.period_hours,
            "initial_soc": self.initial_soc,
        }
        if self.timestamps is not None:
            data["timestamps"] = [str(ts) for ts in self.timestamps]
        if self.debug_report is not None:
            data["debug_report"] = self.debug_report.to_dict()
        return data


@dataclass
class OptimizationResult:
    """Result of one optimize() call."""
    success: bool
    status: OptimizationStatus
    error: Optional[str] = None
    schedule: Optional[Schedule] = None
    total_revenue: float = 0.0
    total_energy_charged: float = 0.0
    total_energy_discharged: float = 0.0
    operational_efficiency: float = 0.0
    avg_price: float = 0.0
    cycles: float = 0.0
    vwap_charge: float = 0.0
    vwap_discharge: float = 0.0
    price_categories: Optional[np.ndarray] = None
    categorization_method: Optional[str] = None
    hmm_parameters: Optional[HMMParameters] = None
    viterbi_path: Optional[np.ndarray] = None
    hmm_converged: bool = False
    hmm_iterations: int = 0
    generations: int = 0
    fitness_history: List[float] = field(default_factory=list)
    fallback_used: bool = False
    warnings: List[str] = field(default_factory=list)
    solve_time: float = 0.0
    benchmark_revenue: Optional[float] = None

    @classmethod
    def failure(cls, error: str, solve_time: float = 0.0) -> "OptimizationResult":
        return cls(success=False, status=OptimizationStatus.FAILED, error=error,
                   solve_time=solve_time)

    @property
    def transition_matrix(self) -> Optional[np.ndarray]:
        return None if self.hmm_parameters is None else self.hmm_parameters.transition_matrix

    @property
    def emission_matrix(self) -> Optional[np.ndarray]:
        return None if self.hmm_parameters is None else self.hmm_parameters.emission_matrix

    @property
    def initial_distribution(self) -> Optional[np.ndarray]:
        return None if self.hmm_parameters is None else self.hmm_parameters.initial_distribution

    @property
    def optimality_gap(self) -> Optional[float]:
        """Relative shortfall against the perfect-foresight benchmark."""
        if self.benchmark_revenue is None or self.benchmark_revenue <= 0:
            return None
        return (self.benchmark_revenue - self.total_revenue) / self.benchmark_revenue

    def to_dict(self) -> Dict[str, Any]:
        """Structured result for presentation and backtest layers."""
        if not self.success:
            return {"success": False, "error": self.error}

        data = {
            "success": True,
            "status": self.status.value,
            "total_revenue": self.total_revenue,
            "total_energy_charged": self.total_energy_charged,
            "total_energy_discharged": self.total_energy_discharged,
            "operational_efficiency": self.operational_efficiency,
            "avg_price": self.avg_price,
            "cycles": self.cycles,
            "vwap_charge": self.vwap_charge,
            "vwap_discharge": self.vwap_discharge,
            "price_categories": None if self.price_categories is None else self.price_categories.tolist(),
            "viterbi_path": None if self.viterbi_path is None else self.viterbi_path.tolist(),
            "transition_matrix": None if self.transition_matrix is None else self.transition_matrix.tolist(),
            "emission_matrix": None if self.emission_matrix is None else self.emission_matrix.tolist(),
            "hmm_converged": self.hmm_converged,
            "generations": self.generations,
            "fallback_used": self.fallback_used,
            "warnings": list(self.warnings),
            "solve_time": self.solve_time,
            "schedule": None if self.schedule is None else self.schedule.to_dict(),
        }
        if self.benchmark_revenue is not None:
            data["benchmark_revenue"] = self.benchmark_revenue
            data["optimality_gap"] = self.optimality_gap
        return data
