"""
Configuration system for the battery dispatch optimizer.
Provides hierarchical, validatable configuration sections that can be
stored as YAML or JSON.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, asdict
from typing import Dict, Any, Optional, Union, List
from pathlib import Path
import yaml
import json
from enum import Enum
import logging


class ConfigFormat(Enum):
    """Supported configuration file formats."""
    YAML = "yaml"
    JSON = "json"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add a validation error."""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        """Add a validation warning."""
        self.warnings.append(message)

    def extend(self, other: 'ConfigValidationResult', prefix: str = "") -> None:
        """Fold another result into this one."""
        for error in other.errors:
            self.add_error(f"{prefix}{error}")
        for warning in other.warnings:
            self.add_warning(f"{prefix}{warning}")


class BaseConfig(ABC):
    """Abstract base class for all configuration objects."""

    @abstractmethod
    def validate(self) -> ConfigValidationResult:
        """Validate the configuration."""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseConfig':
        """Create configuration from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def save_to_file(self, file_path: Union[str, Path], format: ConfigFormat = ConfigFormat.YAML) -> None:
        """Save configuration to file."""
        file_path = Path(file_path)
        data = self.to_dict()

        if format == ConfigFormat.YAML:
            with open(file_path, 'w') as f:
                yaml.dump(data, f, default_flow_style=False, indent=2)
        elif format == ConfigFormat.JSON:
            with open(file_path, 'w') as f:
                json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported format: {format}")

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> 'BaseConfig':
        """Load configuration from file."""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        if file_path.suffix.lower() in ['.yaml', '.yml']:
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            with open(file_path, 'r') as f:
                data = json.load(f)
        else:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        return cls.from_dict(data or {})

    def merge(self, other: Union['BaseConfig', Dict[str, Any]]) -> 'BaseConfig':
        """Merge this configuration with another (other wins)."""
        other_dict = other if isinstance(other, dict) else other.to_dict()
        merged = self._deep_merge(self.to_dict(), other_dict)
        return self.__class__.from_dict(merged)

    @staticmethod
    def _deep_merge(dict1: Dict[str, Any], dict2: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = dict1.copy()

        for key, value in dict2.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = BaseConfig._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


@dataclass
class CategorizationConfig(BaseConfig):
    """Configuration for price categorization."""
    method: str = "quantile"
    min_periods: int = 24
    low_threshold: float = -0.5
    high_threshold: float = 0.5
    window_size: int = 24
    volatility_multiplier: float = 0.5
    kmeans_max_iterations: int = 100

    def validate(self) -> ConfigValidationResult:
        """Validate categorization configuration."""
        result = ConfigValidationResult(is_valid=True)

        valid_methods = ["quantile", "zscore", "adaptive", "volatility", "kmeans"]
        if self.method not in valid_methods:
            result.add_error(f"Invalid categorization method '{self.method}'. Must be one of {valid_methods}")

        if self.min_periods < 2:
            result.add_error(f"Minimum periods must be >= 2, got {self.min_periods}")

        if self.low_threshold >= self.high_threshold:
            result.add_error(
                f"Low threshold must be below high threshold, got {self.low_threshold} >= {self.high_threshold}"
            )

        if self.window_size < 2:
            result.add_error(f"Window size must be >= 2, got {self.window_size}")

        if self.volatility_multiplier <= 0:
            result.add_error(f"Volatility multiplier must be > 0, got {self.volatility_multiplier}")

        if self.kmeans_max_iterations <= 0:
            result.add_error(f"K-means iterations must be > 0, got {self.kmeans_max_iterations}")

        return result

    def options(self) -> Dict[str, Any]:
        """Method options as passed to the categorizer."""
        return {
            "min_periods": self.min_periods,
            "low_threshold": self.low_threshold,
            "high_threshold": self.high_threshold,
            "window_size": self.window_size,
            "volatility_multiplier": self.volatility_multiplier,
            "max_iterations": self.kmeans_max_iterations,
        }


@dataclass
class HMMConfig(BaseConfig):
    """Configuration for Baum-Welch training."""
    max_iterations: int = 100
    tolerance: float = 1e-6
    initialization: str = "empirical"
    probability_floor: float = 1e-8

    def validate(self) -> ConfigValidationResult:
        """Validate HMM configuration."""
        result = ConfigValidationResult(is_valid=True)

        if self.max_iterations <= 0:
            result.add_error(f"Max iterations must be > 0, got {self.max_iterations}")

        if self.tolerance <= 0:
            result.add_error(f"Convergence tolerance must be > 0, got {self.tolerance}")

        if self.initialization not in ("empirical", "random"):
            result.add_error(f"Invalid initialization: {self.initialization}")

        if not 0 <= self.probability_floor < 1e-2:
            result.add_error(f"Probability floor must be in [0, 0.01), got {self.probability_floor}")

        return result


@dataclass
class SeedingConfig(BaseConfig):
    """Configuration for Viterbi-seeded population initialization."""
    seed_fraction: float = 0.8
    low_charge_fraction: float = 0.8
    medium_fraction: float = 0.1
    high_discharge_fraction: float = 0.8
    perturbation: float = 0.05

    def validate(self) -> ConfigValidationResult:
        """Validate seeding configuration."""
        result = ConfigValidationResult(is_valid=True)

        for name in ("seed_fraction", "low_charge_fraction", "medium_fraction",
                     "high_discharge_fraction", "perturbation"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                result.add_error(f"{name} must be between 0 and 1, got {value}")

        if self.seed_fraction == 0:
            result.add_warning("Seed fraction is 0; the Viterbi path will not be used")

        return result


@dataclass
class DifferentialEvolutionConfig(BaseConfig):
    """Configuration for the differential-evolution search."""
    population_size: int = 50
    max_generations: int = 200
    mutation_factor: float = 0.8
    crossover_probability: float = 0.9
    patience: int = 30
    epsilon: float = 1e-6
    timeout_s: Optional[float] = None
    penalty_factor: float = 0.1

    def validate(self) -> ConfigValidationResult:
        """Validate differential-evolution configuration."""
        result = ConfigValidationResult(is_valid=True)

        if self.population_size < 4:
            result.add_error(f"Population size must be >= 4, got {self.population_size}")

        if self.max_generations <= 0:
            result.add_error(f"Max generations must be > 0, got {self.max_generations}")

        if not 0 < self.mutation_factor <= 2:
            result.add_error(f"Mutation factor must be in (0, 2], got {self.mutation_factor}")

        if not 0 <= self.crossover_probability <= 1:
            result.add_error(f"Crossover probability must be in [0, 1], got {self.crossover_probability}")

        if self.patience <= 0:
            result.add_error(f"Patience must be > 0, got {self.patience}")

        if self.epsilon < 0:
            result.add_error(f"Epsilon must be >= 0, got {self.epsilon}")

        if self.timeout_s is not None and self.timeout_s <= 0:
            result.add_error(f"Timeout must be > 0, got {self.timeout_s}")

        if self.penalty_factor < 0:
            result.add_error(f"Penalty factor must be >= 0, got {self.penalty_factor}")

        if self.patience > self.max_generations:
            result.add_warning("Patience exceeds max generations; early stopping is disabled")

        return result


@dataclass
class DiagnosticsConfig(BaseConfig):
    """Configuration for the debug report heuristics."""
    near_bound_tolerance: float = 0.01
    power_tolerance: float = 0.01
    underutilization_fraction: float = 0.5
    max_evolution_moments: int = 10

    def validate(self) -> ConfigValidationResult:
        """Validate diagnostics configuration."""
        result = ConfigValidationResult(is_valid=True)

        for name in ("near_bound_tolerance", "power_tolerance", "underutilization_fraction"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                result.add_error(f"{name} must be between 0 and 1, got {value}")

        if self.max_evolution_moments < 0:
            result.add_error(f"Max evolution moments must be >= 0, got {self.max_evolution_moments}")

        return result


@dataclass
class BenchmarkConfig(BaseConfig):
    """Configuration for the perfect-foresight LP benchmark."""
    enabled: bool = False
    time_limit_s: Optional[float] = None
    solver_msg: bool = False

    def validate(self) -> ConfigValidationResult:
        """Validate benchmark configuration."""
        result = ConfigValidationResult(is_valid=True)

        if self.time_limit_s is not None and self.time_limit_s <= 0:
            result.add_error(f"Time limit must be > 0, got {self.time_limit_s}")

        return result
