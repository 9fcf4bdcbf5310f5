"""
Configuration package for the battery dispatch optimizer.
Provides hierarchical and validatable configuration management.
"""

from .base import (
    BaseConfig,
    ConfigFormat,
    ConfigValidationResult,
    CategorizationConfig,
    HMMConfig,
    SeedingConfig,
    DifferentialEvolutionConfig,
    DiagnosticsConfig,
    BenchmarkConfig
)

from .optimizer_config import (
    MonitoringConfig,
    BacktestConfig,
    OptimizerConfig
)

__all__ = [
    # Base configuration classes
    "BaseConfig",
    "ConfigFormat",
    "ConfigValidationResult",

    # Pipeline stages
    "CategorizationConfig",
    "HMMConfig",
    "SeedingConfig",
    "DifferentialEvolutionConfig",
    "DiagnosticsConfig",
    "BenchmarkConfig",

    # Runtime
    "MonitoringConfig",
    "BacktestConfig",

    # Main configuration class
    "OptimizerConfig"
]
