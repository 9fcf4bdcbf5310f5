"""
Main optimizer configuration class that integrates all configuration components.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional
import logging

from .base import (
    BaseConfig, ConfigValidationResult,
    CategorizationConfig, HMMConfig, SeedingConfig,
    DifferentialEvolutionConfig, DiagnosticsConfig, BenchmarkConfig
)


@dataclass
class MonitoringConfig(BaseConfig):
    """Configuration for logging."""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    configure_logging: bool = True

    def validate(self) -> ConfigValidationResult:
        """Validate monitoring configuration."""
        result = ConfigValidationResult(is_valid=True)

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            result.add_error(f"Invalid log level: {self.log_level}")

        return result


@dataclass
class BacktestConfig(BaseConfig):
    """Configuration for multi-period backtests."""
    period: str = "monthly"
    max_workers: Optional[int] = None
    executor: str = "thread"
    window_size: int = 96
    overlap: float = 0.5
    num_simulations: int = 100

    def validate(self) -> ConfigValidationResult:
        """Validate backtest configuration."""
        result = ConfigValidationResult(is_valid=True)

        valid_periods = ["daily", "weekly", "monthly", "quarterly", "yearly", "continuous"]
        if self.period not in valid_periods:
            result.add_error(f"Invalid backtest period '{self.period}'. Must be one of {valid_periods}")

        if self.executor not in ("thread", "process"):
            result.add_error(f"Invalid executor: {self.executor}")

        if self.max_workers is not None and self.max_workers <= 0:
            result.add_error(f"Max workers must be > 0, got {self.max_workers}")

        if self.window_size < 24:
            result.add_error(f"Window size must be >= 24, got {self.window_size}")

        if not 0 <= self.overlap < 1:
            result.add_error(f"Overlap must be in [0, 1), got {self.overlap}")

        if self.num_simulations <= 0:
            result.add_error(f"Number of simulations must be > 0, got {self.num_simulations}")

        return result


@dataclass
class OptimizerConfig(BaseConfig):
    """Main optimizer configuration class."""

    name: str = "HMM Battery Optimizer"
    random_seed: Optional[int] = 42

    # Component configurations
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    hmm: HMMConfig = field(default_factory=HMMConfig)
    seeding: SeedingConfig = field(default_factory=SeedingConfig)
    evolution: DifferentialEvolutionConfig = field(default_factory=DifferentialEvolutionConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    benchmark: BenchmarkConfig = field(default_factory=BenchmarkConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)

    config_version: str = "1.0"

    def __post_init__(self):
        """Initialize after dataclass creation."""
        if self.monitoring.configure_logging:
            self._setup_logging()

    def _setup_logging(self):
        """Setup logging based on monitoring configuration."""
        logger = logging.getLogger("bessopt")
        logger.setLevel(getattr(logging, self.monitoring.log_level, logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        # Console handler
        if not logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        # File handler if specified
        if self.monitoring.log_file:
            existing = [
                h for h in logger.handlers
                if isinstance(h, logging.FileHandler)
                and getattr(h, "baseFilename", "").endswith(self.monitoring.log_file)
            ]
            if not existing:
                file_handler = logging.FileHandler(self.monitoring.log_file)
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)

    def validate(self) -> ConfigValidationResult:
        """Validate the entire optimizer configuration."""
        result = ConfigValidationResult(is_valid=True)

        if not self.name:
            result.add_error("Optimizer name cannot be empty")

        if self.random_seed is None:
            result.add_warning("No random seed set; repeated runs will not be reproducible")
        elif self.random_seed < 0:
            result.add_error(f"Random seed must be >= 0, got {self.random_seed}")

        components = [
            ("categorization", self.categorization),
            ("hmm", self.hmm),
            ("seeding", self.seeding),
            ("evolution", self.evolution),
            ("diagnostics", self.diagnostics),
            ("benchmark", self.benchmark),
            ("monitoring", self.monitoring),
            ("backtest", self.backtest)
        ]

        # Prefix errors and warnings with component name
        for component_name, component in components:
            result.extend(component.validate(), prefix=f"{component_name}: ")

        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "name": self.name,
            "random_seed": self.random_seed,
            "categorization": self.categorization.to_dict(),
            "hmm": self.hmm.to_dict(),
            "seeding": self.seeding.to_dict(),
            "evolution": self.evolution.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
            "benchmark": self.benchmark.to_dict(),
            "monitoring": self.monitoring.to_dict(),
            "backtest": self.backtest.to_dict(),
            "config_version": self.config_version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OptimizerConfig':
        """Create configuration from dictionary."""
        data = data or {}
        return cls(
            name=data.get("name", "HMM Battery Optimizer"),
            random_seed=data.get("random_seed", 42),
            categorization=CategorizationConfig.from_dict(data.get("categorization", {})),
            hmm=HMMConfig.from_dict(data.get("hmm", {})),
            seeding=SeedingConfig.from_dict(data.get("seeding", {})),
            evolution=DifferentialEvolutionConfig.from_dict(data.get("evolution", {})),
            diagnostics=DiagnosticsConfig.from_dict(data.get("diagnostics", {})),
            benchmark=BenchmarkConfig.from_dict(data.get("benchmark", {})),
            monitoring=MonitoringConfig.from_dict(data.get("monitoring", {})),
            backtest=BacktestConfig.from_dict(data.get("backtest", {})),
            config_version=data.get("config_version", "1.0")
        )

    def validate_and_log(self) -> bool:
        """Validate configuration and log results."""
        result = self.validate()

        logger = logging.getLogger("bessopt.config")

        if result.is_valid:
            logger.info("Configuration validation passed")
        else:
            logger.error("Configuration validation failed")
            for error in result.errors:
                logger.error(f"Validation error: {error}")

        for warning in result.warnings:
            logger.warning(f"Validation warning: {warning}")

        return result.is_valid
