"""HMM-seeded battery dispatch optimizer library initialization."""

from .core import BatteryOptimizer, optimize, reset
from .config import OptimizerConfig
from .exceptions import BessOptError, InvalidInputError
from .models import BatteryParams, OptimizationResult, Schedule
from .optimization import simple_optimize
from .categorization import categorize
from .backtest import Backtester

# Import advanced modules
from . import optimization
from . import models

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = [
    "BatteryOptimizer",
    "OptimizerConfig",
    "BessOptError",
    "InvalidInputError",
    "BatteryParams",
    "OptimizationResult",
    "Schedule",
    "optimize",
    "reset",
    "simple_optimize",
    "categorize",
    "Backtester",
    "optimization",
    "models"
]
