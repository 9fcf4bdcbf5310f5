"""Validation utilities for optimizer inputs."""

from numbers import Real
from typing import Any, Mapping, Optional, Sequence, Tuple, Type, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidInputError, ValidationTypeError, ValidationRangeError
from .models import BatteryParams

MIN_PERIODS = 24

SOC_ORDER_MESSAGE = "Minimum SoC must be less than maximum SoC"

# Accepted spellings for battery parameter mappings
_PARAM_ALIASES = {
    "p_max": ("p_max", "pMax", "max_power"),
    "soc_min": ("soc_min", "socMin"),
    "soc_max": ("soc_max", "socMax"),
    "efficiency": ("efficiency",),
    "initial_soc": ("initial_soc", "initialSoc", "initialSOC"),
}

class Validator:
    """Base validator class."""

    @staticmethod
    def validate_type(value: Any, expected_type: Union[Type, Tuple[Type, ...]]) -> None:
        """Validate value type."""
        if isinstance(value, bool) or not isinstance(value, expected_type):
            expected = getattr(expected_type, "__name__", None) or " or ".join(
                t.__name__ for t in expected_type
            )
            raise ValidationTypeError(
                f"Expected type {expected}, got {type(value).__name__}"
            )

    @staticmethod
    def validate_range(
        value: Union[int, float],
        min_value: Optional[Union[int, float]] = None,
        max_value: Optional[Union[int, float]] = None,
        name: str = "Value"
    ) -> None:
        """Validate numeric range."""
        if min_value is not None and value < min_value:
            raise ValidationRangeError(f"{name} {value} is below minimum {min_value}")

        if max_value is not None and value > max_value:
            raise ValidationRangeError(f"{name} {value} exceeds maximum {max_value}")

class BatteryValidator(Validator):
    """Validator for battery parameters."""

    @staticmethod
    def validate_power(power: float) -> None:
        """Validate maximum charge/discharge power."""
        Validator.validate_type(power, Real)
        if not np.isfinite(power) or power <= 0:
            raise ValidationRangeError(f"Invalid max power: {power} (must be > 0)")

    @staticmethod
    def validate_efficiency(efficiency: float) -> None:
        """Validate round-trip efficiency."""
        Validator.validate_type(efficiency, Real)
        if not np.isfinite(efficiency) or not 0 < efficiency <= 1:
            raise ValidationRangeError(
                f"Invalid efficiency: {efficiency} (must be in (0, 1])"
            )

    @staticmethod
    def validate_soc_bounds(soc_min: float, soc_max: float) -> None:
        """Validate the state-of-charge window."""
        Validator.validate_type(soc_min, Real)
        Validator.validate_type(soc_max, Real)
        if not (np.isfinite(soc_min) and np.isfinite(soc_max)):
            raise ValidationRangeError("Invalid SOC: bounds must be finite")
        if soc_min < 0:
            raise ValidationRangeError(f"Invalid SOC: minimum {soc_min} is negative")
        if soc_min >= soc_max:
            raise InvalidInputError(SOC_ORDER_MESSAGE)

    @staticmethod
    def validate(params: BatteryParams) -> BatteryParams:
        """Validate a full parameter set and return it with plain float fields."""
        BatteryValidator.validate_soc_bounds(params.soc_min, params.soc_max)
        BatteryValidator.validate_power(params.p_max)
        BatteryValidator.validate_efficiency(params.efficiency)
        if params.initial_soc is not None:
            Validator.validate_type(params.initial_soc, Real)
            Validator.validate_range(
                params.initial_soc, params.soc_min, params.soc_max, name="Initial SoC"
            )
        # numpy scalars from array-backed inputs become builtin floats
        return BatteryParams(
            p_max=float(params.p_max),
            soc_min=float(params.soc_min),
            soc_max=float(params.soc_max),
            efficiency=float(params.efficiency),
            initial_soc=None if params.initial_soc is None else float(params.initial_soc),
        )

class PriceValidator(Validator):
    """Validator for price series."""

    @staticmethod
    def validate_prices(prices: Sequence[float], min_periods: int = MIN_PERIODS) -> np.ndarray:
        """Validate a price series and return it as a read-only float array."""
        if prices is None:
            raise InvalidInputError("No price data provided")

        try:
            array = np.array(prices, dtype=float)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid price data: {e}")

        if array.ndim != 1:
            raise InvalidInputError(f"Price data must be one-dimensional, got shape {array.shape}")
        if array.size == 0:
            raise InvalidInputError("No price data provided")
        if array.size < min_periods:
            raise InvalidInputError(
                f"Insufficient data points: {array.size} (need at least {min_periods})"
            )
        if not np.all(np.isfinite(array)):
            raise InvalidInputError("Invalid price data: all prices must be finite")
        if np.any(array < 0):
            raise InvalidInputError("Invalid price data: prices must be non-negative")

        array.setflags(write=False)
        return array

    @staticmethod
    def validate_variation(prices: np.ndarray) -> None:
        """Require at least two distinct price levels."""
        if np.unique(prices).size < 2:
            raise InvalidInputError("No price variation: at least 2 distinct prices are required")

    @staticmethod
    def validate_timestamps(timestamps: Optional[Sequence[Any]], num_periods: int) -> None:
        """Validate that timestamps, when given, run parallel to the prices."""
        if timestamps is not None and len(timestamps) != num_periods:
            raise InvalidInputError(
                f"Timestamps length {len(timestamps)} does not match {num_periods} prices"
            )

    @staticmethod
    def parse_timestamps(timestamps: Sequence[Any]) -> pd.DatetimeIndex:
        """Convert datetime-like timestamps to a DatetimeIndex.

        Bare numbers are rejected: pandas would read them as nanosecond
        epochs and every period would be a fraction of a microsecond long.
        """
        values = pd.Series(list(timestamps))
        if pd.api.types.is_numeric_dtype(values) or pd.api.types.is_bool_dtype(values):
            raise InvalidInputError(
                f"Timestamps must be datetime-like, got {values.dtype} values"
            )
        try:
            return pd.DatetimeIndex(pd.to_datetime(values))
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid timestamps: {e}")

def coerce_battery_params(params: Union[BatteryParams, Mapping[str, Any]]) -> BatteryParams:
    """Build validated BatteryParams from a dataclass or a plain mapping."""
    if params is None:
        raise InvalidInputError("Battery parameters are required")

    if not isinstance(params, BatteryParams):
        if not isinstance(params, Mapping):
            raise ValidationTypeError(
                f"Expected BatteryParams or mapping, got {type(params).__name__}"
            )
        values = {}
        for field_name, aliases in _PARAM_ALIASES.items():
            for alias in aliases:
                if alias in params:
                    values[field_name] = params[alias]
                    break
        missing = [name for name in ("p_max", "soc_min", "soc_max", "efficiency")
                   if name not in values]
        if missing:
            raise InvalidInputError(f"Missing battery parameters: {', '.join(missing)}")
        params = BatteryParams(**values)

    return BatteryValidator.validate(params)
