"""
Price categorization into Low / Medium / High regimes.

Each method is a strategy class behind a common interface; the
``PriceCategorizer`` dispatches on ``CategorizationMethod``. All methods
are pure functions of the prices and options.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Type, Union
import logging

import numpy as np
import pandas as pd

from .exceptions import InvalidInputError
from .models import CategorizationResult
from .validation import MIN_PERIODS, PriceValidator

LOW, MEDIUM, HIGH = 1, 2, 3

# Option names accepted from collaborators that speak camelCase
_OPTION_ALIASES = {
    "lowThreshold": "low_threshold",
    "highThreshold": "high_threshold",
    "windowSize": "window_size",
    "volatilityMultiplier": "volatility_multiplier",
    "maxIterations": "max_iterations",
    "minPeriods": "min_periods",
}


class CategorizationMethod(str, Enum):
    """Supported categorization methods."""
    QUANTILE = "quantile"
    ZSCORE = "zscore"
    ADAPTIVE = "adaptive"
    VOLATILITY = "volatility"
    KMEANS = "kmeans"

    @classmethod
    def parse(cls, value: Union[str, "CategorizationMethod", None]) -> "CategorizationMethod":
        if value is None:
            return cls.QUANTILE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = [m.value for m in cls]
            raise InvalidInputError(f"Unknown categorization method: {value}. Must be one of {valid}")


class CategorizationStrategy(ABC):
    """Base class for one categorization method."""

    method: CategorizationMethod

    def __init__(self, **options: Any):
        self.options = options

    @abstractmethod
    def assign(self, prices: np.ndarray) -> Tuple[np.ndarray, Dict[str, Any]]:
        """Return categories in {1, 2, 3} and the thresholds used."""
        pass

    def _option(self, name: str, default: Any) -> Any:
        value = self.options.get(name, default)
        return default if value is None else value


def _bin(prices: np.ndarray, low: np.ndarray, high: np.ndarray, inclusive: bool = True) -> np.ndarray:
    """Three-way binning against (possibly per-period) thresholds."""
    if inclusive:
        return np.where(prices <= low, LOW, np.where(prices <= high, MEDIUM, HIGH)).astype(int)
    return np.where(prices < low, LOW, np.where(prices > high, HIGH, MEDIUM)).astype(int)


def _window(num_periods: int, window_size: int) -> int:
    window_size = int(window_size)
    if window_size < 2:
        raise InvalidInputError(f"Window size must be >= 2, got {window_size}")
    return min(window_size, num_periods)


def _lower_tercile(values: np.ndarray) -> float:
    return float(np.sort(values)[len(values) // 3])


def _upper_tercile(values: np.ndarray) -> float:
    return float(np.sort(values)[(2 * len(values)) // 3])


class QuantileStrategy(CategorizationStrategy):
    """Terciles of the empirical distribution."""

    method = CategorizationMethod.QUANTILE

    def assign(self, prices):
        q33 = _lower_tercile(prices)
        q67 = _upper_tercile(prices)
        return _bin(prices, q33, q67), {"low": q33, "high": q67}


class ZScoreStrategy(CategorizationStrategy):
    """Fixed z-score bounds around the series mean."""

    method = CategorizationMethod.ZSCORE

    def assign(self, prices):
        low_z = float(self._option("low_threshold", -0.5))
        high_z = float(self._option("high_threshold", 0.5))
        if low_z >= high_z:
            raise InvalidInputError(
                f"Low threshold must be below high threshold, got {low_z} >= {high_z}"
            )

        mean = float(np.mean(prices))
        std = float(np.std(prices))
        z_scores = (prices - mean) / std

        categories = _bin(z_scores, low_z, high_z, inclusive=False)
        thresholds = {
            "low": mean + low_z * std,
            "high": mean + high_z * std,
            "low_z": low_z,
            "high_z": high_z,
            "mean": mean,
            "std": std,
        }
        return categories, thresholds


class AdaptiveStrategy(CategorizationStrategy):
    """Terciles over a trailing rolling window."""

    method = CategorizationMethod.ADAPTIVE

    def assign(self, prices):
        window = _window(len(prices), self._option("window_size", 24))
        series = pd.Series(prices)
        rolling = series.rolling(window, min_periods=window)

        # Same order statistics as the quantile method, per trailing window.
        # Periods before the first full window use its thresholds.
        low = rolling.apply(_lower_tercile, raw=True).bfill().to_numpy()
        high = rolling.apply(_upper_tercile, raw=True).bfill().to_numpy()

        categories = _bin(prices, low, high)
        thresholds = {
            "low": low.tolist(),
            "high": high.tolist(),
            "mean_low": float(np.mean(low)),
            "mean_high": float(np.mean(high)),
            "window_size": window,
        }
        return categories, thresholds


class VolatilityStrategy(CategorizationStrategy):
    """Rolling mean band scaled by local volatility."""

    method = CategorizationMethod.VOLATILITY

    def assign(self, prices):
        window = _window(len(prices), self._option("window_size", 24))
        multiplier = float(self._option("volatility_multiplier", 0.5))
        if multiplier <= 0:
            raise InvalidInputError(f"Volatility multiplier must be > 0, got {multiplier}")

        series = pd.Series(prices)
        rolling = series.rolling(window, min_periods=window)
        center = rolling.mean().bfill().to_numpy()
        local_std = rolling.std(ddof=0).bfill().to_numpy()

        # Flat stretches fall back to the global volatility
        global_std = float(np.std(prices))
        local_std = np.where(local_std > 1e-12, local_std, global_std)

        low = center - multiplier * local_std
        high = center + multiplier * local_std

        categories = _bin(prices, low, high, inclusive=False)
        thresholds = {
            "low": low.tolist(),
            "high": high.tolist(),
            "mean_low": float(np.mean(low)),
            "mean_high": float(np.mean(high)),
            "window_size": window,
            "volatility_multiplier": multiplier,
        }
        return categories, thresholds


class KMeansStrategy(CategorizationStrategy):
    """One-dimensional k-means with k=3, labelled by ascending centroid."""

    method = CategorizationMethod.KMEANS

    def assign(self, prices):
        max_iterations = int(self._option("max_iterations", 100))
        if max_iterations <= 0:
            raise InvalidInputError(f"K-means iterations must be > 0, got {max_iterations}")

        distinct = np.unique(prices)
        if distinct.size < 3:
            # Two levels: lowest is Low, highest is High
            centroids = distinct.astype(float)
            labels = np.searchsorted(distinct, prices)
            categories = np.where(labels == 0, LOW, HIGH).astype(int)
            return categories, {"centroids": centroids.tolist(), "iterations": 0}

        centroids = np.percentile(prices, [10, 50, 90]).astype(float)
        if np.unique(centroids).size < 3:
            centroids = np.percentile(distinct, [0, 50, 100]).astype(float)

        labels = np.full(len(prices), -1)
        iterations = 0
        for iterations in range(1, max_iterations + 1):
            distances = np.abs(prices[:, None] - centroids[None, :])
            new_labels = np.argmin(distances, axis=1)
            if np.array_equal(new_labels, labels):
                break
            labels = new_labels

            for k in range(3):
                members = prices[labels == k]
                if members.size:
                    centroids[k] = members.mean()
                else:
                    # Re-seed an empty cluster at the worst-fitted point
                    worst = int(np.argmax(np.min(distances, axis=1)))
                    centroids[k] = prices[worst]

            order = np.argsort(centroids, kind="stable")
            centroids = centroids[order]
            labels = np.argsort(order)[labels]

        categories = (labels + 1).astype(int)
        thresholds = {
            "centroids": centroids.tolist(),
            "low": float((centroids[0] + centroids[1]) / 2.0),
            "high": float((centroids[1] + centroids[2]) / 2.0),
            "iterations": iterations,
        }
        return categories, thresholds


_STRATEGIES: Dict[CategorizationMethod, Type[CategorizationStrategy]] = {
    CategorizationMethod.QUANTILE: QuantileStrategy,
    CategorizationMethod.ZSCORE: ZScoreStrategy,
    CategorizationMethod.ADAPTIVE: AdaptiveStrategy,
    CategorizationMethod.VOLATILITY: VolatilityStrategy,
    CategorizationMethod.KMEANS: KMeansStrategy,
}


def normalize_options(options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Translate camelCase option names to their snake_case form."""
    if options is None:
        return {}
    if not isinstance(options, Mapping):
        raise InvalidInputError(f"Categorization options must be a mapping, got {type(options).__name__}")
    return {_OPTION_ALIASES.get(key, key): value for key, value in options.items()}


class PriceCategorizer:
    """Assigns each price observation to Low / Medium / High."""

    def __init__(self, min_periods: int = MIN_PERIODS):
        self.min_periods = min_periods
        self.logger = logging.getLogger("bessopt.categorization")

    def categorize(
        self,
        prices: Sequence[float],
        method: Union[str, CategorizationMethod, None] = CategorizationMethod.QUANTILE,
        options: Optional[Mapping[str, Any]] = None
    ) -> CategorizationResult:
        """Categorize prices with the selected method."""
        method = CategorizationMethod.parse(method)
        options = normalize_options(options)
        min_periods = int(options.pop("min_periods", self.min_periods))

        price_array = PriceValidator.validate_prices(prices, min_periods=min_periods)
        PriceValidator.validate_variation(price_array)

        strategy = _STRATEGIES[method](**options)
        categories, thresholds = strategy.assign(price_array)

        result = CategorizationResult(categories=categories, method=method.value, thresholds=thresholds)
        self.logger.debug(f"Categorized {len(categories)} prices with {method.value}: {result.counts()}")
        return result


def categorize(
    prices: Sequence[float],
    method: Union[str, CategorizationMethod, None] = CategorizationMethod.QUANTILE,
    options: Optional[Mapping[str, Any]] = None
) -> CategorizationResult:
    """Categorize prices into Low (1), Medium (2) and High (3)."""
    return PriceCategorizer().categorize(prices, method, options)
