"""
Multi-period backtests.

A timestamped price series is split into calendar periods (or rolling or
randomly placed windows) and every slice is optimized independently.
Slices share nothing, so they can run in a thread or process pool.
"""

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from .config import OptimizerConfig
from .core import BatteryOptimizer
from .exceptions import InvalidInputError
from .models import BatteryParams, OptimizationResult
from .validation import PriceValidator

logger = logging.getLogger("bessopt.backtest")

PERIOD_FREQUENCIES = {
    "daily": "D",
    "weekly": "W",
    "monthly": "M",
    "quarterly": "Q",
    "yearly": "Y",
}

PERCENTILES = (5, 25, 50, 75, 95)


@dataclass
class PeriodResult:
    """Optimization outcome for one slice of the series."""
    label: str
    start: Any
    end: Any
    num_periods: int
    result: OptimizationResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "start": str(self.start),
            "end": str(self.end),
            "num_periods": self.num_periods,
            "success": self.result.success,
            "fallback_used": self.result.fallback_used,
            "total_revenue": self.result.total_revenue,
            "cycles": self.result.cycles,
            "energy_charged": self.result.total_energy_charged,
            "energy_discharged": self.result.total_energy_discharged,
            "error": self.result.error,
        }


@dataclass
class BacktestReport:
    """All slice results plus summary statistics."""
    period: str
    periods: List[PeriodResult] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """One row per slice."""
        return pd.DataFrame([p.to_dict() for p in self.periods])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "periods": [p.to_dict() for p in self.periods],
            "summary": dict(self.summary),
        }


def _optimize_slice(
    config_data: Dict[str, Any],
    prices: List[float],
    params: BatteryParams,
    timestamps: Optional[List[Any]],
    period_hours: Optional[float],
    categorization_method: Optional[str]
) -> OptimizationResult:
    # Module-level so process pools can pickle it
    optimizer = BatteryOptimizer(OptimizerConfig.from_dict(config_data))
    return optimizer.optimize(
        prices, params,
        categorization_method=categorization_method,
        timestamps=timestamps,
        period_hours=period_hours,
    )


def _max_drawdown(revenues: np.ndarray) -> float:
    """Largest peak-to-trough fall of the cumulative revenue, in currency."""
    cumulative = np.cumsum(revenues)
    peaks = np.maximum.accumulate(np.concatenate([[0.0], cumulative]))[1:]
    return float(np.max(peaks - cumulative))


def summarize(results: Sequence[OptimizationResult]) -> Dict[str, Any]:
    """Revenue, energy and risk statistics over the successful results.

    Results are taken in the order given, which matters for the drawdown.
    """
    succeeded = [r for r in results if r.success]
    revenues = np.array([r.total_revenue for r in succeeded], dtype=float)
    summary: Dict[str, Any] = {
        "count": len(results),
        "successful": int(len(revenues)),
        "failed": int(sum(1 for r in results if not r.success)),
        "fallbacks": int(sum(1 for r in results if r.fallback_used)),
    }
    if revenues.size == 0:
        return summary

    mean = float(np.mean(revenues))
    std = float(np.std(revenues))
    total_revenue = float(np.sum(revenues))
    discharged = float(sum(r.total_energy_discharged for r in succeeded))
    summary.update({
        "total_revenue": total_revenue,
        "total_cycles": float(sum(r.cycles for r in succeeded)),
        "total_energy_charged": float(sum(r.total_energy_charged for r in succeeded)),
        "total_energy_discharged": discharged,
        "revenue_per_mwh": total_revenue / discharged if discharged > 0 else None,
        "mean": mean,
        "std": std,
        "coefficient_of_variation": std / abs(mean) if mean != 0 else None,
        "min": float(np.min(revenues)),
        "max": float(np.max(revenues)),
        "percentiles": {
            f"p{q}": float(np.percentile(revenues, q, method="lower")) for q in PERCENTILES
        },
        "sharpe_ratio": mean / std if std > 0 else 0.0,
        "var_95": float(np.sort(revenues)[int(0.05 * revenues.size)]),
        "max_drawdown": _max_drawdown(revenues),
    })
    return summary


class Backtester:
    """Runs the optimizer over calendar periods or rolling windows."""

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    @staticmethod
    def _series(prices: Sequence[float], timestamps: Sequence[Any]) -> pd.Series:
        if timestamps is None:
            raise InvalidInputError("Timestamps are required to group prices by period")
        if len(timestamps) != len(prices):
            raise InvalidInputError(
                f"Timestamps length {len(timestamps)} does not match {len(prices)} prices"
            )
        index = PriceValidator.parse_timestamps(timestamps)
        return pd.Series(np.asarray(prices, dtype=float), index=index).sort_index()

    def group(
        self,
        prices: Sequence[float],
        timestamps: Sequence[Any],
        period: Optional[str] = None
    ) -> Dict[str, pd.Series]:
        """Split a timestamped series into labelled calendar periods."""
        period = period or self.config.backtest.period
        series = self._series(prices, timestamps)

        if period == "continuous":
            return {"continuous": series}
        if period not in PERIOD_FREQUENCIES:
            raise InvalidInputError(
                f"Invalid backtest period '{period}'. "
                f"Must be one of {list(PERIOD_FREQUENCIES) + ['continuous']}"
            )

        keys = series.index.to_period(PERIOD_FREQUENCIES[period])
        return {str(key): group for key, group in series.groupby(keys)}

    def windows(
        self,
        num_periods: int,
        window_size: Optional[int] = None,
        overlap: Optional[float] = None
    ) -> List[Tuple[int, int]]:
        """Start/end indices of rolling windows."""
        window_size = self.config.backtest.window_size if window_size is None else int(window_size)
        overlap = self.config.backtest.overlap if overlap is None else float(overlap)
        if window_size <= 0:
            raise InvalidInputError(f"Window size must be > 0, got {window_size}")
        if not 0 <= overlap < 1:
            raise InvalidInputError(f"Overlap must be in [0, 1), got {overlap}")

        step = max(1, int(window_size * (1 - overlap)))
        return [(start, start + window_size) for start in range(0, num_periods - window_size + 1, step)]

    def _execute(self, jobs: List[Tuple[Any, ...]]) -> List[OptimizationResult]:
        cfg = self.config.backtest
        config_data = self.config.to_dict()
        if cfg.max_workers is None or cfg.max_workers == 1 or len(jobs) <= 1:
            return [_optimize_slice(config_data, *job) for job in jobs]

        executor_cls = ProcessPoolExecutor if cfg.executor == "process" else ThreadPoolExecutor
        logger.info(f"Running {len(jobs)} backtest slices with {cfg.max_workers} {cfg.executor} workers")
        with executor_cls(max_workers=cfg.max_workers) as executor:
            futures = [executor.submit(_optimize_slice, config_data, *job) for job in jobs]
            return [future.result() for future in futures]

    def run(
        self,
        prices: Sequence[float],
        timestamps: Sequence[Any],
        params: Union[BatteryParams, Mapping[str, Any]],
        period: Optional[str] = None,
        categorization_method: Optional[str] = None
    ) -> BacktestReport:
        """Optimize every calendar period independently."""
        period = period or self.config.backtest.period
        groups = self.group(prices, timestamps, period)

        jobs = [
            (series.tolist(), params, list(series.index), None, categorization_method)
            for series in groups.values()
        ]

        results = self._execute(jobs)
        report = BacktestReport(period=period)
        for (label, series), result in zip(groups.items(), results):
            if not result.success:
                logger.warning(f"Backtest period {label} failed: {result.error}")
            report.periods.append(PeriodResult(
                label=label,
                start=series.index[0],
                end=series.index[-1],
                num_periods=len(series),
                result=result,
            ))

        report.summary = summarize(results)
        logger.info(
            f"Backtest over {len(results)} {period} periods: "
            f"{report.summary['successful']} successful, {report.summary['fallbacks']} fallbacks"
        )
        return report

    def run_windows(
        self,
        prices: Sequence[float],
        params: Union[BatteryParams, Mapping[str, Any]],
        window_size: Optional[int] = None,
        overlap: Optional[float] = None,
        timestamps: Optional[Sequence[Any]] = None,
        period_hours: Optional[float] = None,
        categorization_method: Optional[str] = None
    ) -> BacktestReport:
        """Optimize overlapping rolling windows of the series."""
        price_list = [float(p) for p in prices]
        spans = self.windows(len(price_list), window_size, overlap)
        if not spans:
            raise InvalidInputError(
                f"Series of {len(price_list)} prices is shorter than one window"
            )

        return self._run_spans(
            "rolling", price_list, params, spans, timestamps, period_hours, categorization_method
        )

    def run_monte_carlo(
        self,
        prices: Sequence[float],
        params: Union[BatteryParams, Mapping[str, Any]],
        num_simulations: Optional[int] = None,
        window_size: Optional[int] = None,
        timestamps: Optional[Sequence[Any]] = None,
        period_hours: Optional[float] = None,
        categorization_method: Optional[str] = None,
        random_seed: Optional[int] = None
    ) -> BacktestReport:
        """Optimize windows starting at random offsets.

        Offsets are drawn from a generator seeded with ``random_seed`` (or the
        optimizer seed), so a run can be repeated exactly.
        """
        cfg = self.config.backtest
        num_simulations = cfg.num_simulations if num_simulations is None else int(num_simulations)
        window_size = cfg.window_size if window_size is None else int(window_size)
        if num_simulations <= 0:
            raise InvalidInputError(f"Number of simulations must be > 0, got {num_simulations}")

        price_list = [float(p) for p in prices]
        if window_size <= 0 or window_size > len(price_list):
            raise InvalidInputError(
                f"Window size must be in [1, {len(price_list)}], got {window_size}"
            )

        seed = self.config.random_seed if random_seed is None else random_seed
        rng = np.random.RandomState(seed)
        starts = rng.randint(0, len(price_list) - window_size + 1, size=num_simulations)
        spans = [(int(start), int(start) + window_size) for start in starts]
        logger.info(f"Running {num_simulations} Monte Carlo windows of {window_size} periods")

        return self._run_spans(
            "monte_carlo", price_list, params, spans, timestamps, period_hours, categorization_method
        )

    def _run_spans(
        self,
        period: str,
        price_list: List[float],
        params: Union[BatteryParams, Mapping[str, Any]],
        spans: List[Tuple[int, int]],
        timestamps: Optional[Sequence[Any]],
        period_hours: Optional[float],
        categorization_method: Optional[str]
    ) -> BacktestReport:
        jobs = []
        for start, end in spans:
            window_timestamps = None if timestamps is None else list(timestamps[start:end])
            jobs.append((price_list[start:end], params, window_timestamps, period_hours, categorization_method))

        results = self._execute(jobs)
        report = BacktestReport(period=period)
        for (start, end), result in zip(spans, results):
            report.periods.append(PeriodResult(
                label=f"{start}-{end}",
                start=start if timestamps is None else timestamps[start],
                end=end - 1 if timestamps is None else timestamps[end - 1],
                num_periods=end - start,
                result=result,
            ))

        report.summary = summarize(results)
        return report
