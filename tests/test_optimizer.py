"""
Test suite for the optimizer pipeline and its ambient layers.

This test suite validates:
- End-to-end optimization scenarios and the error policy
- Fallback handling when the search fails
- Diagnostics flags
- Configuration validation and persistence
- Multi-period backtests
"""

import sys
import json
import tempfile
from pathlib import Path
import unittest
from unittest import mock
import numpy as np
import pandas as pd

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import bessopt
from bessopt import BatteryOptimizer, Backtester
from bessopt.backtest import summarize
from bessopt.config import (
    BacktestConfig, BenchmarkConfig, ConfigFormat, DiagnosticsConfig,
    DifferentialEvolutionConfig, HMMConfig, MonitoringConfig, OptimizerConfig
)
from bessopt.core import infer_period_hours
from bessopt.diagnostics import DiagnosticsReporter
from bessopt.exceptions import (
    ConfigurationError, InvalidInputError, InvalidParametersError, OptimizationError,
    SimulationInconsistencyError
)
from bessopt.models import BatteryParams, OptimizationResult, OptimizationStatus
from bessopt.simulation import join_dispatch, simulate

RAMP = [10.0 * (i + 1) for i in range(24)]
PARAMS = {"pMax": 5, "socMin": 0, "socMax": 20, "efficiency": 1.0}


def fast_config(**overrides) -> OptimizerConfig:
    """Small population and generation budget for quick tests."""
    settings = dict(
        evolution=DifferentialEvolutionConfig(population_size=20, max_generations=40, patience=15),
        monitoring=MonitoringConfig(configure_logging=False),
    )
    settings.update(overrides)
    return OptimizerConfig(**settings)


def daily_profile(hours: int) -> np.ndarray:
    t = np.arange(hours)
    return 50 + 30 * np.sin(2 * np.pi * (t - 9) / 24) + 5 * np.cos(2 * np.pi * t / 6)


class TestOptimizerScenarios(unittest.TestCase):
    """End-to-end tests for BatteryOptimizer."""

    def setUp(self):
        self.optimizer = BatteryOptimizer(fast_config())

    def test_price_ramp(self):
        """Test that rising prices lead to charging early and discharging late."""
        print("\n=== Testing Price Ramp ===")

        result = self.optimizer.optimize(RAMP, PARAMS)
        self.assertTrue(result.success)
        self.assertEqual(result.status, OptimizationStatus.SUCCESS)
        self.assertGreater(result.total_revenue, 0)

        schedule = result.schedule
        self.assertGreater(schedule.charging[:12].sum(), schedule.charging[12:].sum())
        self.assertGreater(schedule.discharging[12:].sum(), schedule.discharging[:12].sum())
        self.assertTrue(np.all(np.diff(result.fitness_history) <= 0))
        print(f"✓ Revenue {result.total_revenue:.2f} after {result.generations} generations")

    def test_constant_prices(self):
        """Test that a flat series is reported as invalid input."""
        result = self.optimizer.optimize([42.0] * 24, PARAMS)
        self.assertFalse(result.success)
        self.assertIn("No price variation", result.error)

    def test_invalid_soc_bounds(self):
        """Test the exact error for an inverted SoC window."""
        params = {"pMax": 5, "socMin": 20, "socMax": 10, "efficiency": 0.9}
        with mock.patch("bessopt.core.RegimeModel") as regime_model:
            result = self.optimizer.optimize(RAMP, params)
            regime_model.assert_not_called()

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Minimum SoC must be less than maximum SoC")
        self.assertEqual(result.to_dict(), {
            "success": False,
            "error": "Minimum SoC must be less than maximum SoC"
        })

    def test_other_invalid_inputs(self):
        """Test parameter and price validation through optimize()."""
        self.assertFalse(self.optimizer.optimize(RAMP[:12], PARAMS).success)
        self.assertFalse(self.optimizer.optimize(RAMP, {"pMax": 5, "socMin": 0}).success)
        self.assertFalse(self.optimizer.optimize(RAMP, dict(PARAMS, efficiency=1.5)).success)
        self.assertFalse(self.optimizer.optimize(RAMP, PARAMS, categorization_method="fourier").success)
        self.assertFalse(self.optimizer.optimize(RAMP, PARAMS, timestamps=[1, 2, 3]).success)

    def test_numpy_scalar_params(self):
        """Test parameters taken from numpy or pandas data."""
        params = {"pMax": np.int64(5), "socMin": np.int64(0), "socMax": np.int64(20), "efficiency": np.float32(1.0)}
        result = self.optimizer.optimize(RAMP, params)

        self.assertTrue(result.success)
        self.assertGreater(result.total_revenue, 0)
        params_report = result.schedule.debug_report.params
        self.assertIs(type(params_report["p_max"]), float)
        json.dumps(result.to_dict())

        self.assertFalse(self.optimizer.optimize(RAMP, dict(params, pMax=True)).success)
        self.assertFalse(self.optimizer.optimize(RAMP, dict(params, pMax="5")).success)

    def test_numeric_timestamps_rejected(self):
        """Test that bare numbers are not taken as timestamps."""
        result = self.optimizer.optimize(RAMP, PARAMS, timestamps=list(range(24)))
        self.assertFalse(result.success)
        self.assertIn("datetime-like", result.error)

        strings = [f"2024-03-01 {h:02d}:00" for h in range(24)]
        self.assertTrue(self.optimizer.optimize(RAMP, PARAMS, timestamps=strings).success)

    def test_resolution_consistency(self):
        """Test that hourly and 15-minute views of one day give comparable revenue."""
        print("\n=== Testing Cross-Resolution Consistency ===")

        optimizer = BatteryOptimizer(fast_config(benchmark=BenchmarkConfig(enabled=True)))
        hourly = optimizer.optimize(RAMP, PARAMS)

        quarter_prices = np.repeat(RAMP, 4)
        timestamps = pd.date_range("2024-03-01", periods=96, freq="15min")
        quarterly = optimizer.optimize(quarter_prices, PARAMS, timestamps=timestamps)

        self.assertTrue(hourly.success and quarterly.success)
        self.assertEqual(quarterly.schedule.period_hours, 0.25)
        for result in (hourly, quarterly):
            self.assertGreater(result.total_revenue, 0)
            self.assertLessEqual(result.total_revenue, result.benchmark_revenue + 1e-6)
            self.assertGreaterEqual(result.optimality_gap, -1e-9)
            # Discharge is bounded by the stored plus the charged energy
            self.assertLessEqual(
                result.total_energy_discharged,
                10.0 + result.total_energy_charged + 1e-9
            )

        ratio = quarterly.total_revenue / hourly.total_revenue
        self.assertTrue(0.5 < ratio < 2.0)
        print(f"✓ Hourly {hourly.total_revenue:.2f} vs 15-min {quarterly.total_revenue:.2f}")

    def test_reproducible_after_reset(self):
        """Test that a fixed seed gives identical results across reset()."""
        print("\n=== Testing Reproducibility ===")

        prices = daily_profile(24)
        first = self.optimizer.optimize(prices, PARAMS)
        self.optimizer.reset()
        self.assertIsNone(self.optimizer.last_result)
        second = self.optimizer.optimize(prices, PARAMS)

        np.testing.assert_array_equal(first.schedule.soc, second.schedule.soc)
        np.testing.assert_array_equal(first.schedule.charging, second.schedule.charging)
        np.testing.assert_array_equal(first.schedule.discharging, second.schedule.discharging)
        np.testing.assert_array_equal(first.transition_matrix, second.transition_matrix)
        np.testing.assert_array_equal(first.emission_matrix, second.emission_matrix)
        np.testing.assert_array_equal(first.viterbi_path, second.viterbi_path)
        self.assertEqual(first.fitness_history, second.fitness_history)
        print("✓ Identical schedules and matrices")

    def test_result_contents(self):
        """Test the structured result and its serialization."""
        result = self.optimizer.optimize(daily_profile(24), PARAMS, categorization_method="kmeans")
        self.assertEqual(result.categorization_method, "kmeans")
        self.assertEqual(len(result.price_categories), 24)
        self.assertEqual(len(result.viterbi_path), 24)
        np.testing.assert_allclose(result.transition_matrix.sum(axis=1), 1.0, atol=1e-6)
        self.assertAlmostEqual(result.initial_distribution.sum(), 1.0, places=6)
        self.assertIs(self.optimizer.last_result, result)

        data = result.to_dict()
        self.assertTrue(data["success"])
        self.assertIn("debug_report", data["schedule"])
        json.dumps(data)

    def test_hmm_non_convergence_is_low_confidence(self):
        """Test that a capped HMM run degrades instead of failing."""
        optimizer = BatteryOptimizer(fast_config(hmm=HMMConfig(max_iterations=1, tolerance=1e-12)))
        result = optimizer.optimize(RAMP, PARAMS)

        self.assertTrue(result.success)
        self.assertFalse(result.hmm_converged)
        self.assertTrue(result.schedule.debug_report.constraints["low_confidence"])
        self.assertTrue(any("did not converge" in w for w in result.warnings))

    def test_invalid_configuration(self):
        """Test that a bad configuration is rejected up front."""
        with self.assertRaises(ConfigurationError):
            BatteryOptimizer(fast_config(evolution=DifferentialEvolutionConfig(population_size=2)))

    def test_module_level_reset(self):
        """Test that the module-level reset is idempotent."""
        bessopt.reset()
        bessopt.reset()


class TestFallback(unittest.TestCase):
    """Tests for the fallback path of the error policy."""

    def setUp(self):
        self.optimizer = BatteryOptimizer(fast_config())

    def test_search_failure_uses_fallback(self):
        """Test that an optimization error yields the heuristic schedule."""
        print("\n=== Testing Fallback Path ===")

        with mock.patch("bessopt.core.DispatchOptimizer.solve", side_effect=OptimizationError("no candidate")):
            result = self.optimizer.optimize(RAMP, PARAMS)

        self.assertTrue(result.success)
        self.assertTrue(result.fallback_used)
        self.assertEqual(result.status, OptimizationStatus.FALLBACK_USED)
        self.assertTrue(any("no candidate" in w for w in result.warnings))
        self.assertGreater(result.total_revenue, 0)
        self.assertIsNotNone(result.viterbi_path)
        print("✓ Fallback schedule returned")

    def test_unexpected_error_uses_fallback(self):
        """Test that unexpected exceptions do not escape optimize()."""
        with mock.patch("bessopt.core.SeedBuilder.build_population", side_effect=RuntimeError("boom")):
            result = self.optimizer.optimize(RAMP, PARAMS)
        self.assertTrue(result.fallback_used)

    def test_input_error_in_training_uses_fallback(self):
        """Test that input errors raised after validation fall back instead of failing."""
        with mock.patch("bessopt.core.RegimeModel.train",
                        side_effect=InvalidInputError("zero probability observation")):
            result = self.optimizer.optimize(RAMP, PARAMS)

        self.assertTrue(result.success)
        self.assertTrue(result.fallback_used)
        self.assertIsNone(result.viterbi_path)
        self.assertTrue(any("zero probability" in w for w in result.warnings))

    def test_infeasible_problem_fails(self):
        """Test that an infeasible search space is still reported as a failure."""
        with mock.patch("bessopt.core.DispatchOptimizer.solve",
                        side_effect=InvalidParametersError("Empty search space")):
            result = self.optimizer.optimize(RAMP, PARAMS)

        self.assertFalse(result.success)
        self.assertIn("Empty search space", result.error)

    def test_fallback_failure_is_reported(self):
        """Test that a failing fallback produces a failure result."""
        with mock.patch("bessopt.core.DispatchOptimizer.solve",
                        side_effect=SimulationInconsistencyError("bad state")), \
                mock.patch("bessopt.core.simple_optimize",
                           side_effect=SimulationInconsistencyError("bad fallback")):
            result = self.optimizer.optimize(RAMP, PARAMS)

        self.assertFalse(result.success)
        self.assertIn("bad state", result.error)
        self.assertIn("bad fallback", result.error)

    def test_simple_optimize_method(self):
        """Test the instance-level fallback entry point."""
        schedule = self.optimizer.simple_optimize(RAMP, PARAMS)
        self.assertGreater(schedule.total_revenue, 0)


class TestDiagnostics(unittest.TestCase):
    """Tests for DiagnosticsReporter."""

    def setUp(self):
        self.params = BatteryParams(p_max=5.0, soc_min=0.0, soc_max=20.0, efficiency=1.0)
        self.states = [1] * 8 + [2] * 8 + [3] * 8
        self.reporter = DiagnosticsReporter(DiagnosticsConfig(max_evolution_moments=5))

    def test_full_cycle(self):
        """Test flags for a schedule that uses the whole SoC window."""
        dispatch = join_dispatch([5.0] * 4 + [0.0] * 20, [0.0] * 20 + [5.0] * 4)
        schedule = simulate(dispatch, RAMP, self.params)
        report = self.reporter.report(schedule, self.params, self.states, hmm_converged=False)

        self.assertTrue(report.soc_analysis["reached_min_soc"])
        self.assertTrue(report.soc_analysis["reached_max_soc"])
        self.assertEqual(report.soc_analysis["soc_range_utilization"], 100.0)
        self.assertFalse(report.constraints["never_reached_min_soc"])
        self.assertFalse(report.constraints["never_reached_max_soc"])
        self.assertTrue(report.constraints["energy_constraint"])
        self.assertTrue(report.constraints["power_constraint"])
        self.assertFalse(report.constraints["hmm_discharge_underutilized"])
        self.assertTrue(report.constraints["low_confidence"])

        self.assertEqual(report.hmm_analysis["state_distribution"], {1: 8, 2: 8, 3: 8})
        self.assertEqual(report.hmm_analysis["discharge_energy_by_state"][3], 20.0)
        self.assertEqual(report.energy_balance["net_energy_change"], -10.0)

        periods = [moment["period"] for moment in report.soc_evolution]
        self.assertLessEqual(len(periods), 5)
        self.assertEqual(periods, sorted(periods))

    def test_idle_schedule(self):
        """Test flags for a schedule that never moves."""
        schedule = simulate(np.zeros(48), RAMP, self.params)
        report = self.reporter.report(schedule, self.params, self.states)

        self.assertTrue(report.constraints["never_reached_min_soc"])
        self.assertTrue(report.constraints["never_reached_max_soc"])
        self.assertTrue(report.constraints["hmm_discharge_underutilized"])
        self.assertFalse(report.constraints["power_constraint"])
        self.assertFalse(report.constraints["low_confidence"])
        self.assertEqual(report.soc_evolution, [])
        self.assertIn("never_reached_min_soc", report.flags)

    def test_length_mismatch(self):
        """Test that the state path must cover the schedule."""
        schedule = simulate(np.zeros(48), RAMP, self.params)
        with self.assertRaises(InvalidInputError):
            self.reporter.report(schedule, self.params, [1, 2, 3])


class TestConfiguration(unittest.TestCase):
    """Tests for OptimizerConfig."""

    def test_defaults_are_valid(self):
        """Test the default configuration."""
        config = OptimizerConfig(monitoring=MonitoringConfig(configure_logging=False))
        self.assertTrue(config.validate().is_valid)
        self.assertEqual(config.random_seed, 42)
        self.assertEqual(config.evolution.mutation_factor, 0.8)
        self.assertEqual(config.evolution.crossover_probability, 0.9)

    def test_validation_errors_are_prefixed(self):
        """Test that errors name their section."""
        config = fast_config(
            evolution=DifferentialEvolutionConfig(population_size=2),
            backtest=BacktestConfig(period="hourly"),
        )
        result = config.validate()
        self.assertFalse(result.is_valid)
        self.assertTrue(any(e.startswith("evolution: Population size") for e in result.errors))
        self.assertTrue(any(e.startswith("backtest: Invalid backtest period") for e in result.errors))
        self.assertFalse(config.validate_and_log())

    def test_file_round_trip(self):
        """Test saving and loading YAML and JSON files."""
        print("\n=== Testing Configuration Files ===")

        config = fast_config(random_seed=7)
        with tempfile.TemporaryDirectory() as tmp:
            for suffix, fmt in ((".yaml", ConfigFormat.YAML), (".json", ConfigFormat.JSON)):
                path = Path(tmp) / f"optimizer{suffix}"
                config.save_to_file(path, format=fmt)
                loaded = OptimizerConfig.load_from_file(path)
                self.assertEqual(loaded.to_dict(), config.to_dict())
                print(f"✓ {fmt.value} round trip")

            with self.assertRaises(FileNotFoundError):
                OptimizerConfig.load_from_file(Path(tmp) / "missing.yaml")

    def test_merge_and_unknown_keys(self):
        """Test deep merge and tolerance of unknown keys."""
        config = fast_config()
        merged = config.merge({"evolution": {"population_size": 10}, "hmm": {"unknown": 1}})
        self.assertEqual(merged.evolution.population_size, 10)
        self.assertEqual(merged.evolution.max_generations, 40)
        self.assertEqual(merged.hmm.max_iterations, 100)


class TestBacktest(unittest.TestCase):
    """Tests for the multi-period backtester."""

    def setUp(self):
        self.timestamps = pd.date_range("2024-01-30", periods=96, freq="h")
        self.prices = daily_profile(96)

    def test_monthly_groups(self):
        """Test grouping and per-month optimization."""
        print("\n=== Testing Monthly Backtest ===")

        report = Backtester(fast_config()).run(self.prices, self.timestamps, PARAMS, period="monthly")

        self.assertEqual([p.label for p in report.periods], ["2024-01", "2024-02"])
        self.assertEqual([p.num_periods for p in report.periods], [48, 48])
        self.assertEqual(report.summary["successful"], 2)
        self.assertEqual(set(report.summary["percentiles"]), {"p5", "p25", "p50", "p75", "p95"})
        self.assertEqual(len(report.to_frame()), 2)
        print(f"✓ Mean monthly revenue {report.summary['mean']:.2f}")

    def test_thread_pool_matches_sequential(self):
        """Test that parallel runs give the same results."""
        sequential = Backtester(fast_config()).run(self.prices, self.timestamps, PARAMS, period="daily")
        parallel = Backtester(fast_config(backtest=BacktestConfig(max_workers=2))).run(
            self.prices, self.timestamps, PARAMS, period="daily"
        )

        self.assertEqual(len(sequential.periods), 4)
        self.assertEqual(
            [p.result.total_revenue for p in sequential.periods],
            [p.result.total_revenue for p in parallel.periods]
        )

    def test_continuous_and_invalid_period(self):
        """Test the single-group mode and period validation."""
        backtester = Backtester(fast_config())
        groups = backtester.group(self.prices, self.timestamps, "continuous")
        self.assertEqual(list(groups), ["continuous"])
        self.assertEqual(len(groups["continuous"]), 96)

        with self.assertRaises(InvalidInputError):
            backtester.group(self.prices, self.timestamps, "hourly")
        with self.assertRaises(InvalidInputError):
            backtester.group(self.prices, None)

    def test_rolling_windows(self):
        """Test window layout and rolling runs."""
        backtester = Backtester(fast_config())
        self.assertEqual(len(backtester.windows(100, 24, 0.5)), 7)
        self.assertEqual(backtester.windows(100, 24, 0.5)[1], (12, 36))

        report = backtester.run_windows(self.prices, PARAMS, window_size=48, overlap=0.5)
        self.assertEqual(len(report.periods), 3)
        self.assertEqual(report.summary["count"], 3)

    def test_summary_of_failures(self):
        """Test statistics when nothing succeeded."""
        summary = summarize([OptimizationResult.failure("bad input")])
        self.assertEqual(summary["failed"], 1)
        self.assertNotIn("mean", summary)

    def test_summary_energy_and_risk(self):
        """Test energy aggregates and risk metrics on known slice results."""
        print("\n=== Testing Backtest Risk Metrics ===")

        def slice_result(revenue, charged, discharged, cycles):
            return OptimizationResult(
                success=True, status=OptimizationStatus.SUCCESS, total_revenue=revenue,
                total_energy_charged=charged, total_energy_discharged=discharged, cycles=cycles
            )

        results = [
            slice_result(100.0, 10.0, 8.0, 0.4),
            slice_result(-50.0, 5.0, 4.0, 0.2),
            slice_result(200.0, 20.0, 16.0, 0.8),
            slice_result(50.0, 5.0, 2.0, 0.1),
            OptimizationResult.failure("bad input"),
        ]
        summary = summarize(results)

        self.assertEqual(summary["total_revenue"], 300.0)
        self.assertAlmostEqual(summary["total_cycles"], 1.5)
        self.assertEqual(summary["total_energy_charged"], 40.0)
        self.assertEqual(summary["total_energy_discharged"], 30.0)
        self.assertAlmostEqual(summary["revenue_per_mwh"], 10.0)
        self.assertAlmostEqual(summary["sharpe_ratio"], 75.0 / np.sqrt(8125.0))
        self.assertEqual(summary["var_95"], -50.0)
        # Cumulative revenue 100, 50, 250, 300
        self.assertEqual(summary["max_drawdown"], 50.0)
        print(f"✓ Sharpe {summary['sharpe_ratio']:.3f}, drawdown {summary['max_drawdown']:.1f}")

        flat = summarize([slice_result(10.0, 0.0, 0.0, 0.0)] * 2)
        self.assertEqual(flat["sharpe_ratio"], 0.0)
        self.assertIsNone(flat["revenue_per_mwh"])
        self.assertEqual(flat["max_drawdown"], 0.0)

    def test_monte_carlo_windows(self):
        """Test seeded random-window runs."""
        backtester = Backtester(fast_config())
        first = backtester.run_monte_carlo(self.prices, PARAMS, num_simulations=3, window_size=48, random_seed=7)
        second = backtester.run_monte_carlo(self.prices, PARAMS, num_simulations=3, window_size=48, random_seed=7)

        self.assertEqual(first.period, "monte_carlo")
        self.assertEqual([p.label for p in first.periods], [p.label for p in second.periods])
        self.assertEqual([p.num_periods for p in first.periods], [48, 48, 48])
        self.assertTrue(all(0 <= p.start <= 48 for p in first.periods))
        self.assertEqual(first.summary["count"], 3)
        self.assertIn("max_drawdown", first.summary)

        with self.assertRaises(InvalidInputError):
            backtester.run_monte_carlo(self.prices, PARAMS, num_simulations=0, window_size=48)
        with self.assertRaises(InvalidInputError):
            backtester.run_monte_carlo(self.prices, PARAMS, num_simulations=2, window_size=200)

    def test_numeric_timestamps_rejected_by_grouping(self):
        """Test that calendar grouping needs real timestamps."""
        with self.assertRaises(InvalidInputError):
            Backtester(fast_config()).group(self.prices, list(range(96)), "daily")

    def test_infer_period_hours(self):
        """Test timestamp spacing detection."""
        self.assertEqual(infer_period_hours(self.timestamps), 1.0)
        self.assertIsNone(infer_period_hours(None))
        with self.assertRaises(InvalidInputError):
            infer_period_hours(list(reversed(self.timestamps)))
        with self.assertRaises(InvalidInputError):
            infer_period_hours(range(24))


if __name__ == "__main__":
    unittest.main()
