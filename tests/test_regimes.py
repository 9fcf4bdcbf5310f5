"""
Test suite for price categorization and the regime HMM.

This test suite validates:
- Every categorization method and its error handling
- Baum-Welch training (stochastic matrices, convergence reporting)
- Viterbi decoding and tie-breaking
"""

import sys
from pathlib import Path
import unittest
import numpy as np

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bessopt.categorization import CategorizationMethod, PriceCategorizer, categorize
from bessopt.exceptions import InvalidInputError, NotConvergedError
from bessopt.hmm import RegimeModel
from bessopt.models import HMMParameters


def daily_profile(days: int = 2) -> np.ndarray:
    """Hourly prices with a night trough and an evening peak."""
    hours = np.arange(24 * days)
    return 50 + 30 * np.sin(2 * np.pi * (hours - 9) / 24) + 5 * np.cos(2 * np.pi * hours / 6)


class TestCategorization(unittest.TestCase):
    """Tests for PriceCategorizer."""

    def setUp(self):
        self.ramp = [10.0 * (i + 1) for i in range(24)]
        self.profile = daily_profile()

    def test_constant_prices_rejected(self):
        """Test that a flat series has no regimes to find."""
        print("\n=== Testing Constant Prices ===")

        with self.assertRaises(InvalidInputError) as ctx:
            categorize([42.0] * 24)
        self.assertIn("No price variation", str(ctx.exception))
        print("✓ Constant prices rejected")

    def test_quantile_terciles(self):
        """Test quantile thresholds on a ramp."""
        result = categorize(self.ramp, "quantile")

        self.assertEqual(result.thresholds["low"], 90.0)
        self.assertEqual(result.thresholds["high"], 170.0)
        self.assertEqual(result.counts(), {1: 9, 2: 8, 3: 7})
        self.assertTrue(np.all(np.diff(result.categories) >= 0))
        np.testing.assert_array_equal(result.observations, result.categories - 1)

    def test_all_methods_deterministic(self):
        """Test that every method is a pure function of its input."""
        print("\n=== Testing Categorization Determinism ===")

        for method in CategorizationMethod:
            first = categorize(self.profile, method)
            second = categorize(self.profile, method)
            np.testing.assert_array_equal(first.categories, second.categories)
            self.assertEqual(len(first.categories), len(self.profile))
            self.assertTrue(set(np.unique(first.categories)) <= {1, 2, 3})
            self.assertEqual(first.method, method.value)
            print(f"✓ {method.value} is deterministic")

    def test_zscore_options(self):
        """Test z-score thresholds, including camelCase option names."""
        result = categorize(self.profile, "zscore", {"lowThreshold": -1.0, "highThreshold": 1.0})
        self.assertEqual(result.thresholds["low_z"], -1.0)
        self.assertEqual(result.thresholds["high_z"], 1.0)

        mean = np.mean(self.profile)
        std = np.std(self.profile)
        expected_high = (self.profile - mean) / std > 1.0
        np.testing.assert_array_equal(result.categories == 3, expected_high)

        with self.assertRaises(InvalidInputError):
            categorize(self.profile, "zscore", {"low_threshold": 1.0, "high_threshold": -1.0})

    def test_kmeans_separates_clusters(self):
        """Test k-means on three well separated levels."""
        prices = [10.0] * 8 + [50.0] * 8 + [100.0] * 8
        result = categorize(prices, "kmeans")

        np.testing.assert_array_equal(result.categories, [1] * 8 + [2] * 8 + [3] * 8)
        self.assertEqual(result.thresholds["centroids"], [10.0, 50.0, 100.0])

    def test_kmeans_two_levels(self):
        """Test k-means with only two distinct prices."""
        prices = [20.0, 80.0] * 12
        result = categorize(prices, "kmeans")
        np.testing.assert_array_equal(result.categories, [1, 3] * 12)

    def test_rolling_methods(self):
        """Test adaptive and volatility windows."""
        adaptive = categorize(self.profile, "adaptive", {"window_size": 12})
        self.assertEqual(adaptive.thresholds["window_size"], 12)
        self.assertEqual(len(adaptive.thresholds["low"]), len(self.profile))

        volatility = categorize(self.profile, "volatility", {"windowSize": 6, "volatilityMultiplier": 0.25})
        self.assertEqual(volatility.thresholds["volatility_multiplier"], 0.25)

        with self.assertRaises(InvalidInputError):
            categorize(self.profile, "adaptive", {"window_size": 1})

    def test_adaptive_trailing_terciles(self):
        """Test adaptive thresholds against hand-computed window terciles."""
        print("\n=== Testing Adaptive Terciles ===")

        prices = [4.0, 1.0, 3.0, 2.0, 8.0, 6.0]
        result = categorize(prices, "adaptive", {"window_size": 3, "min_periods": 6})

        # Windows [4,1,3] [1,3,2] [3,2,8] [2,8,6]; the first one is back-filled
        self.assertEqual(result.thresholds["low"], [3.0, 3.0, 3.0, 2.0, 3.0, 6.0])
        self.assertEqual(result.thresholds["high"], [4.0, 4.0, 4.0, 3.0, 8.0, 8.0])
        np.testing.assert_array_equal(result.categories, [2, 1, 1, 1, 2, 1])
        print("✓ Thresholds match trailing terciles")

    def test_adaptive_full_window_matches_quantile(self):
        """Test that one window over the whole series reproduces the quantile method."""
        adaptive = categorize(self.ramp, "adaptive", {"window_size": len(self.ramp)})
        quantile = categorize(self.ramp, "quantile")

        np.testing.assert_array_equal(adaptive.categories, quantile.categories)
        self.assertEqual(adaptive.counts(), {1: 9, 2: 8, 3: 7})

    def test_volatility_bands(self):
        """Test volatility bands, including the global fallback on flat stretches."""
        print("\n=== Testing Volatility Bands ===")

        prices = [10.0, 10.0, 10.0, 10.0, 20.0, 0.0]
        result = categorize(prices, "volatility", {"window_size": 3, "volatility_multiplier": 1.0, "min_periods": 6})

        # Periods 0-3 see a flat window, so the band uses the series std
        global_std = np.std(prices)
        expected_low = [10.0 - global_std] * 4 + [40.0 / 3.0 - np.sqrt(200.0 / 9.0), 10.0 - np.sqrt(200.0 / 3.0)]
        expected_high = [10.0 + global_std] * 4 + [40.0 / 3.0 + np.sqrt(200.0 / 9.0), 10.0 + np.sqrt(200.0 / 3.0)]
        np.testing.assert_allclose(result.thresholds["low"], expected_low)
        np.testing.assert_allclose(result.thresholds["high"], expected_high)
        np.testing.assert_array_equal(result.categories, [2, 2, 2, 2, 3, 1])
        print("✓ Bands follow rolling mean ± k·std")

    def test_invalid_inputs(self):
        """Test validation of prices, methods and options."""
        with self.assertRaises(InvalidInputError):
            categorize(self.ramp[:10])
        with self.assertRaises(InvalidInputError):
            categorize(self.ramp, "fourier")
        with self.assertRaises(InvalidInputError):
            categorize(self.ramp[:-1] + [float("nan")])
        with self.assertRaises(InvalidInputError):
            categorize(self.ramp[:-1] + [-5.0])
        with self.assertRaises(InvalidInputError):
            categorize(self.ramp, "quantile", options=[1, 2])

        # A lower minimum admits short series
        result = PriceCategorizer(min_periods=6).categorize(self.ramp[:6])
        self.assertEqual(len(result.categories), 6)


class TestRegimeModel(unittest.TestCase):
    """Tests for the three-state HMM."""

    def setUp(self):
        self.prices = daily_profile(3)
        self.observations = categorize(self.prices).observations

    def test_training_yields_stochastic_matrices(self):
        """Test that trained parameters are proper distributions."""
        print("\n=== Testing Baum-Welch Training ===")

        model = RegimeModel()
        result = model.train(self.observations, prices=self.prices)
        params = result.parameters

        np.testing.assert_allclose(params.transition_matrix.sum(axis=1), 1.0, atol=1e-6)
        np.testing.assert_allclose(params.emission_matrix.sum(axis=1), 1.0, atol=1e-6)
        self.assertAlmostEqual(params.initial_distribution.sum(), 1.0, places=6)
        self.assertTrue(np.all(params.transition_matrix > 0))
        self.assertLessEqual(result.iterations, 100)
        self.assertTrue(np.isfinite(result.log_likelihood))
        print(f"✓ Trained in {result.iterations} iterations (converged={result.converged})")

    def test_log_likelihood_does_not_decrease(self):
        """Test the EM monotonicity of the likelihood history."""
        result = RegimeModel().train(self.observations, prices=self.prices)
        self.assertTrue(np.all(np.diff(result.history) >= -1e-6))

    def test_states_ordered_by_regime(self):
        """Test that state 1/2/3 emit increasingly high categories."""
        result = RegimeModel().train(self.observations)
        expected_symbol = result.parameters.emission_matrix @ np.arange(3)
        self.assertTrue(np.all(np.diff(expected_symbol) >= 0))

    def test_parameters_are_read_only(self):
        """Test immutability of trained parameters."""
        params = RegimeModel().train(self.observations).parameters
        with self.assertRaises(ValueError):
            params.transition_matrix[0, 0] = 1.0

    def test_non_convergence(self):
        """Test reporting and strict handling of a capped run."""
        model = RegimeModel()
        result = model.train(self.observations, max_iterations=1, tolerance=1e-12)
        self.assertFalse(result.converged)
        self.assertEqual(result.iterations, 1)

        with self.assertRaises(NotConvergedError) as ctx:
            model.train(self.observations, max_iterations=1, tolerance=1e-12, strict=True)
        self.assertIsNotNone(ctx.exception.result)

    def test_random_initialization_is_seeded(self):
        """Test that random starts are reproducible with the same seed."""
        first = RegimeModel("random", random_state=np.random.RandomState(7)).train(self.observations)
        second = RegimeModel("random", random_state=np.random.RandomState(7)).train(self.observations)
        np.testing.assert_array_equal(
            first.parameters.transition_matrix, second.parameters.transition_matrix
        )

    def test_viterbi_path(self):
        """Test decoding after training."""
        model = RegimeModel()
        model.train(self.observations, prices=self.prices)
        path = model.viterbi(self.observations)

        self.assertEqual(len(path), len(self.observations))
        self.assertTrue(set(np.unique(path.states)) <= {1, 2, 3})
        self.assertTrue(np.isfinite(path.log_likelihood))

    def test_viterbi_ties_prefer_lower_state(self):
        """Test tie-breaking with a fully uniform model."""
        uniform = HMMParameters(
            transition_matrix=np.full((3, 3), 1.0 / 3.0),
            emission_matrix=np.full((3, 3), 1.0 / 3.0),
            initial_distribution=np.full(3, 1.0 / 3.0),
        )
        path = RegimeModel().viterbi([0, 2, 1, 2, 0], uniform)
        np.testing.assert_array_equal(path.states, [1, 1, 1, 1, 1])

    def test_forward_backward_scaling(self):
        """Test scaled forward variables and the sequence likelihood."""
        uniform = HMMParameters(
            transition_matrix=np.full((3, 3), 1.0 / 3.0),
            emission_matrix=np.full((3, 3), 1.0 / 3.0),
            initial_distribution=np.full(3, 1.0 / 3.0),
        )
        model = RegimeModel()
        alpha, beta, scaling = model.forward_backward([0, 1, 2, 1], uniform)

        np.testing.assert_allclose(alpha.sum(axis=1), 1.0)
        self.assertEqual(beta.shape, (4, 3))
        self.assertAlmostEqual(model.log_likelihood([0, 1, 2, 1], uniform), 4 * np.log(1.0 / 3.0))

        trained = model.train(self.observations)
        self.assertAlmostEqual(model.log_likelihood(self.observations), trained.log_likelihood, places=4)

    def test_errors(self):
        """Test invalid observations and missing parameters."""
        model = RegimeModel()
        with self.assertRaises(InvalidInputError):
            model.viterbi([0, 1, 2])
        with self.assertRaises(InvalidInputError):
            model.train([0, 1, 3])
        with self.assertRaises(InvalidInputError):
            model.train([])
        with self.assertRaises(InvalidInputError):
            RegimeModel(initialization="kmeans")

    def test_reset(self):
        """Test that reset forgets trained parameters."""
        model = RegimeModel()
        model.train(self.observations)
        model.reset()
        model.reset()
        self.assertIsNone(model.parameters)


if __name__ == "__main__":
    unittest.main()
