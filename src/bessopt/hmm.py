"""
Discrete three-state Hidden Markov Model over price categories.

States are price regimes (Low, Medium, High). The observed alphabet is the
category sequence, whose symbols stand for the preferred battery action in
that regime (Low -> charge, Medium -> idle, High -> discharge). Parameters
are estimated with scaled Baum-Welch and decoded with log-space Viterbi.
"""

from typing import Optional, Sequence, Tuple
import logging

import numpy as np

from .exceptions import InvalidInputError, NotConvergedError
from .models import NUM_STATES, HMMParameters, StatePath, TrainingResult

# Diagonal-dominant prior: each regime mostly emits its own category
DEFAULT_EMISSION = np.array([
    [0.80, 0.15, 0.05],
    [0.20, 0.60, 0.20],
    [0.05, 0.15, 0.80],
])

TRANSITION_SMOOTHING = 0.1


class RegimeModel:
    """Three-state discrete HMM trained with Baum-Welch."""

    def __init__(
        self,
        initialization: str = "empirical",
        probability_floor: float = 1e-8,
        random_state: Optional[np.random.RandomState] = None
    ):
        if initialization not in ("empirical", "random"):
            raise InvalidInputError(f"Unknown HMM initialization: {initialization}")
        self.num_states = NUM_STATES
        self.num_symbols = NUM_STATES
        self.initialization = initialization
        self.probability_floor = probability_floor
        self.random_state = random_state
        self.parameters: Optional[HMMParameters] = None
        self.logger = logging.getLogger("bessopt.hmm")

    def reset(self) -> None:
        """Forget trained parameters."""
        self.parameters = None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initial_parameters(
        self,
        observations: Sequence[int],
        prices: Optional[Sequence[float]] = None
    ) -> HMMParameters:
        """Starting point for Baum-Welch."""
        obs = self._check_observations(observations)

        if self.initialization == "random":
            rng = self.random_state if self.random_state is not None else np.random.RandomState()
            transition = rng.dirichlet(np.ones(self.num_states), size=self.num_states)
            emission = rng.dirichlet(np.ones(self.num_symbols), size=self.num_states)
            initial = np.full(self.num_states, 1.0 / self.num_states)
            return self._normalized(transition, emission, initial)

        transition = self._transition_counts(obs)
        emission = DEFAULT_EMISSION.copy()
        if prices is not None:
            emission = 0.5 * emission + 0.5 * self._emission_heuristic(obs, np.asarray(prices, dtype=float))
        initial = np.full(self.num_states, 1.0 / self.num_states)
        return self._normalized(transition, emission, initial)

    def _transition_counts(self, obs: np.ndarray) -> np.ndarray:
        """Smoothed empirical transition frequencies between categories."""
        counts = np.zeros((self.num_states, self.num_states))
        np.add.at(counts, (obs[:-1], obs[1:]), 1.0)

        transition = np.empty_like(counts)
        for i, row in enumerate(counts):
            total = row.sum()
            if total == 0:
                transition[i] = 1.0 / self.num_states
            else:
                transition[i] = (row + TRANSITION_SMOOTHING) / (total + TRANSITION_SMOOTHING * self.num_states)
        return transition

    def _emission_heuristic(self, obs: np.ndarray, prices: np.ndarray) -> np.ndarray:
        """Action frequencies per category from price relative to the mean."""
        if len(prices) != len(obs):
            raise InvalidInputError("Prices and observations must have the same length")

        avg_price = prices.mean()
        actions = np.where(prices < 0.8 * avg_price, 0, np.where(prices > 1.2 * avg_price, 2, 1))

        counts = np.ones((self.num_states, self.num_symbols))  # Laplace smoothing
        np.add.at(counts, (obs, actions), 1.0)
        return counts / counts.sum(axis=1, keepdims=True)

    def _normalized(self, transition, emission, initial) -> HMMParameters:
        floor = self.probability_floor
        transition = np.maximum(transition, floor)
        emission = np.maximum(emission, floor)
        initial = np.maximum(initial, floor)
        return HMMParameters(
            transition_matrix=transition / transition.sum(axis=1, keepdims=True),
            emission_matrix=emission / emission.sum(axis=1, keepdims=True),
            initial_distribution=initial / initial.sum(),
        )

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def forward_backward(
        self,
        observations: Sequence[int],
        parameters: Optional[HMMParameters] = None
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Scaled forward and backward variables.

        Returns ``(alpha, beta, scaling)`` where ``alpha[t]`` sums to one and
        ``log P(O) = sum(log(scaling))``.
        """
        obs = self._check_observations(observations)
        params = self._require(parameters)
        A = params.transition_matrix
        B = params.emission_matrix
        T = len(obs)

        alpha = np.zeros((T, self.num_states))
        beta = np.zeros((T, self.num_states))
        scaling = np.zeros(T)

        alpha[0] = params.initial_distribution * B[:, obs[0]]
        scaling[0] = alpha[0].sum()
        alpha[0] /= scaling[0]

        for t in range(1, T):
            alpha[t] = (alpha[t - 1] @ A) * B[:, obs[t]]
            scaling[t] = alpha[t].sum()
            if scaling[t] <= 0 or not np.isfinite(scaling[t]):
                raise InvalidInputError(f"Observation {t} has zero probability under the model")
            alpha[t] /= scaling[t]

        beta[T - 1] = 1.0
        for t in range(T - 2, -1, -1):
            beta[t] = (A @ (B[:, obs[t + 1]] * beta[t + 1])) / scaling[t + 1]

        return alpha, beta, scaling

    def log_likelihood(self, observations: Sequence[int], parameters: Optional[HMMParameters] = None) -> float:
        """Log-probability of the observation sequence."""
        _, _, scaling = self.forward_backward(observations, parameters)
        return float(np.sum(np.log(scaling)))

    def train(
        self,
        observations: Sequence[int],
        max_iterations: int = 100,
        tolerance: float = 1e-6,
        prices: Optional[Sequence[float]] = None,
        initial: Optional[HMMParameters] = None,
        strict: bool = False
    ) -> TrainingResult:
        """Estimate parameters with Baum-Welch.

        Stops when the log-likelihood changes by less than ``tolerance`` or
        after ``max_iterations`` re-estimations. Without ``strict`` a
        non-converged run is logged and returned with ``converged=False``.
        """
        obs = self._check_observations(observations)
        if max_iterations <= 0:
            raise InvalidInputError(f"Max iterations must be > 0, got {max_iterations}")

        params = initial if initial is not None else self.initial_parameters(obs, prices)
        self.logger.debug(f"Training HMM with {len(obs)} observations")

        history = []
        prev_log_likelihood = -np.inf
        converged = False
        iterations = 0

        while iterations < max_iterations:
            alpha, beta, scaling = self.forward_backward(obs, params)
            log_likelihood = float(np.sum(np.log(scaling)))
            history.append(log_likelihood)

            if abs(log_likelihood - prev_log_likelihood) < tolerance:
                converged = True
                break

            params = self._reestimate(obs, params, alpha, beta, scaling)
            prev_log_likelihood = log_likelihood
            iterations += 1

        if not converged:
            log_likelihood = self.log_likelihood(obs, params)
            history.append(log_likelihood)

        params = self._order_states(params)
        self.parameters = params
        result = TrainingResult(
            parameters=params,
            iterations=iterations,
            converged=converged,
            log_likelihood=log_likelihood,
            history=history,
        )

        if converged:
            self.logger.debug(f"HMM converged after {iterations} iterations (log-likelihood {log_likelihood:.4f})")
        else:
            message = f"HMM did not converge within {max_iterations} iterations (tolerance {tolerance})"
            if strict:
                raise NotConvergedError(message, result)
            self.logger.warning(message)

        return result

    def _reestimate(self, obs, params, alpha, beta, scaling) -> HMMParameters:
        """M-step from expected occupancies and transitions."""
        A = params.transition_matrix
        B = params.emission_matrix

        gamma = alpha * beta
        gamma /= gamma.sum(axis=1, keepdims=True)

        if len(obs) > 1:
            # xi[t, i, j] = P(q_t = i, q_{t+1} = j | O)
            weighted = B[:, obs[1:]].T * beta[1:]
            xi = alpha[:-1, :, None] * A[None, :, :] * weighted[:, None, :]
            xi /= scaling[1:, None, None]
            xi /= xi.sum(axis=(1, 2), keepdims=True)
            transition = xi.sum(axis=0) / gamma[:-1].sum(axis=0)[:, None]
        else:
            transition = np.array(A)

        emission = np.zeros((self.num_states, self.num_symbols))
        for k in range(self.num_symbols):
            emission[:, k] = gamma[obs == k].sum(axis=0)
        emission /= gamma.sum(axis=0)[:, None]

        return self._normalized(transition, emission, gamma[0])

    def _order_states(self, params: HMMParameters) -> HMMParameters:
        """Relabel states so regime 1/2/3 emit increasingly high categories."""
        expected_symbol = params.emission_matrix @ np.arange(self.num_symbols)
        order = np.argsort(expected_symbol, kind="stable")
        if np.array_equal(order, np.arange(self.num_states)):
            return params
        return HMMParameters(
            transition_matrix=params.transition_matrix[order][:, order],
            emission_matrix=params.emission_matrix[order],
            initial_distribution=params.initial_distribution[order],
        )

    def viterbi(self, observations: Sequence[int], parameters: Optional[HMMParameters] = None) -> StatePath:
        """Most likely regime sequence.

        Ties are broken toward the lower-indexed state.
        """
        obs = self._check_observations(observations)
        params = self._require(parameters)
        T = len(obs)

        with np.errstate(divide="ignore"):
            log_A = np.log(params.transition_matrix)
            log_B = np.log(params.emission_matrix)
            log_pi = np.log(params.initial_distribution)

        delta = np.zeros((T, self.num_states))
        psi = np.zeros((T, self.num_states), dtype=int)
        delta[0] = log_pi + log_B[:, obs[0]]

        for t in range(1, T):
            scores = delta[t - 1][:, None] + log_A
            psi[t] = np.argmax(scores, axis=0)
            delta[t] = scores[psi[t], np.arange(self.num_states)] + log_B[:, obs[t]]

        path = np.zeros(T, dtype=int)
        path[T - 1] = int(np.argmax(delta[T - 1]))
        for t in range(T - 2, -1, -1):
            path[t] = psi[t + 1][path[t + 1]]

        return StatePath(states=path + 1, log_likelihood=float(delta[T - 1][path[T - 1]]))

    # ------------------------------------------------------------------

    def _require(self, parameters: Optional[HMMParameters]) -> HMMParameters:
        params = parameters if parameters is not None else self.parameters
        if params is None:
            raise InvalidInputError("HMM parameters are not available; call train() first")
        return params

    def _check_observations(self, observations: Sequence[int]) -> np.ndarray:
        obs = np.asarray(observations)
        if obs.ndim != 1 or obs.size == 0:
            raise InvalidInputError("Invalid or empty observations array")
        if not np.issubdtype(obs.dtype, np.integer):
            if not np.all(np.equal(np.mod(obs, 1), 0)):
                raise InvalidInputError("Observations must be integer symbols")
            obs = obs.astype(int)
        if obs.min() < 0 or obs.max() >= self.num_symbols:
            raise InvalidInputError(f"Observations must lie in [0, {self.num_symbols - 1}]")
        return obs
