"""
Shared iteration loop of the second-order optimizers.

``Optimizer.optimize`` evaluates the starting point, then asks the concrete
optimizer for one accepted state after another until a convergence criterion
holds. Subclasses only implement how the next state is found.
"""

import time
import warnings
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .constants import DEFAULT_MAX_NUM_ITERATIONS, DEFAULT_TOLERANCE
from .exceptions import InvalidConfigurationError, OptimizationError
from .function import DiffFunction, TwiceDiffFunction
from .normalization import NO_NORMALIZATION, NormalizationContext
from .state import ConvergenceReason, OptimizationStatesTracker, OptimizerState


def _check_finite(values, quantity: str, coefficients: np.ndarray) -> None:
    """Raise OptimizationError when an objective result evaluated at ``coefficients`` holds NaN or Inf."""
    values = np.atleast_1d(np.asarray(values, dtype=float))
    bad = ~np.isfinite(values)
    if bad.any():
        coefficients = np.asarray(coefficients, dtype=float)
        raise OptimizationError(
            f"Objective {quantity} is not finite in {int(bad.sum())} of {values.size} entries "
            f"(first at index {int(np.flatnonzero(bad)[0])}), evaluated at coefficients with "
            f"norm {np.linalg.norm(coefficients):.6e}, max |c| {np.max(np.abs(coefficients), initial=0.0):.6e}"
        )


class ObjectiveEvaluator:
    """
    Evaluates an objective under a fixed normalization context.

    Remembers the last evaluated point, so asking for the value and then the
    gradient at the same coefficients costs one pass over the data. Every
    result is checked for NaN and Inf.
    """

    def __init__(self, objective: DiffFunction, normalization_context: NormalizationContext):
        self.objective = objective
        self.normalization_context = normalization_context
        self.num_evaluations = 0
        self._last_key = None
        self._last_result = None

    def calculate(self, coefficients: np.ndarray) -> Tuple[float, np.ndarray]:
        key = np.asarray(coefficients, dtype=float).tobytes()
        if key != self._last_key:
            value, gradient = self.objective.calculate(np.array(coefficients, dtype=float), self.normalization_context)
            self.num_evaluations += 1
            _check_finite(value, 'value', coefficients)
            _check_finite(gradient, 'gradient', coefficients)
            self._last_key = key
            self._last_result = (float(value), np.asarray(gradient, dtype=float))
        return self._last_result[0], self._last_result[1].copy()

    def value(self, coefficients: np.ndarray) -> float:
        return self.calculate(coefficients)[0]

    def gradient(self, coefficients: np.ndarray) -> np.ndarray:
        return self.calculate(coefficients)[1]

    def hessian_vector(self, coefficients: np.ndarray, direction: np.ndarray) -> np.ndarray:
        hv = np.asarray(
            self.objective.hessian_vector(coefficients, direction, self.normalization_context), dtype=float
        )
        _check_finite(hv, 'Hessian-vector product', coefficients)
        return hv


class OptimizerStatus(Enum):
    NOT_STARTED = 'not_started'
    ITERATING = 'iterating'
    CONVERGED = 'converged'
    MAX_ITERATIONS_REACHED = 'max_iterations_reached'


class Optimizer(ABC):
    """
    Base class of iterative minimizers.

    Parameters
    ----------
    tolerance : float, default=1e-6
        Threshold of both convergence criteria: the gradient norm, and the
        relative change ``|f_k - f_{k-1}| / max(1, |f_{k-1}|)``.
    max_num_iterations : int, default=100
        Iteration cap.
    normalization_context : NormalizationContext, optional
        Passed to the objective on every evaluation.
    is_tracking_state : bool, default=True
        Whether to record every accepted state in a state tracker.
    is_reusing_previous_initial_state : bool, default=True
        When ``optimize`` is called without a starting point, start from the
        coefficients of the previous converged run instead of zeros.
    verbose : bool, default=False
        Print one line per iteration.
    """

    def __init__(
        self,
        tolerance: float = DEFAULT_TOLERANCE,
        max_num_iterations: int = DEFAULT_MAX_NUM_ITERATIONS,
        normalization_context: NormalizationContext = NO_NORMALIZATION,
        is_tracking_state: bool = True,
        is_reusing_previous_initial_state: bool = True,
        verbose: bool = False
    ):
        if not (tolerance > 0):
            raise InvalidConfigurationError(f"tolerance must be positive, got {tolerance}")
        if int(max_num_iterations) != max_num_iterations or max_num_iterations < 1:
            raise InvalidConfigurationError(f"max_num_iterations must be a positive integer, got {max_num_iterations}")
        self.tolerance = float(tolerance)
        self.max_num_iterations = int(max_num_iterations)
        self.normalization_context = normalization_context or NO_NORMALIZATION
        self.is_tracking_state = is_tracking_state
        self.is_reusing_previous_initial_state = is_reusing_previous_initial_state
        self.verbose = verbose

        self._status = OptimizerStatus.NOT_STARTED
        self._state_tracker: Optional[OptimizationStatesTracker] = None
        self._current_state: Optional[OptimizerState] = None
        self._evaluator: Optional[ObjectiveEvaluator] = None
        self._previous_coefficients: Optional[np.ndarray] = None

    @property
    def status(self) -> OptimizerStatus:
        return self._status

    @property
    def is_done(self) -> bool:
        return self._status in (OptimizerStatus.CONVERGED, OptimizerStatus.MAX_ITERATIONS_REACHED)

    @property
    def state_tracker(self) -> Optional[OptimizationStatesTracker]:
        """Tracker of the last run, or None when state tracking is disabled."""
        return self._state_tracker

    @property
    def current_state(self) -> Optional[OptimizerState]:
        """Last accepted state of the current or last run."""
        return self._current_state

    @property
    def num_evaluations(self) -> int:
        """Objective evaluations (value and gradient) of the current or last run."""
        return self._evaluator.num_evaluations if self._evaluator is not None else 0

    def _validate_objective(self, objective: DiffFunction) -> None:
        if not isinstance(objective, DiffFunction):
            raise InvalidConfigurationError(f"{type(self).__name__} requires a DiffFunction, got {type(objective)}")

    def _initial_coefficients(self, objective: DiffFunction, initial_coefficients) -> np.ndarray:
        if initial_coefficients is not None:
            x0 = np.array(initial_coefficients, dtype=float)
            if x0.shape != (objective.dimension,):
                raise ValueError(f"Initial coefficients have shape {x0.shape}, expected ({objective.dimension},)")
            return x0
        if (self.is_reusing_previous_initial_state and self._previous_coefficients is not None
                and self._previous_coefficients.shape == (objective.dimension,)):
            return self._previous_coefficients.copy()
        return np.zeros(objective.dimension)

    def optimize(self, objective: DiffFunction, initial_coefficients: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Minimize an objective.

        Parameters
        ----------
        objective : DiffFunction
            Objective bound to its dataset.
        initial_coefficients : np.ndarray, optional
            Starting point. See ``is_reusing_previous_initial_state`` for the
            behavior when omitted.

        Returns
        -------
        np.ndarray
            Coefficients of the last accepted state.

        Raises
        ------
        OptimizationError
            If the objective evaluates to NaN or Inf at any point.
        """
        self._validate_objective(objective)
        x0 = self._initial_coefficients(objective, initial_coefficients)

        self._status = OptimizerStatus.ITERATING
        self._state_tracker = OptimizationStatesTracker() if self.is_tracking_state else None
        self._current_state = None
        evaluator = self._evaluator = ObjectiveEvaluator(objective, self.normalization_context)

        start = time.perf_counter()
        value, gradient = evaluator.calculate(x0)
        state = OptimizerState(iteration=0, value=value, gradient=gradient, coefficients=x0)
        self._initialize(evaluator, state)
        self._accept(state, time.perf_counter() - start)
        reason = self._check_convergence(None, state)

        while reason == ConvergenceReason.NOT_CONVERGED:
            start = time.perf_counter()
            next_state = self._next_state(evaluator, state)
            if next_state is None:
                # No step decreases the objective: the value change is zero.
                warnings.warn(
                    f"{type(self).__name__} found no step decreasing the objective at iteration "
                    f"{state.iteration} (gradient norm {state.gradient_norm:.3e}); stopping"
                )
                reason = ConvergenceReason.FUNCTION_VALUES_CONVERGED
                break
            self._accept(next_state, time.perf_counter() - start)
            reason = self._check_convergence(state, next_state)
            state = next_state

        self._finish(state, reason)
        return np.array(state.coefficients)

    def _check_convergence(
        self,
        previous: Optional[OptimizerState],
        current: OptimizerState
    ) -> ConvergenceReason:
        if current.gradient_norm < self.tolerance:
            return ConvergenceReason.GRADIENT_CONVERGED
        if previous is not None:
            change = abs(current.value - previous.value) / max(1.0, abs(previous.value))
            if change < self.tolerance:
                return ConvergenceReason.FUNCTION_VALUES_CONVERGED
        if current.iteration >= self.max_num_iterations:
            return ConvergenceReason.MAX_ITERATIONS
        return ConvergenceReason.NOT_CONVERGED

    def _accept(self, state: OptimizerState, elapsed: float) -> None:
        self._current_state = state
        if self._state_tracker is not None:
            self._state_tracker.track(state, elapsed)
        if self.verbose:
            print(
                f"{type(self).__name__} iter {state.iteration}/{self.max_num_iterations} - "
                f"Value: {state.value:.6e} - Grad norm: {state.gradient_norm:.6e} - Time: {elapsed:.3f}s"
            )

    def _finish(self, state: OptimizerState, reason: ConvergenceReason) -> None:
        if reason == ConvergenceReason.MAX_ITERATIONS:
            self._status = OptimizerStatus.MAX_ITERATIONS_REACHED
            warnings.warn(
                f"{type(self).__name__} stopped after {self.max_num_iterations} iterations "
                f"(gradient norm {state.gradient_norm:.3e})"
            )
        else:
            self._status = OptimizerStatus.CONVERGED
        if self._state_tracker is not None:
            self._state_tracker.finish(reason)
        self._previous_coefficients = np.array(state.coefficients)
        if self.verbose:
            print(
                f"{type(self).__name__} finished at iteration {state.iteration}: {reason.value} "
                f"({self.num_evaluations} objective evaluations)"
            )

    @abstractmethod
    def _initialize(self, evaluator: ObjectiveEvaluator, state: OptimizerState) -> None:
        """Reset per-run internals before the first iteration."""

    @abstractmethod
    def _next_state(self, evaluator: ObjectiveEvaluator, state: OptimizerState) -> Optional[OptimizerState]:
        """
        Compute the next accepted state, with a strictly lower objective value.

        Returns None when no acceptable step can be found.
        """

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(tolerance={self.tolerance}, max_num_iterations={self.max_num_iterations}, "
            f"is_tracking_state={self.is_tracking_state}, "
            f"is_reusing_previous_initial_state={self.is_reusing_previous_initial_state})"
        )


def requires_twice_diff_function(optimizer: Optimizer, objective: DiffFunction) -> None:
    if not isinstance(objective, TwiceDiffFunction):
        raise InvalidConfigurationError(
            f"{type(optimizer).__name__} requires a TwiceDiffFunction, got {type(objective).__name__}"
        )
