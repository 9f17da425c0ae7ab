"""
Limited-memory BFGS.
"""

import warnings
from collections import deque

import numpy as np
from scipy.optimize import line_search

from .exceptions import InvalidConfigurationError
from .optimizer import ObjectiveEvaluator, Optimizer
from .state import OptimizerState

# Armijo sufficient-decrease and Wolfe curvature constants
_C1 = 1e-4
_C2 = 0.9
_BACKTRACKING_SHRINK = 0.5
_MAX_BACKTRACKING_STEPS = 50


class LBFGS(Optimizer):
    """
    L-BFGS with a strong Wolfe line search.

    The search direction comes from the two-loop recursion over the last
    ``num_corrections`` curvature pairs. Steps are chosen by
    ``scipy.optimize.line_search``; when it fails, an Armijo backtracking
    search from the same direction is tried, then plain steepest descent.
    Every accepted step strictly decreases the objective.

    Parameters
    ----------
    num_corrections : int, default=10
        Number of curvature pairs kept.
    **kwargs
        See ``Optimizer``.
    """

    def __init__(self, num_corrections: int = 10, **kwargs):
        super().__init__(**kwargs)
        if num_corrections < 1:
            raise InvalidConfigurationError(f"num_corrections must be positive, got {num_corrections}")
        self.num_corrections = num_corrections
        self._memory = deque(maxlen=num_corrections)

    def _initialize(self, evaluator, state):
        self._memory.clear()

    def _direction(self, gradient: np.ndarray) -> np.ndarray:
        """Two-loop recursion: approximate -H^{-1} g."""
        q = gradient.copy()
        alphas = []
        for s, y, rho in reversed(self._memory):
            alpha = rho * np.dot(s, q)
            q -= alpha * y
            alphas.append(alpha)
        if self._memory:
            s, y, _ = self._memory[-1]
            q *= np.dot(s, y) / np.dot(y, y)
        for (s, y, rho), alpha in zip(self._memory, reversed(alphas)):
            beta = rho * np.dot(y, q)
            q += (alpha - beta) * s
        return -q

    def _wolfe_step(self, evaluator: ObjectiveEvaluator, state: OptimizerState, direction: np.ndarray):
        x = np.array(state.coefficients)
        if self._memory:
            # Quasi-Newton steps start from the unit step.
            old_old_value = None
        else:
            # Makes the first trial step about 1 / |g|.
            old_old_value = state.value + np.linalg.norm(state.gradient) / 2.0
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            alpha, _, _, new_value, _, _ = line_search(
                evaluator.value, evaluator.gradient, x, direction,
                gfk=np.array(state.gradient), old_fval=state.value, old_old_fval=old_old_value,
                c1=_C1, c2=_C2
            )
        if alpha is None or new_value is None or not new_value < state.value:
            return None
        return x + alpha * direction

    def _backtracking_step(self, evaluator: ObjectiveEvaluator, state: OptimizerState, direction: np.ndarray):
        x = np.array(state.coefficients)
        slope = float(np.dot(state.gradient, direction))
        if slope >= 0:
            return None
        alpha = 1.0 if self._memory else 1.0 / max(np.linalg.norm(direction), 1.0)
        for _ in range(_MAX_BACKTRACKING_STEPS):
            candidate = x + alpha * direction
            value = evaluator.value(candidate)
            if value < state.value and value <= state.value + _C1 * alpha * slope:
                return candidate
            alpha *= _BACKTRACKING_SHRINK
        return None

    def _next_state(self, evaluator, state):
        gradient = np.array(state.gradient)
        direction = self._direction(gradient)
        if np.dot(direction, gradient) >= 0:
            self._memory.clear()
            direction = -gradient

        candidate = self._wolfe_step(evaluator, state, direction)
        if candidate is None:
            candidate = self._backtracking_step(evaluator, state, direction)
        if candidate is None and self._memory:
            warnings.warn(f"{type(self).__name__}: line search failed, restarting from steepest descent")
            self._memory.clear()
            direction = -gradient
            candidate = self._backtracking_step(evaluator, state, direction)
        if candidate is None:
            return None

        value, new_gradient = evaluator.calculate(candidate)
        s = candidate - state.coefficients
        y = new_gradient - gradient
        sy = float(np.dot(s, y))
        if sy > np.finfo(float).eps * float(np.dot(y, y)):
            self._memory.append((s, y, 1.0 / sy))

        return OptimizerState(
            iteration=state.iteration + 1,
            value=value,
            gradient=new_gradient,
            coefficients=candidate
        )
