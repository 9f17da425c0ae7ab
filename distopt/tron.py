"""
Trust-region Newton method (TRON).

Each iteration approximately solves the Newton system inside the trust region
with conjugate gradient iterations on Hessian-vector products, then accepts or
rejects the step by comparing the actual and predicted reduction. See Lin,
Weng and Keerthi, "Trust region Newton method for large-scale logistic
regression", JMLR 2008.
"""

from typing import Optional, Tuple

import numpy as np

from .exceptions import InvalidConfigurationError
from .optimizer import ObjectiveEvaluator, Optimizer, requires_twice_diff_function
from .state import OptimizerState

# Step acceptance / radius update thresholds on actual vs. predicted reduction
_ETA0, _ETA1, _ETA2 = 1e-4, 0.25, 0.75
# Radius update factors
_SIGMA1, _SIGMA2, _SIGMA3 = 0.25, 0.5, 4.0
# Conjugate gradient stops once |r| <= _CG_RELATIVE_TOLERANCE * |g|
_CG_RELATIVE_TOLERANCE = 0.1


class TRON(Optimizer):
    """
    Trust-region Newton optimizer.

    Parameters
    ----------
    max_num_improvement_failures : int, default=5
        Number of consecutive rejected steps after which the run stops,
        reported as converged on the objective value.
    max_num_cg_iterations : int, optional
        Cap on conjugate gradient iterations per step. Defaults to the
        problem dimension.
    **kwargs
        See ``Optimizer``.
    """

    def __init__(
        self,
        max_num_improvement_failures: int = 5,
        max_num_cg_iterations: Optional[int] = None,
        **kwargs
    ):
        super().__init__(**kwargs)
        if max_num_improvement_failures < 1:
            raise InvalidConfigurationError(
                f"max_num_improvement_failures must be positive, got {max_num_improvement_failures}"
            )
        if max_num_cg_iterations is not None and max_num_cg_iterations < 1:
            raise InvalidConfigurationError(f"max_num_cg_iterations must be positive, got {max_num_cg_iterations}")
        self.max_num_improvement_failures = max_num_improvement_failures
        self.max_num_cg_iterations = max_num_cg_iterations
        self._delta = 0.0

    def _validate_objective(self, objective):
        requires_twice_diff_function(self, objective)

    def _initialize(self, evaluator, state):
        self._delta = state.gradient_norm

    def _truncated_cg(
        self,
        evaluator: ObjectiveEvaluator,
        coefficients: np.ndarray,
        gradient: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Approximately minimize the quadratic model within radius ``self._delta``.

        Returns the step ``s`` and the residual ``r = -g - H s``.
        """
        delta = self._delta
        max_iterations = self.max_num_cg_iterations or coefficients.size
        step = np.zeros_like(gradient)
        residual = -gradient
        direction = residual.copy()
        rtr = float(np.dot(residual, residual))
        cg_tolerance = _CG_RELATIVE_TOLERANCE * np.linalg.norm(gradient)

        for _ in range(max_iterations):
            if np.sqrt(rtr) <= cg_tolerance:
                break
            hd = evaluator.hessian_vector(coefficients, direction)
            dhd = float(np.dot(direction, hd))
            if dhd <= 0:
                # Non-positive curvature: go to the trust region boundary.
                step = step + self._boundary_step(step, direction, delta) * direction
                break
            alpha = rtr / dhd
            trial = step + alpha * direction
            if np.linalg.norm(trial) > delta:
                alpha = self._boundary_step(step, direction, delta)
                step = step + alpha * direction
                residual = residual - alpha * hd
                break
            step = trial
            residual = residual - alpha * hd
            rtr_new = float(np.dot(residual, residual))
            direction = residual + (rtr_new / rtr) * direction
            rtr = rtr_new
        return step, residual

    @staticmethod
    def _boundary_step(step: np.ndarray, direction: np.ndarray, delta: float) -> float:
        """Largest alpha >= 0 with |step + alpha * direction| = delta."""
        std = float(np.dot(step, direction))
        sts = float(np.dot(step, step))
        dtd = float(np.dot(direction, direction))
        dsq = delta * delta
        rad = np.sqrt(max(std * std + dtd * (dsq - sts), 0.0))
        if std >= 0:
            return (dsq - sts) / (std + rad) if std + rad > 0 else 0.0
        return (rad - std) / dtd

    def _next_state(self, evaluator, state):
        coefficients = np.array(state.coefficients)
        gradient = np.array(state.gradient)
        value = state.value

        for _ in range(self.max_num_improvement_failures):
            step, residual = self._truncated_cg(evaluator, coefficients, gradient)
            candidate = coefficients + step
            new_value = evaluator.value(candidate)

            gs = float(np.dot(gradient, step))
            predicted_reduction = -0.5 * (gs - float(np.dot(step, residual)))
            actual_reduction = value - new_value
            step_norm = np.linalg.norm(step)

            if state.iteration == 0:
                self._delta = min(self._delta, step_norm)

            if new_value - value - gs <= 0:
                alpha = _SIGMA3
            else:
                alpha = max(_SIGMA1, -0.5 * (gs / (new_value - value - gs)))

            if actual_reduction < _ETA0 * predicted_reduction:
                self._delta = min(max(alpha, _SIGMA1) * step_norm, _SIGMA2 * self._delta)
            elif actual_reduction < _ETA1 * predicted_reduction:
                self._delta = max(_SIGMA1 * self._delta, min(alpha * step_norm, _SIGMA2 * self._delta))
            elif actual_reduction < _ETA2 * predicted_reduction:
                self._delta = max(_SIGMA1 * self._delta, min(alpha * step_norm, _SIGMA3 * self._delta))
            else:
                self._delta = max(self._delta, min(alpha * step_norm, _SIGMA3 * self._delta))

            if actual_reduction > _ETA0 * predicted_reduction and new_value < value:
                return OptimizerState(
                    iteration=state.iteration + 1,
                    value=new_value,
                    gradient=evaluator.gradient(candidate),
                    coefficients=candidate
                )

            if predicted_reduction <= 0 or self._delta <= 0 or step_norm == 0:
                break
        return None
