"""
Optimizer states and the per-run state tracker.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np


class ConvergenceReason(Enum):
    FUNCTION_VALUES_CONVERGED = 'function_values_converged'
    GRADIENT_CONVERGED = 'gradient_converged'
    MAX_ITERATIONS = 'max_iterations'
    NOT_CONVERGED = 'not_converged'


def _frozen_copy(x) -> np.ndarray:
    arr = np.array(x, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class OptimizerState:
    """
    Snapshot of an optimizer after an accepted iteration.

    Iteration 0 is the starting point. Arrays are copied and read-only.
    """
    iteration: int
    value: float
    gradient: np.ndarray
    coefficients: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, 'value', float(self.value))
        object.__setattr__(self, 'gradient', _frozen_copy(self.gradient))
        object.__setattr__(self, 'coefficients', _frozen_copy(self.coefficients))

    @property
    def gradient_norm(self) -> float:
        return float(np.linalg.norm(self.gradient))

    def __repr__(self) -> str:
        return (
            f"OptimizerState(iteration={self.iteration}, value={self.value:.6e}, "
            f"gradient_norm={self.gradient_norm:.6e})"
        )


class OptimizationStatesTracker:
    """
    Append-only log of the states of one optimization run.

    ``tracked_time_history[i]`` is the wall time in seconds spent producing
    ``tracked_states[i]``.
    """

    def __init__(self):
        self._states: List[OptimizerState] = []
        self._times: List[float] = []
        self.converged = False
        self.convergence_reason: Optional[ConvergenceReason] = None

    def track(self, state: OptimizerState, elapsed: float) -> None:
        if self.convergence_reason is not None:
            raise RuntimeError("Cannot track states of a finished run")
        self._states.append(state)
        self._times.append(float(elapsed))

    def finish(self, reason: ConvergenceReason) -> None:
        """Mark the run as converged for ``reason``."""
        if reason == ConvergenceReason.NOT_CONVERGED:
            raise ValueError("A finished run needs a convergence reason")
        self.converged = True
        self.convergence_reason = reason

    @property
    def tracked_states(self) -> Tuple[OptimizerState, ...]:
        return tuple(self._states)

    @property
    def tracked_time_history(self) -> Tuple[float, ...]:
        return tuple(self._times)

    @property
    def latest_state(self) -> Optional[OptimizerState]:
        return self._states[-1] if self._states else None

    def __len__(self) -> int:
        return len(self._states)

    def to_dict(self) -> Dict:
        return {
            'converged': self.converged,
            'convergence_reason': self.convergence_reason.value if self.convergence_reason else None,
            'iterations': [s.iteration for s in self._states],
            'value': [s.value for s in self._states],
            'gradient_norm': [s.gradient_norm for s in self._states],
            'time': list(self._times),
            'coefficients': [s.coefficients.tolist() for s in self._states],
        }

    def save(self, path: str) -> None:
        """Write the history as JSON."""
        with open(path, 'w') as fh:
            json.dump(self.to_dict(), fh, indent=2)

    def __str__(self) -> str:
        reason = self.convergence_reason.value if self.convergence_reason else 'iterating'
        lines = [f"Convergence reason: {reason}", "Iter  Time(s)      Value          |Gradient|"]
        for state, t in zip(self._states, self._times):
            lines.append(f"{state.iteration:4d}  {t:.6f}  {state.value:.6e}  {state.gradient_norm:.6e}")
        return "\n".join(lines)
