"""
Pointwise losses of generalized linear models, expressed on the margin z.

Each loss works element-wise on numpy arrays of margins and labels.
"""

from abc import ABC, abstractmethod
from typing import Tuple, Union

import numpy as np
from scipy.special import expit

from .constants import TaskType


class PointwiseLoss(ABC):
    """Base class: l(z, y) with its first and second derivative in z."""

    @abstractmethod
    def loss_and_d_dz(self, margin: np.ndarray, label: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Loss and its derivative in the margin, element-wise."""

    @abstractmethod
    def d2_dz2(self, margin: np.ndarray, label: np.ndarray) -> np.ndarray:
        """Second derivative of the loss in the margin."""

    @abstractmethod
    def mean(self, margin: np.ndarray) -> np.ndarray:
        """Inverse link function."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class LogisticLoss(PointwiseLoss):
    """
    Negative log-likelihood of the logistic model for labels in {0, 1}:
    ``log(1 + exp(z)) - y * z``.
    """

    def loss_and_d_dz(self, margin, label):
        loss = np.logaddexp(0.0, margin) - label * margin
        return loss, expit(margin) - label

    def d2_dz2(self, margin, label):
        p = expit(margin)
        return p * (1.0 - p)

    def mean(self, margin):
        return expit(margin)


class SquaredLoss(PointwiseLoss):
    """``0.5 * (z - y) ** 2``"""

    def loss_and_d_dz(self, margin, label):
        delta = margin - label
        return 0.5 * delta * delta, delta

    def d2_dz2(self, margin, label):
        return np.ones_like(margin)

    def mean(self, margin):
        return margin


class PoissonLoss(PointwiseLoss):
    """Negative log-likelihood of the Poisson model up to a constant: ``exp(z) - y * z``."""

    def loss_and_d_dz(self, margin, label):
        rate = np.exp(margin)
        return rate - label * margin, rate - label

    def d2_dz2(self, margin, label):
        return np.exp(margin)

    def mean(self, margin):
        return np.exp(margin)


_LOSSES = {
    TaskType.LINEAR_REGRESSION: SquaredLoss,
    TaskType.LOGISTIC_REGRESSION: LogisticLoss,
    TaskType.POISSON_REGRESSION: PoissonLoss,
}


def loss_for_task(task_type: Union[str, TaskType]) -> PointwiseLoss:
    return _LOSSES[TaskType(task_type)]()
