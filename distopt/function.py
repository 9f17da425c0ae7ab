"""
Objective functions evaluated over partitioned datasets.

An objective is bound to one dataset and evaluated at many coefficient
vectors. Every evaluation is a tree aggregation: each partition computes its
partial value and gradient, and the partials are summed.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np

from .constants import DEFAULT_TREE_AGGREGATE_DEPTH
from .data import stack_features
from .dataset import PartitionedDataset
from .exceptions import InvalidConfigurationError
from .loss import PointwiseLoss
from .normalization import NO_NORMALIZATION, NormalizationContext


class DiffFunction(ABC):
    """
    A differentiable objective.

    Subclasses implement ``calculate``; ``value`` and ``gradient`` are views of it.
    """

    dimension: int

    @abstractmethod
    def calculate(
        self,
        coefficients: np.ndarray,
        normalization_context: Optional[NormalizationContext] = None
    ) -> Tuple[float, np.ndarray]:
        """
        Compute the objective value and gradient.

        Parameters
        ----------
        coefficients : np.ndarray
            Point of evaluation, in the normalized space.
        normalization_context : NormalizationContext, optional
            Feature normalization. Identity when omitted.

        Returns
        -------
        value : float
        gradient : np.ndarray
        """

    def value(self, coefficients: np.ndarray, normalization_context: Optional[NormalizationContext] = None) -> float:
        return self.calculate(coefficients, normalization_context)[0]

    def gradient(
        self,
        coefficients: np.ndarray,
        normalization_context: Optional[NormalizationContext] = None
    ) -> np.ndarray:
        return self.calculate(coefficients, normalization_context)[1]


class TwiceDiffFunction(DiffFunction):
    """A differentiable objective that also provides Hessian-vector products."""

    @abstractmethod
    def hessian_vector(
        self,
        coefficients: np.ndarray,
        direction: np.ndarray,
        normalization_context: Optional[NormalizationContext] = None
    ) -> np.ndarray:
        """Product of the Hessian at ``coefficients`` with ``direction``."""


class _PartitionBlock:
    """Design matrix and per-record arrays of one partition."""

    def __init__(self, points):
        points = list(points)
        self.dimension = points[0].dimension
        self.features = stack_features([p.features for p in points], self.dimension)
        self.labels = np.array([p.label for p in points])
        self.offsets = np.array([p.offset for p in points])
        self.weights = np.array([p.weight for p in points])

    def margins(self, effective: np.ndarray, shift: float) -> np.ndarray:
        return self.features @ effective - shift + self.offsets

    def value_and_gradient(self, loss: PointwiseLoss, effective: np.ndarray, shift: float):
        """Unnormalized partial gradient: sum of w * l'(z) * x, and sum of w * l'(z)."""
        loss_values, d_dz = loss.loss_and_d_dz(self.margins(effective, shift), self.labels)
        weighted = self.weights * d_dz
        return float(np.dot(self.weights, loss_values)), self.features.T @ weighted, float(weighted.sum())

    def hessian_vector(self, loss: PointwiseLoss, effective: np.ndarray, shift: float,
                       effective_direction: np.ndarray, direction_shift: float):
        margins = self.margins(effective, shift)
        projected = self.features @ effective_direction - direction_shift
        weighted = self.weights * loss.d2_dz2(margins, self.labels) * projected
        return self.features.T @ weighted, float(weighted.sum())


class DistributedGLMLossFunction(TwiceDiffFunction):
    """
    Weighted GLM loss over a partitioned dataset of ``LabeledPoint``.

    The value is ``sum_i w_i * l(z_i, y_i) + 0.5 * regularization_weight * ||c||^2``
    with ``z_i`` the record margin under the normalization context.

    Parameters
    ----------
    points : PartitionedDataset
        Records. Read once at construction to build one design block per partition.
    loss : PointwiseLoss
        Pointwise loss on the margin.
    regularization_weight : float, default=0.0
        L2 penalty on the optimized coefficients.
    tree_aggregate_depth : int, default=1
        Depth of the tree aggregation used by every evaluation.
    """

    def __init__(
        self,
        points: PartitionedDataset,
        loss: PointwiseLoss,
        regularization_weight: float = 0.0,
        tree_aggregate_depth: int = DEFAULT_TREE_AGGREGATE_DEPTH
    ):
        if regularization_weight < 0:
            raise InvalidConfigurationError(
                f"regularization_weight must be non-negative, got {regularization_weight}"
            )
        if tree_aggregate_depth < 1:
            raise InvalidConfigurationError(f"tree_aggregate_depth must be at least 1, got {tree_aggregate_depth}")
        self.loss = loss
        self.regularization_weight = float(regularization_weight)
        self.tree_aggregate_depth = tree_aggregate_depth
        self._blocks = points.map_partitions_with_index(
            lambda _, records: [_PartitionBlock(records)] if records else []
        )
        dimensions = set(self._blocks.map(lambda block: block.dimension).collect())
        if len(dimensions) != 1:
            if not dimensions:
                raise ValueError("Objective requires a non-empty dataset")
            raise ValueError(f"Inconsistent feature dimensions across records: {sorted(dimensions)}")
        self.dimension = dimensions.pop()

    def _check_dimension(self, vector: np.ndarray, name: str) -> np.ndarray:
        vector = np.asarray(vector, dtype=float)
        if vector.shape != (self.dimension,):
            raise ValueError(f"{name} has shape {vector.shape}, expected ({self.dimension},)")
        return vector

    def calculate(self, coefficients, normalization_context=None):
        coefficients = self._check_dimension(coefficients, 'coefficients')
        context = normalization_context or NO_NORMALIZATION
        effective = context.effective_coefficients(coefficients)
        shift = context.shift_term(effective)
        loss = self.loss

        def seq_op(acc, block):
            value, gradient, d_sum = block.value_and_gradient(loss, effective, shift)
            return acc[0] + value, acc[1] + gradient, acc[2] + d_sum

        def comb_op(a, b):
            return a[0] + b[0], a[1] + b[1], a[2] + b[2]

        zero = (0.0, np.zeros(self.dimension), 0.0)
        value, gradient, d_sum = self._blocks.tree_aggregate(zero, seq_op, comb_op, depth=self.tree_aggregate_depth)
        gradient = self._to_coefficient_space(context, gradient, d_sum)

        if self.regularization_weight > 0:
            value += 0.5 * self.regularization_weight * float(np.dot(coefficients, coefficients))
            gradient = gradient + self.regularization_weight * coefficients
        return value, gradient

    def hessian_vector(self, coefficients, direction, normalization_context=None):
        coefficients = self._check_dimension(coefficients, 'coefficients')
        direction = self._check_dimension(direction, 'direction')
        context = normalization_context or NO_NORMALIZATION
        effective = context.effective_coefficients(coefficients)
        shift = context.shift_term(effective)
        effective_direction = context.effective_coefficients(direction)
        direction_shift = context.shift_term(effective_direction)
        loss = self.loss

        def seq_op(acc, block):
            hv, d_sum = block.hessian_vector(loss, effective, shift, effective_direction, direction_shift)
            return acc[0] + hv, acc[1] + d_sum

        def comb_op(a, b):
            return a[0] + b[0], a[1] + b[1]

        zero = (np.zeros(self.dimension), 0.0)
        hv, d_sum = self._blocks.tree_aggregate(zero, seq_op, comb_op, depth=self.tree_aggregate_depth)
        hv = self._to_coefficient_space(context, hv, d_sum)

        if self.regularization_weight > 0:
            hv = hv + self.regularization_weight * direction
        return hv

    @staticmethod
    def _to_coefficient_space(context: NormalizationContext, raw: np.ndarray, d_sum: float) -> np.ndarray:
        # d/dc of (x - shifts) . (c * factors)
        if context.shifts is not None:
            raw = raw - context.shifts * d_sum
        if context.factors is not None:
            raw = raw * context.factors
        return np.asarray(raw, dtype=float).ravel()

    def __repr__(self) -> str:
        return (
            f"DistributedGLMLossFunction(loss={self.loss!r}, dimension={self.dimension}, "
            f"regularization_weight={self.regularization_weight}, "
            f"tree_aggregate_depth={self.tree_aggregate_depth})"
        )
