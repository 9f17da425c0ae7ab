"""
Feature normalization.

Optimizers work on coefficients in a normalized feature space. A record's
margin there is

    x . e - shifts . e + offset,    e = coefficients * factors

which equals the margin of the record with features ``(x - shifts) * factors``.
The shift term can only be absorbed by an intercept, so shifts require one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from .data import feature_dimension, to_dense
from .dataset import PartitionedDataset
from .exceptions import InvalidConfigurationError


class NormalizationType(str, Enum):
    NONE = 'none'
    SCALE_WITH_MAX_MAGNITUDE = 'scale_with_max_magnitude'
    SCALE_WITH_STANDARD_DEVIATION = 'scale_with_standard_deviation'
    STANDARDIZATION = 'standardization'


@dataclass(frozen=True, eq=False)
class FeatureSummary:
    """Per-feature statistics of a dataset."""
    count: int
    mean: np.ndarray
    variance: np.ndarray
    max_magnitude: np.ndarray

    @classmethod
    def from_dataset(cls, points: PartitionedDataset, tree_aggregate_depth: int = 1) -> 'FeatureSummary':
        """
        Compute feature statistics of a dataset of ``LabeledPoint`` with one tree aggregation.

        Each partition keeps a running ``(count, mean, M2, max |x|)`` and
        partials are merged with the pairwise update of Chan, Golub and
        LeVeque, so features with a large mean keep their variance. The
        variance is the unbiased sample variance; it is zero when the
        dataset has fewer than two records.
        """
        def seq_op(acc, point):
            x = to_dense(point.features)
            if acc is None:
                return 1, x.copy(), np.zeros_like(x), np.abs(x)
            n, mean, m2, max_abs = acc
            n += 1
            delta = x - mean
            mean = mean + delta / n
            return n, mean, m2 + delta * (x - mean), np.maximum(max_abs, np.abs(x))

        def comb_op(a, b):
            if a is None:
                return b
            if b is None:
                return a
            n = a[0] + b[0]
            delta = b[1] - a[1]
            mean = a[1] + delta * (b[0] / n)
            m2 = a[2] + b[2] + delta * delta * (a[0] * b[0] / n)
            return n, mean, m2, np.maximum(a[3], b[3])

        acc = points.tree_aggregate(None, seq_op, comb_op, depth=tree_aggregate_depth)
        if acc is None:
            raise ValueError("Cannot summarize an empty dataset")
        n, mean, m2, max_abs = acc
        if n > 1:
            variance = np.maximum(m2, 0.0) / (n - 1)
        else:
            variance = np.zeros_like(mean)
        return cls(count=n, mean=mean, variance=variance, max_magnitude=max_abs)


def _scale_factors(scale: np.ndarray) -> np.ndarray:
    factors = np.ones_like(scale, dtype=float)
    nonzero = scale > 0
    factors[nonzero] = 1.0 / scale[nonzero]
    return factors


class NormalizationContext:
    """
    Immutable description of a feature normalization.

    Parameters
    ----------
    factors : np.ndarray, optional
        Multiplicative factor of every feature. ``None`` means all ones.
    shifts : np.ndarray, optional
        Value subtracted from every feature before scaling. Requires
        ``intercept_index``.
    intercept_index : int, optional
        Position of the intercept feature, which is never scaled or shifted.
    """

    def __init__(
        self,
        factors: Optional[np.ndarray] = None,
        shifts: Optional[np.ndarray] = None,
        intercept_index: Optional[int] = None
    ):
        if shifts is not None and intercept_index is None:
            raise InvalidConfigurationError("Shifting features requires an intercept")
        if factors is not None:
            factors = np.array(factors, dtype=float)
            factors.setflags(write=False)
        if shifts is not None:
            shifts = np.array(shifts, dtype=float)
            shifts.setflags(write=False)
        if factors is not None and shifts is not None and factors.shape != shifts.shape:
            raise InvalidConfigurationError(
                f"factors has shape {factors.shape} but shifts has shape {shifts.shape}"
            )
        size = factors.size if factors is not None else (shifts.size if shifts is not None else None)
        if intercept_index is not None and size is not None and not 0 <= intercept_index < size:
            raise InvalidConfigurationError(f"intercept_index {intercept_index} out of range for dimension {size}")
        # The intercept is never scaled or shifted.
        if intercept_index is not None and factors is not None and factors[intercept_index] != 1.0:
            raise InvalidConfigurationError(
                f"Intercept factor must be 1, got {factors[intercept_index]} at index {intercept_index}"
            )
        if intercept_index is not None and shifts is not None and shifts[intercept_index] != 0.0:
            raise InvalidConfigurationError(
                f"Intercept shift must be 0, got {shifts[intercept_index]} at index {intercept_index}"
            )
        self.factors = factors
        self.shifts = shifts
        self.intercept_index = intercept_index

    @property
    def is_identity(self) -> bool:
        return self.factors is None and self.shifts is None

    @classmethod
    def build(
        cls,
        normalization_type: NormalizationType,
        summary: FeatureSummary,
        intercept_index: Optional[int] = None
    ) -> 'NormalizationContext':
        """
        Build a context from feature statistics.

        Features whose scale statistic is zero keep a factor of one.
        """
        normalization_type = NormalizationType(normalization_type)
        if normalization_type == NormalizationType.NONE:
            return cls()

        if normalization_type == NormalizationType.SCALE_WITH_MAX_MAGNITUDE:
            factors = _scale_factors(summary.max_magnitude)
            shifts = None
        elif normalization_type == NormalizationType.SCALE_WITH_STANDARD_DEVIATION:
            factors = _scale_factors(np.sqrt(summary.variance))
            shifts = None
        else:
            if intercept_index is None:
                raise InvalidConfigurationError("Standardization requires an intercept")
            factors = _scale_factors(np.sqrt(summary.variance))
            shifts = summary.mean.copy()

        if intercept_index is not None:
            factors[intercept_index] = 1.0
            if shifts is not None:
                shifts[intercept_index] = 0.0
        return cls(factors=factors, shifts=shifts, intercept_index=intercept_index)

    def effective_coefficients(self, coefficients: np.ndarray) -> np.ndarray:
        if self.factors is None:
            return coefficients
        return coefficients * self.factors

    def shift_term(self, effective_coefficients: np.ndarray) -> float:
        if self.shifts is None:
            return 0.0
        return float(np.dot(self.shifts, effective_coefficients))

    def transform_model_coefficients(self, coefficients: np.ndarray) -> np.ndarray:
        """Map coefficients from the normalized space to the original feature space."""
        original = np.array(self.effective_coefficients(coefficients), dtype=float)
        if self.shifts is not None:
            original[self.intercept_index] -= self.shift_term(original)
        return original

    def transform_to_normalized_space(self, coefficients: np.ndarray) -> np.ndarray:
        """Inverse of ``transform_model_coefficients``."""
        normalized = np.array(coefficients, dtype=float)
        if self.shifts is not None:
            normalized[self.intercept_index] += float(np.dot(self.shifts, normalized))
        if self.factors is not None:
            normalized = normalized / self.factors
        return normalized

    def __repr__(self) -> str:
        return (
            f"NormalizationContext(factors={self.factors}, shifts={self.shifts}, "
            f"intercept_index={self.intercept_index})"
        )


NO_NORMALIZATION = NormalizationContext()
