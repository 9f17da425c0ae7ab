"""
Labeled training records and feature vector helpers.

Features are either dense 1-D numpy arrays or one-row scipy sparse matrices.
Everything downstream (objective functions, normalization statistics) goes
through the helpers in this module so that both representations behave the
same way.
"""

import dataclasses
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
from scipy import sparse

from .exceptions import InvalidConfigurationError

FeatureVector = Union[np.ndarray, sparse.spmatrix]


def sparse_vector(indices: Sequence[int], values: Sequence[float], dimension: int) -> sparse.csr_matrix:
    """
    Build a sparse feature vector.

    Parameters
    ----------
    indices : sequence of int
        Positions of the non-zero entries.
    values : sequence of float
        Values of the non-zero entries.
    dimension : int
        Total feature dimension.

    Returns
    -------
    scipy.sparse.csr_matrix
        A CSR matrix of shape (1, dimension).
    """
    indices = np.asarray(indices, dtype=np.int64)
    values = np.asarray(values, dtype=float)
    if indices.shape != values.shape:
        raise ValueError(f"indices has {indices.size} entries but values has {values.size}")
    rows = np.zeros_like(indices)
    return sparse.csr_matrix((values, (rows, indices)), shape=(1, dimension))


def _as_feature_vector(features) -> FeatureVector:
    if sparse.issparse(features):
        row = sparse.csr_matrix(features)
        if row.shape[0] != 1:
            if row.shape[1] != 1:
                raise ValueError(f"Sparse features must be a single row, got shape {row.shape}")
            row = row.T.tocsr()
        row.sum_duplicates()
        return row
    dense = np.asarray(features, dtype=float)
    if dense.ndim != 1:
        dense = dense.ravel()
    return dense


def feature_dimension(features: FeatureVector) -> int:
    if sparse.issparse(features):
        return int(features.shape[1])
    return int(features.shape[0])


def feature_dot(features: FeatureVector, vector: np.ndarray) -> float:
    """Dot product between a feature vector and a dense vector."""
    if sparse.issparse(features):
        return float(np.dot(features.data, vector[features.indices]))
    return float(np.dot(features, vector))


def to_dense(features: FeatureVector) -> np.ndarray:
    if sparse.issparse(features):
        return np.asarray(features.toarray()).ravel()
    return np.asarray(features, dtype=float)


def stack_features(rows: Sequence[FeatureVector], dimension: int) -> sparse.csr_matrix:
    """
    Stack feature vectors into a CSR design matrix of shape (len(rows), dimension).
    """
    blocks = []
    for row in rows:
        if feature_dimension(row) != dimension:
            raise ValueError(
                f"Feature vector has dimension {feature_dimension(row)}, expected {dimension}"
            )
        if sparse.issparse(row):
            blocks.append(row)
        else:
            blocks.append(sparse.csr_matrix(row.reshape(1, -1)))
    if not blocks:
        return sparse.csr_matrix((0, dimension))
    return sparse.vstack(blocks, format='csr')


@dataclass(frozen=True, eq=False)
class LabeledPoint:
    """
    An immutable weighted training record.

    Parameters
    ----------
    label : float
        Response. Binary classification uses 0.0 / 1.0.
    features : np.ndarray or scipy.sparse matrix
        Feature vector; a dense 1-D array or a single sparse row.
    offset : float, default=0.0
        Additive term of the margin that is not optimized.
    weight : float, default=1.0
        Multiplier of the record's contribution to loss and gradient.
    """
    label: float
    features: FeatureVector
    offset: float = 0.0
    weight: float = 1.0

    def __post_init__(self):
        if not (self.weight > 0):
            raise InvalidConfigurationError(f"Record weight must be positive, got {self.weight}")
        object.__setattr__(self, 'label', float(self.label))
        object.__setattr__(self, 'offset', float(self.offset))
        object.__setattr__(self, 'weight', float(self.weight))
        object.__setattr__(self, 'features', _as_feature_vector(self.features))

    @property
    def dimension(self) -> int:
        return feature_dimension(self.features)

    def with_weight(self, weight: float) -> 'LabeledPoint':
        """Return a copy of this record carrying a different weight."""
        return dataclasses.replace(self, weight=weight)

    def compute_margin(self, coefficients: np.ndarray) -> float:
        """Margin ``features . coefficients + offset``."""
        return feature_dot(self.features, coefficients) + self.offset

    def __repr__(self) -> str:
        return (
            f"LabeledPoint(label={self.label}, offset={self.offset}, weight={self.weight}, "
            f"dimension={self.dimension})"
        )
