"""
Shared fixtures for the distopt test suite.
"""
import numpy as np
import pytest

from distopt import LabeledPoint, PartitionedDataset


def generate_dense_features(rng, num_features):
    return rng.standard_normal(num_features)


def make_binary_dataset(rng, num_positives, num_negatives, num_features, num_partitions=4):
    """Keyed dataset with labels 1.0 for the first `num_positives` records, 0.0 for the rest."""
    records = []
    for i in range(num_positives + num_negatives):
        label = 1.0 if i < num_positives else 0.0
        records.append((i, LabeledPoint(label, generate_dense_features(rng, num_features))))
    return PartitionedDataset.parallelize(records, num_partitions=num_partitions)


def make_logistic_dataset(rng, num_samples, coefficients, num_partitions=4, with_intercept=True):
    """Keyed logistic-regression dataset drawn from known coefficients; column 0 is the intercept."""
    coefficients = np.asarray(coefficients, dtype=float)
    records = []
    for i in range(num_samples):
        x = rng.standard_normal(coefficients.size) * np.linspace(1.0, 3.0, coefficients.size) + 0.5
        if with_intercept:
            x[0] = 1.0
        p = 1.0 / (1.0 + np.exp(-np.dot(x, coefficients)))
        records.append((i, LabeledPoint(float(rng.random() < p), x)))
    return PartitionedDataset.parallelize(records, num_partitions=num_partitions)


@pytest.fixture
def rng():
    return np.random.default_rng(20160301)


@pytest.fixture
def binary_dataset(rng):
    return make_binary_dataset(rng, num_positives=10, num_negatives=100, num_features=5)


@pytest.fixture
def logistic_dataset(rng):
    return make_logistic_dataset(rng, num_samples=400, coefficients=[-0.5, 1.0, -2.0, 0.5])


@pytest.fixture
def binary_dataset_factory(rng):
    """Builds binary datasets of any shape from the shared generator."""
    def factory(num_positives, num_negatives, num_features, num_partitions=4):
        return make_binary_dataset(rng, num_positives, num_negatives, num_features, num_partitions=num_partitions)
    return factory
