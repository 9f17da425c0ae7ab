"""
Numerical constants and task definitions shared across the package.
"""
from enum import Enum


# Labels at or above this value belong to the positive class.
POSITIVE_RESPONSE_THRESHOLD = 0.5

HIGH_PRECISION_TOLERANCE = 1e-12
MEDIUM_PRECISION_TOLERANCE = 1e-8
LOW_PRECISION_TOLERANCE = 1e-4

DEFAULT_TOLERANCE = 1e-6
DEFAULT_MAX_NUM_ITERATIONS = 100
DEFAULT_TREE_AGGREGATE_DEPTH = 1


class TaskType(str, Enum):
    """Supported generalized linear model tasks."""
    LINEAR_REGRESSION = 'linear_regression'
    LOGISTIC_REGRESSION = 'logistic_regression'
    POISSON_REGRESSION = 'poisson_regression'
