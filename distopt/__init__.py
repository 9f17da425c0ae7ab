"""distopt

Distributed second-order optimization (L-BFGS, TRON) of generalized linear
models over partitioned datasets, with class-balancing down-sampling.
"""

__version__ = "0.1.0"

from .constants import POSITIVE_RESPONSE_THRESHOLD, TaskType
from .exceptions import InvalidConfigurationError, OptimizationError
from .data import LabeledPoint, sparse_vector
from .dataset import PartitionedDataset
from .sampler import (
    DownSampler,
    DefaultDownSampler,
    BinaryClassificationDownSampler,
    build_down_sampler,
)
from .normalization import (
    NormalizationType,
    NormalizationContext,
    FeatureSummary,
    NO_NORMALIZATION,
)
from .loss import LogisticLoss, SquaredLoss, PoissonLoss, loss_for_task
from .function import DiffFunction, TwiceDiffFunction, DistributedGLMLossFunction
from .state import ConvergenceReason, OptimizerState, OptimizationStatesTracker
from .optimizer import Optimizer, OptimizerStatus
from .lbfgs import LBFGS
from .tron import TRON
from .optimizer_factory import (
    OptimizerType,
    OptimizerConfig,
    build_optimizer,
    build_optimizer_from_config,
)
from .model import GeneralizedLinearModel, train_glm

__all__ = [
    '__version__',
    'POSITIVE_RESPONSE_THRESHOLD', 'TaskType',
    'InvalidConfigurationError', 'OptimizationError',
    'LabeledPoint', 'sparse_vector',
    'PartitionedDataset',
    'DownSampler', 'DefaultDownSampler', 'BinaryClassificationDownSampler', 'build_down_sampler',
    'NormalizationType', 'NormalizationContext', 'FeatureSummary', 'NO_NORMALIZATION',
    'LogisticLoss', 'SquaredLoss', 'PoissonLoss', 'loss_for_task',
    'DiffFunction', 'TwiceDiffFunction', 'DistributedGLMLossFunction',
    'ConvergenceReason', 'OptimizerState', 'OptimizationStatesTracker',
    'Optimizer', 'OptimizerStatus', 'LBFGS', 'TRON',
    'OptimizerType', 'OptimizerConfig', 'build_optimizer', 'build_optimizer_from_config',
    'GeneralizedLinearModel', 'train_glm',
]
