"""
Generalized linear models: scoring and single-model training.
"""

from typing import Optional, Tuple, Union

import numpy as np

from .constants import DEFAULT_TREE_AGGREGATE_DEPTH, TaskType
from .dataset import PartitionedDataset
from .function import DistributedGLMLossFunction
from .loss import loss_for_task
from .normalization import FeatureSummary, NormalizationContext, NormalizationType
from .optimizer_factory import OptimizerConfig, OptimizerType, build_optimizer_from_config
from .sampler import build_down_sampler
from .state import OptimizationStatesTracker


class GeneralizedLinearModel:
    """
    Coefficients of a GLM in the original feature space.

    Parameters
    ----------
    coefficients : np.ndarray
        Model coefficients.
    task_type : TaskType or str
        Task; selects the inverse link used by ``compute_mean``.
    """

    def __init__(self, coefficients: np.ndarray, task_type: Union[str, TaskType]):
        coefficients = np.array(coefficients, dtype=float)
        coefficients.setflags(write=False)
        self.coefficients = coefficients
        self.task_type = TaskType(task_type)
        self._loss = loss_for_task(self.task_type)

    @property
    def dimension(self) -> int:
        return self.coefficients.size

    def compute_margin(self, point) -> float:
        return point.compute_margin(self.coefficients)

    def compute_mean(self, point) -> float:
        return float(self._loss.mean(np.asarray(self.compute_margin(point))))

    def score(self, dataset: PartitionedDataset) -> PartitionedDataset:
        """
        Score a dataset of ``(identifier, LabeledPoint)`` pairs.

        Returns
        -------
        PartitionedDataset
            ``(identifier, margin)`` pairs, partitioned like the input.
        """
        coefficients = self.coefficients
        return dataset.map_values(lambda point: point.compute_margin(coefficients))

    def __eq__(self, other) -> bool:
        if not isinstance(other, GeneralizedLinearModel):
            return NotImplemented
        return self.task_type == other.task_type and np.array_equal(self.coefficients, other.coefficients)

    def __hash__(self):
        return hash((self.task_type, self.coefficients.tobytes()))

    def __repr__(self) -> str:
        return f"GeneralizedLinearModel(task_type={self.task_type.value}, dimension={self.dimension})"


def train_glm(
    dataset: PartitionedDataset,
    task_type: Union[str, TaskType],
    optimizer: Union[str, OptimizerType] = 'lbfgs',
    tolerance: float = 1e-6,
    max_num_iterations: int = 100,
    regularization_weight: float = 0.0,
    normalization_type: Union[str, NormalizationType] = NormalizationType.NONE,
    intercept_index: Optional[int] = None,
    down_sampling_rate: Optional[float] = None,
    tree_aggregate_depth: int = DEFAULT_TREE_AGGREGATE_DEPTH,
    initial_model: Optional[GeneralizedLinearModel] = None,
    is_tracking_state: bool = True,
    seed: Optional[int] = None,
    verbose: bool = False
) -> Tuple[GeneralizedLinearModel, Optional[OptimizationStatesTracker]]:
    """
    Train one generalized linear model.

    Parameters
    ----------
    dataset : PartitionedDataset
        ``(identifier, LabeledPoint)`` pairs.
    task_type : TaskType or str
        'linear_regression', 'logistic_regression' or 'poisson_regression'.
    optimizer : str or OptimizerType, default='lbfgs'
        'lbfgs' or 'tron'.
    tolerance : float, default=1e-6
        Convergence tolerance.
    max_num_iterations : int, default=100
        Iteration cap.
    regularization_weight : float, default=0.0
        L2 penalty, applied in the normalized space.
    normalization_type : NormalizationType or str, default='none'
        Feature normalization used during optimization.
    intercept_index : int, optional
        Position of the intercept feature. Required by standardization.
    down_sampling_rate : float, optional
        Down-sample the training data at this rate before training.
    tree_aggregate_depth : int, default=1
        Depth of the tree aggregation of every objective evaluation.
    initial_model : GeneralizedLinearModel, optional
        Warm start, in the original feature space.
    is_tracking_state : bool, default=True
        Whether to return the optimizer's state tracker.
    seed : int, optional
        Seed of the down-sampling.
    verbose : bool, default=False
        Print optimizer progress.

    Returns
    -------
    model : GeneralizedLinearModel
        Trained model, coefficients in the original feature space.
    state_tracker : OptimizationStatesTracker or None
        Optimization history, None when tracking is disabled.
    """
    task_type = TaskType(task_type)
    config = OptimizerConfig(
        optimizer_type=optimizer,
        tolerance=tolerance,
        max_num_iterations=max_num_iterations,
    )

    if down_sampling_rate is not None:
        dataset = build_down_sampler(task_type, down_sampling_rate).down_sample(dataset, seed=seed)
    points = dataset.values()

    normalization_type = NormalizationType(normalization_type)
    if normalization_type == NormalizationType.NONE:
        normalization_context = NormalizationContext()
    else:
        summary = FeatureSummary.from_dataset(points, tree_aggregate_depth=tree_aggregate_depth)
        normalization_context = NormalizationContext.build(normalization_type, summary, intercept_index)

    objective = DistributedGLMLossFunction(
        points,
        loss_for_task(task_type),
        regularization_weight=regularization_weight,
        tree_aggregate_depth=tree_aggregate_depth,
    )
    optimizer = build_optimizer_from_config(
        config,
        normalization_context=normalization_context,
        is_tracking_state=is_tracking_state,
        verbose=verbose,
    )

    initial_coefficients = None
    if initial_model is not None:
        initial_coefficients = normalization_context.transform_to_normalized_space(initial_model.coefficients)

    coefficients = optimizer.optimize(objective, initial_coefficients)
    model = GeneralizedLinearModel(normalization_context.transform_model_coefficients(coefficients), task_type)
    return model, optimizer.state_tracker
