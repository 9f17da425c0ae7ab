"""
Optimizer configuration and construction by name.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Union

from .constants import DEFAULT_MAX_NUM_ITERATIONS, DEFAULT_TOLERANCE
from .exceptions import InvalidConfigurationError
from .lbfgs import LBFGS
from .normalization import NO_NORMALIZATION, NormalizationContext
from .optimizer import Optimizer
from .tron import TRON


class OptimizerType(str, Enum):
    LBFGS = 'lbfgs'
    TRON = 'tron'


_OPTIMIZERS = {
    OptimizerType.LBFGS: LBFGS,
    OptimizerType.TRON: TRON,
}


def _optimizer_type(optimizer: Union[str, OptimizerType]) -> OptimizerType:
    try:
        return OptimizerType(str(optimizer.value if isinstance(optimizer, OptimizerType) else optimizer).lower())
    except ValueError:
        supported = ", ".join(f"'{t.value}'" for t in OptimizerType)
        raise InvalidConfigurationError(f"Unknown optimizer '{optimizer}'. Supported: {supported}") from None


@dataclass(frozen=True)
class OptimizerConfig:
    """
    Optimizer settings of a training run.

    Parameters
    ----------
    optimizer_type : OptimizerType or str, default='lbfgs'
    tolerance : float, default=1e-6
    max_num_iterations : int, default=100
    """
    optimizer_type: OptimizerType = OptimizerType.LBFGS
    tolerance: float = DEFAULT_TOLERANCE
    max_num_iterations: int = DEFAULT_MAX_NUM_ITERATIONS

    def __post_init__(self):
        object.__setattr__(self, 'optimizer_type', _optimizer_type(self.optimizer_type))
        if not (self.tolerance > 0):
            raise InvalidConfigurationError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_num_iterations < 1:
            raise InvalidConfigurationError(f"max_num_iterations must be positive, got {self.max_num_iterations}")

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> 'OptimizerConfig':
        unknown = set(params) - {'optimizer_type', 'tolerance', 'max_num_iterations'}
        if unknown:
            raise InvalidConfigurationError(f"Unknown optimizer config keys: {sorted(unknown)}")
        return cls(**params)

    def to_dict(self) -> Dict[str, Any]:
        params = asdict(self)
        params['optimizer_type'] = self.optimizer_type.value
        return params


def build_optimizer(optimizer: Union[str, OptimizerType] = 'lbfgs', **kwargs) -> Optimizer:
    """
    Create an optimizer by name.

    Parameters
    ----------
    optimizer : str or OptimizerType, default='lbfgs'
        'lbfgs' or 'tron'.
    **kwargs
        Constructor arguments of the optimizer.
    """
    return _OPTIMIZERS[_optimizer_type(optimizer)](**kwargs)


def build_optimizer_from_config(
    config: OptimizerConfig,
    normalization_context: NormalizationContext = NO_NORMALIZATION,
    is_tracking_state: bool = True,
    is_reusing_previous_initial_state: bool = True,
    verbose: bool = False
) -> Optimizer:
    return build_optimizer(
        config.optimizer_type,
        tolerance=config.tolerance,
        max_num_iterations=config.max_num_iterations,
        normalization_context=normalization_context,
        is_tracking_state=is_tracking_state,
        is_reusing_previous_initial_state=is_reusing_previous_initial_state,
        verbose=verbose,
    )
