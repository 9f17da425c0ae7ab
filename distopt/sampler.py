"""
Down-samplers for keyed datasets of ``(identifier, LabeledPoint)`` pairs.
"""

from abc import ABC, abstractmethod
from typing import Optional, Union

import numpy as np

from .constants import POSITIVE_RESPONSE_THRESHOLD, TaskType
from .dataset import PartitionedDataset
from .exceptions import InvalidConfigurationError


def _check_down_sampling_rate(rate: float) -> float:
    if not (0.0 < rate < 1.0):
        raise InvalidConfigurationError(
            f"Down-sampling rate must be in the open interval (0, 1), got {rate}"
        )
    return float(rate)


def _draw_seed() -> int:
    return int(np.random.default_rng().integers(2 ** 62))


class DownSampler(ABC):
    """
    Base class for down-samplers.

    Parameters
    ----------
    down_sampling_rate : float
        Sampling rate in (0, 1), exclusive on both ends.
    """

    def __init__(self, down_sampling_rate: float):
        self.down_sampling_rate = _check_down_sampling_rate(down_sampling_rate)

    @abstractmethod
    def down_sample(self, dataset: PartitionedDataset, seed: Optional[int] = None) -> PartitionedDataset:
        """
        Down-sample a dataset of ``(identifier, LabeledPoint)`` pairs.

        Parameters
        ----------
        dataset : PartitionedDataset
            Keyed records. Not modified.
        seed : int, optional
            Seed of the sampling decisions. A fresh seed is drawn when omitted.

        Returns
        -------
        PartitionedDataset
            The sampled records.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(down_sampling_rate={self.down_sampling_rate})"


class DefaultDownSampler(DownSampler):
    """Uniform Bernoulli sample over all records; weights are left untouched."""

    def down_sample(self, dataset: PartitionedDataset, seed: Optional[int] = None) -> PartitionedDataset:
        return dataset.sample(self.down_sampling_rate, seed=_draw_seed() if seed is None else seed)


class BinaryClassificationDownSampler(DownSampler):
    """
    Down-sampler for the negative class of a binary classification dataset.

    Positive records (label at or above ``POSITIVE_RESPONSE_THRESHOLD``) are
    always kept as they are. Every negative record is kept independently with
    probability ``down_sampling_rate`` and its weight is multiplied by
    ``1 / down_sampling_rate``, so the expected weighted contribution of the
    negative class is unchanged.
    """

    def down_sample(self, dataset: PartitionedDataset, seed: Optional[int] = None) -> PartitionedDataset:
        rate = self.down_sampling_rate
        weight_multiplier = 1.0 / rate
        if seed is None:
            seed = _draw_seed()

        def sample_partition(index, records):
            rng = np.random.default_rng([seed, index])
            for key, point in records:
                if point.label >= POSITIVE_RESPONSE_THRESHOLD:
                    yield key, point
                elif rng.random() < rate:
                    yield key, point.with_weight(point.weight * weight_multiplier)

        return dataset.map_partitions_with_index(sample_partition)


def build_down_sampler(task_type: Union[str, TaskType], down_sampling_rate: float) -> DownSampler:
    """
    Pick the down-sampler matching a training task.

    Logistic regression uses ``BinaryClassificationDownSampler``; every other
    task uses ``DefaultDownSampler``.
    """
    task_type = TaskType(task_type)
    if task_type == TaskType.LOGISTIC_REGRESSION:
        return BinaryClassificationDownSampler(down_sampling_rate)
    return DefaultDownSampler(down_sampling_rate)
