"""
In-process partitioned dataset.

``PartitionedDataset`` stands in for a distributed collection: the data is
split into partitions and every operation runs one task per partition, either
sequentially or on a thread pool. Tasks never share mutable state; results are
combined on the caller's side, which is the only synchronization point.
"""

import copy
import functools
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, List, Optional, Sequence

import numpy as np

from .exceptions import InvalidConfigurationError


class PartitionedDataset:
    """
    Immutable collection of records split into partitions.

    Parameters
    ----------
    partitions : sequence of sequences
        Records of each partition.
    max_workers : int, optional
        Number of threads used to run partition tasks. ``None`` or 1 runs
        them sequentially.
    """

    def __init__(self, partitions: Sequence[Sequence[Any]], max_workers: Optional[int] = None):
        if max_workers is not None and max_workers < 1:
            raise InvalidConfigurationError(f"max_workers must be positive, got {max_workers}")
        self._partitions = tuple(tuple(p) for p in partitions)
        self.max_workers = max_workers

    @classmethod
    def parallelize(
        cls,
        items: Iterable[Any],
        num_partitions: int = 4,
        max_workers: Optional[int] = None
    ) -> 'PartitionedDataset':
        """
        Split ``items`` into ``num_partitions`` contiguous slices of near-equal size.
        """
        if num_partitions < 1:
            raise InvalidConfigurationError(f"num_partitions must be positive, got {num_partitions}")
        items = list(items)
        bounds = np.linspace(0, len(items), num_partitions + 1).astype(int)
        partitions = [items[bounds[i]:bounds[i + 1]] for i in range(num_partitions)]
        return cls(partitions, max_workers=max_workers)

    @property
    def num_partitions(self) -> int:
        return len(self._partitions)

    @property
    def partitions(self):
        return self._partitions

    def _run(self, task: Callable[[int, Sequence[Any]], Any]) -> List[Any]:
        """Run ``task(index, records)`` once per partition and return the results in order."""
        indices = range(len(self._partitions))
        if self.max_workers is None or self.max_workers == 1:
            return [task(i, part) for i, part in zip(indices, self._partitions)]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(task, indices, self._partitions))

    def _derive(self, partitions: Sequence[Sequence[Any]]) -> 'PartitionedDataset':
        return PartitionedDataset(partitions, max_workers=self.max_workers)

    # Transformations

    def map_partitions_with_index(self, f: Callable[[int, Sequence[Any]], Iterable[Any]]) -> 'PartitionedDataset':
        return self._derive(self._run(lambda i, part: list(f(i, part))))

    def map(self, f: Callable[[Any], Any]) -> 'PartitionedDataset':
        return self.map_partitions_with_index(lambda _, part: [f(x) for x in part])

    def filter(self, predicate: Callable[[Any], bool]) -> 'PartitionedDataset':
        return self.map_partitions_with_index(lambda _, part: [x for x in part if predicate(x)])

    def map_values(self, f: Callable[[Any], Any]) -> 'PartitionedDataset':
        return self.map(lambda kv: (kv[0], f(kv[1])))

    def keys(self) -> 'PartitionedDataset':
        return self.map(lambda kv: kv[0])

    def values(self) -> 'PartitionedDataset':
        return self.map(lambda kv: kv[1])

    def sample(self, fraction: float, seed: Optional[int] = None) -> 'PartitionedDataset':
        """
        Bernoulli sample without replacement: each record is kept independently
        with probability ``fraction``.
        """
        if not 0.0 <= fraction <= 1.0:
            raise InvalidConfigurationError(f"fraction must be in [0, 1], got {fraction}")
        if seed is None:
            seed = int(np.random.default_rng().integers(2 ** 62))

        def sample_partition(index, part):
            rng = np.random.default_rng([seed, index])
            return [x for x in part if rng.random() < fraction]

        return self.map_partitions_with_index(sample_partition)

    def union(self, other: 'PartitionedDataset') -> 'PartitionedDataset':
        return self._derive(self._partitions + other.partitions)

    # Actions

    def count(self) -> int:
        return sum(self._run(lambda _, part: len(part)))

    def collect(self) -> List[Any]:
        return [x for part in self._partitions for x in part]

    def foreach(self, f: Callable[[Any], None]) -> None:
        def run(_, part):
            for x in part:
                f(x)
        self._run(run)

    def reduce(self, op: Callable[[Any, Any], Any]) -> Any:
        partials = [r for r in self._run(lambda _, part: functools.reduce(op, part) if part else None)
                    if r is not None]
        if not partials:
            raise ValueError("Cannot reduce an empty dataset")
        return functools.reduce(op, partials)

    def aggregate(self, zero: Any, seq_op: Callable[[Any, Any], Any], comb_op: Callable[[Any, Any], Any]) -> Any:
        """
        Fold every partition from a copy of ``zero`` with ``seq_op`` and merge
        the partial results with ``comb_op``.
        """
        partials = self._run(lambda _, part: functools.reduce(seq_op, part, copy.deepcopy(zero)))
        return functools.reduce(comb_op, partials, copy.deepcopy(zero))

    def tree_aggregate(
        self,
        zero: Any,
        seq_op: Callable[[Any, Any], Any],
        comb_op: Callable[[Any, Any], Any],
        depth: int = 2
    ) -> Any:
        """
        Aggregate in a multi-level tree pattern.

        Partial results are merged in rounds whose fan-in is
        ``max(ceil(P ** (1 / depth)), 2)`` for ``P`` partitions, which bounds
        the number of partials merged in any single step.

        Parameters
        ----------
        zero : object
            Neutral element; copied for every partition.
        seq_op : callable
            ``seq_op(acc, record) -> acc``.
        comb_op : callable
            ``comb_op(acc, acc) -> acc``; must be associative and commutative.
        depth : int, default=2
            Suggested depth of the tree; must be at least 1.
        """
        if depth < 1:
            raise InvalidConfigurationError(f"Tree aggregation depth must be at least 1, got {depth}")
        partials = self._run(lambda _, part: functools.reduce(seq_op, part, copy.deepcopy(zero)))
        if not partials:
            return copy.deepcopy(zero)

        num = len(partials)
        scale = max(int(math.ceil(num ** (1.0 / depth))), 2)
        while num > scale + int(math.ceil(num / scale)):
            num = int(math.ceil(num / scale))
            groups = [[] for _ in range(num)]
            for i, partial in enumerate(partials):
                groups[i % num].append(partial)
            partials = [functools.reduce(comb_op, group) for group in groups]
        return functools.reduce(comb_op, partials)

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"PartitionedDataset(num_partitions={self.num_partitions}, max_workers={self.max_workers})"
