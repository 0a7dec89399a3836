"""Generic operator implementations for providers that lack a native one.

Each operator wraps an upstream provider and is itself a provider, so a chain
of operators is a chain of small generators. Nothing runs until the outermost
one is iterated, and closing the outermost generator closes the whole chain.
"""

from abc import abstractmethod
from collections.abc import Mapping
from itertools import islice
from typing import Any, Callable, Iterable, Iterator, Optional

import numpy as np

from chinistream.provider.base import Provider
from chinistream.stream.partition import iter_partition
from chinistream.stream.shuffle import buffer_shuffle, make_rng

__all__ = [
    'BatchProvider',
    'FilterProvider',
    'GENERIC_OPERATORS',
    'MapProvider',
    'ShardProvider',
    'ShuffleProvider',
    'SkipProvider',
    'TakeProvider',
    'close_iterator',
    'collate',
    'drop_fields',
]


def close_iterator(it: Iterator[Any]) -> None:
    """Release an iterator's resources if it holds any."""
    close = getattr(it, 'close', None)
    if close is not None:
        close()


def collate(records: list[Any]) -> Any:
    """Turn consecutive records into one batch.

    Mapping records become one mapping of field to list of values. Columns are
    the union of all fields in first-seen order; a record missing a field
    contributes ``None``. Any other records are returned as a list.

    Args:
        records (List[Any]): Consecutive records, at least one.

    Returns:
        Any: The batch.
    """
    if not all(isinstance(record, Mapping) for record in records):
        return list(records)
    columns: dict[str, None] = {}
    for record in records:
        columns.update(dict.fromkeys(record))
    return {col: [record.get(col) for record in records] for col in columns}


def drop_fields(record: Any, fields: Iterable[str]) -> Any:
    """Remove ``fields`` from a dict record in place. Absent fields are ignored."""
    if isinstance(record, dict):
        for field in fields:
            record.pop(field, None)
    return record


class DerivedProvider(Provider):
    """Provider computed from an upstream provider.

    Operators that select records by position (take, skip, shard) set
    ``positional``. Run inside a DataLoader worker over a provider that
    splits workers itself, they would only see that worker's share.
    """

    op = ''
    positional = False

    def __init__(self, upstream: Provider) -> None:
        self.upstream = upstream
        self.features = upstream.features
        self.num_shards = upstream.num_shards
        self.splits_workers = upstream.splits_workers

    def __iter__(self) -> Iterator[Any]:
        it = iter(self.upstream)
        try:
            yield from self._apply(it)
        finally:
            close_iterator(it)

    @abstractmethod
    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        """Derive this operator's records from the upstream iterator."""

    def set_epoch(self, epoch: int) -> None:
        self.upstream.set_epoch(epoch)

    def describe(self) -> str:
        return f'{self.op}({self.upstream.describe()})'


class TakeProvider(DerivedProvider):
    op = 'take'
    positional = True

    def __init__(self, upstream: Provider, n: int) -> None:
        super().__init__(upstream)
        self.n = n

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        return islice(it, self.n)


class SkipProvider(DerivedProvider):
    op = 'skip'
    positional = True

    def __init__(self, upstream: Provider, n: int) -> None:
        super().__init__(upstream)
        self.n = n

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        return islice(it, self.n, None)


class ShuffleProvider(DerivedProvider):
    """Bounded-buffer shuffle, reseeded with ``seed + epoch`` on every pass.

    Without a seed one is drawn here, once. DataLoader workers get copies of
    this provider, so they all shuffle identically and their shares of the
    shuffled stream stay disjoint.
    """

    op = 'shuffle'

    def __init__(self, upstream: Provider, seed: Optional[int], buffer_size: int) -> None:
        super().__init__(upstream)
        if seed is None:
            seed = int(np.random.default_rng().integers(1 << 31))
        self.seed = seed
        self.buffer_size = buffer_size
        self.epoch = 0

    def set_epoch(self, epoch: int) -> None:
        self.epoch = epoch
        super().set_epoch(epoch)

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        return buffer_shuffle(it, self.buffer_size, make_rng(self.seed, self.epoch))


class BatchProvider(DerivedProvider):
    op = 'batch'

    def __init__(self, upstream: Provider, batch_size: int, drop_last: bool) -> None:
        super().__init__(upstream)
        self.batch_size = batch_size
        self.drop_last = drop_last
        # Batched fields hold lists; the per-record schema no longer applies
        self.features = None

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        while True:
            records = list(islice(it, self.batch_size))
            if not records:
                return
            if len(records) < self.batch_size and self.drop_last:
                return
            yield collate(records)


class ShardProvider(DerivedProvider):
    op = 'shard'
    positional = True

    def __init__(self, upstream: Provider, num_shards: int, index: int) -> None:
        super().__init__(upstream)
        self.shard_count = num_shards
        self.index = index

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        return iter_partition(it, self.shard_count, self.index)


class FilterProvider(DerivedProvider):
    op = 'filter'

    def __init__(self, upstream: Provider, predicate: Callable[[Any], bool]) -> None:
        super().__init__(upstream)
        self.predicate = predicate

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        return (record for record in it if self.predicate(record))


class MapProvider(DerivedProvider):
    op = 'map'

    def __init__(
        self,
        upstream: Provider,
        fn: Callable[[Any], Any],
        remove_fields: Optional[list[str]] = None,
    ) -> None:
        super().__init__(upstream)
        self.fn = fn
        self.remove_fields = list(remove_fields or [])
        self.features = None

    def _apply(self, it: Iterator[Any]) -> Iterator[Any]:
        for record in it:
            yield drop_fields(self.fn(record), self.remove_fields)

GENERIC_OPERATORS: dict[str, type[DerivedProvider]] = {
    'take': TakeProvider,
    'skip': SkipProvider,
    'shuffle': ShuffleProvider,
    'batch': BatchProvider,
    'shard': ShardProvider,
    'filter': FilterProvider,
    'map': MapProvider,
}
