"""HuggingFaceProvider: stream records from a ``datasets.IterableDataset``.

HF datasets already implements every stream operator, so this provider
delegates all of them and only translates arguments. It also splits records
across DataLoader workers on its own.
"""

import logging
from typing import Any, Iterator, Optional

import datasets

from chinistream.provider.base import Provider
from chinistream.stream.adapter import NUMPY_DTYPES
from chinistream.stream.ops import drop_fields

__all__ = ['HuggingFaceProvider', 'features_to_schema']

logger = logging.getLogger(__name__)

_STRING_DTYPES = frozenset({'string', 'large_string'})
_BINARY_DTYPES = frozenset({'binary', 'large_binary'})
_LIST_FEATURES = frozenset({'Sequence', 'List', 'LargeList'})


def _value_kind(dtype: str) -> Optional[str]:
    if dtype in NUMPY_DTYPES:
        return dtype
    if dtype in _STRING_DTYPES:
        return 'str'
    if dtype in _BINARY_DTYPES:
        return 'bytes'
    return None


def _feature_kind(feature: Any) -> Optional[str]:
    """Translate one HF feature into a schema kind, or ``None`` if it has none."""
    if isinstance(feature, datasets.ClassLabel):
        return 'int64'
    if isinstance(feature, datasets.Image):
        return 'image'
    if isinstance(feature, datasets.Value):
        return _value_kind(feature.dtype)

    # Sequence/List changed shape across datasets releases; match by name
    inner = None
    if type(feature).__name__ in _LIST_FEATURES:
        inner = getattr(feature, 'feature', None)
    elif isinstance(feature, list) and len(feature) == 1:
        inner = feature[0]
    if isinstance(inner, datasets.Value):
        kind = _value_kind(inner.dtype)
        if kind in NUMPY_DTYPES:
            return f'{kind}[]'
    return None


def features_to_schema(features: Optional[datasets.Features]) -> Optional[dict[str, str]]:
    """Translate ``datasets.Features`` into a schema of kind strings.

    Fields whose feature has no matching kind (nested dicts, audio, ...) are
    left out and get converted by runtime type only.

    Args:
        features (datasets.Features, optional): HF features.

    Returns:
        Dict[str, str], optional: Field name to kind, ``None`` if unknown.
    """
    if features is None:
        return None
    schema = {}
    for name, feature in features.items():
        kind = _feature_kind(feature)
        if kind is not None:
            schema[name] = kind
    return schema


class HuggingFaceProvider(Provider):
    """Provider over a ``datasets.IterableDataset``.

    Args:
        dataset (datasets.IterableDataset): The HF streaming dataset.
    """

    splits_workers = True

    def __init__(self, dataset: datasets.IterableDataset) -> None:
        if not isinstance(dataset, datasets.IterableDataset):
            raise TypeError(f'Expected datasets.IterableDataset, got {type(dataset).__name__}')
        self.dataset = dataset
        self.features = features_to_schema(dataset.features)
        self.num_shards = int(getattr(dataset, 'num_shards', None) or getattr(dataset, 'n_shards', 1))

    def __iter__(self) -> Iterator[Any]:
        return iter(self.dataset)

    def _wrap(self, dataset: datasets.IterableDataset) -> 'HuggingFaceProvider':
        return HuggingFaceProvider(dataset)

    def native(self, op: str, *args: Any, **kwargs: Any) -> Optional[Provider]:
        ds = self.dataset
        if op == 'take':
            return self._wrap(ds.take(*args))
        if op == 'skip':
            return self._wrap(ds.skip(*args))
        if op == 'shuffle':
            return self._wrap(ds.shuffle(seed=kwargs['seed'], buffer_size=kwargs['buffer_size']))
        if op == 'batch':
            if not hasattr(ds, 'batch'):
                return None
            batch_size, drop_last = args
            return self._wrap(ds.batch(batch_size, drop_last_batch=drop_last))
        if op == 'shard':
            num_shards, index = args
            if not hasattr(ds, 'shard') or num_shards > self.num_shards:
                logger.debug(f'Cannot split {self.num_shards} data shards {num_shards} ways')
                return None
            return self._wrap(ds.shard(num_shards=num_shards, index=index))
        if op == 'filter':
            (predicate,) = args
            return self._wrap(ds.filter(predicate))
        if op == 'map':
            fn, remove_fields = args
            if not remove_fields:
                return self._wrap(ds.map(fn))
            # HF merges the output over the input example, so removed fields
            # must also be dropped on its side. That is only safe for columns
            # every example is known to have.
            if ds.features is None:
                logger.debug('Features unknown, removing fields after a generic map')
                return None
            removable = [field for field in remove_fields if field in ds.features]

            def apply(record: Any) -> Any:
                return drop_fields(fn(record), remove_fields)

            return self._wrap(ds.map(apply, remove_columns=removable or None))
        return None

    def with_format(self, format: Optional[str]) -> Optional[Provider]:
        return self._wrap(self.dataset.with_format(format))

    def set_epoch(self, epoch: int) -> None:
        self.dataset.set_epoch(epoch)

    def describe(self) -> str:
        return f'HuggingFaceProvider({self.dataset.info.dataset_name or "IterableDataset"})'
