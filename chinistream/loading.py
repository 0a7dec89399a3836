"""Consumer entry points: turn a dataset reference into a stream."""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

import datasets

from chinistream.config import LoadConfig
from chinistream.provider.huggingface import HuggingFaceProvider
from chinistream.provider.iterable import IterableProvider
from chinistream.provider.parquet import ParquetProvider
from chinistream.stream.streaming import LazyStream, StreamDict
from chinistream.util import is_shard_directory

__all__ = ['from_huggingface', 'from_iterable', 'load', 'load_from_config']

logger = logging.getLogger(__name__)

LoadResult = Union[LazyStream, StreamDict, datasets.Dataset, datasets.DatasetDict]


def load(
    path: Union[str, os.PathLike],
    name: Optional[str] = None,
    *,
    split: Optional[str] = None,
    streaming: bool = False,
    format: Optional[str] = None,
    transform: Optional[Callable[[Any], Any]] = None,
    **kwargs: Any,
) -> LoadResult:
    """Load a dataset.

    ``path`` is either a local shard directory (one containing ``index.json``,
    or one whose split subdirectories do) or anything
    ``datasets.load_dataset`` accepts.

    Args:
        path (str | PathLike): Local shard directory or HF dataset reference.
        name (str, optional): HF configuration name. Defaults to ``None``.
        split (str, optional): Split to load. ``None`` loads every split.
        streaming (bool): Return lazy streams. Defaults to ``False``, which
            returns the provider's eager dataset unchanged.
        format (str, optional): Initial format of returned streams.
        transform (Callable, optional): Initial transform of returned streams.
        **kwargs: Other :class:`LoadConfig` options; unknown ones are
            forwarded to ``datasets.load_dataset``.

    Returns:
        LazyStream | StreamDict | datasets.Dataset | datasets.DatasetDict

    Example:
        >>> stream = load('c4', 'en', split='train', streaming=True)
        >>> stream
        LazyStream({
            features: ['text', 'timestamp', 'url'],
            num_shards: 1024
        })
    """
    config = LoadConfig.from_kwargs(
        path, name=name, split=split, streaming=streaming, format=format, **kwargs
    )
    return load_from_config(config, transform=transform)


def load_from_config(config: LoadConfig, transform: Optional[Callable[[Any], Any]] = None) -> LoadResult:
    """Load a dataset described by a :class:`LoadConfig`."""
    config.apply_environment()
    local = Path(config.path).expanduser()
    if local.is_dir():
        splits = _local_splits(local, config.split)
        if splits:
            return _load_local(local, splits, config, transform)

    result = datasets.load_dataset(config.path, config.name, **config.provider_kwargs())
    logger.info(f'Loaded {config.path} ({type(result).__name__})')
    return _wrap(result, config.format, transform)


def _local_splits(local: Path, split: Optional[str]) -> Optional[list[Optional[str]]]:
    """Split subdirectories of a shard directory; ``[None]`` when it is one itself."""
    if split is not None:
        return [split] if is_shard_directory(local / split) else None
    if is_shard_directory(local):
        return [None]
    names = sorted(sub.name for sub in local.iterdir() if is_shard_directory(sub))
    return names or None


def _load_local(
    local: Path,
    splits: list[Optional[str]],
    config: LoadConfig,
    transform: Optional[Callable[[Any], Any]],
) -> LoadResult:
    providers = {split: ParquetProvider(local, split=split, columns=config.columns) for split in splits}

    if not config.streaming:
        data_files = {split or 'train': provider.files for split, provider in providers.items()}
        result = datasets.load_dataset(
            'parquet',
            data_files=data_files,
            cache_dir=config.cache_dir,
            columns=config.columns,
            **config.extra,
        )
        if config.split is not None or splits == [None]:
            return result[config.split or 'train']
        return result

    streams = {
        split: LazyStream(provider, transform=transform, format=config.format)
        for split, provider in providers.items()
    }
    if config.split is not None or splits == [None]:
        return streams[config.split]
    return StreamDict(streams)


def _wrap(result: Any, format: Optional[str], transform: Optional[Callable[[Any], Any]]) -> LoadResult:
    if isinstance(result, datasets.IterableDataset):
        return LazyStream(HuggingFaceProvider(result), transform=transform, format=format)
    if isinstance(result, datasets.IterableDatasetDict):
        return StreamDict({name: _wrap(ds, format, transform) for name, ds in result.items()})
    if format is not None or transform is not None:
        logger.warning(
            f'{type(result).__name__} is not a stream; format and transform are left to the caller'
        )
    return result


def from_huggingface(
    dataset: Union[datasets.IterableDataset, datasets.IterableDatasetDict],
    *,
    format: Optional[str] = None,
    transform: Optional[Callable[[Any], Any]] = None,
) -> Union[LazyStream, StreamDict]:
    """Wrap an already built HF streaming dataset (or dict of them)."""
    if not isinstance(dataset, (datasets.IterableDataset, datasets.IterableDatasetDict)):
        raise TypeError(
            f'Expected datasets.IterableDataset or IterableDatasetDict, got {type(dataset).__name__}'
        )
    return _wrap(dataset, format, transform)


def from_iterable(
    source: Union[Iterable[Any], Callable[[], Iterable[Any]]],
    features: Optional[dict[str, str]] = None,
    *,
    format: Optional[str] = None,
    transform: Optional[Callable[[Any], Any]] = None,
) -> LazyStream:
    """Build a stream over an in-memory source.

    Args:
        source: A re-iterable (list, tuple, ...) or a zero-argument callable
            returning a fresh iterable on every call (a generator function).
        features (Dict[str, str], optional): Schema of the records.
        format (str, optional): ``"native"`` or ``None``.
        transform (Callable, optional): Initial transform.

    Example:
        >>> stream = from_iterable([{'x': i} for i in range(5)])
        >>> stream.skip(3).collect()
        [{'x': 3}, {'x': 4}]
    """
    return LazyStream(IterableProvider(source, features=features), transform=transform, format=format)
