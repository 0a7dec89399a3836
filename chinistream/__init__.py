"""ChiniStream: lazy streaming datasets with chainable operators.

Load a dataset as a stream, chain operators, and iterate. Nothing is read
until you iterate.

Example:
    >>> from chinistream import load, pipeline as P
    >>>
    >>> # Stream a Hub dataset
    >>> stream = load("mnist", split="train", streaming=True).with_format("native")
    >>> batches = stream.shuffle(seed=0).filter(lambda r: r["label"] == 1).batch(32)
    >>>
    >>> # Or a local Parquet shard directory, through a reusable pipeline
    >>> prepare = P.shuffle(seed=0, buffer_size=10_000) | P.batch(32)
    >>> for batch in load("./data", split="train", streaming=True) | prepare:
    ...     print(batch)
"""

from chinistream import pipeline
from chinistream.config import LoadConfig
from chinistream.errors import ConversionFailure, UnsupportedOperation
from chinistream.loading import from_huggingface, from_iterable, load, load_from_config
from chinistream.provider import HuggingFaceProvider, IterableProvider, ParquetProvider, Provider
from chinistream.stream import LazyStream, StreamDict, StreamIterator, StreamState, ValueAdapter

__all__ = [
    'ConversionFailure',
    'HuggingFaceProvider',
    'IterableProvider',
    'LazyStream',
    'LoadConfig',
    'ParquetProvider',
    'Provider',
    'StreamDict',
    'StreamIterator',
    'StreamState',
    'UnsupportedOperation',
    'ValueAdapter',
    'from_huggingface',
    'from_iterable',
    'load',
    'load_from_config',
    'pipeline',
]
__version__ = '0.1.0'
