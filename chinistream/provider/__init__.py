"""Record sources a stream pulls from."""

from chinistream.provider.base import OPERATORS, Provider
from chinistream.provider.huggingface import HuggingFaceProvider
from chinistream.provider.iterable import IterableProvider
from chinistream.provider.parquet import ParquetProvider

__all__ = ['OPERATORS', 'HuggingFaceProvider', 'IterableProvider', 'ParquetProvider', 'Provider']
