"""IterableProvider: stream records from in-memory Python data."""

from collections.abc import Iterable, Iterator
from typing import Any, Callable, Optional, Union

from chinistream.provider.base import Provider

__all__ = ['IterableProvider']


class IterableProvider(Provider):
    """Provider over a list, any re-iterable collection, or a generator factory.

    Args:
        source (Iterable | Callable): Records, or a zero-argument callable that
            returns a fresh iterator of records on every call. One-shot
            iterators (generator objects) are rejected: a stream must be able
            to start over.
        features (Dict[str, str], optional): Declared kind per field.

    Example:
        >>> provider = IterableProvider(lambda: ({'idx': i} for i in range(3)))
        >>> list(provider)
        [{'idx': 0}, {'idx': 1}, {'idx': 2}]
    """

    def __init__(
        self,
        source: Union[Iterable[Any], Callable[[], Iterable[Any]]],
        features: Optional[dict[str, str]] = None,
    ) -> None:
        if isinstance(source, Iterator):
            raise TypeError(
                'IterableProvider needs a re-iterable source; got a one-shot iterator. '
                'Pass a list or a callable returning a new iterator instead.'
            )
        if not callable(source) and not isinstance(source, Iterable):
            raise TypeError(f'Expected an iterable or a callable, got {type(source).__name__}')
        self._source = source
        self.features = dict(features) if features else None

    def __iter__(self) -> Iterator[Any]:
        records = self._source() if callable(self._source) else self._source
        return iter(records)

    def describe(self) -> str:
        return f'IterableProvider({type(self._source).__name__})'
