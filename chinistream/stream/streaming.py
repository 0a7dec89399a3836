"""LazyStream: a lazy, pull-based streaming dataset with chainable operators.

A stream pairs a provider (the raw record source) with a value format and a
transform. Operators never touch data: they derive a new provider, natively
when the provider can run the operator itself and generically otherwise, and
wrap it in a new stream. Records are only pulled when the stream is iterated.
"""

import copy
import logging
import operator
from collections.abc import Mapping
from enum import Enum
from types import TracebackType
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from torch.utils.data import IterableDataset

from chinistream.errors import UnsupportedOperation
from chinistream.provider.base import Provider
from chinistream.stream.adapter import ValueAdapter
from chinistream.stream.ops import GENERIC_OPERATORS, DerivedProvider, close_iterator
from chinistream.stream.partition import check_shard, iter_worker_partition
from chinistream.stream.transform import TransformSlot
from chinistream.stream.world import World

__all__ = ['LazyStream', 'NATIVE_FORMAT', 'StreamDict', 'StreamIterator', 'StreamState']

logger = logging.getLogger(__name__)

# Format name that switches on the ValueAdapter
NATIVE_FORMAT = 'native'


class StreamState(Enum):
    """Lifecycle of a single pass over a stream."""

    CREATED = 'created'
    ITERATING = 'iterating'
    EXHAUSTED = 'exhausted'
    FAILED = 'failed'


class StreamIterator:
    """One pass over a stream.

    The provider is opened on the first ``next()``, not when the iterator is
    created. Inside a DataLoader worker every worker runs the whole operator
    chain and keeps an interleaved share of the finished records, so
    positional operators such as ``take`` hold across all workers together.
    End of data is reported with ``StopIteration`` on this and every later
    call. An error while pulling propagates unchanged and leaves the
    iterator ``FAILED``; it yields nothing afterwards.

    Use it as a context manager (or call :meth:`close`) to release the
    provider's resources when abandoning a pass early.

    Args:
        provider (Provider): Raw record source.
        finish (Callable): Turns a raw record into the record the caller gets.
    """

    def __init__(self, provider: Provider, finish: Callable[[Any], Any]) -> None:
        self._provider = provider
        self._finish = finish
        self._source: Optional[Iterator[Any]] = None
        self._it: Optional[Iterator[Any]] = None
        self.state = StreamState.CREATED

    def __iter__(self) -> 'StreamIterator':
        return self

    def __next__(self) -> Any:
        if self.state in (StreamState.EXHAUSTED, StreamState.FAILED):
            raise StopIteration
        try:
            if self._it is None:
                self._it = self._open()
                self.state = StreamState.ITERATING
                logger.debug(f'Opened {self._provider.describe()}')
            raw = next(self._it)
        except StopIteration:
            self._release(StreamState.EXHAUSTED)
            raise
        except Exception:
            self._release(StreamState.FAILED)
            raise

        try:
            return self._finish(raw)
        except Exception:
            self._release(StreamState.FAILED)
            raise

    def _open(self) -> Iterator[Any]:
        self._source = iter(self._provider)
        world = World().detect_workers()
        if world.num_workers == 1:
            return self._source
        if self._provider.splits_workers:
            ops = _positional_ops(self._provider)
            if ops:
                logger.warning(
                    f'{", ".join(ops)} over {self._provider.describe()} run separately in every '
                    'DataLoader worker, each over its own share of the records'
                )
            return self._source
        logger.debug(f'Worker {world.worker_of_rank}/{world.num_workers} keeps its share of the records')
        return iter_worker_partition(self._source, world)

    def _release(self, state: StreamState) -> None:
        self.state = state
        it, self._source, self._it = self._source, None, None
        if it is not None:
            close_iterator(it)

    def close(self) -> None:
        """Release the provider iterator. Further ``next()`` calls stop."""
        if self.state in (StreamState.CREATED, StreamState.ITERATING):
            self._release(StreamState.EXHAUSTED)
            logger.debug(f'Closed {self._provider.describe()}')

    @property
    def is_open(self) -> bool:
        return self.state is StreamState.ITERATING

    def __enter__(self) -> 'StreamIterator':
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.close()


def _positional_ops(provider: Provider) -> list[str]:
    """Names of the generic positional operators in a provider chain."""
    ops = []
    while isinstance(provider, DerivedProvider):
        if provider.positional:
            ops.append(provider.op)
        provider = provider.upstream
    return ops


def _copy_record(record: Any) -> Any:
    if isinstance(record, Mapping):
        return dict(record)
    return record


def _check_count(name: str, value: int) -> int:
    value = operator.index(value)
    if value < 0:
        raise ValueError(f'{name} must be non-negative, got {value}')
    return value


def _check_size(name: str, value: int) -> int:
    value = operator.index(value)
    if value < 1:
        raise ValueError(f'{name} must be at least 1, got {value}')
    return value


def _check_callable(name: str, fn: Any) -> None:
    if not callable(fn):
        raise TypeError(f'{name} must be callable, got {type(fn).__name__}')


class LazyStream(IterableDataset):
    """A lazily evaluated, pull-based stream of records.

    Streams are immutable pipelines, not cursors: every operator returns a
    new stream and leaves this one untouched, and no data is read until the
    stream is iterated. Only :meth:`set_format`, :meth:`set_transform` and
    :meth:`set_epoch` modify a stream in place.

    A stream has no length and no random access; both raise
    :class:`~chinistream.errors.UnsupportedOperation` even when the provider
    could answer, so nothing ever silently materializes the whole stream.

    Each record goes through three steps on its way out: the provider yields
    it raw, the ValueAdapter converts it (only in the ``"native"`` format) and
    the transform is applied once.

    Being a ``torch.utils.data.IterableDataset``, a stream can be handed to a
    ``DataLoader`` directly.

    Args:
        provider (Provider): Raw record source.
        transform (Callable, optional): Function applied to every record.
            Defaults to identity.
        format (str, optional): ``"native"`` to convert values to numpy/Python
            types, a provider format such as ``"torch"``, or ``None`` for raw
            provider values. Defaults to ``None``.

    Example:
        >>> from chinistream import from_iterable
        >>> stream = from_iterable([{'label': i % 2} for i in range(100)])
        >>> positives = stream.filter(lambda r: r['label'] == 1).take(10).batch(5)
        >>> [len(b['label']) for b in positives]
        [5, 5]
    """

    def __init__(
        self,
        provider: Provider,
        transform: Optional[Callable[[Any], Any]] = None,
        format: Optional[str] = None,
    ) -> None:
        if not isinstance(provider, Provider):
            raise TypeError(f'Expected a Provider, got {type(provider).__name__}')
        self._provider = provider
        self._slot = TransformSlot(transform)
        self._format: Optional[str] = None
        self._adapter: Optional[ValueAdapter] = None
        self._active: Optional[StreamIterator] = None
        if format is not None:
            self.set_format(format)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @property
    def provider(self) -> Provider:
        """The raw record source."""
        return self._provider

    @property
    def features(self) -> Optional[dict[str, str]]:
        """Declared kind per field, or ``None`` if the schema is unknown."""
        features = self._provider.features
        return dict(features) if features is not None else None

    @property
    def num_shards(self) -> int:
        """Number of independently readable data shards of the provider."""
        return self._provider.num_shards

    @property
    def format(self) -> Optional[str]:
        return self._format

    @property
    def transform(self) -> Callable[[Any], Any]:
        return self._slot.fn

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, str):
            raise UnsupportedOperation(
                'LazyStream does not support column access. Iterate and access fields directly.'
            )
        if isinstance(key, (slice, list, tuple)):
            raise UnsupportedOperation(
                'LazyStream does not support random access. Use take(n) or collect(limit=n) '
                'to get multiple records.'
            )
        raise UnsupportedOperation(
            'LazyStream does not support random access. Use iteration or first() instead.'
        )

    def __len__(self) -> int:
        raise UnsupportedOperation(
            'LazyStream does not have a defined length. Use iteration or collect(limit=n) '
            'to process a limited number of records.'
        )

    def __bool__(self) -> bool:
        # Without this, truth testing would fall back to __len__ and raise
        return True

    def __repr__(self) -> str:
        features = self._provider.features
        names = list(features) if features is not None else 'Unknown'
        return f'LazyStream({{\n    features: {names},\n    num_shards: {self.num_shards}\n}})'

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def _finisher(self) -> Callable[[Any], Any]:
        adapter = self._adapter
        slot = self._slot

        def finish(raw: Any) -> Any:
            if adapter is not None:
                return slot(adapter.adapt(raw))
            if slot.is_identity:
                return raw
            # The transform may mutate; keep the provider's record intact
            return slot(_copy_record(raw))

        return finish

    def __iter__(self) -> StreamIterator:
        """Start a new pass.

        A stream keeps at most one provider iterator open: a previous pass
        that is still open is closed first. Derive separate streams to
        traverse the same source concurrently.
        """
        if self._active is not None and self._active.state in (StreamState.CREATED, StreamState.ITERATING):
            logger.debug('Closing the previous pass before opening a new one')
            self._active.close()
        self._active = StreamIterator(self._provider, self._finisher())
        return self._active

    def first(self, default: Any = None) -> Any:
        """Return the first record, or ``default`` if the stream is empty."""
        with iter(self) as it:
            for record in it:
                return record
        return default

    def collect(self, limit: Optional[int] = None) -> list[Any]:
        """Materialize the stream (or its first ``limit`` records) into a list."""
        stream = self if limit is None else self.take(limit)
        with iter(stream) as it:
            return list(it)

    def __getstate__(self) -> dict[str, Any]:
        # Open iterators hold generators, which cannot be sent to DataLoader workers
        state = self.__dict__.copy()
        state['_active'] = None
        return state

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def _derive(self, provider: Provider) -> 'LazyStream':
        other = copy.copy(self)
        other._provider = provider
        other._slot = self._slot.copy()
        other._active = None
        other._rebuild_adapter()
        return other

    def _apply(self, op: str, *args: Any, **kwargs: Any) -> 'LazyStream':
        provider = self._provider.native(op, *args, **kwargs)
        if provider is None:
            provider = GENERIC_OPERATORS[op](self._provider, *args, **kwargs)
            logger.debug(f'{op} runs generically over {self._provider.describe()}')
        else:
            logger.debug(f'{op} is served natively by {self._provider.describe()}')
        return self._derive(provider)

    def copy(self) -> 'LazyStream':
        """Return an independent handle on the same pipeline."""
        return self._derive(self._provider)

    def take(self, n: int) -> 'LazyStream':
        """Keep the first ``n`` records (fewer if the stream is shorter)."""
        return self._apply('take', _check_count('n', n))

    def skip(self, n: int) -> 'LazyStream':
        """Drop the first ``n`` records and yield the rest."""
        return self._apply('skip', _check_count('n', n))

    def shuffle(self, seed: Optional[int] = None, buffer_size: int = 1000) -> 'LazyStream':
        """Approximately shuffle with a buffer of ``buffer_size`` records.

        The order is reproducible only when ``seed`` is given. Without one a
        seed is drawn here, so every pass of the returned stream uses the
        same order. Use :meth:`set_epoch` to get a different (still
        reproducible) order per epoch.

        Args:
            seed (int, optional): Random seed. Defaults to ``None``.
            buffer_size (int): Maximum number of buffered records. Defaults
                to ``1000``.
        """
        buffer_size = _check_size('buffer_size', buffer_size)
        if seed is not None:
            seed = operator.index(seed)
        if buffer_size == 1:
            logger.warning('shuffle with buffer_size=1 keeps the original order')
        return self._apply('shuffle', seed=seed, buffer_size=buffer_size)

    def batch(self, batch_size: int, drop_last: bool = False) -> 'LazyStream':
        """Group consecutive records into batches.

        A batch is a record whose fields are lists of the grouped values.

        Args:
            batch_size (int): Records per batch.
            drop_last (bool): Drop a final batch shorter than ``batch_size``.
                Defaults to ``False``.
        """
        return self._apply('batch', _check_size('batch_size', batch_size), bool(drop_last))

    def shard(self, num_shards: int, index: int) -> 'LazyStream':
        """Keep shard ``index`` of ``num_shards`` disjoint, deterministic shards."""
        num_shards, index = operator.index(num_shards), operator.index(index)
        check_shard(num_shards, index)
        return self._apply('shard', num_shards, index)

    def split_by_node(self, rank: Optional[int] = None, world_size: Optional[int] = None) -> 'LazyStream':
        """Keep this rank's shard in distributed training.

        Args:
            rank (int, optional): This rank. Detected from the environment if
                omitted.
            world_size (int, optional): Number of ranks. Detected from the
                environment if omitted.
        """
        if rank is None or world_size is None:
            world = World.detect()
            rank = world.rank if rank is None else rank
            world_size = world.num_ranks if world_size is None else world_size
        return self.shard(world_size, rank)

    def _view(self) -> Callable[[Any], Any]:
        """Function showing a raw record the way a consumer would see it now."""
        adapter = self._adapter
        transform = self._slot.fn

        def view(raw: Any) -> Any:
            record = adapter.adapt(raw) if adapter is not None else _copy_record(raw)
            return transform(record)

        return view

    def filter(self, predicate: Callable[[Any], bool]) -> 'LazyStream':
        """Keep the records for which ``predicate`` is true.

        The predicate sees each record as a consumer of this stream would:
        converted by the current format and passed through the current
        transform. It gets a copy, so it cannot alter what flows on.
        """
        _check_callable('predicate', predicate)
        view = self._view()

        def keep(raw: Any) -> bool:
            return bool(predicate(view(raw)))

        return self._apply('filter', keep)

    def map(
        self,
        fn: Callable[[Any], Any],
        remove_fields: Optional[Union[str, Iterable[str]]] = None,
    ) -> 'LazyStream':
        """Apply ``fn`` to every record.

        ``fn`` receives the record converted by the current format. The
        transform is not applied first: it stays attached to the stream and
        runs once on the final record. When both the record and the result are
        mappings, the result is merged over the record.

        Args:
            fn (Callable): Record to record (or to new/updated fields).
            remove_fields (str | Iterable[str], optional): Fields dropped from
                the result after ``fn`` runs. Absent fields are ignored.
        """
        _check_callable('fn', fn)
        if isinstance(remove_fields, str):
            remove_fields = [remove_fields]
        remove = list(remove_fields) if remove_fields else []
        adapter = self._adapter

        def apply(raw: Any) -> Any:
            record = adapter.adapt(raw) if adapter is not None else _copy_record(raw)
            out = fn(record)
            if isinstance(record, Mapping) and isinstance(out, Mapping):
                merged = dict(record)
                merged.update(out)
                out = merged
            return out

        return self._apply('map', apply, remove)

    def pipe(self, *operators: Callable[['LazyStream'], Any]) -> Any:
        """Apply operators left to right: ``pipe(f, g)`` is ``g(f(self))``."""
        result: Any = self
        for op in operators:
            result = op(result)
        return result

    # ------------------------------------------------------------------
    # Format, transform, epoch
    # ------------------------------------------------------------------

    def _rebuild_adapter(self) -> None:
        if self._format == NATIVE_FORMAT:
            self._adapter = ValueAdapter(self._provider.features)
        else:
            self._adapter = None

    def set_format(self, format: Optional[str]) -> 'LazyStream':
        """Set the value format in place. Mutating version of :meth:`with_format`.

        Args:
            format (str, optional): ``"native"`` converts values with the
                ValueAdapter. ``None`` yields raw provider values. Any other
                name is handed to the provider's own formatting.

        Returns:
            LazyStream: This stream.

        Raises:
            ValueError: If the provider cannot produce ``format``.
        """
        if format is None or format == NATIVE_FORMAT:
            if self._format not in (None, NATIVE_FORMAT):
                provider = self._provider.with_format(None)
                if provider is None:
                    raise ValueError(f'{self._provider.describe()} cannot reset its format')
                self._provider = provider
        else:
            provider = self._provider.with_format(format)
            if provider is None:
                raise ValueError(
                    f'{self._provider.describe()} does not support format {format!r}; '
                    f'use {NATIVE_FORMAT!r} or None'
                )
            self._provider = provider
        self._format = format
        self._rebuild_adapter()
        return self

    def with_format(self, format: Optional[str]) -> 'LazyStream':
        """Return a copy of this stream with the value format set to ``format``.

        Example:
            >>> stream = load('mnist', split='test', streaming=True)
            >>> stream.first()['image']            # PIL image
            >>> stream.with_format('native').first()['image'].shape
            (28, 28)
        """
        return self.copy().set_format(format)

    def set_transform(self, transform: Optional[Callable[[Any], Any]]) -> 'LazyStream':
        """Replace the transform in place. ``None`` restores identity.

        Returns:
            LazyStream: This stream.
        """
        self._slot.set(transform)
        return self

    def with_transform(self, transform: Optional[Callable[[Any], Any]]) -> 'LazyStream':
        """Return a copy of this stream with its transform set to ``transform``.

        The transform runs on every yielded record, after format conversion.
        It may mutate the record and may return any shape.
        """
        return self.copy().set_transform(transform)

    def set_epoch(self, epoch: int) -> None:
        """Set the epoch, so shuffles reorder differently (and reproducibly) per epoch."""
        self._provider.set_epoch(operator.index(epoch))


class StreamDict(dict):
    """Named splits of a streaming dataset (``{'train': LazyStream, ...}``).

    Format and transform setters apply to every split.
    """

    def with_format(self, format: Optional[str]) -> 'StreamDict':
        return StreamDict({name: stream.with_format(format) for name, stream in self.items()})

    def set_format(self, format: Optional[str]) -> 'StreamDict':
        for stream in self.values():
            stream.set_format(format)
        return self

    def with_transform(self, transform: Optional[Callable[[Any], Any]]) -> 'StreamDict':
        return StreamDict({name: stream.with_transform(transform) for name, stream in self.items()})

    def set_transform(self, transform: Optional[Callable[[Any], Any]]) -> 'StreamDict':
        for stream in self.values():
            stream.set_transform(transform)
        return self

    def __repr__(self) -> str:
        body = ',\n'.join(
            f'    {name}: ' + repr(stream).replace('\n', '\n    ') for name, stream in self.items()
        )
        return f'StreamDict({{\n{body}\n}})'
