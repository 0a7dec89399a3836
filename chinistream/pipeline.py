"""Declarative stream pipelines.

Every stream operator has a stream-independent counterpart here that can be
stored, reused and composed with ``|``::

    from chinistream import pipeline as P

    positives = P.filter(lambda r: r['label'] == 1) | P.take(1000)
    loader_input = stream | positives | P.batch(32)

``stream | a | b`` is ``b(a(stream))``, and ``a | b`` builds a
:class:`Pipeline` that can be applied later, so composition is associative.
Building a pipeline, or applying it to a stream, reads no data; only a
terminal step (:func:`collect`, :func:`first`) or iteration does.
"""

from typing import Any, Callable, Iterable, Optional, Union

__all__ = [
    'Operator',
    'Pipeline',
    'batch',
    'collect',
    'compose',
    'filter',
    'first',
    'map',
    'shard',
    'shuffle',
    'skip',
    'split_by_node',
    'take',
    'with_format',
    'with_transform',
]


class Operator:
    """One stream method call with its arguments bound, waiting for a stream.

    Args:
        name (str): Stream method to call.
        *args: Positional arguments for the method.
        **kwargs: Keyword arguments for the method.
    """

    def __init__(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.name = name
        self.args = args
        self.kwargs = kwargs

    def __call__(self, stream: Any) -> Any:
        return getattr(stream, self.name)(*self.args, **self.kwargs)

    def __ror__(self, stream: Any) -> Any:
        if not hasattr(stream, self.name):
            return NotImplemented
        return self(stream)

    def __or__(self, other: Any) -> 'Pipeline':
        if not isinstance(other, (Operator, Pipeline)):
            return NotImplemented
        return Pipeline(self, other)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Operator):
            return NotImplemented
        return (self.name, self.args, self.kwargs) == (other.name, other.args, other.kwargs)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        params = [repr(arg) for arg in self.args]
        params += [f'{key}={value!r}' for key, value in self.kwargs.items()]
        return f'{self.name}({", ".join(params)})'


class Pipeline:
    """A flat sequence of operators applied left to right.

    Nested pipelines are flattened on construction, which is what makes
    ``(a | b) | c`` and ``a | (b | c)`` the same pipeline.

    Args:
        *steps (Operator | Pipeline): Steps in application order.
    """

    def __init__(self, *steps: Union[Operator, 'Pipeline']) -> None:
        flat: list[Operator] = []
        for step in steps:
            if isinstance(step, Pipeline):
                flat.extend(step.steps)
            elif isinstance(step, Operator):
                flat.append(step)
            else:
                raise TypeError(f'Pipeline steps must be operators, got {type(step).__name__}')
        self.steps: tuple[Operator, ...] = tuple(flat)

    def __call__(self, stream: Any) -> Any:
        result = stream
        for step in self.steps:
            result = step(result)
        return result

    def __ror__(self, stream: Any) -> Any:
        if self.steps and not hasattr(stream, self.steps[0].name):
            return NotImplemented
        return self(stream)

    def __or__(self, other: Any) -> 'Pipeline':
        if not isinstance(other, (Operator, Pipeline)):
            return NotImplemented
        return Pipeline(self, other)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Pipeline):
            return NotImplemented
        return self.steps == other.steps

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return ' | '.join(repr(step) for step in self.steps) or 'Pipeline()'


def compose(*steps: Union[Operator, Pipeline]) -> Pipeline:
    """Build a pipeline from steps, in application order."""
    return Pipeline(*steps)


def take(n: int) -> Operator:
    return Operator('take', n)


def skip(n: int) -> Operator:
    return Operator('skip', n)


def shuffle(seed: Optional[int] = None, buffer_size: int = 1000) -> Operator:
    return Operator('shuffle', seed=seed, buffer_size=buffer_size)


def batch(batch_size: int, drop_last: bool = False) -> Operator:
    return Operator('batch', batch_size, drop_last=drop_last)


def shard(num_shards: int, index: int) -> Operator:
    return Operator('shard', num_shards, index)


def split_by_node(rank: Optional[int] = None, world_size: Optional[int] = None) -> Operator:
    return Operator('split_by_node', rank=rank, world_size=world_size)


def filter(predicate: Callable[[Any], bool]) -> Operator:
    return Operator('filter', predicate)


def map(fn: Callable[[Any], Any], remove_fields: Optional[Union[str, Iterable[str]]] = None) -> Operator:
    return Operator('map', fn, remove_fields=remove_fields)


def with_format(format: Optional[str]) -> Operator:
    return Operator('with_format', format)


def with_transform(transform: Optional[Callable[[Any], Any]]) -> Operator:
    return Operator('with_transform', transform)


def collect(limit: Optional[int] = None) -> Operator:
    """Terminal step: materialize the stream into a list."""
    return Operator('collect', limit)


def first(default: Any = None) -> Operator:
    """Terminal step: the first record, or ``default``."""
    return Operator('first', default)
