"""Base class for the sources a stream pulls raw records from."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator, Optional

__all__ = ['Provider', 'OPERATORS']

logger = logging.getLogger(__name__)

# Operators a provider may implement natively.
OPERATORS = ('take', 'skip', 'shuffle', 'batch', 'shard', 'filter', 'map')


class Provider(ABC):
    """A re-iterable sequence of raw records.

    Every call to ``__iter__`` must start a fresh pass from the beginning.
    Providers never buffer ahead of demand.

    Subclasses that can run an operator themselves (a database that can
    ``LIMIT``, a file set that can be split by file) override :meth:`native`.
    Anything they decline is run by the generic implementations in
    :mod:`chinistream.stream.ops`.

    Attributes:
        features (Dict[str, str], optional): Declared kind per field, or
            ``None`` if unknown.
        num_shards (int): Number of independently readable data shards.
        splits_workers (bool): Whether iterating inside a DataLoader worker
            already yields only that worker's share. When ``False`` the
            stream splits the finished records across workers itself.
    """

    features: Optional[dict[str, str]] = None
    num_shards: int = 1
    splits_workers: bool = False

    @abstractmethod
    def __iter__(self) -> Iterator[Any]:
        """Start a new pass over the raw records."""

    def native(self, op: str, *args: Any, **kwargs: Any) -> Optional['Provider']:
        """Run ``op`` natively if supported.

        Args:
            op (str): Operator name, one of :data:`OPERATORS`.
            *args: Operator arguments, already validated.
            **kwargs: Operator keyword arguments.

        Returns:
            Provider, optional: The derived provider, or ``None`` to fall back
            to the generic implementation.
        """
        return None

    def with_format(self, format: Optional[str]) -> Optional['Provider']:
        """Return a copy that formats records itself, or ``None`` if unsupported."""
        return None

    def set_epoch(self, epoch: int) -> None:
        """Set the epoch used to reseed shuffles. No-op by default."""
        logger.debug(f'{type(self).__name__} ignores set_epoch({epoch})')

    def describe(self) -> str:
        """Short human-readable description used by ``repr``."""
        return type(self).__name__
