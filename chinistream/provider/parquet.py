"""ParquetProvider: stream records from a local directory of Parquet shards.

The directory layout is the one produced by MosaicML-style shard writers::

    data/
        index.json
        shard.00000.parquet
        shard.00001.parquet

``index.json`` (version 2) lists every shard with its sample count and, per
shard, the column names and encodings::

    {"version": 2, "shards": [{"samples": 100,
                               "raw_data": {"basename": "shard.00000.parquet", "bytes": 2048},
                               "column_names": ["x", "y"],
                               "column_encodings": ["ndarray:float32", "int32"]}]}
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import numpy as np

from chinistream.provider.base import Provider
from chinistream.provider.reader import ShardReader
from chinistream.util import read_index

__all__ = ['ParquetProvider', 'ShardInfo']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShardInfo:
    """Metadata for a single shard."""

    shard_id: int
    basename: str
    num_samples: int
    size_bytes: int
    local_path: Path


def _encoding_to_kind(encoding: str) -> str:
    """Map an index column encoding (``ndarray:float32``) to a schema kind (``float32[]``)."""
    if encoding.startswith('ndarray:'):
        return f'{encoding[len("ndarray:"):]}[]'
    return encoding


class ParquetProvider(Provider):
    """Provider over a local Parquet shard directory.

    Shards are read one at a time; only the shard being iterated is held in
    memory. ``skip`` is native: sample offsets are binary-searched so whole
    shards are skipped without being read. ``shard`` is native when there are
    at least as many shard files as requested shards, in which case files are
    dealt out round-robin.

    Args:
        local (str | Path): Directory containing ``index.json``.
        split (str, optional): Split subdirectory (e.g. ``"train"``) appended
            to ``local``. Defaults to ``None``.
        columns (List[str], optional): Columns to read. Defaults to all.

    Example:
        >>> provider = ParquetProvider('./data', split='train')
        >>> provider.num_samples
        1000
    """

    def __init__(
        self,
        local: Union[str, Path],
        split: Optional[str] = None,
        columns: Optional[list[str]] = None,
    ) -> None:
        local_path = Path(local).expanduser().resolve()
        if split:
            local_path = local_path / split
        self.local = local_path
        self.split = split
        self.columns = columns

        index = read_index(self.local)
        shards: list[ShardInfo] = []
        for shard_idx, shard_meta in enumerate(index['shards']):
            raw_data = shard_meta.get('raw_data') or {}
            basename = raw_data.get('basename', f'shard.{shard_idx:05}.parquet')
            shards.append(
                ShardInfo(
                    shard_id=shard_idx,
                    basename=basename,
                    num_samples=shard_meta['samples'],
                    size_bytes=raw_data.get('bytes', 0),
                    local_path=self.local / basename,
                )
            )

        features = None
        if index['shards']:
            first = index['shards'][0]
            names = first.get('column_names')
            encodings = first.get('column_encodings')
            if names and encodings and len(names) == len(encodings):
                features = {
                    name: _encoding_to_kind(enc)
                    for name, enc in zip(names, encodings)
                    if columns is None or name in columns
                }
        self.features = features

        self._shards: list[ShardInfo] = []
        self._offsets = np.zeros(1, dtype=np.int64)
        self._start = 0
        self._select(shards)

        logger.info(f'Opened {self.local} with {self.num_shards} shards and {self.num_samples} samples')

    def _select(self, shards: list[ShardInfo]) -> None:
        self._shards = shards
        self.num_shards = len(shards)
        # Cumulative sample offsets for sample -> shard mapping
        self._offsets = np.zeros(len(shards) + 1, dtype=np.int64)
        for i, shard in enumerate(shards):
            self._offsets[i + 1] = self._offsets[i] + shard.num_samples

    @property
    def num_samples(self) -> int:
        """Number of records a full pass yields."""
        return max(int(self._offsets[-1]) - self._start, 0)

    @property
    def files(self) -> list[str]:
        """Paths of the shard files this provider reads, in order."""
        return [str(shard.local_path) for shard in self._shards]

    def _sample_to_shard(self, sample_id: int) -> tuple[int, int]:
        """Map a sample position to (position in shard list, row within shard).

        Uses binary search on cumulative offsets for O(log n).
        """
        pos = int(np.searchsorted(self._offsets[1:], sample_id, side='right'))
        return pos, sample_id - int(self._offsets[pos])

    def _iter_records(self) -> Iterator[dict[str, Any]]:
        if self._start >= int(self._offsets[-1]):
            return
        first_pos, first_row = self._sample_to_shard(self._start)
        for pos in range(first_pos, len(self._shards)):
            shard = self._shards[pos]
            if not shard.local_path.exists():
                raise FileNotFoundError(f'Shard {shard.basename} not found at {shard.local_path}')
            logger.debug(f'Reading shard {shard.basename}')
            reader = ShardReader(shard.local_path, self.columns)
            yield from reader.iter_rows(first_row if pos == first_pos else 0)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return self._iter_records()

    def _copy(self) -> 'ParquetProvider':
        other = ParquetProvider.__new__(ParquetProvider)
        other.__dict__.update(self.__dict__)
        return other

    def native(self, op: str, *args: Any, **kwargs: Any) -> Optional[Provider]:
        if op == 'skip':
            (n,) = args
            other = self._copy()
            other._start = self._start + n
            return other
        if op == 'shard':
            num_shards, index = args
            if self._start or num_shards > len(self._shards):
                return None
            other = self._copy()
            other._select(self._shards[index::num_shards])
            return other
        return None

    def describe(self) -> str:
        return f'ParquetProvider({self.local}, shards={self.num_shards})'
