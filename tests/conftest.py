import json

import pandas as pd
import pytest

from chinistream import from_iterable


@pytest.fixture
def records():
    """100 labeled records: idx 0..99, label alternating 0/1."""
    return [{'idx': i, 'label': i % 2} for i in range(100)]


@pytest.fixture
def stream(records):
    return from_iterable(records)


@pytest.fixture
def make_shards(tmp_path):
    """Write a Parquet shard directory with an index.json and return its path.

    Records have columns ``idx`` (running over all shards), ``text`` and ``x``
    (a two-element float list).
    """

    def _make(shard_sizes, split=None, root=None):
        local = root or tmp_path
        if split:
            local = local / split
        local.mkdir(parents=True, exist_ok=True)

        shards = []
        start = 0
        for shard_idx, size in enumerate(shard_sizes):
            basename = f'shard.{shard_idx:05}.parquet'
            ids = list(range(start, start + size))
            df = pd.DataFrame({
                'idx': ids,
                'text': [f'row {i}' for i in ids],
                'x': [[float(i), float(i) + 0.5] for i in ids],
            })
            df.to_parquet(local / basename, index=False)
            shards.append({
                'samples': size,
                'raw_data': {'basename': basename, 'bytes': (local / basename).stat().st_size},
                'column_names': ['idx', 'text', 'x'],
                'column_encodings': ['int64', 'str', 'ndarray:float32'],
            })
            start += size

        (local / 'index.json').write_text(json.dumps({'version': 2, 'shards': shards}))
        return local

    return _make
