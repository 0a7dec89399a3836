import json

import numpy as np
import pytest
from torch.utils.data import DataLoader

from chinistream import LazyStream, ParquetProvider, StreamState
from chinistream.provider.reader import ShardReader
from chinistream.stream.ops import ShardProvider, TakeProvider


def ids(records):
    return [r['idx'] for r in records]


@pytest.fixture
def local(make_shards):
    return make_shards([10, 10, 5])


@pytest.fixture
def stream(local):
    return LazyStream(ParquetProvider(local))


def test_reads_every_shard_in_order(local):
    provider = ParquetProvider(local)
    assert provider.num_shards == 3
    assert provider.num_samples == 25
    assert [r['idx'] for r in provider] == list(range(25))


def test_features_come_from_the_index(local):
    assert ParquetProvider(local).features == {'idx': 'int64', 'text': 'str', 'x': 'float32[]'}


def test_column_selection(local):
    provider = ParquetProvider(local, columns=['idx'])
    assert provider.features == {'idx': 'int64'}
    assert set(next(iter(provider))) == {'idx'}


def test_split_subdirectory(make_shards, tmp_path):
    make_shards([3], split='validation', root=tmp_path / 'ds')
    provider = ParquetProvider(tmp_path / 'ds', split='validation')
    assert provider.split == 'validation'
    assert [r['idx'] for r in provider] == [0, 1, 2]


def test_skip_is_native(stream):
    skipped = stream.skip(12)
    assert isinstance(skipped.provider, ParquetProvider)
    assert ids(skipped.collect()) == list(range(12, 25))


def test_chained_skips_add_up(stream):
    assert ids(stream.skip(5).skip(10).collect()) == list(range(15, 25))


def test_skip_past_the_end_is_empty(stream):
    assert stream.skip(30).collect() == []
    assert stream.skip(25).collect() == []


def test_take_falls_back_to_generic(stream):
    head = stream.take(3)
    assert isinstance(head.provider, TakeProvider)
    assert ids(head.collect()) == [0, 1, 2]


def test_skip_and_take_split_the_stream(stream):
    everything = ids(stream.collect())
    for n in (0, 9, 10, 11, 25):
        assert ids(stream.take(n).collect()) + ids(stream.skip(n).collect()) == everything


def test_shard_is_native_by_file(stream):
    middle = stream.shard(3, 1)
    assert isinstance(middle.provider, ParquetProvider)
    assert middle.num_shards == 1
    assert ids(middle.collect()) == list(range(10, 20))
    assert ids(stream.shard(2, 0).collect()) == list(range(10)) + list(range(20, 25))


def test_shard_beyond_file_count_is_generic(stream):
    part = stream.shard(4, 1)
    assert isinstance(part.provider, ShardProvider)
    assert ids(part.collect()) == list(range(1, 25, 4))


def test_shard_after_skip_is_generic(stream):
    part = stream.skip(1).shard(2, 0)
    assert isinstance(part.provider, ShardProvider)
    assert ids(part.collect()) == list(range(1, 25, 2))


@pytest.mark.parametrize('num_shards', [2, 3, 4, 6])
def test_shards_cover_every_record_once(stream, num_shards):
    seen = [idx for i in range(num_shards) for idx in ids(stream.shard(num_shards, i).collect())]
    assert sorted(seen) == list(range(25))


def test_skip_after_shard_stays_native(stream):
    part = stream.shard(3, 2).skip(2)
    assert isinstance(part.provider, ParquetProvider)
    assert ids(part.collect()) == [22, 23, 24]


def test_native_format_uses_the_index_schema(stream):
    record = stream.with_format('native').first()
    assert record['idx'] == 0 and type(record['idx']) is int
    assert record['text'] == 'row 0'
    assert isinstance(record['x'], np.ndarray)
    assert record['x'].dtype == np.float32
    np.testing.assert_array_equal(record['x'], [0.0, 0.5])


def test_missing_shard_file_fails_the_pass(local, stream):
    (local / 'shard.00001.parquet').unlink()
    it = iter(stream)
    assert len([next(it) for _ in range(10)]) == 10
    with pytest.raises(FileNotFoundError):
        next(it)
    assert it.state is StreamState.FAILED


def test_generic_operators_do_not_touch_the_provider(stream):
    assert isinstance(stream.filter(lambda r: r['idx'] > 20).provider.upstream, ParquetProvider)
    assert ids(stream.filter(lambda r: r['idx'] > 20).collect()) == [21, 22, 23, 24]


def test_unsupported_index_version(tmp_path):
    (tmp_path / 'index.json').write_text(json.dumps({'version': 1, 'shards': []}))
    with pytest.raises(ValueError, match='version'):
        ParquetProvider(tmp_path)


def test_unreadable_index(tmp_path):
    (tmp_path / 'index.json').write_text('{not json')
    with pytest.raises(ValueError):
        ParquetProvider(tmp_path)


def test_missing_index(tmp_path):
    with pytest.raises(FileNotFoundError):
        ParquetProvider(tmp_path)


def test_shard_reader_starts_at_a_row_and_releases_the_shard(local):
    reader = ShardReader(local / 'shard.00000.parquet', columns=['idx'])
    rows = reader.iter_rows(7)
    assert reader._records == []
    assert next(rows) == {'idx': 7}
    assert [r['idx'] for r in rows] == [8, 9]
    assert reader._records == []
    assert [r['idx'] for r in reader.iter_rows()] == list(range(10))


def test_dataloader_workers_take_once_across_shards(stream):
    loader = DataLoader(stream.take(12), batch_size=None, num_workers=2)
    assert sorted(int(r['idx']) for r in loader) == list(range(12))
