import os

import datasets
import pytest

from chinistream import (
    HuggingFaceProvider,
    LazyStream,
    LoadConfig,
    ParquetProvider,
    StreamDict,
    from_iterable,
    load,
)


def ids(records):
    return [r['idx'] for r in records]


def test_load_local_shard_directory(make_shards):
    local = make_shards([4, 4])
    stream = load(local, streaming=True)
    assert isinstance(stream, LazyStream)
    assert isinstance(stream.provider, ParquetProvider)
    assert ids(stream.collect()) == list(range(8))


def test_load_named_split(make_shards, tmp_path):
    root = tmp_path / 'ds'
    make_shards([3], split='train', root=root)
    stream = load(root, split='train', streaming=True)
    assert ids(stream.collect()) == [0, 1, 2]


def test_load_every_split(make_shards, tmp_path):
    root = tmp_path / 'ds'
    make_shards([3], split='train', root=root)
    make_shards([2], split='test', root=root)
    splits = load(root, streaming=True)
    assert isinstance(splits, StreamDict)
    assert sorted(splits) == ['test', 'train']
    assert ids(splits['test'].collect()) == [0, 1]


def test_load_applies_format_transform_and_columns(make_shards):
    local = make_shards([4])
    stream = load(local, streaming=True, format='native', transform=lambda r: r['idx'], columns=['idx'])
    assert stream.format == 'native'
    assert stream.features == {'idx': 'int64'}
    assert stream.collect() == [0, 1, 2, 3]


def test_load_local_without_streaming_is_eager(make_shards, tmp_path):
    local = make_shards([4, 3])
    dataset = load(local, cache_dir=str(tmp_path / 'cache'))
    assert isinstance(dataset, datasets.Dataset)
    assert dataset.num_rows == 7
    assert dataset[0]['idx'] == 0


def test_load_through_hf_builder_streams(make_shards):
    local = make_shards([4, 3])
    files = sorted(str(path) for path in local.glob('*.parquet'))
    stream = load('parquet', data_files=files, split='train', streaming=True)
    assert isinstance(stream.provider, HuggingFaceProvider)
    assert ids(stream.skip(5).collect()) == [5, 6]


def test_load_through_hf_builder_without_split(make_shards):
    local = make_shards([2])
    files = [str(local / 'shard.00000.parquet')]
    splits = load('parquet', data_files={'train': files}, streaming=True)
    assert isinstance(splits, StreamDict)
    assert ids(splits['train'].collect()) == [0, 1]


def test_eager_results_pass_through(make_shards, tmp_path):
    local = make_shards([3])
    files = [str(local / 'shard.00000.parquet')]
    dataset = load('parquet', data_files=files, split='train', cache_dir=str(tmp_path / 'cache'))
    assert isinstance(dataset, datasets.Dataset)
    assert dataset.num_rows == 3


def test_from_iterable_accepts_generator_functions():
    def records():
        for i in range(3):
            yield {'idx': i}

    stream = from_iterable(records)
    assert ids(stream.collect()) == [0, 1, 2]
    assert ids(stream.collect()) == [0, 1, 2]


def test_config_splits_known_options_from_extras():
    config = LoadConfig.from_kwargs('c4', name='en', split='train', streaming=True, trust_remote_code=True)
    assert config.name == 'en'
    assert config.streaming
    assert config.extra == {'trust_remote_code': True}
    assert config.provider_kwargs() == {'split': 'train', 'streaming': True, 'trust_remote_code': True}


def test_config_accepts_paths(tmp_path):
    assert LoadConfig.from_kwargs(tmp_path).path == str(tmp_path)


def test_offline_mode_sets_environment(monkeypatch):
    monkeypatch.setenv('HF_DATASETS_OFFLINE', '0')
    monkeypatch.setenv('HF_HUB_OFFLINE', '0')
    monkeypatch.setattr(datasets.config, 'HF_DATASETS_OFFLINE', False, raising=False)
    monkeypatch.setattr(datasets.config, 'HF_HUB_OFFLINE', False, raising=False)

    LoadConfig(path='mnist', offline=True).apply_environment()

    assert datasets.config.HF_DATASETS_OFFLINE is True
    assert os.environ['HF_DATASETS_OFFLINE'] == '1'


def test_online_mode_leaves_environment(monkeypatch):
    monkeypatch.setenv('HF_DATASETS_OFFLINE', '0')
    LoadConfig(path='mnist').apply_environment()
    assert os.environ['HF_DATASETS_OFFLINE'] == '0'


def test_missing_local_split_falls_through_to_provider(make_shards, tmp_path, monkeypatch):
    root = tmp_path / 'ds'
    make_shards([1], split='train', root=root)
    calls = []

    def fake_load_dataset(path, name=None, **kwargs):
        calls.append((path, name, kwargs))
        return datasets.Dataset.from_dict({'idx': [0]})

    monkeypatch.setattr(datasets, 'load_dataset', fake_load_dataset)
    result = load(root, split='validation')
    assert isinstance(result, datasets.Dataset)
    assert calls == [(str(root), None, {'split': 'validation', 'streaming': False})]


@pytest.mark.parametrize('streaming', [True, False])
def test_unknown_options_reach_the_provider(monkeypatch, streaming):
    seen = {}

    def fake_load_dataset(path, name=None, **kwargs):
        seen.update(kwargs)
        return datasets.Dataset.from_dict({'idx': [0]})

    monkeypatch.setattr(datasets, 'load_dataset', fake_load_dataset)
    load('some/dataset', streaming=streaming, trust_remote_code=True, revision='main')
    assert seen['trust_remote_code'] is True
    assert seen['revision'] == 'main'
    assert seen['streaming'] is streaming
