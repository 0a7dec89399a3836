import numpy as np
import pyarrow as pa
import pytest
import torch

from chinistream import ConversionFailure, ValueAdapter
from chinistream.stream.adapter import classify


class Opaque:
    pass


@pytest.mark.parametrize(
    'value, kind',
    [
        (None, 'none'),
        (True, 'bool'),
        (3, 'int'),
        (2.5, 'float'),
        ('text', 'str'),
        (b'raw', 'bytes'),
        (bytearray(b'raw'), 'bytes'),
        (np.int32(4), 'scalar'),
        (np.float64(1.0), 'scalar'),
        (np.zeros(3), 'ndarray'),
        (torch.zeros(2), 'tensor'),
        (pa.scalar(1), 'arrow'),
        (pa.array([1, 2]), 'arrow'),
        ({'a': 1}, 'mapping'),
        ([1, 2], 'sequence'),
        ((1, 2), 'sequence'),
        (Opaque(), 'unknown'),
    ],
)
def test_classify(value, kind):
    assert classify(value) == kind


def test_runtime_conversion_without_schema():
    adapter = ValueAdapter()
    record = adapter.adapt({
        'scalar': np.int64(7),
        'tensor': torch.tensor([1.0, 2.0]),
        'arrow': pa.scalar('hi'),
        'column': pa.array([1, 2, 3]),
        'nested': {'inner': (np.float32(0.5), memoryview(b'ab'))},
    })

    assert record['scalar'] == 7 and type(record['scalar']) is int
    assert isinstance(record['tensor'], np.ndarray)
    np.testing.assert_array_equal(record['tensor'], [1.0, 2.0])
    assert record['arrow'] == 'hi'
    np.testing.assert_array_equal(record['column'], [1, 2, 3])
    assert record['nested'] == {'inner': [0.5, b'ab']}


def test_unknown_values_pass_through_unchanged():
    value = Opaque()
    assert ValueAdapter().adapt({'obj': value})['obj'] is value


def test_adapt_returns_a_fresh_dict():
    raw = {'a': 1}
    adapted = ValueAdapter().adapt(raw)
    adapted['a'] = 2
    assert raw == {'a': 1}


def test_declared_kinds_take_precedence():
    adapter = ValueAdapter({
        'label': 'int64',
        'score': 'float32',
        'flag': 'bool',
        'x': 'float32[]',
        'name': 'str',
        'blob': 'bytes',
    })
    record = adapter.adapt({
        'label': np.int32(3),
        'score': 1,
        'flag': 1,
        'x': [1, 2],
        'name': b'abc',
        'blob': bytearray(b'\x00\x01'),
    })

    assert record['label'] == 3 and type(record['label']) is int
    assert record['score'] == 1.0 and type(record['score']) is float
    assert record['flag'] is True
    assert record['x'].dtype == np.float32
    np.testing.assert_array_equal(record['x'], [1.0, 2.0])
    assert record['name'] == 'abc'
    assert record['blob'] == b'\x00\x01'


def test_missing_values_stay_none():
    assert ValueAdapter({'label': 'int64'}).adapt({'label': None}) == {'label': None}


def test_unknown_kinds_fall_back_to_runtime_type():
    record = ValueAdapter({'meta': 'json'}).adapt({'meta': np.int8(1)})
    assert record == {'meta': 1}


def test_image_kind_converts_arrays():
    pixels = np.zeros((2, 3), dtype=np.uint8)
    record = ValueAdapter({'image': 'image'}).adapt({'image': pixels})
    assert record['image'].shape == (2, 3)


@pytest.mark.parametrize(
    'kind, value',
    [
        ('int64', 'seven'),
        ('int64', 1.7),
        ('int64', '7'),
        ('int8', 300),
        ('uint8', -1),
        ('float32', '1.5'),
        ('float16', 1e10),
        ('bool', 'False'),
        ('bool', 2),
        ('bool', 0.5),
        ('float32[]', ['a', 'b']),
        ('str', 5),
        ('str', b'\xff\xfe'),
        ('bytes', 'text'),
        ('image', {'bytes': None, 'path': None}),
        ('image', 'not an image'),
    ],
)
def test_impossible_casts_raise_conversion_failure(kind, value):
    adapter = ValueAdapter({'field': kind})
    with pytest.raises(ConversionFailure) as excinfo:
        adapter.adapt({'field': value})
    assert excinfo.value.field == 'field'
    assert excinfo.value.kind == kind
    assert 'field' in str(excinfo.value)
    assert isinstance(excinfo.value, ValueError)


@pytest.mark.parametrize(
    'kind, value, expected',
    [
        ('int64', 3.0, 3),
        ('int8', -128, -128),
        ('uint64', np.uint64(2**64 - 1), 2**64 - 1),
        ('bool', 0, False),
        ('bool', np.bool_(True), True),
        ('float64', float('nan'), None),
        ('float32', float('inf'), float('inf')),
    ],
)
def test_lossless_casts_are_accepted(kind, value, expected):
    out = ValueAdapter({'field': kind}).adapt({'field': value})['field']
    if expected is None:
        assert np.isnan(out)
    else:
        assert out == expected
        assert type(out) is type(expected)


def test_float_kinds_round_to_precision():
    out = ValueAdapter({'score': 'float32'}).adapt({'score': 0.1})['score']
    assert out == pytest.approx(0.1)
    assert out == float(np.float32(0.1))


def test_non_mapping_records_are_converted_whole():
    assert ValueAdapter().adapt(np.int16(5)) == 5
    assert ValueAdapter().adapt([np.int16(5)]) == [5]
