"""ValueAdapter: convert raw provider records into native Python/numpy records.

Providers hand out whatever their storage layer produces: PIL images from HF
``Image`` features, numpy scalars from pandas, Arrow scalars, torch tensors.
The adapter maps every value through a small, fixed table keyed by value
kind. Kinds it does not recognize pass through untouched, so a new provider
type degrades to "still the provider's object" instead of an error.

When the provider reports a schema, the declared kind of a field wins over
the runtime type, and a value that cannot be cast to it raises
:class:`~chinistream.errors.ConversionFailure`.
"""

import math
from collections.abc import Mapping
from typing import Any, Callable, Optional

import numpy as np
import pyarrow as pa
import torch

from chinistream.errors import ConversionFailure

__all__ = ['ValueAdapter', 'classify', 'NUMPY_DTYPES']

NUMPY_DTYPES: dict[str, type] = {
    'int8': np.int8,
    'int16': np.int16,
    'int32': np.int32,
    'int64': np.int64,
    'uint8': np.uint8,
    'uint16': np.uint16,
    'uint32': np.uint32,
    'uint64': np.uint64,
    'float16': np.float16,
    'float32': np.float32,
    'float64': np.float64,
    'bool': np.bool_,
}

_TEXT_KINDS = frozenset({'str', 'string'})
_FLOAT_KINDS = frozenset({'float16', 'float32', 'float64'})


def _cast_number(kind: str, value: Any) -> Any:
    """Cast a converted value to a numeric kind without losing information.

    Integer kinds take integral numbers that fit the type. Float kinds take
    any number and may round it, but not overflow it to infinity. ``bool``
    takes booleans and the integers 0 and 1.

    Raises:
        ValueError: If the value is not a number or the cast would change it.
    """
    if isinstance(value, np.ndarray) and value.ndim == 0:
        value = value.item()
    if kind == 'bool':
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValueError(f'{value!r} is not a boolean')
    if not isinstance(value, (int, float)):
        raise ValueError(f'{value!r} is not a number')
    cast = NUMPY_DTYPES[kind](value).item()
    if kind in _FLOAT_KINDS:
        if math.isinf(cast) and not (isinstance(value, float) and math.isinf(value)):
            raise ValueError(f'{value!r} overflows {kind}')
        return cast
    if cast != value:
        raise ValueError(f'{value!r} does not fit {kind}')
    return cast


def classify(value: Any) -> str:
    """Name the kind of a runtime value.

    Args:
        value (Any): Value to classify.

    Returns:
        str: One of ``none``, ``bool``, ``int``, ``float``, ``str``, ``bytes``,
        ``scalar``, ``ndarray``, ``tensor``, ``arrow``, ``mapping``,
        ``sequence``, ``image`` or ``unknown``.
    """
    if value is None:
        return 'none'
    # numpy scalars first: np.float64 and np.str_ subclass the Python types
    if isinstance(value, np.generic):
        return 'scalar'
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return 'bool'
    if isinstance(value, int):
        return 'int'
    if isinstance(value, float):
        return 'float'
    if isinstance(value, str):
        return 'str'
    if isinstance(value, (bytes, bytearray, memoryview)):
        return 'bytes'
    if isinstance(value, np.ndarray):
        return 'ndarray'
    if isinstance(value, torch.Tensor):
        return 'tensor'
    if isinstance(value, (pa.Scalar, pa.Array, pa.ChunkedArray)):
        return 'arrow'
    if isinstance(value, Mapping):
        return 'mapping'
    if isinstance(value, (list, tuple)):
        return 'sequence'
    # PIL images (and other buffer-backed objects) expose the array interface
    if hasattr(value, '__array_interface__'):
        return 'image'
    return 'unknown'


def _passthrough(value: Any, adapter: 'ValueAdapter') -> Any:
    return value


def _from_bytes(value: Any, adapter: 'ValueAdapter') -> bytes:
    return bytes(value)


def _from_scalar(value: np.generic, adapter: 'ValueAdapter') -> Any:
    return value.item()


def _from_tensor(value: torch.Tensor, adapter: 'ValueAdapter') -> np.ndarray:
    return value.detach().cpu().numpy()


def _from_arrow(value: Any, adapter: 'ValueAdapter') -> Any:
    if isinstance(value, pa.Scalar):
        return adapter.convert(value.as_py())
    if isinstance(value, pa.ChunkedArray):
        return value.to_numpy()
    return value.to_numpy(zero_copy_only=False)


def _from_image(value: Any, adapter: 'ValueAdapter') -> np.ndarray:
    return np.asarray(value)


def _from_mapping(value: Mapping, adapter: 'ValueAdapter') -> dict[str, Any]:
    return {key: adapter.convert(item) for key, item in value.items()}


def _from_sequence(value: Any, adapter: 'ValueAdapter') -> list[Any]:
    return [adapter.convert(item) for item in value]


_CONVERTERS: dict[str, Callable[[Any, 'ValueAdapter'], Any]] = {
    'none': _passthrough,
    'bool': _passthrough,
    'int': _passthrough,
    'float': _passthrough,
    'str': _passthrough,
    'bytes': _from_bytes,
    'scalar': _from_scalar,
    'ndarray': _passthrough,
    'tensor': _from_tensor,
    'arrow': _from_arrow,
    'image': _from_image,
    'mapping': _from_mapping,
    'sequence': _from_sequence,
    'unknown': _passthrough,
}


def _decode_image(value: Mapping) -> Any:
    """Decode an undecoded HF image dict (``{'bytes': ..., 'path': ...}``)."""
    from datasets import Image

    return Image().decode_example(dict(value))


class ValueAdapter:
    """Converts raw records into native records.

    Args:
        features (Dict[str, str], optional): Declared kind per field, using the
            shard column-type vocabulary (``int32``, ``float32[]``, ``str``,
            ``image``, ...). Fields without a declared kind, and kinds outside
            the vocabulary, are converted by runtime type only.

    Example:
        >>> adapter = ValueAdapter({'label': 'int64', 'x': 'float32[]'})
        >>> adapter.adapt({'label': np.int64(3), 'x': [1, 2]})
        {'label': 3, 'x': array([1., 2.], dtype=float32)}
    """

    def __init__(self, features: Optional[Mapping[str, str]] = None) -> None:
        self.features = dict(features) if features else {}

    def adapt(self, record: Any) -> Any:
        """Convert one raw record.

        Args:
            record (Any): Raw record, normally a mapping of field to value.

        Returns:
            Any: The converted record. Mappings come back as fresh dicts.

        Raises:
            ConversionFailure: If a field cannot be cast to its declared kind.
        """
        if not isinstance(record, Mapping):
            return self.convert(record)
        return {field: self.convert_field(field, value) for field, value in record.items()}

    __call__ = adapt

    def convert(self, value: Any) -> Any:
        """Convert a single value by its runtime kind."""
        return _CONVERTERS[classify(value)](value, self)

    def convert_field(self, field: str, value: Any) -> Any:
        """Convert a field value, honoring the declared kind when there is one."""
        kind = self.features.get(field)
        if kind is None or value is None:
            return self.convert(value)

        if kind.endswith('[]'):
            dtype = NUMPY_DTYPES.get(kind[:-2])
            if dtype is None:
                return self.convert(value)
            try:
                return np.asarray(self.convert(value), dtype=dtype)
            except (TypeError, ValueError, OverflowError) as e:
                raise ConversionFailure(field, kind, value) from e

        if kind in NUMPY_DTYPES:
            try:
                return _cast_number(kind, self.convert(value))
            except (TypeError, ValueError, OverflowError) as e:
                raise ConversionFailure(field, kind, value) from e

        if kind in _TEXT_KINDS:
            if isinstance(value, str):
                return value
            if isinstance(value, (bytes, bytearray)):
                try:
                    return bytes(value).decode('utf-8')
                except UnicodeDecodeError as e:
                    raise ConversionFailure(field, kind, value) from e
            raise ConversionFailure(field, kind, value)

        if kind == 'bytes':
            if classify(value) != 'bytes':
                raise ConversionFailure(field, kind, value)
            return bytes(value)

        if kind == 'image':
            if isinstance(value, Mapping):
                if value.get('bytes') is None and value.get('path') is None:
                    raise ConversionFailure(field, kind, value)
                value = _decode_image(value)
            if isinstance(value, np.ndarray) or hasattr(value, '__array_interface__'):
                return np.asarray(value)
            raise ConversionFailure(field, kind, value)

        return self.convert(value)

    def __repr__(self) -> str:
        return f'ValueAdapter(features={self.features!r})'
