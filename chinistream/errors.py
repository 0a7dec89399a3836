"""Exceptions raised by ChiniStream.

Provider errors are never wrapped: whatever the provider raises while a
stream is being pulled reaches the caller unchanged.
"""

__all__ = ['ConversionFailure', 'UnsupportedOperation']


class UnsupportedOperation(TypeError):
    """Raised for random access or length queries on a lazy stream.

    Subclasses ``TypeError`` so that ``list(stream)`` and friends, which probe
    ``len()`` for a size hint, fall back to plain iteration.
    """


class ConversionFailure(ValueError):
    """A field could not be converted to the kind its schema declares.

    Args:
        field (str): Field name.
        kind (str): Declared kind (e.g. ``"int32"`` or ``"float32[]"``).
        value (Any): The offending value.
    """

    def __init__(self, field: str, kind: str, value: object) -> None:
        self.field = field
        self.kind = kind
        self.value = value
        super().__init__(
            f'Cannot convert field {field!r} to {kind!r}: got {type(value).__name__} {value!r:.80}'
        )
