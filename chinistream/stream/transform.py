"""TransformSlot: the user hook applied to every record a stream yields."""

from typing import Any, Callable, Optional

from chinistream.util import identity

__all__ = ['TransformSlot']


class TransformSlot:
    """Holds a single record transform, defaulting to the identity.

    Each stream owns its slot. Operators hand the derived stream a copy of
    the slot, so replacing the transform on one stream never affects another.

    Args:
        fn (Callable, optional): Transform. ``None`` means identity.
    """

    def __init__(self, fn: Optional[Callable[[Any], Any]] = None) -> None:
        self.fn = identity
        self.set(fn)

    def set(self, fn: Optional[Callable[[Any], Any]]) -> None:
        """Replace the transform. ``None`` restores the identity."""
        if fn is None:
            fn = identity
        if not callable(fn):
            raise TypeError(f'Transform must be callable, got {type(fn).__name__}')
        self.fn = fn

    @property
    def is_identity(self) -> bool:
        return self.fn is identity

    def copy(self) -> 'TransformSlot':
        return TransformSlot(self.fn)

    def __call__(self, record: Any) -> Any:
        return self.fn(record)

    def __repr__(self) -> str:
        name = getattr(self.fn, '__qualname__', repr(self.fn))
        return f'TransformSlot({name})'
