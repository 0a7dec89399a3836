"""Lazy streams and the pieces records flow through."""

from chinistream.stream.adapter import ValueAdapter
from chinistream.stream.streaming import LazyStream, StreamDict, StreamIterator, StreamState
from chinistream.stream.transform import TransformSlot
from chinistream.stream.world import World

__all__ = ['LazyStream', 'StreamDict', 'StreamIterator', 'StreamState', 'TransformSlot', 'ValueAdapter', 'World']
