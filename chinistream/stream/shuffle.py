"""Bounded-buffer shuffling for streams.

A full shuffle needs the whole sequence in memory. Streams instead keep a
fixed-size buffer: once it is full, every incoming record evicts a random
buffered record, which is yielded. The remaining buffer is shuffled and
drained when the input ends. Randomness improves with ``buffer_size``;
memory use is bounded by it.
"""

from typing import Iterable, Iterator, Optional, TypeVar

import numpy as np

__all__ = ['buffer_shuffle', 'make_rng']

T = TypeVar('T')


def make_rng(seed: Optional[int], epoch: int = 0) -> np.random.Generator:
    """Create the generator for one pass of a shuffle.

    The same (seed, epoch) always produces the same generator. Without a seed
    the order is different every time.

    Args:
        seed (int, optional): Base random seed.
        epoch (int): Epoch number, added to the seed so each epoch reorders.

    Returns:
        np.random.Generator: Random generator.
    """
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng(seed + epoch)


def buffer_shuffle(
    items: Iterable[T],
    buffer_size: int,
    rng: np.random.Generator,
) -> Iterator[T]:
    """Shuffle ``items`` using a buffer of at most ``buffer_size`` elements.

    Args:
        items (Iterable): Input sequence.
        buffer_size (int): Maximum number of buffered elements.
        rng (np.random.Generator): Source of randomness.

    Returns:
        Iterator: The same elements, approximately shuffled.
    """
    buffer: list[T] = []
    for item in items:
        if len(buffer) < buffer_size:
            buffer.append(item)
            continue
        i = int(rng.integers(buffer_size))
        yield buffer[i]
        buffer[i] = item

    for i in rng.permutation(len(buffer)):
        yield buffer[i]
