"""Partition a record sequence into disjoint shards.

Shards are interleaved: shard ``i`` of ``n`` gets positions ``i, i+n, i+2n, ...``.
Interleaving keeps shards balanced (sizes differ by at most one) without
knowing the sequence length up front, which a stream never does.
"""

from itertools import islice
from typing import Iterable, Iterator, TypeVar

from chinistream.stream.world import World

__all__ = ['check_shard', 'iter_partition', 'iter_worker_partition']

T = TypeVar('T')


def check_shard(num_shards: int, index: int) -> None:
    """Validate shard arguments.

    Raises:
        ValueError: If ``num_shards < 1`` or ``index`` is not in ``[0, num_shards)``.
    """
    if num_shards < 1:
        raise ValueError(f'num_shards must be at least 1, got {num_shards}')
    if not 0 <= index < num_shards:
        raise ValueError(f'Shard index {index} out of range for {num_shards} shards')


def iter_partition(items: Iterable[T], num_shards: int, index: int) -> Iterator[T]:
    """Yield shard ``index`` of ``num_shards`` from ``items``.

    Deterministic: the same input sequence always gives the same shard, in
    the same order.

    Args:
        items (Iterable): Input sequence.
        num_shards (int): Number of shards.
        index (int): Shard to keep.

    Returns:
        Iterator: The selected shard.
    """
    check_shard(num_shards, index)
    if num_shards == 1:
        return iter(items)
    return islice(items, index, None, num_shards)


def iter_worker_partition(items: Iterable[T], world: World) -> Iterator[T]:
    """Yield this DataLoader worker's share of ``items``.

    Each worker of a rank gets a disjoint subset. Ranks are not split here:
    that is an explicit choice made with ``LazyStream.split_by_node``.

    Args:
        items (Iterable): Input sequence.
        world (World): Topology with worker info filled in.

    Returns:
        Iterator: This worker's partition.
    """
    return iter_partition(items, world.num_workers, world.worker_of_rank)
