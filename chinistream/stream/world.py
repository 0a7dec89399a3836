"""Detect the process topology a stream is being consumed in.

Two levels matter for a stream: the distributed rank (one process per
accelerator, from the launcher's environment variables) and the DataLoader
worker inside that rank (from ``torch.utils.data.get_worker_info``).
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Optional

import torch.utils.data

__all__ = ['World']

logger = logging.getLogger(__name__)

# (world size, rank) environment variables, in lookup order:
# PyTorch distributed, OpenMPI, SLURM.
_LAUNCHER_ENV = (
    ('WORLD_SIZE', 'RANK'),
    ('OMPI_COMM_WORLD_SIZE', 'OMPI_COMM_WORLD_RANK'),
    ('SLURM_NTASKS', 'SLURM_PROCID'),
)


@dataclass(frozen=True)
class World:
    """Process topology.

    Attributes:
        num_ranks: Total number of ranks.
        rank: This rank's global index.
        num_workers: Number of DataLoader workers on this rank.
        worker_of_rank: This worker's index within its rank.
    """

    num_ranks: int = 1
    rank: int = 0
    num_workers: int = 1
    worker_of_rank: int = 0

    @staticmethod
    def detect() -> 'World':
        """Detect the rank-level topology from launcher environment variables.

        Returns:
            World: Detected topology, single process if nothing is set.
        """
        for size_key, rank_key in _LAUNCHER_ENV:
            num_ranks = _env_int(size_key)
            if num_ranks is None:
                continue
            rank = _env_int(rank_key) or 0
            if not 0 <= rank < num_ranks:
                raise ValueError(f'{rank_key}={rank} is out of range for {size_key}={num_ranks}')
            logger.debug(f'Detected rank {rank} of {num_ranks} from {size_key}/{rank_key}')
            return World(num_ranks=num_ranks, rank=rank)
        return World()

    def detect_workers(self) -> 'World':
        """Fill in DataLoader worker info (call inside ``__iter__``).

        Returns:
            World: Copy of this topology with worker info.
        """
        info = torch.utils.data.get_worker_info()
        if info is None:
            return dataclasses.replace(self, num_workers=1, worker_of_rank=0)
        return dataclasses.replace(self, num_workers=info.num_workers, worker_of_rank=info.id)


def _env_int(key: str) -> Optional[int]:
    """Read an integer from an environment variable."""
    val = os.environ.get(key)
    if val is None or val == '':
        return None
    return int(val)
