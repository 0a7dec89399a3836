"""Utility functions for ChiniStream."""

import json
import logging
from pathlib import Path
from typing import Any, Union

__all__ = ['get_index_basename', 'identity', 'is_shard_directory', 'read_index']

logger = logging.getLogger(__name__)


def identity(record: Any) -> Any:
    """Return ``record`` unchanged."""
    return record


def get_index_basename() -> str:
    """Get the basename of the index file.

    Returns:
        str: Index file basename.
    """
    return 'index.json'


def is_shard_directory(path: Union[str, Path]) -> bool:
    """Whether ``path`` is a local directory holding a shard ``index.json``."""
    try:
        local = Path(path).expanduser()
    except TypeError:
        return False
    return local.is_dir() and (local / get_index_basename()).exists()


def read_index(local: Path) -> dict[str, Any]:
    """Load and validate the ``index.json`` of a shard directory.

    Args:
        local (Path): Directory containing ``index.json``.

    Returns:
        Dict[str, Any]: Parsed index.

    Raises:
        FileNotFoundError: If there is no index in ``local``.
        ValueError: If the index cannot be parsed or has an unsupported version.
    """
    index_path = local / get_index_basename()
    if not index_path.exists():
        raise FileNotFoundError(f'index.json not found at {index_path}')

    with open(index_path, 'r') as f:
        try:
            index = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f'Failed to parse {index_path}: {e}') from e

    if index.get('version') != 2:
        raise ValueError(f'Unsupported index version: {index.get("version")}')

    logger.debug(f'Read {len(index.get("shards", []))} shard entries from {index_path}')
    return index
