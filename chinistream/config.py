"""Options accepted by :func:`chinistream.load`."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import datasets

__all__ = ['LoadConfig']

logger = logging.getLogger(__name__)


@dataclass
class LoadConfig:
    """What to load and how.

    Attributes:
        path: HF dataset name (``"mnist"``), builder (``"parquet"``), or a
            local shard directory containing ``index.json``.
        name: HF configuration name (``"en"`` for ``c4``).
        split: One named split (``"train"``). ``None`` loads every split.
        streaming: Return a lazy stream instead of an eager dataset.
        format: Initial value format of returned streams (``"native"``, a
            provider format, or ``None`` for raw values).
        data_dir: HF ``data_dir``.
        data_files: HF ``data_files``.
        revision: Dataset repository revision.
        token: Hub token.
        cache_dir: HF cache directory.
        offline: Never touch the network (sets ``HF_DATASETS_OFFLINE``).
        columns: Columns to read from local shard directories.
        extra: Any other option, forwarded to ``datasets.load_dataset``.
    """

    path: str
    name: Optional[str] = None
    split: Optional[str] = None
    streaming: bool = False
    format: Optional[str] = None
    data_dir: Optional[str] = None
    data_files: Optional[Union[str, list[str], dict[str, Any]]] = None
    revision: Optional[str] = None
    token: Optional[Union[str, bool]] = None
    cache_dir: Optional[str] = None
    offline: bool = False
    columns: Optional[list[str]] = None
    extra: dict[str, Any] = field(default_factory=dict)

    # Options forwarded to datasets.load_dataset when set
    _PROVIDER_OPTIONS = ('split', 'streaming', 'data_dir', 'data_files', 'revision', 'token', 'cache_dir')

    @classmethod
    def from_kwargs(cls, path: Union[str, os.PathLike], **kwargs: Any) -> 'LoadConfig':
        """Build a config, keeping unrecognized options in ``extra``.

        Example:
            >>> cfg = LoadConfig.from_kwargs('c4', name='en', split='train', streaming=True, trust_remote_code=True)
            >>> cfg.extra
            {'trust_remote_code': True}
        """
        known = {f.name for f in dataclasses.fields(cls)} - {'path', 'extra'}
        options = {key: value for key, value in kwargs.items() if key in known}
        extra = {key: value for key, value in kwargs.items() if key not in known}
        if extra:
            logger.debug(f'Forwarding extra options to the provider: {sorted(extra)}')
        return cls(path=os.fspath(path), extra=extra, **options)

    def provider_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``datasets.load_dataset`` (besides path and name)."""
        kwargs = {
            key: getattr(self, key)
            for key in self._PROVIDER_OPTIONS
            if getattr(self, key) is not None
        }
        kwargs.update(self.extra)
        return kwargs

    def apply_environment(self) -> None:
        """Apply process-wide settings (offline mode) before the provider is used."""
        if not self.offline:
            return
        os.environ['HF_DATASETS_OFFLINE'] = '1'
        os.environ['HF_HUB_OFFLINE'] = '1'
        # datasets reads these at import time; update the live config too
        for attr in ('HF_DATASETS_OFFLINE', 'HF_HUB_OFFLINE'):
            if hasattr(datasets.config, attr):
                setattr(datasets.config, attr, True)
        logger.info('Offline mode enabled')
