"""
File-backed local cache.

Keeps the last-known state of one device in a single JSON document:

{cache_path}
  {
    "version": 1,
    "owner": "...",
    "teas": [...],
    "deletedStarters": [...],
    "migration": "not_started|running|done",
    "pending": [...],
    "savedAt": "..."
  }

Documents written by the pre-authentication app (a bare list of teas, or
``{"teas": [...], "deletedStarters": [...]}``) are read as un-migrated state.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..exceptions import CacheError
from ..teas.types import utcnow
from .base import LocalCache, SyncConfig
from .file_ops import read_json, remove_file, write_json_atomic
from .state import CachedState

logger = logging.getLogger(__name__)


class FileLocalCache(LocalCache):
    """Local cache stored as one JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    @classmethod
    def from_config(cls, config: SyncConfig) -> FileLocalCache:
        return cls(config.cache_path)

    async def read(self) -> CachedState | None:
        data = await read_json(self.path)
        if data is None:
            return None
        if not isinstance(data, dict | list):
            raise CacheError("parse_json", str(self.path))
        try:
            return CachedState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CacheError("decode_state", str(self.path), e) from e

    async def write(self, state: CachedState) -> None:
        state.saved_at = utcnow()
        await write_json_atomic(self.path, state.to_dict())
        logger.debug(
            "Cache written: %d teas, %d hidden, %d pending",
            len(state.teas),
            len(state.deletions),
            len(state.pending),
        )

    async def clear(self) -> None:
        await remove_file(self.path)
