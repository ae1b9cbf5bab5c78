"""
Storage backends.

Provides the remote store (Supabase over PostgREST) and the device-local
file cache, with the abstract contracts the sync coordinator relies on.

Example:
    >>> from tea_atlas_sync.storage import SyncConfig, FileLocalCache, SupabaseRemoteStore
    >>> config = SyncConfig.load()
    >>> cache = FileLocalCache.from_config(config)
    >>> remote = SupabaseRemoteStore.from_config(config, access_token=token)
"""

from .base import LocalCache, RemoteStore, SyncConfig
from .cache import FileLocalCache
from .remote import SupabaseRemoteStore
from .state import CachedState, MigrationState, PendingOp, PendingWrite

__all__ = [
    # Configuration
    "SyncConfig",
    # Contracts
    "RemoteStore",
    "LocalCache",
    # Implementations
    "SupabaseRemoteStore",
    "FileLocalCache",
    # Cached state
    "CachedState",
    "MigrationState",
    "PendingOp",
    "PendingWrite",
]
