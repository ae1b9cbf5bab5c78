"""
Tea Atlas Sync

Offline-first data layer for the tea map: reconciles the built-in starter
catalogue, the device-local cache and the user's remote (Supabase) store.

Provides:
- Pure merge of starters, saved records and hidden starters
- Remote-first writes with cache fallback and pending-write replay
- One-time migration of pre-authentication local data

Usage:

    >>> from tea_atlas_sync import SyncConfig, Tea, create_coordinator
    >>> config = SyncConfig.load()
    >>> async with create_coordinator(config, access_token=token, owner=user_id) as sync:
    ...     context = await sync.start()
    ...     await sync.save_tea(
    ...         Tea(id="u1", name="Jin Xuan", tea_type="oolong", lat=23.9, lng=120.9)
    ...     )
    ...     await sync.hide_starter("keemun")
    ...     teas = context.effective
    ...     offline = context.degraded
"""

# Exceptions
from .exceptions import (
    CacheError,
    RemoteError,
    RemoteErrorKind,
    SyncStateError,
    TeaSyncError,
    ValidationError,
)

# Logging
from .logging_utils import SyncLoggerAdapter, configure_structured_logging

# Migration
from .migration import MigrationResult, MigrationRunner

# Storage
from .storage import (
    CachedState,
    FileLocalCache,
    LocalCache,
    MigrationState,
    PendingOp,
    PendingWrite,
    RemoteStore,
    SupabaseRemoteStore,
    SyncConfig,
)

# Sync
from .sync import SyncContext, SyncCoordinator, create_coordinator

# Teas
from .teas import (
    DeletionMarker,
    Tea,
    TeaType,
    effective_teas,
    merge,
    starter_ids,
    starter_teas,
)

__all__ = [
    # Teas
    "Tea",
    "TeaType",
    "DeletionMarker",
    "starter_teas",
    "starter_ids",
    "merge",
    "effective_teas",
    # Storage
    "SyncConfig",
    "RemoteStore",
    "LocalCache",
    "SupabaseRemoteStore",
    "FileLocalCache",
    "CachedState",
    "MigrationState",
    "PendingOp",
    "PendingWrite",
    # Migration
    "MigrationRunner",
    "MigrationResult",
    # Sync
    "SyncCoordinator",
    "SyncContext",
    "create_coordinator",
    # Logging
    "configure_structured_logging",
    "SyncLoggerAdapter",
    # Exceptions
    "TeaSyncError",
    "ValidationError",
    "RemoteError",
    "RemoteErrorKind",
    "CacheError",
    "SyncStateError",
]

__version__ = "0.1.0"
