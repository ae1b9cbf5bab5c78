"""
Sync coordination between the remote store and the local cache.
"""

from .coordinator import ContextListener, SyncContext, SyncCoordinator, apply_write, create_coordinator

__all__ = [
    "SyncCoordinator",
    "SyncContext",
    "ContextListener",
    "apply_write",
    "create_coordinator",
]
