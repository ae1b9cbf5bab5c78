"""
One-time migration of pre-authentication local data to the remote store.
"""

from ..storage.state import MigrationState
from .runner import MigrationRunner
from .types import MigrationResult

__all__ = [
    "MigrationRunner",
    "MigrationResult",
    "MigrationState",
]
