"""
Cached session state.

The document mirrored into the device-local cache: the user's saved
records, hidden starters, writes still waiting for the remote store, and
the per-device migration lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..teas.types import Tea, parse_timestamp, utcnow

CACHE_FORMAT_VERSION = 1


class MigrationState(Enum):
    """Lifecycle of the one-time upload of pre-existing local data.

    NOT_STARTED -> RUNNING -> DONE; there is no transition back from DONE.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    DONE = "done"


class PendingOp(Enum):
    """Mutation kinds that can wait in the pending queue."""

    UPSERT_TEA = "upsert_tea"
    DELETE_TEA = "delete_tea"
    MARK_DELETED = "mark_deleted"
    UNMARK_DELETED = "unmark_deleted"

    @property
    def target_table(self) -> str:
        if self in (PendingOp.UPSERT_TEA, PendingOp.DELETE_TEA):
            return "teas"
        return "deleted_starters"


@dataclass
class PendingWrite:
    """A mutation applied locally but not yet confirmed by the remote store.

    Attributes:
        op: Kind of mutation
        target_id: Tea id or starter id the mutation applies to
        tea: Full record for UPSERT_TEA
        queued_at: When the write was first deferred
        attempts: Flush attempts that ended in a transient failure
        last_error: Message of the last failed attempt
    """

    op: PendingOp
    target_id: str
    tea: Tea | None = None
    queued_at: datetime = field(default_factory=utcnow)
    attempts: int = 0
    last_error: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        """Coalescing key: newer writes to the same target replace older ones."""
        return (self.op.target_table, self.target_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "op": self.op.value,
            "targetId": self.target_id,
            "tea": self.tea.to_dict() if self.tea else None,
            "queuedAt": self.queued_at.isoformat(),
            "attempts": self.attempts,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingWrite:
        tea = data.get("tea")
        return cls(
            op=PendingOp(data["op"]),
            target_id=data["targetId"],
            tea=Tea.from_dict(tea) if tea else None,
            queued_at=parse_timestamp(data.get("queuedAt")) or utcnow(),
            attempts=data.get("attempts", 0),
            last_error=data.get("lastError"),
        )


@dataclass
class CachedState:
    """Snapshot persisted by the local cache.

    Attributes:
        teas: Saved records (overrides and user-created teas), storage order
        deletions: Ids of hidden starters
        migration_state: Per-device migration lifecycle
        pending: Writes waiting for the remote store, oldest first
        owner: Identity the snapshot belongs to; None for pre-auth data
        saved_at: When the snapshot was written
    """

    teas: list[Tea] = field(default_factory=list)
    deletions: set[str] = field(default_factory=set)
    migration_state: MigrationState = MigrationState.NOT_STARTED
    pending: list[PendingWrite] = field(default_factory=list)
    owner: str | None = None
    saved_at: datetime | None = None

    @property
    def migrated(self) -> bool:
        return self.migration_state is MigrationState.DONE

    @property
    def has_user_data(self) -> bool:
        return bool(self.teas or self.deletions)

    def belongs_to(self, owner: str | None) -> bool:
        """True when the snapshot may be shown to ``owner``."""
        return self.owner is None or self.owner == owner

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": CACHE_FORMAT_VERSION,
            "owner": self.owner,
            "teas": [tea.to_dict() for tea in self.teas],
            "deletedStarters": sorted(self.deletions),
            "migration": self.migration_state.value,
            "pending": [write.to_dict() for write in self.pending],
            "savedAt": self.saved_at.isoformat() if self.saved_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | list[Any]) -> CachedState:
        """Deserialize, accepting the pre-authentication formats.

        The offline app stored either a bare list of teas or an object with
        ``teas`` and ``deletedStarters`` and no migration state.
        """
        if isinstance(data, list):
            return cls(teas=[Tea.from_dict(item) for item in data if isinstance(item, dict)])

        migration = data.get("migration")
        if migration is None and "migrated" in data:
            migration = MigrationState.DONE.value if data["migrated"] else None
        return cls(
            teas=[Tea.from_dict(item) for item in data.get("teas", []) if isinstance(item, dict)],
            deletions={str(item) for item in data.get("deletedStarters", [])},
            migration_state=MigrationState(migration or MigrationState.NOT_STARTED.value),
            pending=[PendingWrite.from_dict(item) for item in data.get("pending", [])],
            owner=data.get("owner"),
            saved_at=parse_timestamp(data.get("savedAt")),
        )
