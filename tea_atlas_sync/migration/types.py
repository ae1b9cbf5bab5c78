"""
Migration types and data structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..exceptions import RemoteError, TeaSyncError
from ..storage.state import MigrationState


@dataclass
class MigrationResult:
    """Result of one migration run.

    Attributes:
        state: Lifecycle state after the run
        skipped: True when nothing was attempted (already done, foreign data)
        teas_uploaded: Records upserted to the remote store
        deletions_uploaded: Deletion markers sent to the remote store
        skipped_records: Ids of local records not uploaded (invalid or unedited starters)
        error: The error that stopped the run, if any
    """

    state: MigrationState
    skipped: bool = False
    teas_uploaded: int = 0
    deletions_uploaded: int = 0
    skipped_records: list[str] = field(default_factory=list)
    error: TeaSyncError | None = None

    # Timing
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.state is MigrationState.DONE

    @property
    def retryable(self) -> bool:
        """True when the run stopped on a failure worth retrying next session."""
        return isinstance(self.error, RemoteError) and self.error.transient

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "state": self.state.value,
            "skipped": self.skipped,
            "teas_uploaded": self.teas_uploaded,
            "deletions_uploaded": self.deletions_uploaded,
            "skipped_records": list(self.skipped_records),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error.message if self.error else None,
            "error_details": self.error.details if self.error else {},
        }
