"""
One-time upload of pre-existing local data.

Before accounts existed the app kept teas and hidden starters only on the
device. On the first authenticated session the runner uploads them to the
remote store, then records completion in the cache so it never runs again
on this device. A second device runs it once more; upserts and deletion
markers are idempotent, so redoing partial progress is safe.
"""

from __future__ import annotations

import logging

from ..exceptions import CacheError, RemoteError, ValidationError
from ..storage.base import LocalCache, RemoteStore
from ..storage.state import CachedState, MigrationState
from ..teas.types import utcnow
from .types import MigrationResult

logger = logging.getLogger(__name__)


class MigrationRunner:
    """Uploads locally cached teas and deletion markers once per device.

    State machine (persisted in the cache):
        NOT_STARTED -> RUNNING -> DONE

    A RUNNING state read back from the cache means a previous run was
    interrupted; it is resumed. Any remote failure returns the state to
    NOT_STARTED so the next session start retries.
    """

    def __init__(self, remote: RemoteStore, cache: LocalCache) -> None:
        self.remote = remote
        self.cache = cache
        self._state: MigrationState | None = None

    @property
    def state(self) -> MigrationState | None:
        """Last known state, or None before the cache has been consulted."""
        return self._state

    async def run(self, owner: str | None = None) -> MigrationResult:
        """Run the migration if it has not completed on this device.

        Never raises for remote or cache failures; they are reported on the
        returned result.

        Args:
            owner: Authenticated identity the uploaded data will belong to

        Returns:
            Migration result
        """
        started_at = utcnow()
        try:
            state = await self.cache.read()
        except CacheError as e:
            logger.warning("Migration skipped, cache unreadable: %s", e)
            self._state = MigrationState.NOT_STARTED
            return MigrationResult(
                state=MigrationState.NOT_STARTED,
                skipped=True,
                error=e,
                started_at=started_at,
                completed_at=utcnow(),
            )

        if state is None:
            state = CachedState()

        if state.migrated:
            self._state = MigrationState.DONE
            return MigrationResult(
                state=MigrationState.DONE,
                skipped=True,
                started_at=started_at,
                completed_at=utcnow(),
            )

        if not state.belongs_to(owner):
            # Pre-existing data of another account is never uploaded under this identity
            logger.warning("Migration skipped, cached data belongs to another account")
            self._state = state.migration_state
            return MigrationResult(
                state=state.migration_state,
                skipped=True,
                started_at=started_at,
                completed_at=utcnow(),
            )

        result = MigrationResult(state=MigrationState.RUNNING, started_at=started_at)
        if state.has_user_data:
            if state.migration_state is MigrationState.RUNNING:
                logger.info("Resuming interrupted migration")
            await self._persist(state, MigrationState.RUNNING, owner)
            try:
                await self._upload(state, result)
            except RemoteError as e:
                log = logger.warning if e.transient else logger.error
                log("Migration stopped (%s), will retry next session: %s", e.kind.value, e)
                result.error = e
                await self._persist(state, MigrationState.NOT_STARTED, owner)
                result.state = MigrationState.NOT_STARTED
                result.completed_at = utcnow()
                return result

        await self._persist(state, MigrationState.DONE, owner)
        result.state = MigrationState.DONE
        result.completed_at = utcnow()
        logger.info(
            "Migration complete: %d teas, %d hidden starters uploaded",
            result.teas_uploaded,
            result.deletions_uploaded,
        )
        return result

    async def _upload(self, state: CachedState, result: MigrationResult) -> None:
        for tea in state.teas:
            if tea.starter and not tea.edited:
                # Catalogue copies carry no user data
                result.skipped_records.append(tea.id)
                continue
            try:
                tea.validate()
            except ValidationError as e:
                logger.warning("Not migrating invalid tea %r: %s", tea.id, e)
                result.skipped_records.append(tea.id)
                continue
            await self.remote.upsert_tea(tea)
            result.teas_uploaded += 1

        for starter_id in sorted(state.deletions):
            await self.remote.mark_deleted(starter_id)
            result.deletions_uploaded += 1

    async def _persist(
        self, state: CachedState, migration_state: MigrationState, owner: str | None
    ) -> None:
        self._state = migration_state
        state.migration_state = migration_state
        if owner is not None:
            state.owner = owner
        try:
            await self.cache.write(state)
        except CacheError as e:
            logger.warning("Could not persist migration state %s: %s", migration_state.value, e)
