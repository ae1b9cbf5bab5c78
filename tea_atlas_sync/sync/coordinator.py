"""
Remote-first sync coordinator with cache fallback.

Architecture:
- Reads and writes go to the REMOTE store first
- Successful remote writes are mirrored into the local cache (write-through)
- Transient remote failures degrade the session: the change is applied
  locally, persisted in the cache and queued as a pending write
- Pending writes are flushed the next time any remote call succeeds
  (no timer, no background task)
- Rejected remote writes are discarded and surfaced to the caller

Session flow:
1. start(): run the one-time migration, then load_all()
2. load_all(): flush pending, list remote records, mirror into the cache;
   on transient failure fall back to the cached snapshot
3. save_tea() / delete_tea() / hide_starter() / unhide_starter()

All operations are serialized by one asyncio lock, so a second mutation
issued while one is in flight waits behind it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from ..exceptions import CacheError, RemoteError, SyncStateError, TeaSyncError, ValidationError
from ..logging_utils import SyncLoggerAdapter, configure_structured_logging
from ..migration.runner import MigrationRunner
from ..migration.types import MigrationResult
from ..storage.base import LocalCache, RemoteStore, SyncConfig
from ..storage.cache import FileLocalCache
from ..storage.remote import SupabaseRemoteStore, TokenProvider
from ..storage.state import CachedState, MigrationState, PendingOp, PendingWrite
from ..teas.catalogue import starter_teas
from ..teas.merge import effective_teas
from ..teas.types import Tea, TeaCollection, utcnow

logger = logging.getLogger(__name__)

ContextListener = Callable[["SyncContext"], None]


@dataclass
class SyncContext:
    """Session-scoped view of the user's teas.

    Owned by one coordinator and handed to renderers; never shared across
    sessions.

    Attributes:
        owner: Authenticated identity of the session
        sources: Saved records and hidden starters as last loaded or mutated
        starters: Built-in catalogue used for the effective list
        pending: Writes applied locally but not yet confirmed remotely
        degraded: True while remote calls are failing and the cache is authoritative
        loaded: True once load_all() has completed (successfully or degraded)
        last_error: Most recent remote or cache error, for user-visible reporting
        migration: Result of the migration run at session start
    """

    owner: str | None = None
    sources: TeaCollection = field(default_factory=TeaCollection)
    starters: list[Tea] = field(default_factory=starter_teas)
    pending: list[PendingWrite] = field(default_factory=list)
    degraded: bool = False
    loaded: bool = False
    last_error: TeaSyncError | None = None
    migration: MigrationResult | None = None

    @property
    def saved(self) -> list[Tea]:
        return self.sources.saved

    @property
    def deletions(self) -> set[str]:
        return self.sources.deletions

    @property
    def effective(self) -> list[Tea]:
        """The teas shown to the user."""
        return effective_teas(self)

    @property
    def has_pending(self) -> bool:
        return bool(self.pending)

    def find(self, tea_id: str) -> Tea | None:
        """Find a tea in the effective list."""
        for tea in self.effective:
            if tea.id == tea_id:
                return tea
        return None

    def status(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "loaded": self.loaded,
            "degraded": self.degraded,
            "saved": len(self.sources.saved),
            "hidden_starters": len(self.sources.deletions),
            "pending": [f"{w.op.value}:{w.target_id}" for w in self.pending],
            "last_error": self.last_error.message if self.last_error else None,
            "migration": self.migration.state.value if self.migration else None,
        }


def _log_fields(write: PendingWrite) -> dict[str, str]:
    return {"operation": write.op.value, "target_id": write.target_id}


def apply_write(sources: TeaCollection, write: PendingWrite) -> None:
    """Apply a mutation to in-memory sources."""
    if write.op is PendingOp.UPSERT_TEA and write.tea is not None:
        sources.put(write.tea)
    elif write.op is PendingOp.DELETE_TEA:
        sources.remove(write.target_id)
    elif write.op is PendingOp.MARK_DELETED:
        sources.deletions.add(write.target_id)
    elif write.op is PendingOp.UNMARK_DELETED:
        sources.deletions.discard(write.target_id)


class SyncCoordinator:
    """Single point of truth for "remote first, cache as fallback".

    Example:
        >>> coordinator = SyncCoordinator(remote, cache, owner=user_id)
        >>> context = await coordinator.start()
        >>> await coordinator.save_tea(Tea(id="u1", name="Jin Xuan", tea_type="oolong",
        ...                                lat=23.9, lng=120.9))
        >>> [tea.id for tea in context.effective]
        >>> await coordinator.close()
    """

    def __init__(
        self,
        remote: RemoteStore,
        cache: LocalCache,
        owner: str | None = None,
        starters: Iterable[Tea] | None = None,
        migration_runner: MigrationRunner | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            remote: Remote store scoped to the authenticated identity
            cache: Device-local cache
            owner: Authenticated identity (used to scope the cached snapshot)
            starters: Built-in catalogue (defaults to the bundled starters)
            migration_runner: Optional runner (defaults to one over remote + cache)
        """
        self.remote = remote
        self.cache = cache
        self.context = SyncContext(owner=owner)
        if starters is not None:
            self.context.starters = list(starters)
        self._starter_ids = {tea.id for tea in self.context.starters}
        self._migration = migration_runner or MigrationRunner(remote, cache)
        self._cached_migration_state = MigrationState.NOT_STARTED
        self._lock = asyncio.Lock()
        self._closed = False
        self._listeners: list[ContextListener] = []
        self._log = SyncLoggerAdapter(logger, self.context)

    async def __aenter__(self) -> SyncCoordinator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: ContextListener) -> Callable[[], None]:
        """Register a callback run after every context change.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Session lifecycle

    async def start(self) -> SyncContext:
        """Run the one-time migration, then load the user's teas."""
        self._check_open()
        async with self._lock:
            migration = await self._migration.run(self.context.owner)
            self.context.migration = migration
            if migration.error is not None:
                self.context.last_error = migration.error
        return await self.load_all()

    async def load_all(self) -> SyncContext:
        """Load saved records and hidden starters, remote first.

        Pending writes are flushed before listing so the remote snapshot
        already contains them; any write still pending afterwards is laid
        over the snapshot. Until the migration is done, local records it has
        not uploaded yet are laid over the snapshot as well, so they stay
        visible and cached for the next attempt. On transient failure the
        cached snapshot is used and the session is flagged degraded.

        Raises:
            RemoteError: If the remote store rejects the request
            SyncStateError: If the session is closed
        """
        self._check_open()
        async with self._lock:
            cached = await self._read_cache()
            if cached is not None:
                self._cached_migration_state = cached.migration_state
            if not self.context.loaded and cached is not None and cached.belongs_to(self.context.owner):
                self._adopt_pending(cached.pending)

            try:
                error = await self._flush_pending()
                if error is not None:
                    raise error
                saved = await self.remote.list_teas()
                deletions = await self.remote.list_deletions()
            except RemoteError as e:
                self._load_fallback(cached)
                self._enter_degraded(e)
                self.context.loaded = True
                await self._write_cache()
                self._notify()
                if e.rejected:
                    raise
                return self.context

            sources = TeaCollection(saved=saved, deletions=deletions)
            if cached is not None and self._holds_unmigrated(cached):
                self._overlay_unmigrated(sources, cached)
            for write in self.context.pending:
                apply_write(sources, write)
            self.context.sources = sources
            self.context.loaded = True
            self._leave_degraded()
            await self._write_cache()
            self._notify()
            return self.context

    async def heartbeat(self) -> bool:
        """Retry pending writes now.

        Returns:
            True if nothing is left pending
        """
        self._check_ready()
        async with self._lock:
            if not self.context.pending:
                return True
            error = await self._flush_pending()
            if error is None:
                self._leave_degraded()
            await self._write_cache()
            self._notify()
            return not self.context.pending

    async def close(self) -> None:
        """End the session.

        An operation already in flight still completes and mirrors its
        result into the cache, but listeners are no longer notified.
        """
        if self._closed:
            return
        self._closed = True
        async with self._lock:
            await self.remote.close()

    # Mutations

    async def save_tea(self, tea: Tea) -> Tea:
        """Create or edit a tea.

        Editing a starter stores an override with ``starter=True, edited=True``.

        Args:
            tea: The record to save

        Returns:
            The stored record, with timestamps set

        Raises:
            ValidationError: Before any I/O, for bad fields or a new id that
                collides with a starter
            RemoteError: If the remote store rejects the write
        """
        tea.validate()
        self._check_ready()
        async with self._lock:
            record = self._prepare(tea)
            await self._mutate([PendingWrite(PendingOp.UPSERT_TEA, record.id, tea=record)])
            return record

    async def delete_tea(self, tea_id: str) -> None:
        """Delete a tea; deleting a starter hides it instead."""
        if tea_id in self._starter_ids:
            await self.hide_starter(tea_id)
            return
        self._check_ready()
        async with self._lock:
            await self._mutate([PendingWrite(PendingOp.DELETE_TEA, tea_id)])

    async def hide_starter(self, starter_id: str) -> None:
        """Hide a built-in starter, dropping the user's override of it if any."""
        if starter_id not in self._starter_ids:
            raise ValidationError("starter_id", "is not a built-in starter", starter_id)
        self._check_ready()
        async with self._lock:
            writes = [PendingWrite(PendingOp.MARK_DELETED, starter_id)]
            if self.context.sources.find(starter_id) is not None:
                writes.append(PendingWrite(PendingOp.DELETE_TEA, starter_id))
            await self._mutate(writes)

    async def unhide_starter(self, starter_id: str) -> None:
        """Show a previously hidden starter again."""
        if starter_id not in self._starter_ids:
            raise ValidationError("starter_id", "is not a built-in starter", starter_id)
        self._check_ready()
        async with self._lock:
            await self._mutate([PendingWrite(PendingOp.UNMARK_DELETED, starter_id)])

    # Internals

    def _check_open(self) -> None:
        if self._closed:
            raise SyncStateError("Sync session is closed")

    def _check_ready(self) -> None:
        self._check_open()
        if not self.context.loaded:
            raise SyncStateError("load_all() must complete before mutating teas")

    def _prepare(self, tea: Tea) -> Tea:
        existing = self.context.sources.find(tea.id)
        now = utcnow()
        changes: dict[str, Any] = {"updated_at": now}
        if tea.id in self._starter_ids:
            if not tea.starter and existing is None:
                raise ValidationError("id", "collides with a built-in starter", tea.id)
            changes.update(starter=True, edited=True)
        if existing is not None and existing.created_at is not None:
            changes["created_at"] = existing.created_at
        elif tea.created_at is None:
            changes["created_at"] = now
        return tea.copy(**changes)

    async def _mutate(self, writes: list[PendingWrite]) -> None:
        """Send writes remote-first; caller holds the lock."""
        try:
            for index, write in enumerate(writes):
                try:
                    await self._send(write)
                except RemoteError as e:
                    if e.rejected:
                        self._log.warning(
                            "Remote rejected %s for %r: %s", write.op.value, write.target_id, e,
                            extra=_log_fields(write),
                        )
                        self.context.last_error = e
                        raise
                    for deferred in writes[index:]:
                        apply_write(self.context.sources, deferred)
                        self._queue(deferred, e)
                    self._enter_degraded(e)
                    return
                self._discard_pending(write.key)
                apply_write(self.context.sources, write)

            self._leave_degraded()
            await self._flush_pending()
        finally:
            await self._write_cache()
            self._notify()

    async def _send(self, write: PendingWrite) -> None:
        if write.op is PendingOp.UPSERT_TEA:
            if write.tea is None:
                raise ValidationError("tea", "pending upsert without a record", write.target_id)
            await self.remote.upsert_tea(write.tea)
        elif write.op is PendingOp.DELETE_TEA:
            await self.remote.delete_tea(write.target_id)
        elif write.op is PendingOp.MARK_DELETED:
            await self.remote.mark_deleted(write.target_id)
        elif write.op is PendingOp.UNMARK_DELETED:
            await self.remote.unmark_deleted(write.target_id)

    async def _flush_pending(self) -> RemoteError | None:
        """Send queued writes oldest first; caller holds the lock.

        Returns:
            The transient error that stopped the flush, or None
        """
        while self.context.pending:
            write = self.context.pending[0]
            try:
                await self._send(write)
            except RemoteError as e:
                if e.transient:
                    write.attempts += 1
                    write.last_error = str(e)
                    self._enter_degraded(e)
                    return e
                self._log.error(
                    "Dropping rejected pending %s for %r: %s", write.op.value, write.target_id, e,
                    extra=_log_fields(write),
                )
                self.context.last_error = e
            else:
                self._log.info(
                    "Flushed pending %s for %r", write.op.value, write.target_id, extra=_log_fields(write)
                )
            self.context.pending.pop(0)
        return None

    def _queue(self, write: PendingWrite, error: RemoteError) -> None:
        self._discard_pending(write.key)
        write.last_error = str(error)
        self.context.pending.append(write)
        self._log.info(
            "Queued %s for %r until the remote store is reachable",
            write.op.value,
            write.target_id,
            extra=_log_fields(write),
        )

    def _discard_pending(self, key: tuple[str, str]) -> None:
        self.context.pending = [w for w in self.context.pending if w.key != key]

    def _adopt_pending(self, writes: list[PendingWrite]) -> None:
        for write in writes:
            self._discard_pending(write.key)
            self.context.pending.append(write)

    def _holds_unmigrated(self, cached: CachedState) -> bool:
        """True when the cache still carries local data the migration has not uploaded."""
        if not cached.has_user_data:
            return False
        if not cached.belongs_to(self.context.owner):
            return False
        migration_state = self._migration.state or cached.migration_state
        return migration_state is not MigrationState.DONE

    def _overlay_unmigrated(self, sources: TeaCollection, cached: CachedState) -> None:
        """Keep un-migrated local records visible and cached until the upload succeeds.

        Remote records win on id; unedited starter copies and invalid records
        are left out, as the migration would skip them too.
        """
        kept = 0
        for tea in cached.teas:
            if sources.find(tea.id) is not None or (tea.starter and not tea.edited):
                continue
            try:
                tea.validate()
            except ValidationError:
                continue
            sources.put(tea)
            kept += 1
        sources.deletions.update(cached.deletions)
        self._log.info(
            "Keeping %d un-migrated teas and %d hidden starters until migration completes",
            kept,
            len(cached.deletions),
        )

    def _load_fallback(self, cached: CachedState | None) -> None:
        if self.context.loaded:
            # In-memory state already mirrors the latest cache write
            return
        if cached is not None and cached.belongs_to(self.context.owner):
            self.context.sources = TeaCollection(saved=list(cached.teas), deletions=set(cached.deletions))
        else:
            self.context.sources = TeaCollection()

    def _enter_degraded(self, error: RemoteError) -> None:
        was_degraded = self.context.degraded
        self.context.last_error = error
        self.context.degraded = True
        if not was_degraded:
            self._log.warning("Working offline: %s", error, extra={"operation": error.operation})

    def _leave_degraded(self) -> None:
        was_degraded = self.context.degraded
        self.context.degraded = False
        if was_degraded:
            self._log.info("Remote store reachable again")

    async def _read_cache(self) -> CachedState | None:
        try:
            return await self.cache.read()
        except CacheError as e:
            self._log.warning("Ignoring unreadable cache: %s", e)
            return None

    async def _write_cache(self) -> None:
        state = CachedState(
            teas=list(self.context.sources.saved),
            deletions=set(self.context.sources.deletions),
            migration_state=self._migration.state or self._cached_migration_state,
            pending=list(self.context.pending),
            owner=self.context.owner,
        )
        try:
            await self.cache.write(state)
        except CacheError as e:
            self._log.warning("Cache write failed, continuing in memory: %s", e)

    def _notify(self) -> None:
        if self._closed:
            return
        for listener in list(self._listeners):
            try:
                listener(self.context)
            except Exception:
                self._log.exception("Context listener failed")


def create_coordinator(
    config: SyncConfig,
    access_token: str | TokenProvider | None = None,
    owner: str | None = None,
    session: aiohttp.ClientSession | None = None,
) -> SyncCoordinator:
    """Wire the Supabase store and the file cache into a coordinator.

    When ``config.structured_logs`` is set, the package logger is switched to
    JSON output at ``config.log_level``.

    Raises:
        ValidationError: If the remote endpoint is not configured
    """
    remote = SupabaseRemoteStore.from_config(config, access_token=access_token, session=session)
    if config.structured_logs:
        configure_structured_logging(config.log_level.upper())
    cache = FileLocalCache.from_config(config)
    return SyncCoordinator(remote, cache, owner=owner)
