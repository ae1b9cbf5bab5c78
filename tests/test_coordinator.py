"""Tests for the remote-first sync coordinator."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tea_atlas_sync.exceptions import (
    CacheError,
    RemoteError,
    RemoteErrorKind,
    SyncStateError,
    ValidationError,
)
from tea_atlas_sync.storage import CachedState, FileLocalCache, MigrationState, PendingOp, SupabaseRemoteStore, SyncConfig
from tea_atlas_sync.sync import SyncContext, SyncCoordinator, create_coordinator
from tea_atlas_sync.teas import starter_teas
from tea_atlas_sync.teas.catalogue import get_starter

from .conftest import BrokenCache, FakeRemoteStore, make_tea

OWNER = "user-1"


@pytest.fixture
def coordinator(remote: FakeRemoteStore, cache: FileLocalCache) -> SyncCoordinator:
    return SyncCoordinator(remote, cache, owner=OWNER)


def _ids(context: SyncContext) -> list[str]:
    return [tea.id for tea in context.effective]


class SlowRemoteStore(FakeRemoteStore):
    """Remote store whose upserts yield, to expose overlapping calls."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def upsert_tea(self, tea) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            await super().upsert_tea(tea)
        finally:
            self.in_flight -= 1


class TestLoading:
    """Tests for start() and load_all()."""

    async def test_start_loads_remote_records(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        remote.teas["u1"] = make_tea("u1")
        remote.deletions.add("keemun")

        context = await coordinator.start()

        assert context.loaded
        assert not context.degraded
        assert context.migration.done
        assert "keemun" not in _ids(context)
        assert _ids(context)[-1] == "u1"
        assert len(context.effective) == len(starter_teas())

    async def test_start_mirrors_into_cache(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        remote.teas["u1"] = make_tea("u1")

        await coordinator.start()

        stored = await cache.read()
        assert [t.id for t in stored.teas] == ["u1"]
        assert stored.owner == OWNER
        assert stored.migration_state is MigrationState.DONE

    async def test_start_migrates_local_data(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await cache.write(CachedState(teas=[make_tea("local-1")], deletions={"dianhong"}))

        context = await coordinator.start()

        assert set(remote.teas) == {"local-1"}
        assert "local-1" in _ids(context)
        assert "dianhong" not in _ids(context)

    async def test_failed_migration_keeps_local_data_for_retry(
        self, remote: FakeRemoteStore, cache: FileLocalCache
    ) -> None:
        """Migration fails transiently, the load succeeds, the next session uploads."""
        await cache.write(CachedState(teas=[make_tea("u1"), make_tea("u2")], deletions={"keemun"}))
        remote.fail("upsert_tea")

        first = SyncCoordinator(remote, cache, owner=OWNER)
        context = await first.start()

        assert context.migration.state is MigrationState.NOT_STARTED
        assert not context.degraded
        assert [t.id for t in context.saved] == ["u1", "u2"]
        assert "keemun" not in _ids(context)
        stored = await cache.read()
        assert [t.id for t in stored.teas] == ["u1", "u2"]
        assert stored.deletions == {"keemun"}
        assert stored.migration_state is MigrationState.NOT_STARTED
        await first.close()

        remote.recover()
        second = SyncCoordinator(remote, cache, owner=OWNER)
        context = await second.start()

        assert context.migration.done
        assert set(remote.teas) == {"u1", "u2"}
        assert remote.deletions == {"keemun"}
        assert [t.id for t in context.saved] == ["u1", "u2"]

    async def test_unmigrated_records_yield_to_remote(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await cache.write(
            CachedState(
                teas=[make_tea("u1", name="Local"), make_tea("longjing", starter=True), make_tea("bad", lat=99.0)],
            )
        )
        remote.teas["u1"] = make_tea("u1", name="Remote")
        remote.fail("upsert_tea")

        context = await coordinator.start()

        assert context.find("u1").name == "Remote"
        assert [t.id for t in context.saved] == ["u1"]

    async def test_edits_after_failed_migration_keep_local_data(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await cache.write(CachedState(teas=[make_tea("u1")]))
        remote.fail("upsert_tea", RemoteErrorKind.REJECTED)
        await coordinator.start()
        remote.recover()

        await coordinator.save_tea(make_tea("u2"))

        stored = await cache.read()
        assert [t.id for t in stored.teas] == ["u1", "u2"]
        assert stored.migration_state is MigrationState.NOT_STARTED

    async def test_offline_falls_back_to_cache(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await cache.write(
            CachedState(teas=[make_tea("u1")], deletions={"keemun"}, migration_state=MigrationState.DONE, owner=OWNER)
        )
        remote.go_offline()

        context = await coordinator.load_all()

        assert context.loaded
        assert context.degraded
        assert context.last_error.kind is RemoteErrorKind.TRANSIENT
        assert "u1" in _ids(context)
        assert "keemun" not in _ids(context)

    async def test_offline_without_cache_shows_starters(
        self, remote: FakeRemoteStore, coordinator: SyncCoordinator
    ) -> None:
        remote.go_offline()

        context = await coordinator.start()

        assert context.degraded
        assert _ids(context) == [tea.id for tea in starter_teas()]

    async def test_foreign_cache_not_shown(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await cache.write(CachedState(teas=[make_tea("theirs")], migration_state=MigrationState.DONE, owner="user-2"))
        remote.go_offline()

        context = await coordinator.load_all()

        assert context.saved == []

    async def test_rejected_load_falls_back_and_raises(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await cache.write(CachedState(teas=[make_tea("u1")], owner=OWNER))
        remote.fail("list_teas", RemoteErrorKind.REJECTED)

        with pytest.raises(RemoteError) as exc_info:
            await coordinator.load_all()

        assert exc_info.value.rejected
        assert coordinator.context.loaded
        assert coordinator.context.degraded
        assert [t.id for t in coordinator.context.saved] == ["u1"]

    async def test_reload_while_offline_keeps_memory_state(
        self, remote: FakeRemoteStore, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.load_all()
        await coordinator.save_tea(make_tea("u1"))
        remote.go_offline()

        context = await coordinator.load_all()

        assert context.degraded
        assert [t.id for t in context.saved] == ["u1"]

    async def test_unusable_cache_is_tolerated(self, remote: FakeRemoteStore) -> None:
        cache = BrokenCache()
        remote.teas["u1"] = make_tea("u1")
        coordinator = SyncCoordinator(remote, cache, owner=OWNER)

        context = await coordinator.start()
        await coordinator.save_tea(make_tea("u2"))

        assert context.loaded
        assert not context.degraded
        assert isinstance(context.migration.error, CacheError)
        assert set(remote.teas) == {"u1", "u2"}
        assert cache.write_attempts >= 2


class TestMutations:
    """Tests for save_tea(), delete_tea(), hide_starter() and unhide_starter()."""

    async def test_save_new_tea(self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator) -> None:
        await coordinator.start()

        stored = await coordinator.save_tea(make_tea("u1"))

        assert stored.created_at is not None
        assert stored.updated_at is not None
        assert remote.teas["u1"].name == "Tea u1"
        assert _ids(coordinator.context)[-1] == "u1"
        assert [t.id for t in (await cache.read()).teas] == ["u1"]

    async def test_edit_preserves_created_at(self, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        first = await coordinator.save_tea(make_tea("u1"))

        second = await coordinator.save_tea(make_tea("u1", name="Renamed"))

        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert coordinator.context.find("u1").name == "Renamed"

    async def test_validation_happens_before_io(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        calls = list(remote.calls)

        with pytest.raises(ValidationError):
            await coordinator.save_tea(make_tea("u1", lat=95.0))

        assert remote.calls == calls
        assert coordinator.context.find("u1") is None

    async def test_new_tea_cannot_take_a_starter_id(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.save_tea(make_tea("longjing"))

        assert exc_info.value.field == "id"
        assert "longjing" not in remote.teas

    async def test_editing_a_starter_stores_an_override(
        self, remote: FakeRemoteStore, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.start()
        edited = get_starter("longjing").copy(notes="Pre-Qingming harvest")

        stored = await coordinator.save_tea(edited)

        assert stored.starter and stored.edited
        assert remote.teas["longjing"].edited
        matches = [t for t in coordinator.context.effective if t.id == "longjing"]
        assert len(matches) == 1
        assert matches[0].notes == "Pre-Qingming harvest"

    async def test_delete_user_tea(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        await coordinator.save_tea(make_tea("u1"))

        await coordinator.delete_tea("u1")

        assert "u1" not in remote.teas
        assert coordinator.context.find("u1") is None

    async def test_delete_starter_hides_it(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()

        await coordinator.delete_tea("keemun")

        assert remote.deletions == {"keemun"}
        assert "keemun" not in _ids(coordinator.context)

    async def test_hide_starter_drops_override(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        await coordinator.save_tea(get_starter("longjing").copy(name="My Longjing"))

        await coordinator.hide_starter("longjing")

        assert "longjing" in remote.deletions
        assert "longjing" not in remote.teas
        assert "longjing" not in _ids(coordinator.context)

    async def test_unhide_starter(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        await coordinator.hide_starter("keemun")

        await coordinator.unhide_starter("keemun")

        assert remote.deletions == set()
        assert "keemun" in _ids(coordinator.context)

    async def test_hide_unknown_starter(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()

        with pytest.raises(ValidationError):
            await coordinator.hide_starter("u1")
        with pytest.raises(ValidationError):
            await coordinator.unhide_starter("u1")

    async def test_rejected_write_is_discarded(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.start()
        remote.fail("upsert_tea", RemoteErrorKind.REJECTED)

        with pytest.raises(RemoteError) as exc_info:
            await coordinator.save_tea(make_tea("u1"))

        assert exc_info.value.rejected
        assert coordinator.context.find("u1") is None
        assert coordinator.context.pending == []
        assert coordinator.context.last_error is exc_info.value
        assert not coordinator.context.degraded
        assert (await cache.read()).pending == []

    async def test_mutations_are_serialized(self, cache: FileLocalCache) -> None:
        remote = SlowRemoteStore()
        coordinator = SyncCoordinator(remote, cache, owner=OWNER)
        await coordinator.start()

        await asyncio.gather(*(coordinator.save_tea(make_tea(f"u{i}")) for i in range(5)))

        assert remote.max_in_flight == 1
        assert [t.id for t in coordinator.context.saved] == ["u0", "u1", "u2", "u3", "u4"]


class TestDegradedWrites:
    """Tests for writes made while the remote store is unreachable."""

    async def test_offline_save_is_queued(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.start()
        remote.go_offline()

        stored = await coordinator.save_tea(make_tea("u1"))

        assert coordinator.context.degraded
        assert coordinator.context.find("u1") == stored
        assert [(w.op, w.target_id) for w in coordinator.context.pending] == [(PendingOp.UPSERT_TEA, "u1")]
        persisted = await cache.read()
        assert [t.id for t in persisted.teas] == ["u1"]
        assert persisted.pending[0].target_id == "u1"

    async def test_pending_writes_coalesce(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        remote.go_offline()

        await coordinator.save_tea(make_tea("u1"))
        await coordinator.save_tea(make_tea("u1", name="Second draft"))
        await coordinator.delete_tea("u1")

        assert [(w.op, w.target_id) for w in coordinator.context.pending] == [(PendingOp.DELETE_TEA, "u1")]

    async def test_heartbeat_flushes_after_recovery(
        self, remote: FakeRemoteStore, cache: FileLocalCache, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.start()
        remote.go_offline()
        await coordinator.save_tea(make_tea("u1"))
        await coordinator.hide_starter("keemun")

        assert await coordinator.heartbeat() is False
        remote.recover()
        assert await coordinator.heartbeat() is True

        assert not coordinator.context.degraded
        assert set(remote.teas) == {"u1"}
        assert remote.deletions == {"keemun"}
        assert (await cache.read()).pending == []

    async def test_heartbeat_counts_attempts(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        remote.go_offline()
        await coordinator.save_tea(make_tea("u1"))

        await coordinator.heartbeat()
        await coordinator.heartbeat()

        assert coordinator.context.pending[0].attempts == 2
        assert coordinator.context.pending[0].last_error

    async def test_next_success_flushes_pending(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        remote.go_offline()
        await coordinator.save_tea(make_tea("u1"))
        remote.recover()

        await coordinator.save_tea(make_tea("u2"))

        assert coordinator.context.pending == []
        assert set(remote.teas) == {"u1", "u2"}

    async def test_pending_survives_restart(self, remote: FakeRemoteStore, cache: FileLocalCache) -> None:
        first = SyncCoordinator(remote, cache, owner=OWNER)
        await first.start()
        remote.go_offline()
        await first.save_tea(make_tea("u1", notes="brewed at 85C"))
        await first.close()

        remote.recover()
        second = SyncCoordinator(remote, cache, owner=OWNER)
        context = await second.start()

        assert not context.degraded
        assert context.pending == []
        assert remote.teas["u1"].notes == "brewed at 85C"
        assert context.find("u1").notes == "brewed at 85C"

    async def test_rejected_pending_write_is_dropped(
        self, remote: FakeRemoteStore, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.start()
        remote.go_offline()
        await coordinator.save_tea(make_tea("u1"))
        remote.recover()
        remote.fail("upsert_tea", RemoteErrorKind.REJECTED)

        assert await coordinator.heartbeat() is True

        assert coordinator.context.pending == []
        assert coordinator.context.last_error.rejected
        assert "u1" not in remote.teas

    async def test_partial_hide_queues_remaining_writes(
        self, remote: FakeRemoteStore, coordinator: SyncCoordinator
    ) -> None:
        await coordinator.start()
        await coordinator.save_tea(get_starter("longjing").copy(name="Mine"))
        remote.fail("delete_tea")

        await coordinator.hide_starter("longjing")

        assert "longjing" in remote.deletions
        assert [(w.op, w.target_id) for w in coordinator.context.pending] == [(PendingOp.DELETE_TEA, "longjing")]
        assert "longjing" not in _ids(coordinator.context)


class TestSessionLifecycle:
    """Tests for session state, listeners and close()."""

    async def test_mutation_before_load(self, coordinator: SyncCoordinator) -> None:
        with pytest.raises(SyncStateError):
            await coordinator.save_tea(make_tea("u1"))
        with pytest.raises(SyncStateError):
            await coordinator.heartbeat()

    async def test_use_after_close(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        await coordinator.close()
        await coordinator.close()

        assert coordinator.closed
        assert remote.closed
        with pytest.raises(SyncStateError):
            await coordinator.load_all()
        with pytest.raises(SyncStateError):
            await coordinator.delete_tea("u1")

    async def test_async_context_manager(self, remote: FakeRemoteStore, cache: FileLocalCache) -> None:
        async with SyncCoordinator(remote, cache, owner=OWNER) as coordinator:
            await coordinator.start()

        assert coordinator.closed
        assert remote.closed

    async def test_listeners_notified(self, coordinator: SyncCoordinator) -> None:
        seen: list[list[str]] = []
        unsubscribe = coordinator.subscribe(lambda context: seen.append(_ids(context)))

        await coordinator.start()
        await coordinator.save_tea(make_tea("u1"))
        unsubscribe()
        await coordinator.save_tea(make_tea("u2"))

        assert len(seen) == 2
        assert seen[-1][-1] == "u1"

    async def test_failing_listener_does_not_break_mutation(
        self, remote: FakeRemoteStore, coordinator: SyncCoordinator
    ) -> None:
        def broken(context: SyncContext) -> None:
            raise RuntimeError("render failed")

        coordinator.subscribe(broken)
        await coordinator.start()

        await coordinator.save_tea(make_tea("u1"))

        assert "u1" in remote.teas

    async def test_no_notifications_after_close(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        seen: list[SyncContext] = []
        coordinator.subscribe(seen.append)
        remote.go_offline()

        save = asyncio.create_task(coordinator.save_tea(make_tea("u1")))
        await asyncio.sleep(0)
        await coordinator.close()
        await save

        assert seen == []

    async def test_status(self, remote: FakeRemoteStore, coordinator: SyncCoordinator) -> None:
        await coordinator.start()
        remote.go_offline()
        await coordinator.save_tea(make_tea("u1"))

        status = coordinator.context.status()

        assert status["owner"] == OWNER
        assert status["degraded"] is True
        assert status["pending"] == ["upsert_tea:u1"]
        assert status["migration"] == "done"


class TestCreateCoordinator:
    """Tests for create_coordinator()."""

    def test_wires_supabase_and_file_cache(self, tmp_path: Path) -> None:
        config = SyncConfig(
            supabase_url="https://example.supabase.co",
            supabase_anon_key="anon-key",
            cache_path=tmp_path / "cache.json",
        )

        coordinator = create_coordinator(config, access_token="jwt", owner=OWNER)

        assert isinstance(coordinator.remote, SupabaseRemoteStore)
        assert isinstance(coordinator.cache, FileLocalCache)
        assert coordinator.cache.path == tmp_path / "cache.json"
        assert coordinator.context.owner == OWNER

    def test_requires_endpoint(self) -> None:
        with pytest.raises(ValidationError):
            create_coordinator(SyncConfig())
