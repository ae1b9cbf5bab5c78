"""
Shared test configuration and fixtures.

Provides an in-memory remote store that can be scripted to fail
transiently or with a rejection, a cache that always fails, and tea
factories.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tea_atlas_sync.exceptions import CacheError, RemoteError, RemoteErrorKind
from tea_atlas_sync.storage.base import LocalCache, RemoteStore
from tea_atlas_sync.storage.cache import FileLocalCache
from tea_atlas_sync.storage.state import CachedState
from tea_atlas_sync.teas.types import Tea, TeaType


def make_tea(tea_id: str = "u1", tea_type: TeaType | str = TeaType.OOLONG, **overrides) -> Tea:
    """Create a valid user tea."""
    fields = {
        "id": tea_id,
        "name": f"Tea {tea_id}",
        "tea_type": tea_type,
        "lat": 24.0,
        "lng": 118.0,
    }
    fields.update(overrides)
    return Tea(**fields)


class FakeRemoteStore(RemoteStore):
    """
    In-memory remote store for one authenticated user.

    Failures are scripted per operation name (``list_teas``, ``upsert_tea``,
    ...) or for every operation with ``fail_all``.
    """

    def __init__(self) -> None:
        self.teas: dict[str, Tea] = {}
        self.deletions: set[str] = set()
        self.calls: list[tuple[str, str | None]] = []
        self.failures: dict[str, RemoteErrorKind] = {}
        self.fail_all: RemoteErrorKind | None = None
        self.closed = False

    def fail(self, operation: str, kind: RemoteErrorKind = RemoteErrorKind.TRANSIENT) -> None:
        self.failures[operation] = kind

    def go_offline(self) -> None:
        self.fail_all = RemoteErrorKind.TRANSIENT

    def recover(self) -> None:
        self.fail_all = None
        self.failures.clear()

    def _check(self, operation: str, target: str | None = None) -> None:
        self.calls.append((operation, target))
        kind = self.fail_all or self.failures.get(operation)
        if kind is not None:
            status = 503 if kind is RemoteErrorKind.TRANSIENT else 403
            raise RemoteError(operation, kind, status=status)

    async def list_teas(self) -> list[Tea]:
        self._check("list_teas")
        return [tea.copy() for tea in self.teas.values()]

    async def list_deletions(self) -> set[str]:
        self._check("list_deletions")
        return set(self.deletions)

    async def upsert_tea(self, tea: Tea) -> None:
        self._check("upsert_tea", tea.id)
        self.teas[tea.id] = tea.copy()

    async def delete_tea(self, tea_id: str) -> None:
        self._check("delete_tea", tea_id)
        self.teas.pop(tea_id, None)

    async def mark_deleted(self, starter_id: str) -> None:
        self._check("mark_deleted", starter_id)
        self.deletions.add(starter_id)

    async def unmark_deleted(self, starter_id: str) -> None:
        self._check("unmark_deleted", starter_id)
        self.deletions.discard(starter_id)

    async def close(self) -> None:
        self.closed = True

    def snapshot(self) -> tuple[dict[str, dict], set[str]]:
        return {tea_id: tea.to_dict() for tea_id, tea in self.teas.items()}, set(self.deletions)


class BrokenCache(LocalCache):
    """Cache whose storage is unusable (e.g. quota exceeded)."""

    def __init__(self) -> None:
        self.write_attempts = 0

    async def read(self) -> CachedState | None:
        raise CacheError("read_json", "/nowhere/cache.json")

    async def write(self, state: CachedState) -> None:
        self.write_attempts += 1
        raise CacheError("write_json", "/nowhere/cache.json", OSError("quota exceeded"))


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "tea-atlas" / "cache.json"


@pytest.fixture
def cache(cache_path: Path) -> FileLocalCache:
    return FileLocalCache(cache_path)
