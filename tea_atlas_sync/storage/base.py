"""
Abstract storage interfaces and configuration.

Defines the contracts the sync coordinator relies on: a remote store
scoped to the authenticated identity, and a best-effort local cache.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ValidationError
from ..teas.types import Tea
from .state import CachedState

DEFAULT_CACHE_PATH = Path.home() / ".tea-atlas" / "cache.json"
DEFAULT_SETTINGS_PATH = Path.home() / ".tea-atlas" / "settings.yaml"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class SyncConfig:
    """Configuration for the sync layer.

    Configuration can be provided directly, from a YAML settings file, or
    via environment variables:

    Environment Variables:
        TEA_ATLAS_SUPABASE_URL: Project URL (e.g. https://xyz.supabase.co)
        TEA_ATLAS_SUPABASE_ANON_KEY: Public (anon) client key
        TEA_ATLAS_CACHE_PATH: Local cache file (default: ~/.tea-atlas/cache.json)
        TEA_ATLAS_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 15)
        TEA_ATLAS_STRUCTURED_LOGS: "1"/"true" to emit the package logs as JSON on stdout
        TEA_ATLAS_LOG_LEVEL: Level for the package logger when structured (default: INFO)

    Settings file (settings.yaml):
        supabase:
          url: https://xyz.supabase.co
          anon_key: ...
        cache:
          path: ~/.tea-atlas/cache.json
        request_timeout: 15
        logging:
          structured: true
          level: INFO

    Attributes:
        supabase_url: Remote store endpoint
        supabase_anon_key: Public client key sent as ``apikey``
        cache_path: Path of the local cache document
        request_timeout: Seconds before a remote call counts as transient failure
        structured_logs: Configure JSON logging when a coordinator is created
        log_level: Level name for the package logger
    """

    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    cache_path: Path = DEFAULT_CACHE_PATH
    request_timeout: float = 15.0
    structured_logs: bool = False
    log_level: str = "INFO"

    # Additional options
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.cache_path = Path(self.cache_path).expanduser()

    @classmethod
    def from_environment(cls) -> SyncConfig:
        """Create configuration from environment variables."""
        return cls()._with_environment()

    @classmethod
    def from_file(cls, path: Path | str) -> SyncConfig:
        """Create configuration from a YAML settings file.

        A missing file yields the defaults.
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        data = yaml.safe_load(path.read_text()) or {}
        supabase = data.get("supabase") or {}
        cache = data.get("cache") or {}
        log_settings = data.get("logging") or {}
        kwargs: dict[str, Any] = {
            "supabase_url": supabase.get("url"),
            "supabase_anon_key": supabase.get("anon_key"),
        }
        if cache.get("path"):
            kwargs["cache_path"] = cache["path"]
        if data.get("request_timeout") is not None:
            kwargs["request_timeout"] = float(data["request_timeout"])
        if log_settings.get("structured") is not None:
            kwargs["structured_logs"] = bool(log_settings["structured"])
        if log_settings.get("level"):
            kwargs["log_level"] = str(log_settings["level"]).upper()
        return cls(**kwargs)

    @classmethod
    def load(cls, settings_path: Path | str | None = None) -> SyncConfig:
        """Load the settings file, then let environment variables override it."""
        config = cls.from_file(settings_path or DEFAULT_SETTINGS_PATH)
        return config._with_environment()

    def validate(self) -> None:
        """Check the remote endpoint settings.

        Raises:
            ValidationError: If the URL or public key is missing, or the log
                level is unknown
        """
        if not self.supabase_url:
            raise ValidationError("supabase_url", "is required")
        if not self.supabase_url.startswith(("http://", "https://")):
            raise ValidationError("supabase_url", "must be an http(s) URL", self.supabase_url)
        if not self.supabase_anon_key:
            raise ValidationError("supabase_anon_key", "is required")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValidationError("log_level", f"must be one of {', '.join(_LOG_LEVELS)}", self.log_level)

    def _with_environment(self) -> SyncConfig:
        env = os.environ
        if env.get("TEA_ATLAS_SUPABASE_URL"):
            self.supabase_url = env["TEA_ATLAS_SUPABASE_URL"]
        if env.get("TEA_ATLAS_SUPABASE_ANON_KEY"):
            self.supabase_anon_key = env["TEA_ATLAS_SUPABASE_ANON_KEY"]
        if env.get("TEA_ATLAS_CACHE_PATH"):
            self.cache_path = Path(env["TEA_ATLAS_CACHE_PATH"]).expanduser()
        if env.get("TEA_ATLAS_REQUEST_TIMEOUT"):
            try:
                self.request_timeout = float(env["TEA_ATLAS_REQUEST_TIMEOUT"])
            except ValueError as e:
                raise ValidationError(
                    "request_timeout", "must be a number", env["TEA_ATLAS_REQUEST_TIMEOUT"]
                ) from e
        if env.get("TEA_ATLAS_STRUCTURED_LOGS"):
            self.structured_logs = env["TEA_ATLAS_STRUCTURED_LOGS"].strip().lower() in ("1", "true", "yes", "on")
        if env.get("TEA_ATLAS_LOG_LEVEL"):
            self.log_level = env["TEA_ATLAS_LOG_LEVEL"].strip().upper()
        return self


class RemoteStore(ABC):
    """Per-user remote store.

    Every operation is scoped implicitly to the caller's authenticated
    identity; no owner is ever passed in. Every failure raises
    ``RemoteError`` classified as transient or rejected. Upserts and
    deletion markers are idempotent.
    """

    @abstractmethod
    async def list_teas(self) -> list[Tea]:
        """Return the user's saved records in storage order."""
        ...

    @abstractmethod
    async def list_deletions(self) -> set[str]:
        """Return the ids of the starters the user has hidden."""
        ...

    @abstractmethod
    async def upsert_tea(self, tea: Tea) -> None:
        """Insert or replace a record keyed by (id, owner)."""
        ...

    @abstractmethod
    async def delete_tea(self, tea_id: str) -> None:
        """Delete a saved record. Deleting a missing record is not an error."""
        ...

    @abstractmethod
    async def mark_deleted(self, starter_id: str) -> None:
        """Hide a starter. Marking twice is not an error."""
        ...

    @abstractmethod
    async def unmark_deleted(self, starter_id: str) -> None:
        """Unhide a starter. Unmarking a visible starter is not an error."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None


class LocalCache(ABC):
    """Device-local, best-effort snapshot store.

    Failures raise ``CacheError``; callers log and continue, the cache is
    never load-bearing for correctness.
    """

    @abstractmethod
    async def read(self) -> CachedState | None:
        """Return the last written snapshot, or None if there is none."""
        ...

    @abstractmethod
    async def write(self, state: CachedState) -> None:
        """Replace the snapshot."""
        ...

    async def clear(self) -> None:
        """Remove the snapshot."""
        return None
