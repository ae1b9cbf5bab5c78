"""
Supabase remote store.

Talks to the project's PostgREST endpoint with aiohttp. Row-level security
scopes every row to the authenticated caller, so requests never carry an
owner; the ``user_id`` column defaults to ``auth.uid()`` server-side.

Tables (see the project's setup SQL):
    teas(id, user_id, name, chinese_name, type, province, region, lat, lng,
         elevation, flavor, description, notes, starter, edited,
         created_at, updated_at)            primary key (id, user_id)
    deleted_starters(user_id, starter_id)   primary key (user_id, starter_id)

Errors are classified for the coordinator:
    transient: connection errors, timeouts, 408/425/429, 5xx, unreadable bodies
    rejected: every other 4xx (bad payload, expired token, RLS, constraints)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from ..exceptions import RemoteError
from ..teas.types import DeletionMarker, Tea
from .base import RemoteStore, SyncConfig

logger = logging.getLogger(__name__)

TEAS_TABLE = "teas"
DELETIONS_TABLE = "deleted_starters"

_TRANSIENT_STATUSES = frozenset({408, 425, 429})

TokenProvider = Callable[[], str | None]


def is_transient_status(status: int) -> bool:
    return status >= 500 or status in _TRANSIENT_STATUSES


def _error_reason(body: str) -> str | None:
    """Extract the PostgREST/GoTrue error message from a response body."""
    if not body:
        return None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return body[:200]
    if isinstance(payload, dict):
        for key in ("message", "msg", "error_description", "error"):
            if payload.get(key):
                return str(payload[key])
    return body[:200]


class SupabaseRemoteStore(RemoteStore):
    """Remote store backed by Supabase's REST interface.

    The public (anon) key is sent as ``apikey``; the bearer token is the
    signed-in user's access token when a token provider is given. Token
    acquisition and refresh belong to the authentication flow, not here.

    Example:
        >>> store = SupabaseRemoteStore(
        ...     url="https://xyz.supabase.co",
        ...     anon_key="public-anon-key",
        ...     access_token=lambda: auth.session.access_token,
        ... )
        >>> teas = await store.list_teas()
        >>> await store.close()
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        access_token: str | TokenProvider | None = None,
        session: aiohttp.ClientSession | None = None,
        request_timeout: float = 15.0,
    ) -> None:
        """Initialize the store.

        Args:
            url: Project URL
            anon_key: Public client key
            access_token: User access token, or a callable returning the current one
            session: Optional shared aiohttp session (not closed by this store)
            request_timeout: Total seconds per request
        """
        self.base_url = url.rstrip("/")
        self.anon_key = anon_key
        self._access_token = access_token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        access_token: str | TokenProvider | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> SupabaseRemoteStore:
        config.validate()
        return cls(
            url=config.supabase_url,  # type: ignore[arg-type]
            anon_key=config.supabase_anon_key,  # type: ignore[arg-type]
            access_token=access_token,
            session=session,
            request_timeout=config.request_timeout,
        )

    # RemoteStore contract

    async def list_teas(self) -> list[Tea]:
        rows = await self._request_list(
            "list_teas",
            TEAS_TABLE,
            params={"select": "*", "order": "created_at.asc"},
        )
        teas: list[Tea] = []
        for row in rows:
            try:
                teas.append(Tea.from_row(row))
            except (KeyError, TypeError) as e:
                logger.warning("Skipping malformed tea row: %s", e)
        return teas

    async def list_deletions(self) -> set[str]:
        rows = await self._request_list(
            "list_deletions",
            DELETIONS_TABLE,
            params={"select": "starter_id"},
        )
        markers = [DeletionMarker.from_row(row) for row in rows if row.get("starter_id")]
        return {marker.starter_id for marker in markers}

    async def upsert_tea(self, tea: Tea) -> None:
        await self._request(
            "upsert_tea",
            "POST",
            TEAS_TABLE,
            params={"on_conflict": "id,user_id"},
            payload=tea.to_row(),
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def delete_tea(self, tea_id: str) -> None:
        await self._request(
            "delete_tea",
            "DELETE",
            TEAS_TABLE,
            params={"id": f"eq.{tea_id}"},
            prefer="return=minimal",
        )

    async def mark_deleted(self, starter_id: str) -> None:
        await self._request(
            "mark_deleted",
            "POST",
            DELETIONS_TABLE,
            params={"on_conflict": "user_id,starter_id"},
            payload=DeletionMarker(owner=None, starter_id=starter_id).to_row(),
            prefer="resolution=ignore-duplicates,return=minimal",
        )

    async def unmark_deleted(self, starter_id: str) -> None:
        await self._request(
            "unmark_deleted",
            "DELETE",
            DELETIONS_TABLE,
            params={"starter_id": f"eq.{starter_id}"},
            prefer="return=minimal",
        )

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    # HTTP plumbing

    def _headers(self, prefer: str | None) -> dict[str, str]:
        token = self._access_token() if callable(self._access_token) else self._access_token
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token or self.anon_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request_list(
        self, operation: str, table: str, params: dict[str, str]
    ) -> list[dict[str, Any]]:
        payload = await self._request(operation, "GET", table, params=params)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise RemoteError.transient_error(operation, reason="expected a JSON array")
        return [row for row in payload if isinstance(row, dict)]

    async def _request(
        self,
        operation: str,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> Any:
        session = self._ensure_session()
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            async with session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(prefer),
                timeout=self._timeout,
            ) as resp:
                body = await resp.text()
                if resp.status >= 400:
                    reason = _error_reason(body)
                    if is_transient_status(resp.status):
                        raise RemoteError.transient_error(operation, resp.status, reason)
                    raise RemoteError.rejected_error(operation, resp.status, reason)
        except (asyncio.TimeoutError, TimeoutError, aiohttp.ClientError) as e:  # noqa: UP041
            raise RemoteError.transient_error(
                operation, reason=str(e) or type(e).__name__, cause=e
            ) from e

        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise RemoteError.transient_error(operation, reason="invalid JSON response", cause=e) from e
