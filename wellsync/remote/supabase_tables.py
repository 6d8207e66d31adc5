"""Remote table service backed by a Supabase (PostgREST) client.

The supabase client is synchronous, so every call runs in a worker thread
via ``asyncio.to_thread`` and the sync cycle suspends instead of blocking
the loop. Library exceptions are translated into the wellsync taxonomy
before they leave this module.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from wellsync.protocols import (
    AuthorizationError,
    RemotePayloadError,
    Row,
    TransientSyncError,
    WellsyncError,
)

logger = logging.getLogger(__name__)

# PostgREST / Postgres error codes that mean "not allowed"
_AUTH_ERROR_CODES = frozenset(
    {
        "42501",  # insufficient_privilege (row-level security)
        "PGRST301",  # JWT expired / invalid
        "PGRST302",  # anonymous access disabled
        "401",
        "403",
    }
)

# Postgres classes for rejected data: 22 data exception, 23 integrity violation
_DATA_ERROR_PREFIXES = ("22", "23")


def classify_remote_error(exc: Exception) -> WellsyncError:
    """Map a supabase/httpx exception onto the sync error taxonomy."""
    if isinstance(exc, WellsyncError):
        return exc

    if isinstance(exc, APIError):
        code = str(exc.code or "")
        message = exc.message or str(exc)
        if code in _AUTH_ERROR_CODES:
            return AuthorizationError(f"Remote rejected credentials ({code}): {message}")
        if code.startswith(_DATA_ERROR_PREFIXES):
            return RemotePayloadError(f"Remote rejected row ({code}): {message}")
        return TransientSyncError(f"Remote API error ({code or 'unknown'}): {message}")

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            return AuthorizationError(f"Remote rejected credentials (HTTP {status})")
        return TransientSyncError(f"Remote HTTP error {status}")

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return TransientSyncError(f"Network error: {exc.__class__.__name__}: {exc}")

    return TransientSyncError(f"Unexpected remote failure: {exc!r}")


class SupabaseTableService:
    """``RemoteTableService`` over ``supabase.Client``."""

    def __init__(self, client: Client):
        self._client = client

    async def _call(self, description: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except (APIError, httpx.HTTPError) as e:
            error = classify_remote_error(e)
            logger.debug(f"{description} failed: {error}")
            raise error from e

    async def upsert(self, table: str, row: Row) -> Optional[Row]:
        def _upsert():
            return self._client.table(table).upsert(row).execute()

        result = await self._call(f"upsert {table}/{row.get('id')}", _upsert)
        return result.data[0] if result.data else None

    async def mark_deleted(self, table: str, record_id: str, updated_at: str) -> Optional[Row]:
        def _update():
            return (
                self._client.table(table)
                .update({"is_deleted": True, "updated_at": updated_at})
                .eq("id", record_id)
                .execute()
            )

        result = await self._call(f"soft-delete {table}/{record_id}", _update)
        return result.data[0] if result.data else None

    async def select_all(
        self,
        table: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        def _query():
            query = self._client.table(table).select("*").eq("user_id", user_id)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if order_by:
                query = query.order(order_by)
            return query.execute()

        result = await self._call(f"select {table}", _query)
        return list(result.data or [])

    async def select_page(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: str,
        offset: int,
        limit: int,
    ) -> List[Row]:
        def _query():
            query = self._client.table(table).select("*")
            for column, value in filters.items():
                query = query.eq(column, value)
            # range() bounds are inclusive
            return query.order(order_by).range(offset, offset + limit - 1).execute()

        result = await self._call(f"select page {table}[{offset}:{offset + limit}]", _query)
        return list(result.data or [])
