"""
wellsync Protocol Definitions
=============================

Interface contracts for the collaborators the sync engine consumes but
does not own.

Collaborators and their roles:
- RemoteTableService:  hosted relational store, per-table CRUD scoped to a user.
- CurrentUserProvider: the signed-in user, or an authorization failure.
- EntitlementGate:     whether the user may sync a family right now.
- Scheduler:           recurring ticks for the coordinator's timers.

Error handling philosophy:
- Network trouble raises TransientSyncError; the record stays dirty
- A missing session raises AuthorizationError; the whole cycle aborts
- A malformed remote row raises RemotePayloadError; only that row is skipped
- Local SQLite failures raise StorageError; fatal to the current cycle
- The coordinator catches everything at the cycle boundary
"""

from __future__ import annotations

from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from wellsync.types import EntityFamily, ErrorCategory

# =============================================================================
# ERRORS
# =============================================================================


class WellsyncError(Exception):
    """Base for all wellsync errors."""

    category = ErrorCategory.UNKNOWN


class TransientSyncError(WellsyncError):
    """Network timeout, remote 5xx or rate limiting. Retried next cycle."""

    category = ErrorCategory.TRANSIENT


class AuthorizationError(WellsyncError):
    """No current session, or the remote rejected our credentials."""

    category = ErrorCategory.AUTHORIZATION


class RemotePayloadError(WellsyncError):
    """A remote row could not be decoded into a local record."""

    category = ErrorCategory.DATA

    def __init__(self, message: str, row_id: Optional[str] = None):
        super().__init__(message)
        self.row_id = row_id


class StorageError(WellsyncError):
    """The embedded store failed a read or a write transaction."""

    category = ErrorCategory.LOCAL_STORE


class ConfigurationError(WellsyncError):
    """Missing or invalid settings (e.g. no Supabase URL)."""

    category = ErrorCategory.AUTHORIZATION


def error_category(exc: BaseException) -> ErrorCategory:
    """Category of any exception seen at the cycle boundary."""
    if isinstance(exc, WellsyncError):
        return exc.category
    return ErrorCategory.UNKNOWN


# =============================================================================
# COLLABORATORS
# =============================================================================

Row = Dict[str, Any]


@runtime_checkable
class RemoteTableService(Protocol):
    """Per-table access to the remote store.

    Rows are plain dicts matching the serialized record shape; timestamps
    are ISO-8601 strings. Implementations raise ``TransientSyncError`` or
    ``AuthorizationError``, never library-specific exceptions.
    """

    async def upsert(self, table: str, row: Row) -> Optional[Row]:
        """Insert or update a row keyed by ``id``; returns the stored row if echoed."""
        ...

    async def mark_deleted(self, table: str, record_id: str, updated_at: str) -> Optional[Row]:
        """Flip ``is_deleted`` on an existing row. Never removes it."""
        ...

    async def select_all(
        self,
        table: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        """All rows of ``table`` owned by ``user_id`` (soft-deleted included)."""
        ...

    async def select_page(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: str,
        offset: int,
        limit: int,
    ) -> List[Row]:
        """One page of rows matching ``filters``, ordered by ``order_by``."""
        ...


@runtime_checkable
class CurrentUserProvider(Protocol):
    async def current_user_id(self) -> str:
        """Return the signed-in user id or raise ``AuthorizationError``."""
        ...


EntitlementListener = Callable[[Optional[EntityFamily]], None]


@runtime_checkable
class EntitlementGate(Protocol):
    """External may-sync signal. Consumed, never computed, by the engine."""

    def can_sync(self, family: EntityFamily) -> bool: ...

    def subscribe(self, listener: EntitlementListener) -> Callable[[], None]:
        """Register for change events; returns an unsubscribe callable."""
        ...


TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class Scheduler(Protocol):
    """Drives recurring sync ticks. The host wires it to its own lifecycle."""

    def start(self, key: str, interval: float, callback: TickCallback) -> None: ...

    def stop(self, key: str) -> None: ...

    def is_running(self, key: str) -> bool: ...

    async def tick(self, key: str) -> None:
        """Fire ``key``'s callback once, immediately."""
        ...


Clock = Callable[[], datetime]
