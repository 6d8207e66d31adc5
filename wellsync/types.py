"""Shared types for wellsync.

Records are plain dataclasses mirroring the local SQLite rows. Every
syncable family extends ``SyncableRecord`` which carries the sync-state
columns the engine scans and flips.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ParseDatetimeError(ValueError):
    """Structured parse failure for ISO datetime strings."""

    def __init__(self, value: str, cause: Exception):
        super().__init__(f"Invalid ISO datetime string: {value!r}")
        self.value = value
        self.cause = cause


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(s: Optional[str], *, strict: bool = False) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Returns None for empty input. Invalid input returns None unless
    ``strict`` is set, in which case ``ParseDatetimeError`` is raised.
    """
    if not s:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except (TypeError, ValueError) as exc:
        if strict:
            raise ParseDatetimeError(s, exc) from exc
        return None


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


# === Enums ===


class EntityFamily(str, Enum):
    """Syncable record families, each with its own adapter and timer."""

    JOURNAL = "journal"
    JOURNEY = "journey"
    EXPOSURE = "exposure"


class Mood(str, Enum):
    HAPPY = "happy"
    ANGRY = "angry"
    EXCITED = "excited"
    STRESSED = "stressed"
    SAD = "sad"
    NONE = "none"


class JourneyType(IntEnum):
    """Journey kind; the integer value is the remote wire format."""

    AGORAPHOBIA = 0
    GENERAL_ANXIETY = 1
    NONE = 2


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class ErrorCategory(str, Enum):
    """Sync error taxonomy used for logging and status reporting."""

    TRANSIENT = "transient"
    AUTHORIZATION = "authorization"
    DATA = "data"
    LOCAL_STORE = "local_store"
    UNKNOWN = "unknown"


# === Records ===


@dataclass
class SyncableRecord:
    """Base for every record that travels between device and remote store.

    ``is_synced`` and ``needs_sync`` are never both true. Local writes set
    ``needs_sync=True, is_synced=False``; only the sync engine flips them
    back.
    """

    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    is_deleted: bool = False
    is_synced: bool = False
    needs_sync: bool = True
    last_synced_at: Optional[datetime] = None

    def touch(self, now: Optional[datetime] = None) -> None:
        """Stamp a local mutation."""
        self.updated_at = now or utc_now()
        self.needs_sync = True
        self.is_synced = False


@dataclass
class JournalEntry(SyncableRecord):
    mood: Mood = Mood.NONE
    text: str = ""
    entry_date: datetime = field(default_factory=utc_now)


@dataclass
class Journey(SyncableRecord):
    journey_type: JourneyType = JourneyType.NONE
    start_date: datetime = field(default_factory=utc_now)
    is_completed: bool = False
    current: bool = False
    linked_plan_id: Optional[str] = None


@dataclass
class PathPoint:
    latitude: float
    longitude: float
    timestamp: datetime


@dataclass
class FeelingCheckpoint:
    latitude: float
    longitude: float
    feeling: str
    timestamp: datetime
    id: str = field(default_factory=new_id)


@dataclass
class HesitationPoint:
    latitude: float
    longitude: float
    start_time: datetime
    end_time: datetime
    duration: float = 0.0
    id: str = field(default_factory=new_id)


@dataclass
class JourneyTrackingData(SyncableRecord):
    """GPS trace of a journey.

    Shares its ``id`` with the owning journey; ``journey_id`` carries the
    same value explicitly.
    """

    journey_id: str = ""
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    distance: float = 0.0
    duration: int = 0
    path_points: List[PathPoint] = field(default_factory=list)
    checkpoints: List[FeelingCheckpoint] = field(default_factory=list)
    hesitation_points: List[HesitationPoint] = field(default_factory=list)

    def __post_init__(self):
        if not self.journey_id:
            self.journey_id = self.id
        elif self.id != self.journey_id:
            self.id = self.journey_id


@dataclass
class ExposurePlan(SyncableRecord):
    name: str = ""


@dataclass
class ExposureTarget(SyncableRecord):
    plan_id: str = ""
    name: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    wait_time_seconds: int = 0
    order_index: int = 0


# === Sync results ===


@dataclass
class SyncIssue:
    """A single per-record or per-cycle problem observed during sync."""

    category: ErrorCategory
    message: str
    table: Optional[str] = None
    record_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "table": self.table,
            "record_id": self.record_id,
        }


@dataclass
class SyncResult:
    """Outcome of one push-then-pull cycle for a family."""

    family: EntityFamily
    pushed: int = 0
    pulled: int = 0
    failed: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: List[SyncIssue] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def add_issue(
        self,
        category: ErrorCategory,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> None:
        self.errors.append(SyncIssue(category, message, table, record_id))

    def summary(self) -> str:
        return (
            f"{self.family.value}: pushed={self.pushed} pulled={self.pulled} "
            f"failed={self.failed} skipped={self.skipped} conflicts={self.conflicts}"
        )


@dataclass
class FamilyStatus:
    """Observable per-family sync status."""

    family: EntityFamily
    state: SyncState = SyncState.IDLE
    last_synced_at: Optional[datetime] = None
    last_error: Optional[SyncIssue] = None
    auto_sync_enabled: bool = False

    @property
    def is_syncing(self) -> bool:
        return self.state == SyncState.SYNCING
