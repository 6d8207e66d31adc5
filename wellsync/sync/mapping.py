"""Remote row shapes and their mapping to local records.

Outgoing rows are plain dicts built from records. Incoming rows are
validated with pydantic first; anything that does not validate becomes a
``RemotePayloadError`` so the engine can skip that single row.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wellsync.protocols import RemotePayloadError, Row
from wellsync.storage.rows import (
    checkpoints_to_json,
    hesitation_points_to_json,
    path_points_to_json,
)
from wellsync.types import (
    ExposurePlan,
    ExposureTarget,
    FeelingCheckpoint,
    HesitationPoint,
    JournalEntry,
    Journey,
    JourneyTrackingData,
    JourneyType,
    Mood,
    PathPoint,
    SyncableRecord,
    ensure_utc,
    format_datetime,
)

M = TypeVar("M", bound=BaseModel)


# =============================================================================
# Incoming row models
# =============================================================================


class RemoteRow(BaseModel):
    """Columns every syncable remote table carries."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: datetime
    is_deleted: bool = False


class JournalEntryRow(RemoteRow):
    mood: Mood = Mood.NONE
    text: str = ""
    entry_date: datetime


class JourneyRow(RemoteRow):
    type: JourneyType = JourneyType.NONE
    start_date: datetime
    is_completed: bool = False
    current: bool = False
    linked_plan_id: Optional[str] = None


class PathPointPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    latitude: float
    longitude: float
    timestamp: datetime


class CheckpointPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    latitude: float
    longitude: float
    feeling: str
    timestamp: datetime


class HesitationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    latitude: float
    longitude: float
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    duration: float = 0.0


class TrackingDataRow(RemoteRow):
    journey_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    distance: float = 0.0
    duration: int = 0
    path_points_json: Optional[List[PathPointPayload]] = None
    checkpoints_json: Optional[List[CheckpointPayload]] = None
    hesitation_points_json: Optional[List[HesitationPayload]] = None


class ExposurePlanRow(RemoteRow):
    name: str = ""


class ExposureTargetRow(RemoteRow):
    plan_id: str
    name: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    wait_time_seconds: int = 0
    order_index: int = 0


class LegacyPathPointRow(BaseModel):
    """Row of the pre-JSON ``path_points`` table."""

    model_config = ConfigDict(extra="ignore")

    latitude: float
    longitude: float
    timestamp: datetime


class LegacyCheckpointRow(BaseModel):
    """Row of the pre-JSON ``feeling_checkpoints`` table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    latitude: float
    longitude: float
    feeling: str
    timestamp: datetime


def decode_row(model: Type[M], row: Row) -> M:
    """Validate a remote row, raising ``RemotePayloadError`` on failure."""
    if not isinstance(row, dict):
        raise RemotePayloadError(f"{model.__name__}: expected an object, got {type(row).__name__}")
    try:
        return model.model_validate(row)
    except ValidationError as e:
        row_id = row.get("id")
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise RemotePayloadError(
            f"Malformed {model.__name__} {row_id!r}: invalid {fields}", row_id=row_id
        ) from e


def _sync_kwargs(row: RemoteRow) -> Dict[str, Any]:
    updated_at = ensure_utc(row.updated_at)
    return {
        "id": row.id,
        "created_at": ensure_utc(row.created_at) if row.created_at else updated_at,
        "updated_at": updated_at,
        "is_deleted": row.is_deleted,
    }


def _sync_columns(record: SyncableRecord, user_id: str) -> Row:
    return {
        "id": record.id,
        "user_id": user_id,
        "created_at": format_datetime(record.created_at),
        "updated_at": format_datetime(record.updated_at),
        "is_deleted": record.is_deleted,
    }


# =============================================================================
# Journal entries
# =============================================================================


def journal_entry_to_row(entry: JournalEntry, user_id: str) -> Row:
    row = _sync_columns(entry, user_id)
    row.update(
        mood=entry.mood.value,
        text=entry.text,
        entry_date=format_datetime(entry.entry_date),
    )
    return row


def journal_entry_from_row(row: Row) -> JournalEntry:
    data = decode_row(JournalEntryRow, row)
    return JournalEntry(
        **_sync_kwargs(data),
        mood=data.mood,
        text=data.text,
        entry_date=ensure_utc(data.entry_date),
    )


# =============================================================================
# Journeys and tracking data
# =============================================================================


def journey_to_row(journey: Journey, user_id: str) -> Row:
    row = _sync_columns(journey, user_id)
    row.update(
        type=int(journey.journey_type),
        start_date=format_datetime(journey.start_date),
        is_completed=journey.is_completed,
        current=journey.current,
        linked_plan_id=journey.linked_plan_id,
    )
    return row


def journey_from_row(row: Row) -> Journey:
    data = decode_row(JourneyRow, row)
    return Journey(
        **_sync_kwargs(data),
        journey_type=data.type,
        start_date=ensure_utc(data.start_date),
        is_completed=data.is_completed,
        current=data.current,
        linked_plan_id=data.linked_plan_id,
    )


def tracking_data_to_row(data: JourneyTrackingData, user_id: str) -> Row:
    """Serialize tracking data; empty collections travel as null."""
    row = _sync_columns(data, user_id)
    row.update(
        journey_id=data.journey_id,
        start_time=format_datetime(data.start_time),
        end_time=format_datetime(data.end_time),
        distance=data.distance,
        duration=data.duration,
        path_points_json=path_points_to_json(data.path_points) or None,
        checkpoints_json=checkpoints_to_json(data.checkpoints) or None,
        hesitation_points_json=hesitation_points_to_json(data.hesitation_points) or None,
    )
    return row


def tracking_data_from_row(row: Row) -> JourneyTrackingData:
    data = decode_row(TrackingDataRow, row)
    if data.id != data.journey_id:
        raise RemotePayloadError(
            f"Tracking data {data.id!r} does not share its journey id {data.journey_id!r}",
            row_id=data.id,
        )
    return JourneyTrackingData(
        **_sync_kwargs(data),
        journey_id=data.journey_id,
        start_time=ensure_utc(data.start_time),
        end_time=ensure_utc(data.end_time) if data.end_time else None,
        distance=data.distance,
        duration=data.duration,
        path_points=[
            PathPoint(p.latitude, p.longitude, ensure_utc(p.timestamp))
            for p in data.path_points_json or []
        ],
        checkpoints=[
            FeelingCheckpoint(
                id=c.id,
                latitude=c.latitude,
                longitude=c.longitude,
                feeling=c.feeling,
                timestamp=ensure_utc(c.timestamp),
            )
            for c in data.checkpoints_json or []
        ],
        hesitation_points=[
            HesitationPoint(
                id=h.id,
                latitude=h.latitude,
                longitude=h.longitude,
                start_time=ensure_utc(h.start_time),
                end_time=ensure_utc(h.end_time),
                duration=h.duration,
            )
            for h in data.hesitation_points_json or []
        ],
    )


def needs_legacy_points(row: Row) -> bool:
    """True when a tracking row predates the JSON columns."""
    return row.get("path_points_json") is None or row.get("checkpoints_json") is None


def legacy_path_point_from_row(row: Row) -> PathPoint:
    data = decode_row(LegacyPathPointRow, row)
    return PathPoint(data.latitude, data.longitude, ensure_utc(data.timestamp))


def legacy_checkpoint_from_row(row: Row) -> FeelingCheckpoint:
    data = decode_row(LegacyCheckpointRow, row)
    return FeelingCheckpoint(
        id=data.id,
        latitude=data.latitude,
        longitude=data.longitude,
        feeling=data.feeling,
        timestamp=ensure_utc(data.timestamp),
    )


# =============================================================================
# Exposure plans and targets
# =============================================================================


def exposure_plan_to_row(plan: ExposurePlan, user_id: str) -> Row:
    row = _sync_columns(plan, user_id)
    row.update(name=plan.name)
    return row


def exposure_plan_from_row(row: Row) -> ExposurePlan:
    data = decode_row(ExposurePlanRow, row)
    return ExposurePlan(**_sync_kwargs(data), name=data.name)


def exposure_target_to_row(target: ExposureTarget, user_id: str) -> Row:
    row = _sync_columns(target, user_id)
    row.update(
        plan_id=target.plan_id,
        name=target.name,
        latitude=target.latitude,
        longitude=target.longitude,
        wait_time_seconds=target.wait_time_seconds,
        order_index=target.order_index,
    )
    return row


def exposure_target_from_row(row: Row) -> ExposureTarget:
    data = decode_row(ExposureTargetRow, row)
    return ExposureTarget(
        **_sync_kwargs(data),
        plan_id=data.plan_id,
        name=data.name,
        latitude=data.latitude,
        longitude=data.longitude,
        wait_time_seconds=data.wait_time_seconds,
        order_index=data.order_index,
    )
