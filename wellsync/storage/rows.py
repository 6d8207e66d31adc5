"""Conversions between SQLite rows and record dataclasses.

Nested tracking collections are stored as JSON text in the same shape the
remote ``*_json`` columns use, so both sides share one encoder.
"""

import json
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Type

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
    format_datetime,
    parse_datetime,
)


# === Nested point encoders ===


def path_points_to_json(points: List[PathPoint]) -> List[Dict[str, Any]]:
    return [
        {
            "latitude": p.latitude,
            "longitude": p.longitude,
            "timestamp": format_datetime(p.timestamp),
        }
        for p in points
    ]


def checkpoints_to_json(checkpoints: List[FeelingCheckpoint]) -> List[Dict[str, Any]]:
    return [
        {
            "id": c.id,
            "latitude": c.latitude,
            "longitude": c.longitude,
            "feeling": c.feeling,
            "timestamp": format_datetime(c.timestamp),
        }
        for c in checkpoints
    ]


def hesitation_points_to_json(points: List[HesitationPoint]) -> List[Dict[str, Any]]:
    return [
        {
            "id": h.id,
            "latitude": h.latitude,
            "longitude": h.longitude,
            "startTime": format_datetime(h.start_time),
            "endTime": format_datetime(h.end_time),
            "duration": h.duration,
        }
        for h in points
    ]


def path_points_from_json(items: Optional[List[Dict[str, Any]]]) -> List[PathPoint]:
    return [
        PathPoint(
            latitude=float(i["latitude"]),
            longitude=float(i["longitude"]),
            timestamp=parse_datetime(i["timestamp"], strict=True),
        )
        for i in items or []
    ]


def checkpoints_from_json(items: Optional[List[Dict[str, Any]]]) -> List[FeelingCheckpoint]:
    return [
        FeelingCheckpoint(
            id=i["id"],
            latitude=float(i["latitude"]),
            longitude=float(i["longitude"]),
            feeling=i["feeling"],
            timestamp=parse_datetime(i["timestamp"], strict=True),
        )
        for i in items or []
    ]


def hesitation_points_from_json(items: Optional[List[Dict[str, Any]]]) -> List[HesitationPoint]:
    return [
        HesitationPoint(
            id=i["id"],
            latitude=float(i["latitude"]),
            longitude=float(i["longitude"]),
            start_time=parse_datetime(i["startTime"], strict=True),
            end_time=parse_datetime(i["endTime"], strict=True),
            duration=float(i.get("duration") or 0.0),
        )
        for i in items or []
    ]


def _to_json(data: Any) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data)


def _from_json(s: Optional[str]) -> Any:
    if not s:
        return None
    return json.loads(s)


# === Row -> record ===


def _sync_fields(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "created_at": parse_datetime(row["created_at"]),
        "updated_at": parse_datetime(row["updated_at"]),
        "is_deleted": bool(row["is_deleted"]),
        "is_synced": bool(row["is_synced"]),
        "needs_sync": bool(row["needs_sync"]),
        "last_synced_at": parse_datetime(row["last_synced_at"]),
    }


def _row_to_journal_entry(row: sqlite3.Row) -> JournalEntry:
    return JournalEntry(
        **_sync_fields(row),
        mood=Mood(row["mood"]),
        text=row["text"],
        entry_date=parse_datetime(row["entry_date"]),
    )


def _row_to_journey(row: sqlite3.Row) -> Journey:
    return Journey(
        **_sync_fields(row),
        journey_type=JourneyType(row["journey_type"]),
        start_date=parse_datetime(row["start_date"]),
        is_completed=bool(row["is_completed"]),
        current=bool(row["current"]),
        linked_plan_id=row["linked_plan_id"],
    )


def _row_to_tracking_data(row: sqlite3.Row) -> JourneyTrackingData:
    return JourneyTrackingData(
        **_sync_fields(row),
        journey_id=row["journey_id"],
        start_time=parse_datetime(row["start_time"]),
        end_time=parse_datetime(row["end_time"]),
        distance=row["distance"],
        duration=row["duration"],
        path_points=path_points_from_json(_from_json(row["path_points"])),
        checkpoints=checkpoints_from_json(_from_json(row["checkpoints"])),
        hesitation_points=hesitation_points_from_json(_from_json(row["hesitation_points"])),
    )


def _row_to_exposure_plan(row: sqlite3.Row) -> ExposurePlan:
    return ExposurePlan(**_sync_fields(row), name=row["name"])


def _row_to_exposure_target(row: sqlite3.Row) -> ExposureTarget:
    return ExposureTarget(
        **_sync_fields(row),
        plan_id=row["plan_id"],
        name=row["name"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        wait_time_seconds=row["wait_time_seconds"],
        order_index=row["order_index"],
    )


ROW_CONVERTERS: Dict[str, Callable[[sqlite3.Row], SyncableRecord]] = {
    "journal_entries": _row_to_journal_entry,
    "journeys": _row_to_journey,
    "journey_tracking_data": _row_to_tracking_data,
    "exposure_plans": _row_to_exposure_plan,
    "exposure_targets": _row_to_exposure_target,
}

TABLE_FOR_TYPE: Dict[Type[SyncableRecord], str] = {
    JournalEntry: "journal_entries",
    Journey: "journeys",
    JourneyTrackingData: "journey_tracking_data",
    ExposurePlan: "exposure_plans",
    ExposureTarget: "exposure_targets",
}


def table_for(record: SyncableRecord) -> str:
    try:
        return TABLE_FOR_TYPE[type(record)]
    except KeyError:
        raise TypeError(f"Not a syncable record type: {type(record).__name__}")


def row_to_record(table: str, row: sqlite3.Row) -> SyncableRecord:
    return ROW_CONVERTERS[table](row)


# === Record -> columns ===


def record_to_columns(record: SyncableRecord) -> Dict[str, Any]:
    """Flatten a record into the column values of its table."""
    columns: Dict[str, Any] = {
        "id": record.id,
        "created_at": format_datetime(record.created_at),
        "updated_at": format_datetime(record.updated_at),
        "is_deleted": int(record.is_deleted),
        "is_synced": int(record.is_synced),
        "needs_sync": int(record.needs_sync),
        "last_synced_at": format_datetime(record.last_synced_at),
    }
    if isinstance(record, JournalEntry):
        columns.update(
            mood=record.mood.value,
            text=record.text,
            entry_date=format_datetime(record.entry_date),
        )
    elif isinstance(record, Journey):
        columns.update(
            journey_type=int(record.journey_type),
            start_date=format_datetime(record.start_date),
            is_completed=int(record.is_completed),
            current=int(record.current),
            linked_plan_id=record.linked_plan_id,
        )
    elif isinstance(record, JourneyTrackingData):
        columns.update(
            journey_id=record.journey_id,
            start_time=format_datetime(record.start_time),
            end_time=format_datetime(record.end_time),
            distance=record.distance,
            duration=record.duration,
            path_points=_to_json(path_points_to_json(record.path_points)),
            checkpoints=_to_json(checkpoints_to_json(record.checkpoints)),
            hesitation_points=_to_json(hesitation_points_to_json(record.hesitation_points)),
        )
    elif isinstance(record, ExposurePlan):
        columns.update(name=record.name)
    elif isinstance(record, ExposureTarget):
        columns.update(
            plan_id=record.plan_id,
            name=record.name,
            latitude=record.latitude,
            longitude=record.longitude,
            wait_time_seconds=record.wait_time_seconds,
            order_index=record.order_index,
        )
    else:
        raise TypeError(f"Not a syncable record type: {type(record).__name__}")
    return columns
