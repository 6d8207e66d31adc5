"""Tests for remote row mapping and validation."""

from datetime import datetime, timezone

import pytest

from wellsync.protocols import RemotePayloadError
from wellsync.sync import mapping
from wellsync.types import (
    ExposureTarget,
    FeelingCheckpoint,
    HesitationPoint,
    JournalEntry,
    Journey,
    JourneyTrackingData,
    JourneyType,
    Mood,
    PathPoint,
)

TS = datetime(2026, 4, 2, 10, 15, tzinfo=timezone.utc)


def _journal_row(**overrides):
    row = {
        "id": "e1",
        "user_id": "u1",
        "mood": "excited",
        "text": "ran a 5k",
        "entry_date": "2026-04-02T10:15:00Z",
        "created_at": "2026-04-02T10:15:00Z",
        "updated_at": "2026-04-02T11:00:00+00:00",
        "is_deleted": False,
    }
    row.update(overrides)
    return row


class TestJournalMapping:
    def test_to_row(self):
        entry = JournalEntry(id="e1", mood=Mood.HAPPY, text="hello", entry_date=TS)

        row = mapping.journal_entry_to_row(entry, "u1")

        assert row["id"] == "e1"
        assert row["user_id"] == "u1"
        assert row["mood"] == "happy"
        assert row["entry_date"] == "2026-04-02T10:15:00+00:00"
        assert row["is_deleted"] is False
        assert "needs_sync" not in row
        assert "is_synced" not in row

    def test_from_row(self):
        entry = mapping.journal_entry_from_row(_journal_row())

        assert entry.id == "e1"
        assert entry.mood == Mood.EXCITED
        assert entry.entry_date == TS
        assert entry.updated_at == datetime(2026, 4, 2, 11, 0, tzinfo=timezone.utc)
        assert entry.is_deleted is False

    def test_from_row_ignores_unknown_columns(self):
        entry = mapping.journal_entry_from_row(_journal_row(word_count=3))
        assert entry.text == "ran a 5k"

    def test_missing_created_at_falls_back_to_updated_at(self):
        entry = mapping.journal_entry_from_row(_journal_row(created_at=None))
        assert entry.created_at == entry.updated_at

    @pytest.mark.parametrize(
        "overrides",
        [
            {"mood": "furious"},
            {"updated_at": None},
            {"updated_at": "yesterday"},
            {"entry_date": "not a date"},
        ],
    )
    def test_malformed_row_raises(self, overrides):
        with pytest.raises(RemotePayloadError) as exc_info:
            mapping.journal_entry_from_row(_journal_row(**overrides))
        assert exc_info.value.row_id == "e1"

    def test_non_object_row_raises(self):
        with pytest.raises(RemotePayloadError):
            mapping.journal_entry_from_row(["not", "a", "row"])


class TestJourneyMapping:
    def test_journey_type_travels_as_int(self):
        journey = Journey(id="j1", journey_type=JourneyType.GENERAL_ANXIETY, linked_plan_id="p1")

        row = mapping.journey_to_row(journey, "u1")
        assert row["type"] == 1
        assert row["linked_plan_id"] == "p1"

        back = mapping.journey_from_row(row)
        assert back.journey_type == JourneyType.GENERAL_ANXIETY
        assert back.linked_plan_id == "p1"

    def test_empty_collections_pushed_as_null(self):
        data = JourneyTrackingData(journey_id="j1")

        row = mapping.tracking_data_to_row(data, "u1")

        assert row["id"] == "j1"
        assert row["journey_id"] == "j1"
        assert row["path_points_json"] is None
        assert row["checkpoints_json"] is None
        assert row["hesitation_points_json"] is None

    def test_tracking_data_collections(self):
        data = JourneyTrackingData(
            journey_id="j1",
            path_points=[PathPoint(1.0, 2.0, TS)],
            checkpoints=[FeelingCheckpoint(1.0, 2.0, "Anxious", TS, id="c1")],
            hesitation_points=[HesitationPoint(1.0, 2.0, TS, TS, 12.5, id="h1")],
        )

        row = mapping.tracking_data_to_row(data, "u1")

        assert row["path_points_json"] == [
            {"latitude": 1.0, "longitude": 2.0, "timestamp": "2026-04-02T10:15:00+00:00"}
        ]
        assert row["hesitation_points_json"][0]["startTime"] == "2026-04-02T10:15:00+00:00"

        back = mapping.tracking_data_from_row(row)
        assert back.path_points == data.path_points
        assert back.checkpoints == data.checkpoints
        assert back.hesitation_points == data.hesitation_points

    def test_tracking_data_must_share_journey_id(self):
        row = mapping.tracking_data_to_row(JourneyTrackingData(journey_id="j1"), "u1")
        row["journey_id"] = "j2"

        with pytest.raises(RemotePayloadError):
            mapping.tracking_data_from_row(row)

    def test_needs_legacy_points(self):
        row = mapping.tracking_data_to_row(JourneyTrackingData(journey_id="j1"), "u1")
        assert mapping.needs_legacy_points(row) is True

        row["path_points_json"] = []
        row["checkpoints_json"] = []
        assert mapping.needs_legacy_points(row) is False

    def test_legacy_rows(self):
        point = mapping.legacy_path_point_from_row(
            {"id": "p1", "journey_data_id": "j1", "latitude": 3, "longitude": 4, "timestamp": "2026-04-02T10:15:00Z"}
        )
        assert point == PathPoint(3.0, 4.0, TS)

        with pytest.raises(RemotePayloadError):
            mapping.legacy_checkpoint_from_row({"id": "c1", "latitude": 3})


class TestExposureMapping:
    def test_target_round_trip(self):
        target = ExposureTarget(
            plan_id="p1",
            name="Bridge",
            latitude=51.0,
            longitude=-1.0,
            wait_time_seconds=120,
            order_index=3,
        )

        row = mapping.exposure_target_to_row(target, "u1")
        assert row["plan_id"] == "p1"
        assert row["wait_time_seconds"] == 120

        back = mapping.exposure_target_from_row(row)
        assert back.name == "Bridge"
        assert back.order_index == 3

    def test_target_without_plan_is_malformed(self):
        row = mapping.exposure_target_to_row(ExposureTarget(plan_id="p1"), "u1")
        del row["plan_id"]

        with pytest.raises(RemotePayloadError):
            mapping.exposure_target_from_row(row)
