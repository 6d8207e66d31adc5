"""Tests for shared record types and datetime helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from wellsync.protocols import (
    AuthorizationError,
    StorageError,
    TransientSyncError,
    error_category,
)
from wellsync.types import (
    EntityFamily,
    ErrorCategory,
    JournalEntry,
    JourneyTrackingData,
    ParseDatetimeError,
    SyncIssue,
    SyncResult,
    format_datetime,
    parse_datetime,
)


class TestDatetimeHelpers:
    @pytest.mark.parametrize(
        "value",
        [
            "2026-04-02T10:15:00Z",
            "2026-04-02T10:15:00+00:00",
            "2026-04-02T12:15:00+02:00",
            "2026-04-02T10:15:00",
        ],
    )
    def test_parse_normalizes_to_utc(self, value):
        parsed = parse_datetime(value)
        assert parsed == datetime(2026, 4, 2, 10, 15, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None

    def test_parse_invalid(self):
        assert parse_datetime("last tuesday") is None
        with pytest.raises(ParseDatetimeError) as exc_info:
            parse_datetime("last tuesday", strict=True)
        assert exc_info.value.value == "last tuesday"

    def test_format_converts_offsets(self):
        plus_two = timezone(timedelta(hours=2))
        assert format_datetime(datetime(2026, 1, 1, 2, 0, tzinfo=plus_two)) == (
            "2026-01-01T00:00:00+00:00"
        )
        assert format_datetime(None) is None


class TestRecords:
    def test_new_record_is_dirty(self):
        entry = JournalEntry()
        assert entry.needs_sync is True
        assert entry.is_synced is False
        assert entry.is_deleted is False
        assert entry.id

    def test_touch(self):
        entry = JournalEntry(is_synced=True, needs_sync=False)
        when = datetime(2026, 6, 1, tzinfo=timezone.utc)

        entry.touch(when)

        assert entry.updated_at == when
        assert entry.needs_sync is True
        assert entry.is_synced is False

    def test_tracking_data_shares_journey_id(self):
        assert JourneyTrackingData(journey_id="j1").id == "j1"
        assert JourneyTrackingData(id="x", journey_id="j1").id == "j1"

        data = JourneyTrackingData(id="j2")
        assert data.journey_id == "j2"


class TestSyncResult:
    def test_success_and_summary(self):
        result = SyncResult(family=EntityFamily.JOURNAL, pushed=2, pulled=1)
        assert result.success
        assert result.summary() == (
            "journal: pushed=2 pulled=1 failed=0 skipped=0 conflicts=0"
        )

        result.add_issue(ErrorCategory.TRANSIENT, "timeout", "journal_entries", "e1")

        assert not result.success
        assert result.errors == [
            SyncIssue(ErrorCategory.TRANSIENT, "timeout", "journal_entries", "e1")
        ]

    def test_issue_to_dict(self):
        issue = SyncIssue(ErrorCategory.DATA, "bad mood", "journal_entries", "e1")
        assert issue.to_dict() == {
            "category": "data",
            "message": "bad mood",
            "table": "journal_entries",
            "record_id": "e1",
        }


class TestErrorCategory:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (TransientSyncError("x"), ErrorCategory.TRANSIENT),
            (AuthorizationError("x"), ErrorCategory.AUTHORIZATION),
            (StorageError("x"), ErrorCategory.LOCAL_STORE),
            (RuntimeError("x"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_error_category(self, exc, expected):
        assert error_category(exc) == expected
