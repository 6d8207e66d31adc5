"""SQLite-backed record store.

Holds the authoritative offline copy of every syncable record plus the
per-family sync bookkeeping. All access is synchronous and scoped: a
connection is opened per operation and closed before returning, so no
handle is ever held across an awaited remote call.
"""

import contextlib
import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from wellsync.protocols import Clock, StorageError
from wellsync.storage.rows import record_to_columns, row_to_record, table_for
from wellsync.storage.schema import SYNCABLE_TABLES, init_db, validate_table_name
from wellsync.types import (
    EntityFamily,
    ErrorCategory,
    ExposurePlan,
    ExposureTarget,
    JournalEntry,
    Journey,
    JourneyTrackingData,
    SyncableRecord,
    SyncIssue,
    format_datetime,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".wellsync" / "wellsync.db"


@dataclass
class OwnedChildren:
    """Replacement set for a nested collection owned by a parent record."""

    table: str
    parent_column: str
    records: List[SyncableRecord] = field(default_factory=list)


@dataclass
class ConflictRecord:
    id: str
    family: str
    table_name: str
    record_id: str
    resolution: str
    local_snapshot: Optional[Dict[str, Any]]
    remote_snapshot: Optional[Dict[str, Any]]
    diff_hash: Optional[str]
    resolved_at: Optional[datetime]


class WriteTransaction:
    """Scoped write access handed out by ``SQLiteRecordStore.write``.

    Everything done through one transaction commits or rolls back
    together.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get(self, table: str, record_id: str) -> Optional[SyncableRecord]:
        validate_table_name(table)
        row = self._conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return row_to_record(table, row) if row else None

    def put(self, record: SyncableRecord) -> None:
        """Insert or update ``record`` keyed by id."""
        table = validate_table_name(table_for(record))
        columns = record_to_columns(record)
        names = list(columns)
        placeholders = ", ".join("?" for _ in names)
        # ON CONFLICT keeps the row in place; REPLACE would fire ON DELETE CASCADE
        assignments = ", ".join(f"{n} = excluded.{n}" for n in names if n != "id")
        self._conn.execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {assignments}",
            [columns[n] for n in names],
        )

    def remove(self, table: str, record_id: str) -> None:
        validate_table_name(table)
        self._conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)


class SQLiteRecordStore:
    """Local-first record store with sync-state tracking."""

    def __init__(self, db_path: Optional[Path] = None, *, clock: Optional[Clock] = None):
        self.db_path = Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or utc_now
        with self._connect() as conn:
            init_db(conn)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases

        SQLite failures surface as ``StorageError``.
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open record store at {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise StorageError(f"Record store transaction failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def now(self) -> datetime:
        return self._clock()

    # === Generic record access ===

    def query(
        self,
        table: str,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        order_by: Optional[str] = None,
    ) -> List[SyncableRecord]:
        """Return records of ``table`` matching a SQL predicate."""
        validate_table_name(table)
        sql = f"SELECT * FROM {table}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row_to_record(table, r) for r in rows]

    def get(self, table: str, record_id: str) -> Optional[SyncableRecord]:
        with self._connect() as conn:
            return WriteTransaction(conn).get(table, record_id)

    def count(self, table: str, where: Optional[str] = None, params: Sequence[Any] = ()) -> int:
        validate_table_name(table)
        sql = f"SELECT COUNT(*) FROM {table}"
        if where:
            sql += f" WHERE {where}"
        with self._connect() as conn:
            return conn.execute(sql, params).fetchone()[0]

    @contextlib.contextmanager
    def write(self) -> Iterator[WriteTransaction]:
        """Open a scoped write transaction."""
        with self._connect() as conn:
            yield WriteTransaction(conn)

    # === Sync state ===

    def dirty_records(self, table: str) -> List[SyncableRecord]:
        return self.query(table, "needs_sync = 1", order_by="updated_at")

    def dirty_ids(self, table: str) -> List[str]:
        validate_table_name(table)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id FROM {table} WHERE needs_sync = 1 ORDER BY updated_at"
            ).fetchall()
        return [r["id"] for r in rows]

    def pending_counts(self) -> Dict[str, int]:
        """Dirty record count per syncable table."""
        return {t: self.count(t, "needs_sync = 1") for t in SYNCABLE_TABLES}

    def mark_synced(
        self,
        table: str,
        record_id: str,
        expected_updated_at: datetime,
        *,
        remote_updated_at: Optional[datetime] = None,
    ) -> bool:
        """Flip a pushed record to synced.

        Only applies if the record still carries ``expected_updated_at``;
        a local edit made while the push was in flight keeps it dirty.
        ``remote_updated_at`` adopts the timestamp echoed by the remote so
        both copies compare equal on the next pull.
        """
        validate_table_name(table)
        with self._connect() as conn:
            cur = conn.execute(
                f"""UPDATE {table}
                   SET is_synced = 1, needs_sync = 0, last_synced_at = ?,
                       updated_at = COALESCE(?, updated_at)
                   WHERE id = ? AND updated_at = ?""",
                (
                    format_datetime(self.now()),
                    format_datetime(remote_updated_at),
                    record_id,
                    format_datetime(expected_updated_at),
                ),
            )
            updated = cur.rowcount > 0
        if not updated:
            logger.debug(f"{table}/{record_id} changed during push, left dirty")
        return updated

    def apply_remote(
        self, record: SyncableRecord, owned: Sequence[OwnedChildren] = ()
    ) -> None:
        """Write a record pulled from the remote store, already marked synced.

        Each ``owned`` collection of the parent is replaced by exactly its
        ``records`` in the same transaction.
        """
        with self.write() as tx:
            tx.put(record)
            for collection in owned:
                table = validate_table_name(collection.table)
                keep = {child.id for child in collection.records}
                existing = tx.execute(
                    f"SELECT id FROM {table} WHERE {collection.parent_column} = ?",
                    (record.id,),
                ).fetchall()
                for row in existing:
                    if row["id"] not in keep:
                        tx.remove(table, row["id"])
                for child in collection.records:
                    tx.put(child)

    # === Local mutation API ===

    def _save_local(self, record: SyncableRecord) -> str:
        record.touch(self.now())
        with self.write() as tx:
            tx.put(record)
        return record.id

    def _soft_delete(self, table: str, record_id: str) -> bool:
        with self.write() as tx:
            record = tx.get(table, record_id)
            if record is None or record.is_deleted:
                return False
            record.is_deleted = True
            record.touch(self.now())
            tx.put(record)
        return True

    def save_journal_entry(self, entry: JournalEntry) -> str:
        return self._save_local(entry)

    def get_journal_entry(self, entry_id: str) -> Optional[JournalEntry]:
        return self.get("journal_entries", entry_id)

    def list_journal_entries(self, include_deleted: bool = False) -> List[JournalEntry]:
        where = None if include_deleted else "is_deleted = 0"
        return self.query("journal_entries", where, order_by="entry_date DESC")

    def delete_journal_entry(self, entry_id: str) -> bool:
        return self._soft_delete("journal_entries", entry_id)

    def save_journey(self, journey: Journey) -> str:
        return self._save_local(journey)

    def get_journey(self, journey_id: str) -> Optional[Journey]:
        return self.get("journeys", journey_id)

    def list_journeys(self, include_deleted: bool = False) -> List[Journey]:
        where = None if include_deleted else "is_deleted = 0"
        return self.query("journeys", where, order_by="start_date DESC")

    def delete_journey(self, journey_id: str) -> bool:
        """Soft-delete a journey together with its tracking data."""
        now = self.now()
        with self.write() as tx:
            journey = tx.get("journeys", journey_id)
            if journey is None or journey.is_deleted:
                return False
            journey.is_deleted = True
            journey.touch(now)
            tx.put(journey)
            data = tx.get("journey_tracking_data", journey_id)
            if data is not None and not data.is_deleted:
                data.is_deleted = True
                data.touch(now)
                tx.put(data)
        return True

    def save_tracking_data(self, data: JourneyTrackingData) -> str:
        return self._save_local(data)

    def get_tracking_data(self, journey_id: str) -> Optional[JourneyTrackingData]:
        return self.get("journey_tracking_data", journey_id)

    def orphan_tracking_data(self) -> List[JourneyTrackingData]:
        """Tracking data whose journey does not exist locally."""
        return self.query(
            "journey_tracking_data",
            "journey_id NOT IN (SELECT id FROM journeys)",
            order_by="start_time",
        )

    def save_exposure_plan(self, plan: ExposurePlan) -> str:
        return self._save_local(plan)

    def get_exposure_plan(self, plan_id: str) -> Optional[ExposurePlan]:
        return self.get("exposure_plans", plan_id)

    def list_exposure_plans(self, include_deleted: bool = False) -> List[ExposurePlan]:
        where = None if include_deleted else "is_deleted = 0"
        return self.query("exposure_plans", where, order_by="created_at")

    def delete_exposure_plan(self, plan_id: str) -> bool:
        """Soft-delete a plan and all of its targets."""
        now = self.now()
        with self.write() as tx:
            plan = tx.get("exposure_plans", plan_id)
            if plan is None or plan.is_deleted:
                return False
            plan.is_deleted = True
            plan.touch(now)
            tx.put(plan)
            rows = tx.execute(
                "SELECT id FROM exposure_targets WHERE plan_id = ? AND is_deleted = 0",
                (plan_id,),
            ).fetchall()
            for row in rows:
                target = tx.get("exposure_targets", row["id"])
                target.is_deleted = True
                target.touch(now)
                tx.put(target)
        return True

    def save_exposure_target(self, target: ExposureTarget) -> str:
        """Save a target and touch its plan, the unit of conflict for targets."""
        now = self.now()
        target.touch(now)
        with self.write() as tx:
            plan = tx.get("exposure_plans", target.plan_id)
            if plan is None:
                raise StorageError(f"Exposure plan {target.plan_id} does not exist")
            plan.touch(now)
            tx.put(plan)
            tx.put(target)
        return target.id

    def delete_exposure_target(self, target_id: str) -> bool:
        now = self.now()
        with self.write() as tx:
            target = tx.get("exposure_targets", target_id)
            if target is None or target.is_deleted:
                return False
            target.is_deleted = True
            target.touch(now)
            tx.put(target)
            plan = tx.get("exposure_plans", target.plan_id)
            if plan is not None:
                plan.touch(now)
                tx.put(plan)
        return True

    def list_exposure_targets(
        self, plan_id: str, include_deleted: bool = False
    ) -> List[ExposureTarget]:
        where = "plan_id = ?" if include_deleted else "plan_id = ? AND is_deleted = 0"
        return self.query("exposure_targets", where, (plan_id,), order_by="order_index")

    # === Sync metadata ===

    def get_sync_meta(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_sync_meta(self, key: str, value: Optional[str]) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                  updated_at = excluded.updated_at""",
                (key, value, format_datetime(self.now())),
            )

    def get_last_sync_time(self, family: EntityFamily) -> Optional[datetime]:
        return parse_datetime(self.get_sync_meta(f"last_sync_time:{family.value}"))

    def set_last_sync_time(self, family: EntityFamily, when: datetime) -> None:
        self.set_sync_meta(f"last_sync_time:{family.value}", format_datetime(when))

    def get_last_error(self, family: EntityFamily) -> Optional[SyncIssue]:
        raw = self.get_sync_meta(f"last_error:{family.value}")
        if not raw:
            return None
        data = json.loads(raw)
        return SyncIssue(
            category=ErrorCategory(data["category"]),
            message=data["message"],
            table=data.get("table"),
            record_id=data.get("record_id"),
        )

    def set_last_error(self, family: EntityFamily, issue: Optional[SyncIssue]) -> None:
        value = json.dumps(issue.to_dict()) if issue is not None else None
        self.set_sync_meta(f"last_error:{family.value}", value)

    # === Conflict log ===

    def save_conflict(
        self,
        family: EntityFamily,
        table: str,
        record_id: str,
        resolution: str,
        local_snapshot: Optional[Dict[str, Any]],
        remote_snapshot: Optional[Dict[str, Any]],
    ) -> str:
        conflict_id = str(uuid.uuid4())
        payload = json.dumps(
            {"local": local_snapshot, "remote": remote_snapshot}, sort_keys=True, default=str
        )
        diff_hash = hashlib.sha256(payload.encode()).hexdigest()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO sync_conflicts
                   (id, family, table_name, record_id, resolution,
                    local_snapshot, remote_snapshot, diff_hash, resolved_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conflict_id,
                    family.value,
                    table,
                    record_id,
                    resolution,
                    json.dumps(local_snapshot, default=str),
                    json.dumps(remote_snapshot, default=str),
                    diff_hash,
                    format_datetime(self.now()),
                ),
            )
        return conflict_id

    def list_conflicts(self, limit: int = 100) -> List[ConflictRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_conflicts ORDER BY resolved_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            ConflictRecord(
                id=r["id"],
                family=r["family"],
                table_name=r["table_name"],
                record_id=r["record_id"],
                resolution=r["resolution"],
                local_snapshot=json.loads(r["local_snapshot"]) if r["local_snapshot"] else None,
                remote_snapshot=json.loads(r["remote_snapshot"]) if r["remote_snapshot"] else None,
                diff_hash=r["diff_hash"],
                resolved_at=parse_datetime(r["resolved_at"]),
            )
            for r in rows
        ]

    def clear_conflicts(self) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sync_conflicts")
            return cur.rowcount
