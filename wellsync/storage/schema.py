"""Database schema and migration logic for the wellsync record store.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
- Schema migration (migrate_schema)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Schema version history:
#   1: journal entries
#   2: journeys and tracking data (path points, checkpoints)
#   3: hesitation points, journey -> exposure plan link
#   4: exposure plans/targets, last_synced_at, sync conflict log
SCHEMA_VERSION = 4

# Tables holding syncable records (share the sync-state columns)
SYNCABLE_TABLES = (
    "journal_entries",
    "journeys",
    "journey_tracking_data",
    "exposure_plans",
    "exposure_targets",
)

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    set(SYNCABLE_TABLES)
    | {
        "schema_version",
        "sync_meta",
        "sync_conflicts",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Args:
        table: Table name to validate

    Returns:
        The validated table name

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


_SYNC_COLUMNS = """
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    is_synced INTEGER NOT NULL DEFAULT 0,
    needs_sync INTEGER NOT NULL DEFAULT 1,
    last_synced_at TEXT,
    CHECK (NOT (is_synced = 1 AND needs_sync = 1))"""

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Journal entries (flat family)
CREATE TABLE IF NOT EXISTS journal_entries (
    id TEXT PRIMARY KEY,
    mood TEXT NOT NULL DEFAULT 'none',
    text TEXT NOT NULL DEFAULT '',
    entry_date TEXT NOT NULL,{_SYNC_COLUMNS}
);
CREATE INDEX IF NOT EXISTS idx_journal_entries_needs_sync ON journal_entries(needs_sync);
CREATE INDEX IF NOT EXISTS idx_journal_entries_entry_date ON journal_entries(entry_date);

-- Journeys
CREATE TABLE IF NOT EXISTS journeys (
    id TEXT PRIMARY KEY,
    journey_type INTEGER NOT NULL DEFAULT 2,
    start_date TEXT NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    current INTEGER NOT NULL DEFAULT 0,
    linked_plan_id TEXT,{_SYNC_COLUMNS}
);
CREATE INDEX IF NOT EXISTS idx_journeys_needs_sync ON journeys(needs_sync);

-- Tracking data shares its id with the owning journey
CREATE TABLE IF NOT EXISTS journey_tracking_data (
    id TEXT PRIMARY KEY,
    journey_id TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    distance REAL NOT NULL DEFAULT 0,
    duration INTEGER NOT NULL DEFAULT 0,
    path_points TEXT,
    checkpoints TEXT,
    hesitation_points TEXT,{_SYNC_COLUMNS},
    CHECK (id = journey_id)
);
CREATE INDEX IF NOT EXISTS idx_journey_tracking_data_needs_sync ON journey_tracking_data(needs_sync);

-- Exposure plans
CREATE TABLE IF NOT EXISTS exposure_plans (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',{_SYNC_COLUMNS}
);
CREATE INDEX IF NOT EXISTS idx_exposure_plans_needs_sync ON exposure_plans(needs_sync);

CREATE TABLE IF NOT EXISTS exposure_targets (
    id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL REFERENCES exposure_plans(id) ON DELETE CASCADE,
    name TEXT NOT NULL DEFAULT '',
    latitude REAL NOT NULL DEFAULT 0,
    longitude REAL NOT NULL DEFAULT 0,
    wait_time_seconds INTEGER NOT NULL DEFAULT 0,
    order_index INTEGER NOT NULL DEFAULT 0,{_SYNC_COLUMNS}
);
CREATE INDEX IF NOT EXISTS idx_exposure_targets_plan ON exposure_targets(plan_id, order_index);
CREATE INDEX IF NOT EXISTS idx_exposure_targets_needs_sync ON exposure_targets(needs_sync);

-- Per-family sync bookkeeping (last synced time, last error)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT NOT NULL
);

-- Conflict history (records with pending local edits that met a remote change)
CREATE TABLE IF NOT EXISTS sync_conflicts (
    id TEXT PRIMARY KEY,
    family TEXT NOT NULL,
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    resolution TEXT NOT NULL,
    local_snapshot TEXT,
    remote_snapshot TEXT,
    diff_hash TEXT,
    resolved_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_conflicts_resolved ON sync_conflicts(resolved_at);
CREATE INDEX IF NOT EXISTS idx_sync_conflicts_record ON sync_conflicts(table_name, record_id);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database schema.

    Migrations run first so that indexes in ``SCHEMA`` can reference
    columns added to older databases.
    """
    migrate_schema(conn)

    # CREATE TABLE IF NOT EXISTS is safe on existing databases
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Schema upgraded from v{row[0]} to v{SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int:
    try:
        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    except sqlite3.OperationalError:
        return 0
    return row[0] if row else 0


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Run schema migrations for existing databases.

    Adds columns introduced after a table first shipped. Rows that gain
    ``needs_sync`` are backfilled as dirty so they get pushed once.
    """
    tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    table_names = {t[0] for t in tables}

    if "journal_entries" not in table_names:
        # Fresh database, no migration needed
        return

    def get_columns(table: str) -> set:
        validate_table_name(table)
        cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return {c[1] for c in cols}

    migrations = []
    backfills = []

    for table in SYNCABLE_TABLES:
        if table not in table_names:
            continue
        cols = get_columns(table)
        if "last_synced_at" not in cols:
            migrations.append(f"ALTER TABLE {table} ADD COLUMN last_synced_at TEXT")
        if "needs_sync" not in cols:
            migrations.append(
                f"ALTER TABLE {table} ADD COLUMN needs_sync INTEGER NOT NULL DEFAULT 1"
            )
            backfills.append(f"UPDATE {table} SET is_synced = 0 WHERE needs_sync = 1")

    if "journeys" in table_names:
        if "linked_plan_id" not in get_columns("journeys"):
            migrations.append("ALTER TABLE journeys ADD COLUMN linked_plan_id TEXT")

    if "journey_tracking_data" in table_names:
        if "hesitation_points" not in get_columns("journey_tracking_data"):
            migrations.append("ALTER TABLE journey_tracking_data ADD COLUMN hesitation_points TEXT")

    for migration in migrations:
        try:
            conn.execute(migration)
            logger.debug(f"Migration applied: {migration}")
        except sqlite3.OperationalError as e:
            if "duplicate column" not in str(e).lower():
                raise
            logger.warning(f"Migration skipped (column exists): {migration}")

    for backfill in backfills:
        conn.execute(backfill)

    if migrations:
        conn.commit()
        logger.info(f"Applied {len(migrations)} schema migrations")
