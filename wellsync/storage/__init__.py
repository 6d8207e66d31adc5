"""Local record store for wellsync."""

from wellsync.storage.schema import SCHEMA_VERSION
from wellsync.storage.sqlite import (
    DEFAULT_DB_PATH,
    ConflictRecord,
    OwnedChildren,
    SQLiteRecordStore,
    WriteTransaction,
)

__all__ = [
    "SQLiteRecordStore",
    "WriteTransaction",
    "OwnedChildren",
    "ConflictRecord",
    "DEFAULT_DB_PATH",
    "SCHEMA_VERSION",
]
