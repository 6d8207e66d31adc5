"""Shared fixtures for wellsync tests."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from wellsync.entitlements import StaticEntitlementGate
from wellsync.protocols import TransientSyncError
from wellsync.remote.session import StaticUserProvider
from wellsync.storage import SQLiteRecordStore
from wellsync.sync import DEFAULT_FAMILIES, ManualScheduler, SyncCoordinator, SyncEngine
from wellsync.types import EntityFamily

USER_ID = "user-123"


class FakeClock:
    """Deterministic clock; every read is one second after the previous one."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeRemote:
    """In-memory remote table service that records every call."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail_ids: Set[str] = set()
        self.fail_selects: Set[str] = set()
        self.block: Optional[asyncio.Event] = None

    def seed(self, table: str, row: Dict[str, Any]) -> None:
        self.tables[table][row["id"]] = dict(row)

    def row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.tables[table].get(record_id)

    def upserts(self, table: Optional[str] = None) -> List[Tuple[str, str]]:
        return [
            (t, rid)
            for op, t, rid in self.calls
            if op == "upsert" and (table is None or t == table)
        ]

    async def _maybe_block(self) -> None:
        if self.block is not None:
            await self.block.wait()
        else:
            await asyncio.sleep(0)

    async def upsert(self, table, row):
        self.calls.append(("upsert", table, row["id"]))
        await self._maybe_block()
        if row["id"] in self.fail_ids:
            raise TransientSyncError(f"timeout upserting {row['id']}")
        stored = dict(self.tables[table].get(row["id"], {}))
        stored.update(row)
        self.tables[table][row["id"]] = stored
        return dict(stored)

    async def mark_deleted(self, table, record_id, updated_at):
        self.calls.append(("mark_deleted", table, record_id))
        await self._maybe_block()
        if record_id in self.fail_ids:
            raise TransientSyncError(f"timeout deleting {record_id}")
        stored = self.tables[table].get(record_id)
        if stored is None:
            return None
        stored.update(is_deleted=True, updated_at=updated_at)
        return dict(stored)

    async def select_all(self, table, user_id, filters=None, order_by=None):
        self.calls.append(("select", table, None))
        await asyncio.sleep(0)
        if table in self.fail_selects:
            raise TransientSyncError(f"timeout selecting {table}")
        rows = [
            dict(r)
            for r in self.tables[table].values()
            if r.get("user_id") == user_id
            and all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: r[order_by])
        return rows

    async def select_page(self, table, filters, order_by, offset, limit):
        self.calls.append(("select_page", table, None))
        await asyncio.sleep(0)
        rows = [
            dict(r)
            for r in self.tables[table].values()
            if all(r.get(k) == v for k, v in filters.items())
        ]
        rows.sort(key=lambda r: r[order_by])
        return rows[offset : offset + limit]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "wellsync.db"


@pytest.fixture
def store(temp_db, clock):
    return SQLiteRecordStore(temp_db, clock=clock)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def user_provider():
    return StaticUserProvider(USER_ID)


@pytest.fixture
def engine(store, remote, user_provider):
    return SyncEngine(store, remote, user_provider, DEFAULT_FAMILIES, legacy_page_size=2)


@pytest.fixture
def gate():
    return StaticEntitlementGate(allowed=list(EntityFamily))


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def coordinator(engine, gate, scheduler):
    return SyncCoordinator(engine, gate, scheduler, interval=300, sync_on_start=False)
