"""Generic push/pull/merge engine.

One engine serves every entity family. A family is described by a
``FamilySpec``: the root table, its row mapping functions, and the nested
steps that travel with it. A cycle is always push first, then pull.

Push:
- Collect dirty roots plus the parents of dirty nested records
- For each parent, push it if needed, then its dirty nested records
- Each record succeeds or fails on its own; failures stay dirty
- Soft deletes go out as an ``is_deleted`` update, never a row removal

Pull (last-write-wins per record):
- Unknown id: materialize locally as synced
- Known id: remote wins iff its ``updated_at`` is strictly newer, or the
  local copy was never synced and has no pending edits
- Owned nested collections are replaced wholesale with their parent
- A malformed row is skipped and logged; the pull continues
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from wellsync.protocols import (
    AuthorizationError,
    CurrentUserProvider,
    RemotePayloadError,
    RemoteTableService,
    Row,
    TransientSyncError,
)
from wellsync.storage.rows import record_to_columns
from wellsync.storage.sqlite import OwnedChildren, SQLiteRecordStore
from wellsync.types import (
    EntityFamily,
    ErrorCategory,
    SyncableRecord,
    SyncResult,
    parse_datetime,
)

logger = logging.getLogger(__name__)

DEFAULT_LEGACY_PAGE_SIZE = 1000

# Columns that describe sync state rather than content
_STATE_COLUMNS = frozenset(
    {"created_at", "updated_at", "is_synced", "needs_sync", "last_synced_at"}
)

Hydrator = Callable[
    [RemoteTableService, Row, SyncableRecord, int], Awaitable[SyncableRecord]
]


@dataclass(frozen=True)
class EntitySpec:
    """Mapping between one local table and its remote counterpart."""

    local_table: str
    remote_table: str
    to_row: Callable[[Any, str], Row]
    from_row: Callable[[Row], SyncableRecord]
    push_order: str = "updated_at"


@dataclass(frozen=True)
class NestedStep:
    """Records that travel with a parent record.

    ``parent_column`` names both the local attribute and the remote column
    pointing at the parent. ``owned`` collections are replaced wholesale
    when their parent is overwritten by a pull; other steps resolve each
    nested record on its own timestamp. ``hydrate`` completes a pulled
    record before it is applied (e.g. from legacy tables).
    """

    entity: EntitySpec
    parent_column: str
    owned: bool = False
    hydrate: Optional[Hydrator] = None


@dataclass(frozen=True)
class FamilySpec:
    family: EntityFamily
    root: EntitySpec
    nested: Tuple[NestedStep, ...] = ()
    # Local fix-ups run before a push; returns how many records changed
    prepare_push: Optional[Callable[[SQLiteRecordStore], int]] = None


class Resolution(str, Enum):
    MATERIALIZE = "materialize"
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"


def resolve(local: Optional[SyncableRecord], remote: SyncableRecord) -> Resolution:
    """Decide which copy of a record survives a pull."""
    if local is None:
        return Resolution.MATERIALIZE
    if remote.updated_at > local.updated_at:
        return Resolution.REMOTE_WINS
    if not local.is_synced and not local.needs_sync:
        # First pull over a record that never round-tripped
        return Resolution.REMOTE_WINS
    return Resolution.LOCAL_WINS


def content_of(record: SyncableRecord) -> Dict[str, Any]:
    """Record columns minus sync-state bookkeeping."""
    return {k: v for k, v in record_to_columns(record).items() if k not in _STATE_COLUMNS}


def _echoed_updated_at(echoed: Optional[Row]):
    if not isinstance(echoed, dict):
        return None
    return parse_datetime(echoed.get("updated_at"))


class SyncEngine:
    """Runs push-then-pull cycles for registered families.

    The remote service and user provider are injected; the engine never
    reaches for a shared client.
    """

    def __init__(
        self,
        store: SQLiteRecordStore,
        remote: RemoteTableService,
        user_provider: CurrentUserProvider,
        families: Iterable[FamilySpec],
        *,
        legacy_page_size: int = DEFAULT_LEGACY_PAGE_SIZE,
    ):
        self.store = store
        self.remote = remote
        self.user_provider = user_provider
        self.legacy_page_size = legacy_page_size
        self._families: Dict[EntityFamily, FamilySpec] = {f.family: f for f in families}

    @property
    def families(self) -> List[EntityFamily]:
        return list(self._families)

    def spec_for(self, family: EntityFamily) -> FamilySpec:
        try:
            return self._families[family]
        except KeyError:
            raise ValueError(f"No sync configuration registered for {family.value!r}")

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self, family: EntityFamily) -> SyncResult:
        """One full push-then-pull cycle.

        Raises ``AuthorizationError`` when there is no current user (before
        anything is pushed) and ``StorageError`` when the local store
        fails. Per-record problems are reported in the result.
        """
        spec = self.spec_for(family)
        result = SyncResult(family=family, started_at=self.store.now())

        user_id = await self.user_provider.current_user_id()
        if not user_id:
            raise AuthorizationError("No current user; sync requires a signed-in session")

        await self._push(spec, user_id, result)

        try:
            await self._pull(spec, user_id, result)
        except TransientSyncError as e:
            logger.warning(f"Pull for {family.value} failed, will retry next cycle: {e}")
            result.add_issue(ErrorCategory.TRANSIENT, str(e), spec.root.remote_table)

        result.finished_at = self.store.now()
        logger.info(f"Sync cycle finished: {result.summary()}")
        return result

    async def push_one(self, family: EntityFamily, record_id: str) -> SyncResult:
        """Push a single root record and its nested records, no pull."""
        spec = self.spec_for(family)
        result = SyncResult(family=family, started_at=self.store.now())
        user_id = await self.user_provider.current_user_id()
        if not user_id:
            raise AuthorizationError("No current user; sync requires a signed-in session")
        await self._push_tree(spec, record_id, user_id, result)
        result.finished_at = self.store.now()
        return result

    # =========================================================================
    # Push
    # =========================================================================

    async def _push(self, spec: FamilySpec, user_id: str, result: SyncResult) -> None:
        if spec.prepare_push is not None:
            repaired = spec.prepare_push(self.store)
            if repaired:
                logger.info(f"Prepared {repaired} {spec.family.value} record(s) for push")

        parent_ids = self.store.dirty_ids(spec.root.local_table)
        seen = set(parent_ids)
        for step in spec.nested:
            for child in self.store.dirty_records(step.entity.local_table):
                parent_id = getattr(child, step.parent_column)
                if parent_id not in seen:
                    seen.add(parent_id)
                    parent_ids.append(parent_id)

        if not parent_ids:
            logger.debug(f"Nothing to push for {spec.family.value}")
            return

        logger.debug(f"Pushing {len(parent_ids)} {spec.family.value} record(s)")
        for parent_id in parent_ids:
            await self._push_tree(spec, parent_id, user_id, result)

    async def _push_tree(
        self, spec: FamilySpec, parent_id: str, user_id: str, result: SyncResult
    ) -> None:
        parent = self.store.get(spec.root.local_table, parent_id)
        if parent is None:
            logger.warning(
                f"{spec.root.local_table}/{parent_id} missing locally; nested records skipped"
            )
            result.skipped += 1
            result.add_issue(
                ErrorCategory.DATA,
                "Nested records reference a missing parent",
                spec.root.local_table,
                parent_id,
            )
            return

        # A nested record may only go out once its parent exists remotely
        if parent.needs_sync or not parent.is_synced:
            if not await self._push_record(spec.root, parent_id, user_id, result):
                logger.debug(f"Skipping nested records of {parent_id}: parent push failed")
                return

        for step in spec.nested:
            child_ids = [
                c.id
                for c in self.store.query(
                    step.entity.local_table,
                    f"{step.parent_column} = ? AND needs_sync = 1",
                    (parent_id,),
                    order_by=step.entity.push_order,
                )
            ]
            for child_id in child_ids:
                await self._push_record(step.entity, child_id, user_id, result)

    async def _push_record(
        self, entity: EntitySpec, record_id: str, user_id: str, result: SyncResult
    ) -> bool:
        """Push one record; True when it now exists remotely."""
        # Fresh read: earlier awaits may have let local writes through
        record = self.store.get(entity.local_table, record_id)
        if record is None:
            return False

        row = entity.to_row(record, user_id)
        try:
            if record.is_deleted:
                echoed = await self.remote.mark_deleted(
                    entity.remote_table, record.id, row["updated_at"]
                )
                if echoed is None:
                    # Deleted before it was ever pushed; create the tombstone
                    logger.debug(f"{entity.remote_table}/{record.id} missing remotely, upserting")
                    echoed = await self.remote.upsert(entity.remote_table, row)
            else:
                echoed = await self.remote.upsert(entity.remote_table, row)
        except (TransientSyncError, RemotePayloadError) as e:
            logger.warning(f"Push of {entity.remote_table}/{record.id} failed: {e}")
            result.failed += 1
            result.add_issue(e.category, str(e), entity.remote_table, record.id)
            return False

        self.store.mark_synced(
            entity.local_table,
            record.id,
            record.updated_at,
            remote_updated_at=_echoed_updated_at(echoed),
        )
        result.pushed += 1
        logger.debug(f"Pushed {entity.remote_table}/{record.id}")
        return True

    # =========================================================================
    # Pull
    # =========================================================================

    async def _pull(self, spec: FamilySpec, user_id: str, result: SyncResult) -> None:
        remote_rows = await self.remote.select_all(spec.root.remote_table, user_id)

        nested_rows: Dict[str, Dict[Any, List[Row]]] = {}
        for step in spec.nested:
            grouped: Dict[Any, List[Row]] = defaultdict(list)
            for row in await self.remote.select_all(step.entity.remote_table, user_id):
                if isinstance(row, dict):
                    grouped[row.get(step.parent_column)].append(row)
                else:
                    result.skipped += 1
                    logger.warning(f"Skipping non-object row from {step.entity.remote_table}")
            nested_rows[step.entity.local_table] = grouped

        logger.debug(f"Pulled {len(remote_rows)} {spec.root.remote_table} row(s)")
        for row in remote_rows:
            await self._pull_tree(spec, row, nested_rows, result)

    async def _pull_tree(
        self,
        spec: FamilySpec,
        row: Row,
        nested_rows: Dict[str, Dict[Any, List[Row]]],
        result: SyncResult,
    ) -> None:
        remote = self._decode(spec.root, row, result)
        if remote is None:
            return

        local = self.store.get(spec.root.local_table, remote.id)
        resolution = resolve(local, remote)
        self._note_conflict(spec, spec.root, local, remote, resolution, result)

        if resolution != Resolution.LOCAL_WINS:
            owned = []
            for step in spec.nested:
                if not step.owned:
                    continue
                children = []
                for child_row in nested_rows[step.entity.local_table].get(remote.id, []):
                    child = self._decode(step.entity, child_row, result)
                    if child is not None:
                        children.append(self._as_synced(child))
                owned.append(
                    OwnedChildren(step.entity.local_table, step.parent_column, children)
                )
            self.store.apply_remote(self._as_synced(remote), owned)
            result.pulled += 1
            logger.debug(f"Applied {spec.root.remote_table}/{remote.id} ({resolution.value})")

        for step in spec.nested:
            if step.owned:
                continue
            for child_row in nested_rows[step.entity.local_table].get(remote.id, []):
                await self._pull_record(spec, step, child_row, result)

    async def _pull_record(
        self, spec: FamilySpec, step: NestedStep, row: Row, result: SyncResult
    ) -> None:
        """Resolve an independently versioned nested record."""
        entity = step.entity
        remote = self._decode(entity, row, result)
        if remote is None:
            return

        local = self.store.get(entity.local_table, remote.id)
        resolution = resolve(local, remote)
        self._note_conflict(spec, entity, local, remote, resolution, result)
        if resolution == Resolution.LOCAL_WINS:
            return

        if step.hydrate is not None:
            try:
                remote = await step.hydrate(self.remote, row, remote, self.legacy_page_size)
            except RemotePayloadError as e:
                self._skip(entity, row, e, result)
                return

        self.store.apply_remote(self._as_synced(remote))
        result.pulled += 1
        logger.debug(f"Applied {entity.remote_table}/{remote.id} ({resolution.value})")

    def _decode(
        self, entity: EntitySpec, row: Row, result: SyncResult
    ) -> Optional[SyncableRecord]:
        try:
            return entity.from_row(row)
        except RemotePayloadError as e:
            self._skip(entity, row, e, result)
            return None

    def _skip(self, entity: EntitySpec, row: Any, error: Exception, result: SyncResult) -> None:
        row_id = row.get("id") if isinstance(row, dict) else None
        logger.warning(f"Skipping malformed {entity.remote_table} row {row_id}: {error}")
        result.skipped += 1
        result.add_issue(ErrorCategory.DATA, str(error), entity.remote_table, row_id)

    def _as_synced(self, record: SyncableRecord) -> SyncableRecord:
        record.is_synced = True
        record.needs_sync = False
        record.last_synced_at = self.store.now()
        return record

    def _note_conflict(
        self,
        spec: FamilySpec,
        entity: EntitySpec,
        local: Optional[SyncableRecord],
        remote: SyncableRecord,
        resolution: Resolution,
        result: SyncResult,
    ) -> None:
        """Log a conflict when a remote change meets pending local edits."""
        if local is None or not local.needs_sync:
            return
        if local.last_synced_at is not None and remote.updated_at <= local.last_synced_at:
            # Remote copy unchanged since our last sync; nothing competes
            return
        local_content = content_of(local)
        remote_content = content_of(remote)
        if local_content == remote_content:
            return
        self.store.save_conflict(
            spec.family,
            entity.local_table,
            remote.id,
            resolution.value,
            local_content,
            remote_content,
        )
        result.conflicts += 1
        logger.info(
            f"Conflict on {entity.local_table}/{remote.id}: {resolution.value} "
            f"(local {local.updated_at.isoformat()}, remote {remote.updated_at.isoformat()})"
        )
