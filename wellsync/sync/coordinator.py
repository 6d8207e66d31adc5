"""Sync coordinator: when a cycle runs and whether it may.

Per family the coordinator owns a timer, an in-flight flag and an
observable status. Cycles for the same family never overlap; a
``sync_now`` while one is running is dropped, not queued. Every error is
caught at the cycle boundary and recorded as the family's last error.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from wellsync.protocols import (
    EntitlementGate,
    Scheduler,
    error_category,
)
from wellsync.sync.engine import SyncEngine
from wellsync.sync.scheduler import IntervalScheduler
from wellsync.types import (
    EntityFamily,
    FamilyStatus,
    SyncIssue,
    SyncResult,
    SyncState,
)

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 300.0


class SyncCoordinator:
    def __init__(
        self,
        engine: SyncEngine,
        gate: EntitlementGate,
        scheduler: Optional[Scheduler] = None,
        *,
        interval: float = DEFAULT_SYNC_INTERVAL,
        sync_on_start: bool = True,
    ):
        if interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval}")
        self.engine = engine
        self.gate = gate
        self.scheduler = scheduler or IntervalScheduler()
        self.interval = interval
        self.sync_on_start = sync_on_start

        self._in_flight: Set[EntityFamily] = set()
        self._background: Set[asyncio.Task] = set()
        self._status: Dict[EntityFamily, FamilyStatus] = {}
        for family in engine.families:
            self._status[family] = FamilyStatus(
                family=family,
                last_synced_at=engine.store.get_last_sync_time(family),
                last_error=engine.store.get_last_error(family),
            )
        self._unsubscribe = gate.subscribe(self.handle_entitlement_change)

    @property
    def families(self) -> List[EntityFamily]:
        return list(self._status)

    def status(self, family: EntityFamily) -> FamilyStatus:
        return self._status[family]

    def is_syncing(self, family: EntityFamily) -> bool:
        return family in self._in_flight

    # =========================================================================
    # Timers
    # =========================================================================

    def start_auto_sync(self, family: EntityFamily) -> bool:
        """Start the recurring timer for ``family`` if entitled.

        Restarting an already-running timer replaces it. Returns whether a
        timer is now scheduled.
        """
        self.engine.spec_for(family)
        if not self.gate.can_sync(family):
            logger.info(f"Auto-sync for {family.value} not scheduled: not entitled")
            return False

        self.stop_auto_sync(family)
        self.scheduler.start(family.value, self.interval, lambda: self._on_tick(family))
        self._status[family].auto_sync_enabled = True
        logger.info(f"Auto-sync for {family.value} every {self.interval:g}s")

        if self.sync_on_start:
            self._spawn_first_cycle(family)
        return True

    def stop_auto_sync(self, family: EntityFamily) -> None:
        """Cancel the timer; an in-flight cycle still runs to completion."""
        if self.scheduler.is_running(family.value):
            logger.info(f"Auto-sync for {family.value} stopped")
        self.scheduler.stop(family.value)
        status = self._status.get(family)
        if status is not None:
            status.auto_sync_enabled = False

    def handle_entitlement_change(self, family: Optional[EntityFamily] = None) -> None:
        """Re-evaluate the gate for one family, or all when ``family`` is None.

        Entitled families get auto-sync; the rest lose it. Already pushed
        data is left alone.
        """
        families = [family] if family is not None else self.families
        for fam in families:
            if fam not in self._status:
                continue
            if self.gate.can_sync(fam):
                if not self.scheduler.is_running(fam.value):
                    self.start_auto_sync(fam)
            else:
                self.stop_auto_sync(fam)

    async def _on_tick(self, family: EntityFamily) -> None:
        await self.sync_now(family)

    # =========================================================================
    # Cycles
    # =========================================================================

    async def sync_now(self, family: EntityFamily) -> Optional[SyncResult]:
        """Run one push-then-pull cycle for ``family`` right now.

        Returns None when the call was dropped (cycle already in flight or
        not entitled). Never raises for sync failures; see ``status``.
        """
        self.engine.spec_for(family)
        return await self._guarded(family, lambda: self.engine.run_cycle(family))

    async def sync_all(self) -> Dict[EntityFamily, Optional[SyncResult]]:
        """Sync every family concurrently; they touch disjoint records."""
        results = await asyncio.gather(*(self.sync_now(f) for f in self.families))
        return dict(zip(self.families, results))

    async def sync_plan(self, plan_id: str) -> Optional[SyncResult]:
        """Push one exposure plan and its targets outside the timer."""
        family = EntityFamily.EXPOSURE
        self.engine.spec_for(family)
        return await self._guarded(family, lambda: self.engine.push_one(family, plan_id))

    async def _guarded(
        self, family: EntityFamily, run: Callable[[], Awaitable[SyncResult]]
    ) -> Optional[SyncResult]:
        try:
            allowed = self.gate.can_sync(family)
        except Exception as e:
            logger.error(f"Entitlement check for {family.value} failed: {e}", exc_info=True)
            self._record_failure(family, e)
            return None
        if not allowed:
            logger.debug(f"Sync of {family.value} skipped: not entitled")
            return None
        # Check-and-set with no await in between
        if family in self._in_flight:
            logger.debug(f"Sync of {family.value} already in flight, dropping request")
            return None
        self._in_flight.add(family)
        status = self._status[family]
        status.state = SyncState.SYNCING
        try:
            return await self._run_guarded(family, run)
        finally:
            status.state = SyncState.IDLE
            self._in_flight.discard(family)

    async def _run_guarded(
        self, family: EntityFamily, run: Callable[[], Awaitable[SyncResult]]
    ) -> Optional[SyncResult]:
        try:
            result = await run()
        except Exception as e:
            logger.error(f"Sync cycle for {family.value} aborted: {e}", exc_info=True)
            self._record_failure(family, e)
            return None

        status = self._status[family]
        finished = result.finished_at or self.engine.store.now()
        status.last_synced_at = finished
        status.last_error = result.errors[-1] if result.errors else None
        self._persist(family, status)
        return result

    def _record_failure(self, family: EntityFamily, exc: BaseException) -> None:
        status = self._status[family]
        status.last_error = SyncIssue(category=error_category(exc), message=str(exc))
        self._persist(family, status)

    def _persist(self, family: EntityFamily, status: FamilyStatus) -> None:
        store = self.engine.store
        try:
            if status.last_synced_at is not None:
                store.set_last_sync_time(family, status.last_synced_at)
            store.set_last_error(family, status.last_error)
        except Exception as e:
            # Status stays observable in memory even if the store is unhealthy
            logger.error(f"Could not persist sync status for {family.value}: {e}")

    def _spawn_first_cycle(self, family: EntityFamily) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called from synchronous host code; the first tick syncs instead
            logger.debug(f"No running event loop, immediate sync of {family.value} skipped")
            return
        task = loop.create_task(self.sync_now(family))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for background cycles started by ``start_auto_sync``."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop all timers, detach from the gate and finish running cycles."""
        self._unsubscribe()
        for family in self.families:
            self.stop_auto_sync(family)
        if isinstance(self.scheduler, IntervalScheduler):
            await self.scheduler.shutdown()
        await self.drain()
