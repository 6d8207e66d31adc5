"""Schedulers that drive the coordinator's recurring ticks.

``IntervalScheduler`` runs one asyncio task per key that sleeps for the
interval and then fires the callback. Stopping a key cancels the sleeping
task; a callback that is already running is shielded and finishes.

``ManualScheduler`` only fires when ``tick`` is called, for hosts that
drive sync from their own lifecycle events (and for tests).
"""

import asyncio
import logging
from typing import Dict, Optional, Set, Tuple

from wellsync.protocols import TickCallback

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """Fixed-interval asyncio timers keyed by name."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._callbacks: Dict[str, TickCallback] = {}
        self._inflight: Set[asyncio.Future] = set()

    def start(self, key: str, interval: float, callback: TickCallback) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.stop(key)
        self._callbacks[key] = callback
        task = asyncio.get_running_loop().create_task(
            self._loop(key, interval, callback), name=f"wellsync-timer-{key}"
        )
        task.add_done_callback(self._on_task_done)
        self._tasks[key] = task
        logger.debug(f"Timer {key} started ({interval}s)")

    def stop(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        self._callbacks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"Timer {key} stopped")

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def tick(self, key: str) -> None:
        callback = self._callbacks.get(key)
        if callback is not None:
            await self._fire(callback)

    async def shutdown(self) -> None:
        """Stop every timer and wait for callbacks already running."""
        tasks = list(self._tasks.values())
        for key in list(self._tasks):
            self.stop(key)
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _loop(self, key: str, interval: float, callback: TickCallback) -> None:
        while True:
            await asyncio.sleep(interval)
            logger.debug(f"Timer {key} fired")
            try:
                await self._fire(callback)
            except Exception as e:
                # A failed tick leaves the timer running
                logger.error(f"Timer {key} callback failed: {e}", exc_info=True)

    async def _fire(self, callback: TickCallback) -> None:
        # Shielded so cancelling the timer never abandons a running cycle
        future = asyncio.ensure_future(callback())
        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)
        await asyncio.shield(future)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Timer task {task.get_name()} crashed: {exc!r}", exc_info=exc)


class ManualScheduler:
    """Scheduler whose ticks are fired explicitly by the host."""

    def __init__(self):
        self._timers: Dict[str, Tuple[float, TickCallback]] = {}
        self.ticks_fired = 0

    def start(self, key: str, interval: float, callback: TickCallback) -> None:
        self._timers[key] = (interval, callback)

    def stop(self, key: str) -> None:
        self._timers.pop(key, None)

    def is_running(self, key: str) -> bool:
        return key in self._timers

    def interval(self, key: str) -> Optional[float]:
        timer = self._timers.get(key)
        return timer[0] if timer else None

    async def tick(self, key: str) -> None:
        """Fire ``key`` if it is scheduled; a stopped key does nothing."""
        timer = self._timers.get(key)
        if timer is None:
            return
        self.ticks_fired += 1
        await timer[1]()

    async def tick_all(self) -> None:
        for key in list(self._timers):
            await self.tick(key)
