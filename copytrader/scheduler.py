# copytrader/scheduler.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RecurringTask:
    """Runs an async job every `interval` seconds.

    A tick that is still running when the next one is due makes the next one
    a no-op; ticks are never queued. `sleep` is injectable so tests can drive
    the loop without real time passing.
    """

    def __init__(self, name: str, job: Callable[[], Awaitable[None]], interval: float,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.name = name
        self.job = job
        self.interval = interval
        self.sleep = sleep
        self.ticks_run = 0
        self.ticks_skipped = 0
        self._current: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def trigger(self) -> Optional[asyncio.Task]:
        """Start a tick now unless one is in flight. Returns the tick task, or None if skipped."""
        if self.busy:
            self.ticks_skipped += 1
            logger.warning(f"{self.name}: previous tick still running, skipping")
            return None
        self._current = asyncio.ensure_future(self._run_job())
        return self._current

    async def _run_job(self):
        try:
            await self.job()
        except Exception as e:
            logger.error(f"{self.name}: tick failed: {e}")
        finally:
            self.ticks_run += 1

    async def _loop(self):
        while True:
            self.trigger()
            await self.sleep(self.interval)

    def start(self):
        if not self.running:
            self._loop_task = asyncio.ensure_future(self._loop())
            logger.info(f"{self.name} started (every {self.interval}s)")

    async def stop(self):
        for task in (self._loop_task, self._current):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._current = None
