import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from api.metrics import metrics
from config import config
from monitoring.async_utils import cancel_task


logger = logging.getLogger(__name__)


class AnalysisScheduler:
    """Timer- and event-driven analysis passes behind a reentrancy guard.

    A trigger that arrives while a pass is running is dropped, not queued.
    """

    def __init__(self, analyze: Callable[[], Awaitable[Any]], interval_s: Optional[float] = None):
        self.analyze = analyze
        self.interval_s = float(interval_s or config.analysis.get('interval_s', 15))
        self.running = False
        self._in_progress = False
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._in_progress

    async def trigger(self, reason: str = 'manual') -> bool:
        if self._in_progress:
            logger.debug("Analysis already running; %s trigger skipped", reason)
            metrics.record_analysis_skipped('busy')
            return False
        self._in_progress = True
        try:
            # A not-ready pass returns None and is counted as skipped instead
            if await self.analyze() is not None:
                metrics.record_analysis(reason)
        except Exception:
            logger.exception("Analysis pass (%s) failed", reason)
        finally:
            self._in_progress = False
        return True

    async def run(self):
        while self.running:
            await asyncio.sleep(self.interval_s)
            if not self.running:
                break
            await self.trigger('timer')

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self.running = True
        self._task = asyncio.create_task(self.run(), name='analysis-timer')
        return self._task

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def stop(self):
        self.running = False
        await cancel_task(self._task)
        self._task = None
