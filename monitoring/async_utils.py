import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional


logger = logging.getLogger(__name__)


async def run_tasks_with_cleanup(
    tasks: Iterable[asyncio.Task],
    cleanup: Optional[Callable[[], Awaitable[None]]] = None,
) -> None:
    """Wait for ``tasks``; on exit cancel the survivors, log failures, run ``cleanup``."""
    task_list: List[asyncio.Task] = [t for t in tasks if t is not None]
    try:
        if task_list:
            await asyncio.gather(*task_list)
    except asyncio.CancelledError:
        pass
    finally:
        for t in task_list:
            if not t.done():
                t.cancel()
        if task_list:
            results = await asyncio.gather(*task_list, return_exceptions=True)
            for task, result in zip(task_list, results):
                if isinstance(result, Exception):
                    logger.error("Task %s failed: %s", task.get_name(), result)
        if cleanup is not None:
            await cleanup()


async def cancel_task(task: Optional[asyncio.Task]) -> None:
    """Cancel ``task`` and wait until it has finished unwinding."""
    if task is None or task.done():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
