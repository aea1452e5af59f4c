"""Delayed continuations owned by the stage controller."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Runs `factory()` after `delay` seconds as a tracked, cancellable task."""

    def __init__(self, sleep: Optional[Callable[[float], Awaitable[Any]]] = None):
        self._sleep = sleep or asyncio.sleep
        self._tasks: Dict[asyncio.Task, str] = {}

    def call_later(self, delay: float, factory: Callable[[], Awaitable[Any]], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._run(delay, factory, name), name=name)
        self._tasks[task] = name
        task.add_done_callback(self._forget)
        logger.debug("Scheduled %s in %.1fs", name, delay)
        return task

    async def _run(self, delay: float, factory: Callable[[], Awaitable[Any]], name: str) -> None:
        await self._sleep(delay)
        logger.debug("Running scheduled %s", name)
        try:
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled continuation %s failed", name)

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.pop(task, None)

    def pending(self) -> List[str]:
        return [name for task, name in self._tasks.items() if not task.done()]

    def cancel_all(self) -> int:
        """Cancel every pending continuation. The currently running one is left alone."""
        current = asyncio.current_task()
        cancelled = 0
        for task in list(self._tasks):
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1
        if cancelled:
            logger.info("Cancelled %d pending continuation(s)", cancelled)
        return cancelled

    async def drain(self) -> None:
        """Wait until no continuation is pending (new ones scheduled meanwhile included)."""
        while True:
            tasks = [task for task in self._tasks if not task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
