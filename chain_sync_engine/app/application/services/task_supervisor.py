from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Owns the background tasks of the process, keyed by name.

    Spawning under an existing key cancels the previous task, so a key
    (e.g. one watcher address) never has two tasks running. shutdown()
    cancels and awaits everything.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def spawn(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            logger.debug("Replacing running task %s", key)
            previous.cancel()

        task = asyncio.create_task(coro, name=key)
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        return task

    def _on_done(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s crashed", key, exc_info=exc)

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def cancel(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def wait(self, key: str) -> None:
        """Wait for the task under key (if any) to finish, without cancelling it."""
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Stopped %s background task(s)", len(tasks))
