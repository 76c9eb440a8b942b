"""Detached background work with its own error boundary."""
from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from loguru import logger


class BackgroundTasks:
    """Keeps strong references to spawned tasks and logs their failures.

    Failures never propagate to the request that spawned the task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background task {task.get_name()} failed: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding task; failures are already logged."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
