"""
Best-effort background side channel.

Analytics and other follow-up work run as detached asyncio tasks. A turn
never awaits them and their failures are logged, never raised.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Tracks fire-and-forget tasks so they are not garbage collected."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def submit(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Schedule a coroutine without awaiting it.

        Args:
            coro: Coroutine to run
            name: Label used in logs

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for running tasks on shutdown, cancelling stragglers."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} background tasks on shutdown")


# Singleton
_tasks: Optional[BackgroundTasks] = None


def get_background_tasks() -> BackgroundTasks:
    """Get singleton BackgroundTasks."""
    global _tasks
    if _tasks is None:
        _tasks = BackgroundTasks()
    return _tasks
