"""
Background Dispatcher - Detached work with a supervising logger.

Architecture Decision: Explicit task submission
Work that must not hold up the caller (the completion cascade) is submitted
here instead of being awaited. The dispatcher keeps a reference to every
task until it finishes and logs any exception it raised, so failures are
visible to operators without ever reaching the caller.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """
    Runs coroutines as asyncio tasks on the current event loop.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, func: Callable[..., Awaitable[Any]], *args, name: str = "") -> asyncio.Task:
        """
        Schedule `func(*args)` and return immediately.

        Must be called from inside a running event loop.
        """
        task = asyncio.create_task(func(*args), name=name or getattr(func, "__qualname__", "background"))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task cancelled: {task.get_name()}")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task failed: {task.get_name()}", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for all submitted work, including work submitted while waiting"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
