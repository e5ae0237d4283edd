"""Delayed callback scheduling.

The timer service only needs ``schedule(delay, callback) -> handle`` where
the handle can be cancelled until the callback starts. Keeping it behind a
protocol lets tests drive time with a virtual clock.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: Callback) -> ScheduledHandle: ...


class AsyncioHandle:
    """Pending ``loop.call_later`` that spawns the callback as a task."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callback,
        tasks: set[asyncio.Task],
    ):
        self._loop = loop
        self._callback = callback
        self._tasks = tasks
        self._timer = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        task = self._loop.create_task(self._callback())
        # The loop keeps only weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Scheduled callback failed: %s",
                task.exception(),
                exc_info=task.exception(),
            )

    def cancel(self) -> None:
        """Cancel the pending call. Has no effect once the callback started."""
        self._timer.cancel()


class AsyncioScheduler:
    """Scheduler running callbacks on the asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, delay: float, callback: Callback) -> AsyncioHandle:
        loop = self._loop or asyncio.get_running_loop()
        return AsyncioHandle(loop, max(0.0, delay), callback, self._tasks)
