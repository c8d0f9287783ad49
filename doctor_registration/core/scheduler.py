"""
Keyed debounce scheduler built on asyncio tasks.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Set

# Set up logging
logger = logging.getLogger(__name__)


class DebounceScheduler:
    """
    Runs a coroutine function after a quiet period, one pending call per key.

    Scheduling a key cancels the call still waiting for that key. Once the
    quiet period has elapsed the call is detached from its key and runs to
    completion; later schedules for the same key do not cancel it.
    """
    def __init__(self):
        self._pending: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, key: str, delay: float, fn: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Schedule fn to run after delay seconds, replacing any pending call for key.

        Must be called from a running event loop.
        """
        self.cancel(key)
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._fire(key, delay, fn), name=f"debounce:{key}")
        self._pending[key] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fire(self, key: str, delay: float, fn: Callable[[], Awaitable[Any]]) -> None:
        await asyncio.sleep(max(delay, 0))
        if self._pending.get(key) is asyncio.current_task():
            del self._pending[key]
        try:
            await fn()
        except Exception:
            logger.exception(f"Scheduled call '{key}' failed")

    def cancel(self, key: str) -> bool:
        """Cancel the call waiting for key. Returns True when one was pending."""
        task = self._pending.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def cancel_all(self) -> None:
        for key in list(self._pending):
            self.cancel(key)

    async def drain(self) -> None:
        """Wait until every scheduled call (waiting or running) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
