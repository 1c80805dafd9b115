import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

# A repeating callback returns False to stop the loop
TimerCallback = Callable[[], Awaitable[Optional[bool]]]


class ScheduledTask:
    """Cancellable handle around a background timer task"""

    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> bool:
        """Cancel the timer; returns False if it had already finished"""
        if self._task.done():
            return False
        self._task.cancel()
        logger.debug(f"Cancelled timer {self.name}")
        return True

    async def wait(self):
        """Wait for the timer to finish, ignoring cancellation"""
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def __repr__(self):
        return f"<ScheduledTask(name={self.name}, done={self.done})>"


async def _run_callback(name: str, callback: TimerCallback) -> Optional[bool]:
    try:
        return await callback()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception(f"Timer {name} callback failed: {e}")
        return None


def schedule_once(delay: float, callback: TimerCallback, name: str = "timer") -> ScheduledTask:
    """Run ``callback`` once after ``delay`` seconds"""

    async def runner():
        await asyncio.sleep(delay)
        await _run_callback(name, callback)

    return ScheduledTask(name, asyncio.get_running_loop().create_task(runner(), name=name))


def schedule_repeating(interval: float, callback: TimerCallback, name: str = "ticker") -> ScheduledTask:
    """Run ``callback`` every ``interval`` seconds until it returns False or is cancelled"""

    async def runner():
        while True:
            await asyncio.sleep(interval)
            if await _run_callback(name, callback) is False:
                logger.debug(f"Timer {name} stopped itself")
                return

    return ScheduledTask(name, asyncio.get_running_loop().create_task(runner(), name=name))


class TaskRegistry:
    """At most one live timer per (owner, kind) key"""

    def __init__(self):
        self._tasks: Dict[Tuple[Hashable, str], ScheduledTask] = {}

    def register(self, owner: Hashable, kind: str, task: ScheduledTask) -> ScheduledTask:
        previous = self._tasks.get((owner, kind))
        if previous is not None and previous is not task:
            previous.cancel()
        self._tasks[(owner, kind)] = task
        return task

    def get(self, owner: Hashable, kind: str) -> Optional[ScheduledTask]:
        return self._tasks.get((owner, kind))

    def cancel(self, owner: Hashable, kind: str) -> bool:
        task = self._tasks.pop((owner, kind), None)
        return task.cancel() if task else False

    def discard(self, owner: Hashable, kind: str, task: ScheduledTask):
        """Forget ``task`` if it is still the registered one, without cancelling"""
        if self._tasks.get((owner, kind)) is task:
            del self._tasks[(owner, kind)]

    def cancel_all(self, owner: Hashable) -> int:
        keys = [key for key in self._tasks if key[0] == owner]
        cancelled = 0
        for key in keys:
            if self._tasks.pop(key).cancel():
                cancelled += 1
        return cancelled

    def shutdown(self) -> int:
        cancelled = 0
        for task in self._tasks.values():
            if task.cancel():
                cancelled += 1
        self._tasks.clear()
        return cancelled

    def active_count(self, owner: Optional[Hashable] = None) -> int:
        return sum(
            1 for (key_owner, _), task in self._tasks.items()
            if not task.done and (owner is None or key_owner == owner)
        )
