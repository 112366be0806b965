import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Cancellable timer that awaits ``callback`` every ``interval`` seconds.

    The first run happens one interval after ``start()``. Calls never overlap
    within one task, but a slow callback delays the next run. ``cancel()`` is
    safe to call from inside the callback: the loop finishes the current run
    and stops.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]], name: str = "periodic"):
        """
        :param interval: Seconds between runs.
        :param callback: Coroutine function to run.
        :param name: Label used in log messages.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (no-op when already running)"""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug(f"Timer '{self.name}' started (every {self.interval}s)")

    def cancel(self) -> None:
        """Stop the loop; pending sleeps are interrupted"""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()
        logger.debug(f"Timer '{self.name}' cancelled")

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            try:
                await self.callback()
            except Exception as e:
                # A failed run must not kill the timer; the next tick retries.
                logger.error(f"Timer '{self.name}' callback failed: {e}", exc_info=True)
