"""
Periodic driver for the stale-tracking sweep.

The sweep itself lives on the tracker and is a plain function call; this
module only decides when to call it. Hosts that own a task runner can skip
it and call RetryManager.cleanup_stale_tracking() on their own cadence.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from retrykit.utils.logging import get_logger

logger = get_logger("retrykit.retry.scheduler")


class CleanupScheduler:
    """
    Runs a callback on a fixed interval in the current event loop.

    Examples:
        >>> scheduler = CleanupScheduler(manager.cleanup_stale_tracking, interval_seconds=300)
        >>> scheduler.start()
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(self, callback: Callable[[], Any], interval_seconds: float):
        """
        Initialize CleanupScheduler.

        Args:
            callback: Called once per interval
            interval_seconds: Seconds between calls
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.callback = callback
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; restarts it if already running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        self._stopping.set()
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def cancel(self) -> None:
        """Stop the loop without waiting (usable outside a coroutine)."""
        self._stopping.set()
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def run_once(self) -> Any:
        """Invoke the callback immediately, logging instead of raising."""
        try:
            return self.callback()
        except Exception as e:
            logger.error(f"Cleanup callback failed: {e}", exc_info=True)
            return None

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                self.run_once()
