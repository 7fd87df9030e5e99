"""
Periodic background task helper.

Used for the rate limiter's idle-domain sweep and the browser pool's
idle/stuck/unhealthy sweep. The owning component starts it and stops it on
shutdown so no timers outlive their owner.
"""

import asyncio
from collections.abc import Awaitable, Callable

from scrapecore.utils.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Run an async callback every ``interval`` seconds on one asyncio task.

    The first call happens one interval after start. Exceptions raised by the
    callback are logged and the loop keeps going.

    Example:
        sweep = PeriodicTask("rate_limiter_cleanup", 300.0, limiter.cleanup)
        await sweep.start()
        ...
        await sweep.stop()
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object]],
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task | None = None
        self._runs = 0
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        """Completed callback invocations (successful or not)."""
        return self._runs

    @property
    def failures(self) -> int:
        return self._failures

    async def _loop(self) -> None:
        logger.debug("Periodic task started", task=self.name, interval=self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._callback()
            except Exception as e:
                self._failures += 1
                logger.error("Periodic task callback failed", task=self.name, error=str(e))
            finally:
                self._runs += 1

    async def start(self) -> None:
        """Start the loop. Calling start on a running task is a no-op."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        logger.debug("Periodic task stopped", task=self.name)
