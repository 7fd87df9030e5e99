"""
Job dispatcher: moves jobs from the shared queue to idle workers.

Each worker owns a one-slot inbox. The dispatcher takes the next job from
the bounded submission queue, waits until at least one worker is idle, and
hands the job to the next idle worker in round-robin order.
"""

import asyncio
from typing import Generic, TypeVar

from scrapecore.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Dispatcher(Generic[T]):
    """Round-robin assignment of queued jobs to idle workers."""

    def __init__(self, queue: asyncio.Queue[T], worker_count: int):
        """Initialize dispatcher.

        Args:
            queue: Shared bounded submission queue.
            worker_count: Number of workers that will call next_job().
        """
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self._queue = queue
        self._inboxes: list[asyncio.Queue[T]] = [asyncio.Queue(maxsize=1) for _ in range(worker_count)]
        self._idle = [True] * worker_count
        self._cond = asyncio.Condition()
        self._next = 0
        self._pending: T | None = None
        self._task: asyncio.Task | None = None
        self._dispatched = 0

    @property
    def worker_count(self) -> int:
        return len(self._inboxes)

    @property
    def busy_workers(self) -> int:
        return sum(1 for idle in self._idle if not idle)

    @property
    def dispatched(self) -> int:
        return self._dispatched

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="dispatcher")
        logger.debug("Dispatcher started", workers=self.worker_count)

    async def stop(self) -> None:
        """Cancel the dispatch loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Dispatcher stopped", dispatched=self._dispatched)

    async def next_job(self, worker_id: int) -> T:
        """Block until a job is assigned to ``worker_id``."""
        return await self._inboxes[worker_id].get()

    async def mark_idle(self, worker_id: int) -> None:
        """Return ``worker_id`` to the idle set after finishing a job."""
        async with self._cond:
            self._idle[worker_id] = True
            self._cond.notify()

    def drain(self) -> list[T]:
        """Remove every job not yet picked up by a worker.

        Call after stop(). Covers the job held while waiting for a worker,
        jobs sitting in inboxes and jobs still in the submission queue.
        """
        drained: list[T] = []
        if self._pending is not None:
            drained.append(self._pending)
            self._pending = None
        for inbox in self._inboxes:
            while not inbox.empty():
                drained.append(inbox.get_nowait())
        while not self._queue.empty():
            drained.append(self._queue.get_nowait())
            self._queue.task_done()
        return drained

    async def _claim_idle_worker(self) -> int:
        async with self._cond:
            await self._cond.wait_for(lambda: any(self._idle))
            count = len(self._idle)
            for offset in range(count):
                worker_id = (self._next + offset) % count
                if self._idle[worker_id]:
                    self._idle[worker_id] = False
                    self._next = (worker_id + 1) % count
                    return worker_id
        raise RuntimeError("no idle worker after wait")  # unreachable

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            self._pending = job
            worker_id = await self._claim_idle_worker()
            self._pending = None
            self._inboxes[worker_id].put_nowait(job)
            self._queue.task_done()
            self._dispatched += 1
