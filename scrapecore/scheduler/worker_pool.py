"""
Bounded worker pool for scrape jobs.

Flow:
1. submit_job() puts a ScrapeJob on a fixed-capacity queue (never waits;
   a full queue fails immediately) and waits on the job's result channel.
2. The Dispatcher hands the job to the next idle worker.
3. The worker passes the rate limiter gate, builds the engine through the
   EngineFactory and runs the retry loop.
4. The JobResult is written once into the job's result channel. A caller
   that timed out or was cancelled is gone; the result is discarded.

Retry policy (outer loop, max_retries + 1 attempts, linear backoff):
- success: record_success, deliver
- not a job posting: record_success (correct answer), deliver immediately
- non-retryable kind: record_failure, deliver immediately
- retryable kind: record_failure, sleep attempt * retry_backoff_seconds, retry
- exhausted: classified errors delivered as-is, unclassified ones wrapped
  in RetryExhaustedError
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from scrapecore.engines.factory import EngineFactory
from scrapecore.models import Job, ScrapeOptions
from scrapecore.scheduler.dispatcher import Dispatcher
from scrapecore.scheduler.rate_limiter import RateLimiter
from scrapecore.utils.backoff import calculate_linear_backoff
from scrapecore.utils.config import WorkersConfig, get_settings
from scrapecore.utils.errors import (
    JobTimeoutError,
    NotJobPostingError,
    PoolNotRunningError,
    QueueFullError,
    RateLimitedError,
    RetryExhaustedError,
    ScrapeError,
    is_retryable,
)
from scrapecore.utils.logging import LogContext, get_context, get_logger
from scrapecore.utils.urls import extract_domain

logger = get_logger(__name__)


@dataclass(frozen=True)
class JobResult:
    """Outcome of one scrape job. Written once, never mutated.

    Attributes:
        request_id: ScrapeJob id.
        job: Extracted posting on success.
        error: Classified failure otherwise.
        duration_seconds: Worker processing time.
        engine_path: "primary" or "secondary" when an engine produced the job.
        escalated: True when the hybrid selector fell back after a CAPTCHA.
        attempts: Engine attempts made (0 when rejected before scraping).
    """

    request_id: str
    job: Job | None = None
    error: ScrapeError | None = None
    duration_seconds: float = 0.0
    engine_path: str | None = None
    escalated: bool = False
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.job is not None and self.error is None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "request_id": self.request_id,
            "ok": self.success,
            "duration_seconds": round(self.duration_seconds, 3),
            "engine_path": self.engine_path,
            "escalated": self.escalated,
            "attempts": self.attempts,
        }
        if self.job is not None:
            result["job"] = self.job.model_dump(exclude_none=True)
        if self.error is not None:
            result.update(self.error.to_dict())
            result["ok"] = False
        return result


@dataclass(eq=False)
class ScrapeJob:
    """A submitted request. Consumed once by a worker."""

    id: str
    url: str
    options: ScrapeOptions
    created_at: float = field(default_factory=time.monotonic)
    result_channel: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=1))
    context: dict[str, Any] = field(default_factory=dict)
    abandoned: bool = False
    delivered: bool = False


@dataclass
class PoolStats:
    """Counters maintained by the pool."""

    jobs_queued: int = 0
    jobs_processed: int = 0
    jobs_successful: int = 0
    jobs_failed: int = 0
    jobs_discarded: int = 0
    total_processing_seconds: float = 0.0


class WorkerPool:
    """Fixed set of worker tasks fed by a bounded queue."""

    def __init__(
        self,
        factory: EngineFactory,
        rate_limiter: RateLimiter,
        config: WorkersConfig | None = None,
    ):
        """Initialize worker pool.

        Args:
            factory: Builds the engine for each job.
            rate_limiter: Per-domain admission gate and outcome recorder.
            config: Worker configuration. Uses settings if None.
        """
        self._factory = factory
        self._rate_limiter = rate_limiter
        self._config = config or get_settings().workers
        self._queue: asyncio.Queue[ScrapeJob] = asyncio.Queue(maxsize=self._config.queue_size)
        self._dispatcher: Dispatcher[ScrapeJob] = Dispatcher(self._queue, self._config.pool_size)
        self._workers: list[asyncio.Task[None]] = []
        self._stats = PoolStats()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return self._config.pool_size

    @property
    def queue_capacity(self) -> int:
        return self._config.queue_size

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the dispatcher and worker tasks."""
        if self._running:
            return

        self._running = True
        await self._dispatcher.start()
        for worker_id in range(self._config.pool_size):
            task = asyncio.create_task(self._worker(worker_id), name=f"scrape-worker-{worker_id}")
            self._workers.append(task)

        logger.info(
            "Worker pool started",
            workers=self._config.pool_size,
            queue_size=self._config.queue_size,
        )

    async def shutdown(self) -> None:
        """Stop intake, fail queued jobs, cancel dispatcher and workers."""
        if not self._running:
            return

        self._running = False
        await self._dispatcher.stop()

        drained = self._dispatcher.drain()
        for job in drained:
            await self._deliver(job, JobResult(request_id=job.id, error=PoolNotRunningError()))

        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()

        logger.info(
            "Worker pool stopped",
            drained_jobs=len(drained),
            jobs_processed=self._stats.jobs_processed,
        )

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit_job(self, url: str, options: ScrapeOptions | None = None) -> JobResult:
        """Queue a scrape and wait for its result.

        Args:
            url: Posting URL.
            options: Per-request options. options.timeout can shorten the
                pool wait, never extend it.

        Returns:
            JobResult carrying either the job or the classified error.

        Raises:
            PoolNotRunningError: Pool not started or shutting down.
            QueueFullError: No free queue slot.
            JobTimeoutError: No result within the wait timeout.
        """
        if not self._running:
            raise PoolNotRunningError()

        options = options or ScrapeOptions()
        job = ScrapeJob(
            id=str(uuid.uuid4()),
            url=url,
            options=options,
            context=get_context(),
        )

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning("Job queue full", url=url, capacity=self._config.queue_size)
            raise QueueFullError(self._config.queue_size) from None

        self._stats.jobs_queued += 1
        logger.info("Job submitted to queue", job_id=job.id, url=url, engine=options.engine)

        timeout = self._config.timeout_seconds
        if options.timeout:
            timeout = min(timeout, options.timeout)
        try:
            return await asyncio.wait_for(job.result_channel.get(), timeout=timeout)
        except TimeoutError:
            job.abandoned = True
            logger.warning("Job wait timed out", job_id=job.id, url=url, timeout=timeout)
            raise JobTimeoutError(timeout) from None
        except asyncio.CancelledError:
            job.abandoned = True
            logger.info("Job wait cancelled by caller", job_id=job.id, url=url)
            raise

    # =========================================================================
    # Workers
    # =========================================================================

    async def _worker(self, worker_id: int) -> None:
        logger.debug("Worker started", worker_id=worker_id)
        while True:
            try:
                job = await self._dispatcher.next_job(worker_id)
            except asyncio.CancelledError:
                logger.debug("Worker stopped", worker_id=worker_id)
                raise

            try:
                await self._process(job, worker_id)
            except asyncio.CancelledError:
                await self._deliver(
                    job,
                    JobResult(request_id=job.id, error=PoolNotRunningError("worker pool shut down")),
                )
                logger.debug("Worker stopped mid-job", worker_id=worker_id, job_id=job.id)
                raise
            except Exception as e:
                logger.exception("Worker failed while processing job", worker_id=worker_id, job_id=job.id)
                await self._deliver(job, JobResult(request_id=job.id, error=ScrapeError(f"internal worker error: {e}")))
            finally:
                await self._dispatcher.mark_idle(worker_id)

    async def _process(self, job: ScrapeJob, worker_id: int) -> None:
        start = time.monotonic()
        with LogContext(**{**job.context, "job_id": job.id, "worker_id": worker_id}):
            logger.info(
                "Processing job",
                url=job.url,
                queued_seconds=round(start - job.created_at, 3),
            )
            domain = extract_domain(job.url)

            if not await self._rate_limiter.allow(domain):
                logger.warning("Job rejected by rate limiter", domain=domain)
                result = JobResult(request_id=job.id, error=RateLimitedError(domain))
            else:
                result = await self._run_engine(job, domain)

            result = JobResult(
                request_id=result.request_id,
                job=result.job,
                error=result.error,
                duration_seconds=time.monotonic() - start,
                engine_path=result.engine_path,
                escalated=result.escalated,
                attempts=result.attempts,
            )
            self._record(result)

            logger.info(
                "Job finished",
                success=result.success,
                duration=round(result.duration_seconds, 3),
                attempts=result.attempts,
                engine_path=result.engine_path,
                escalated=result.escalated,
                error_kind=result.error.kind.value if result.error else None,
            )
            await self._deliver(job, result)

    async def _run_engine(self, job: ScrapeJob, domain: str) -> JobResult:
        try:
            engine = self._factory.create(job.options.engine or self._config.default_engine)
        except ScrapeError as e:
            return JobResult(request_id=job.id, error=e)

        attempts = self._config.max_retries + 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                outcome = await engine.scrape(job.url, job.options)
            except NotJobPostingError as e:
                await self._rate_limiter.record_success(domain)
                logger.info("Content is not a job posting", attempt=attempt)
                return JobResult(request_id=job.id, error=e, attempts=attempt)
            except Exception as e:
                await self._rate_limiter.record_failure(domain, e)
                last_error = e
                if not is_retryable(e):
                    logger.warning(
                        "Scrape failed with non-retryable error",
                        attempt=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return JobResult(request_id=job.id, error=_as_scrape_error(e, attempt), attempts=attempt)

                logger.warning(
                    "Scrape attempt failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt < attempts:
                    await asyncio.sleep(calculate_linear_backoff(attempt, self._config.retry_backoff_seconds))
                continue

            await self._rate_limiter.record_success(domain)
            return JobResult(
                request_id=job.id,
                job=outcome.job,
                engine_path=outcome.engine_path,
                escalated=outcome.escalated,
                attempts=attempt,
            )

        assert last_error is not None
        return JobResult(request_id=job.id, error=_as_scrape_error(last_error, attempts), attempts=attempts)

    # =========================================================================
    # Delivery and stats
    # =========================================================================

    async def _deliver(self, job: ScrapeJob, result: JobResult) -> None:
        if job.delivered:
            return
        job.delivered = True

        if job.abandoned:
            self._stats.jobs_discarded += 1
            logger.info("Discarding result, caller has gone away", job_id=job.id)
            return

        try:
            await asyncio.wait_for(
                job.result_channel.put(result),
                timeout=self._config.result_delivery_timeout_seconds,
            )
        except TimeoutError:
            self._stats.jobs_discarded += 1
            logger.warning("Result delivery timed out, discarding", job_id=job.id)

    def _record(self, result: JobResult) -> None:
        self._stats.jobs_processed += 1
        self._stats.total_processing_seconds += result.duration_seconds
        if result.success:
            self._stats.jobs_successful += 1
        else:
            self._stats.jobs_failed += 1

    def get_stats(self) -> dict[str, Any]:
        stats = self._stats
        average = stats.total_processing_seconds / stats.jobs_processed if stats.jobs_processed else 0.0
        return {
            "running": self._running,
            "jobs_queued": stats.jobs_queued,
            "jobs_processed": stats.jobs_processed,
            "jobs_successful": stats.jobs_successful,
            "jobs_failed": stats.jobs_failed,
            "jobs_discarded": stats.jobs_discarded,
            "total_processing_seconds": round(stats.total_processing_seconds, 3),
            "average_processing_seconds": round(average, 3),
            "worker_count": self._config.pool_size,
            "busy_workers": self._dispatcher.busy_workers,
            "queue_size": self._queue.qsize(),
            "queue_capacity": self._config.queue_size,
        }


def _as_scrape_error(error: Exception, attempts: int) -> ScrapeError:
    """Classified errors pass through; anything else is wrapped with the attempt count."""
    if isinstance(error, ScrapeError):
        return error
    return RetryExhaustedError(attempts, error)
