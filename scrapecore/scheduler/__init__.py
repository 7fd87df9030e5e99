"""
Scheduling side of scrapecore: worker pool, dispatcher, rate limiter and
the PoolManager facade.
"""

from scrapecore.scheduler.dispatcher import Dispatcher
from scrapecore.scheduler.manager import PoolManager
from scrapecore.scheduler.rate_limiter import CircuitState, DomainRateState, RateLimiter
from scrapecore.scheduler.worker_pool import JobResult, ScrapeJob, WorkerPool

__all__ = [
    "Dispatcher",
    "PoolManager",
    "CircuitState",
    "DomainRateState",
    "RateLimiter",
    "JobResult",
    "ScrapeJob",
    "WorkerPool",
]
