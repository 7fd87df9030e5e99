"""
PoolManager: service facade that wires and owns the scraping core.

Construction is explicit (no module-level singleton). The caller supplies
the JobExtractor and may inject the browser launcher, CAPTCHA solver,
registry or secondary engine; everything else is built from Settings.

Lifecycle:
    initialize: registry -> browser pool -> rate limiter -> worker pool
    shutdown:   worker pool -> engines -> solver -> rate limiter -> browser pool
"""

from typing import Any

from scrapecore.captcha.registry import CaptchaDomainRegistry
from scrapecore.captcha.solver import CaptchaHandler, CaptchaSolver, TwoCaptchaSolver
from scrapecore.crawler.browser_pool import BrowserPool
from scrapecore.crawler.launcher import BrowserLauncher
from scrapecore.engines.base import JobExtractor, ScrapeEngine
from scrapecore.engines.browser import BrowserEngine
from scrapecore.engines.factory import EngineFactory
from scrapecore.engines.firecrawl import FirecrawlEngine
from scrapecore.models import ScrapeOptions
from scrapecore.scheduler.rate_limiter import RateLimiter
from scrapecore.scheduler.worker_pool import JobResult, WorkerPool
from scrapecore.utils.config import Settings, get_data_dir, get_settings
from scrapecore.utils.errors import PoolNotRunningError
from scrapecore.utils.logging import ensure_logging_configured, get_logger

logger = get_logger(__name__)


class PoolManager:
    """Owns the worker pool, rate limiter, browser pool, engines and registry.

    Example:
        async with PoolManager(extractor) as manager:
            result = await manager.submit_job("https://jobs.example.com/123")
            if result.success:
                print(result.job.title)
    """

    def __init__(
        self,
        extractor: JobExtractor,
        settings: Settings | None = None,
        *,
        launcher: BrowserLauncher | None = None,
        solver: CaptchaSolver | None = None,
        registry: CaptchaDomainRegistry | None = None,
        secondary: ScrapeEngine | None = None,
    ):
        """Initialize pool manager (nothing starts until initialize()).

        Args:
            extractor: LLM-backed job extractor shared by both engines.
            settings: Settings. Uses get_settings() if None.
            launcher: Browser backend. Defaults to Playwright.
            solver: CAPTCHA solver. Defaults to 2captcha.
            registry: Known-CAPTCHA domain registry. Defaults to data_dir file.
            secondary: Hosted API engine. Defaults to Firecrawl.
        """
        self._settings = settings or get_settings()
        self._extractor = extractor
        self._launcher = launcher
        self._solver = solver
        self._registry = registry or CaptchaDomainRegistry(
            get_data_dir(self._settings) / "captcha-domains.txt"
        )
        self._secondary = secondary

        self._browser_pool: BrowserPool | None = None
        self._rate_limiter: RateLimiter | None = None
        self._primary: BrowserEngine | None = None
        self._pool: WorkerPool | None = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def registry(self) -> CaptchaDomainRegistry:
        return self._registry

    @property
    def browser_pool(self) -> BrowserPool | None:
        return self._browser_pool

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Build and start every component.

        Raises:
            PoolNotRunningError: Already initialized.
        """
        if self._initialized:
            raise PoolNotRunningError("worker pool already initialized")

        ensure_logging_configured()
        settings = self._settings

        self._registry.initialize()

        self._browser_pool = BrowserPool(
            settings.browser_pool,
            settings.scraper,
            launcher=self._launcher,
            max_instances=settings.resolved_max_browsers(),
        )
        await self._browser_pool.start()

        self._rate_limiter = RateLimiter(settings.rate_limit)
        await self._rate_limiter.start()

        if self._solver is None:
            self._solver = TwoCaptchaSolver(settings.captcha)
        handler = CaptchaHandler(self._solver, settings.captcha)

        self._primary = BrowserEngine(self._browser_pool, self._extractor, handler, settings.scraper)
        if self._secondary is None:
            self._secondary = FirecrawlEngine(self._extractor, settings.firecrawl)

        factory = EngineFactory(self._primary, self._secondary, self._registry)
        self._pool = WorkerPool(factory, self._rate_limiter, settings.workers)
        await self._pool.start()

        self._initialized = True
        logger.info(
            "Pool manager initialized",
            workers=settings.workers.pool_size,
            queue_size=settings.workers.queue_size,
            max_browsers=self._browser_pool.max_instances,
            captcha_domains=self._registry.count(),
        )

    async def shutdown(self) -> None:
        """Stop components in reverse start order. Safe to call twice."""
        if not self._initialized:
            return
        self._initialized = False

        if self._pool is not None:
            await self._pool.shutdown()

        for engine in (self._secondary, self._primary):
            if engine is None:
                continue
            try:
                await engine.cleanup()
            except Exception as e:
                logger.warning("Engine cleanup failed", engine=engine.name, error=str(e))

        close = getattr(self._solver, "close", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.warning("CAPTCHA solver close failed", error=str(e))

        if self._rate_limiter is not None:
            await self._rate_limiter.stop()

        if self._browser_pool is not None:
            await self._browser_pool.shutdown()

        logger.info("Pool manager shut down")

    async def __aenter__(self) -> "PoolManager":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # =========================================================================
    # Operations
    # =========================================================================

    def _require_pool(self) -> WorkerPool:
        if not self._initialized or self._pool is None:
            raise PoolNotRunningError("worker pool not initialized")
        return self._pool

    async def submit_job(self, url: str, options: ScrapeOptions | None = None) -> JobResult:
        """Submit a scrape and wait for its result.

        Raises:
            PoolNotRunningError: Not initialized.
            QueueFullError: Queue at capacity.
            JobTimeoutError: Result not ready within the timeout.
        """
        return await self._require_pool().submit_job(url, options)

    def get_stats(self) -> dict[str, Any]:
        """Combined snapshot of every component."""
        pool = self._require_pool()
        assert self._rate_limiter is not None and self._browser_pool is not None
        return {
            "initialized": self._initialized,
            "pool_stats": pool.get_stats(),
            "rate_limiter_stats": self._rate_limiter.get_all_stats(),
            "browser_pool": self._browser_pool.get_metrics().to_dict(),
            "worker_count": pool.worker_count,
            "queue_capacity": pool.queue_capacity,
            "captcha_domains": self._registry.count(),
        }

    def get_domain_stats(self, domain: str) -> dict[str, Any] | None:
        self._require_pool()
        assert self._rate_limiter is not None
        return self._rate_limiter.get_domain_stats(domain)

    def is_healthy(self) -> bool:
        return (
            self._initialized
            and self._pool is not None
            and self._pool.is_running
            and self._browser_pool is not None
            and self._browser_pool.is_healthy()
        )
