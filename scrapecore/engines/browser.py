"""
Primary engine: headless browser automation.

Leases a browser from the shared pool, navigates, clears any CAPTCHA with
the CaptchaHandler and hands the final HTML to the JobExtractor.
"""

import asyncio
import time

from scrapecore.captcha.solver import CaptchaHandler
from scrapecore.crawler.browser_pool import BrowserPool
from scrapecore.engines.base import JobExtractor, ScrapeOutcome
from scrapecore.models import ScrapeOptions
from scrapecore.utils.config import ScraperConfig, get_settings
from scrapecore.utils.errors import CaptchaDetectedError, ScrapeError
from scrapecore.utils.logging import get_logger

logger = get_logger(__name__)


class BrowserEngine:
    """Scrapes with a pooled headless browser."""

    name = "browser"

    def __init__(
        self,
        pool: BrowserPool,
        extractor: JobExtractor,
        captcha: CaptchaHandler,
        config: ScraperConfig | None = None,
    ):
        self._pool = pool
        self._extractor = extractor
        self._captcha = captcha
        self._config = config or get_settings().scraper

    async def scrape(self, url: str, options: ScrapeOptions | None = None) -> ScrapeOutcome:
        """Navigate, clear challenges and extract.

        Args:
            url: Posting URL.
            options: Per-request options (timeout, user agent, proxy).

        Returns:
            ScrapeOutcome from this engine.

        Raises:
            NavigationError: Navigation failed or timed out.
            BrowserPoolExhaustedError: No browser became available.
            CaptchaDetectedError / CaptchaSolverError / CaptchaInjectionError:
                A challenge could not be cleared.
            NotJobPostingError: Extraction rejected the content.
        """
        options = options or ScrapeOptions()
        timeout = options.timeout or self._config.request_timeout_seconds
        start = time.monotonic()

        logger.info("Starting browser scrape", url=url, engine=self.name)

        instance = await self._pool.acquire(user_agent=options.user_agent, proxy=options.proxy)
        try:
            page = instance.page
            await page.goto(url, timeout=timeout)

            if self._config.settle_seconds > 0:
                await asyncio.sleep(self._config.settle_seconds)

            html = await page.content()

            try:
                html = await self._captcha.resolve(page, url, html)
            except ScrapeError as e:
                logger.warning(
                    "Captcha could not be cleared",
                    url=url,
                    error=str(e),
                    error_kind=e.kind.value,
                )
                raise
            except Exception as e:
                raise CaptchaDetectedError(f"captcha handling failed: {e}", url=url) from e
        finally:
            await instance.release()

        job = await self._extractor.extract_job_data(html, url)
        if not job.job_url:
            job = job.model_copy(update={"job_url": url})

        logger.info(
            "Browser scrape completed",
            url=url,
            job_title=job.title,
            company=job.company_name,
            elapsed=round(time.monotonic() - start, 2),
        )
        return ScrapeOutcome(job=job, engine=self.name, content_length=len(html))

    async def is_healthy(self) -> bool:
        return self._pool.is_healthy()

    async def cleanup(self) -> None:
        """Pool lifetime is owned by the manager; nothing to release here."""
        logger.debug("Browser engine cleanup", engine=self.name)
