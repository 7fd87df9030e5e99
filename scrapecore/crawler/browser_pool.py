"""
Shared headless browser pool.

Bounds the number of live browser processes across all workers and is the
main backpressure point of the scrape pipeline:
- acquire() reuses an idle healthy browser, launches a new one while under
  max_instances, or waits (bounded) for a release
- every lease gets a fresh isolated page with stealth patches applied
- a periodic sweep closes idle, stuck and unhealthy browsers

Example:
    pool = BrowserPool(launcher=PlaywrightLauncher())
    await pool.start()
    async with await pool.acquire() as instance:
        await instance.page.goto(url, timeout=30)
    await pool.shutdown()
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any

from scrapecore.crawler.launcher import BrowserLauncher, PlaywrightLauncher
from scrapecore.crawler.page import PageAutomation
from scrapecore.crawler.stealth import get_stealth_headers
from scrapecore.utils.config import BrowserPoolConfig, ScraperConfig, get_settings
from scrapecore.utils.errors import (
    BrowserLaunchError,
    BrowserPoolClosedError,
    BrowserPoolExhaustedError,
)
from scrapecore.utils.logging import get_logger
from scrapecore.utils.periodic import PeriodicTask

logger = get_logger(__name__)


@dataclass(eq=False)
class ManagedBrowser:
    """A browser process tracked by the pool.

    Attributes:
        id: Pool-unique identifier.
        handle: Launcher-specific browser object.
        created_at: Monotonic creation time.
        last_used_at: Monotonic time of the last acquire or release.
        in_use: Whether a lease currently holds it.
        usage_count: Completed leases.
        max_idle_time: Idle seconds before the sweep may close it.
    """

    id: str
    handle: Any
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    in_use: bool = False
    usage_count: int = 0
    max_idle_time: float = 300.0


@dataclass(frozen=True)
class PoolMetrics:
    """Read-only snapshot of pool state."""

    total_created: int
    total_closed: int
    current_active: int
    available: int
    in_use: int
    queued_requests: int
    average_acquisition_seconds: float
    max_instances: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BrowserInstance:
    """A leased browser plus the page opened for this lease.

    release() is idempotent. Also usable as an async context manager.
    """

    def __init__(self, pool: "BrowserPool", browser: ManagedBrowser, page: PageAutomation):
        self._pool = pool
        self._browser = browser
        self._page = page
        self._released = False

    @property
    def page(self) -> PageAutomation:
        return self._page

    @property
    def browser_id(self) -> str:
        return self._browser.id

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Close the page and hand the browser back to the pool."""
        if self._released:
            return
        self._released = True
        await self._pool._release(self._browser, self._page)

    async def __aenter__(self) -> "BrowserInstance":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()


class BrowserPool:
    """Bounded pool of browser processes shared by all workers."""

    def __init__(
        self,
        config: BrowserPoolConfig | None = None,
        scraper_config: ScraperConfig | None = None,
        launcher: BrowserLauncher | None = None,
        max_instances: int | None = None,
    ):
        """Initialize browser pool.

        Args:
            config: Pool configuration. Uses settings if None.
            scraper_config: Supplies the default user agent. Uses settings if None.
            launcher: Browser backend. Defaults to PlaywrightLauncher.
            max_instances: Cap on live browsers. Defaults to config.max_instances,
                else workers.pool_size clamped to 2..5.
        """
        settings = get_settings() if config is None or scraper_config is None else None
        self._config = config or settings.browser_pool
        self._scraper_config = scraper_config or settings.scraper
        self._launcher: BrowserLauncher = launcher or PlaywrightLauncher(self._config)

        if max_instances is None:
            if self._config.max_instances is not None:
                max_instances = self._config.max_instances
            else:
                max_instances = get_settings().resolved_max_browsers()
        self._max_instances = max(1, max_instances)
        self._max_idle_instances = (
            self._config.max_idle_instances
            if self._config.max_idle_instances is not None
            else self._max_instances
        )

        self._browsers: dict[str, ManagedBrowser] = {}
        self._available: deque[ManagedBrowser] = deque()
        self._reserved = 0  # slots held by in-flight launches
        self._cond = asyncio.Condition()

        self._closed = False
        self._started = False
        self._sweep = PeriodicTask(
            "browser_pool_cleanup",
            self._config.cleanup_interval_seconds,
            self.cleanup,
        )

        # Metrics
        self._total_created = 0
        self._total_closed = 0
        self._queued = 0
        self._acquisitions = 0
        self._acquisition_seconds_total = 0.0

    @property
    def max_instances(self) -> int:
        return self._max_instances

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Start the periodic sweep. The launcher starts lazily."""
        if self._closed:
            raise BrowserPoolClosedError()
        if self._started:
            return
        await self._sweep.start()
        self._started = True
        logger.info(
            "Browser pool started",
            max_instances=self._max_instances,
            max_idle_instances=self._max_idle_instances,
        )

    # =========================================================================
    # Acquire / release
    # =========================================================================

    async def acquire(
        self,
        *,
        user_agent: str | None = None,
        proxy: str | None = None,
    ) -> BrowserInstance:
        """Lease a browser with a fresh page.

        Args:
            user_agent: Override the configured user agent for this page.
            proxy: Proxy server URL for this page's context.

        Returns:
            BrowserInstance to release when done.

        Raises:
            BrowserPoolClosedError: If the pool has been shut down.
            BrowserPoolExhaustedError: If nothing became available in time.
            BrowserLaunchError: If a browser or page could not be created.
        """
        if self._closed:
            raise BrowserPoolClosedError()

        start = time.monotonic()
        self._queued += 1
        try:
            browser = await self._checkout(start)
            page = await self._open_page(browser, user_agent=user_agent, proxy=proxy)
        finally:
            self._queued -= 1

        self._acquisitions += 1
        self._acquisition_seconds_total += time.monotonic() - start
        return BrowserInstance(self, browser, page)

    async def _checkout(self, start: float) -> ManagedBrowser:
        """Mark a browser in use: reuse, launch, or wait."""
        deadline = start + self._config.acquire_timeout_seconds
        unhealthy: list[ManagedBrowser] = []
        browser: ManagedBrowser | None = None
        launch = False

        try:
            async with self._cond:
                while True:
                    if self._closed:
                        raise BrowserPoolClosedError()

                    browser = await self._take_available(unhealthy)
                    if browser is not None:
                        break

                    if len(self._browsers) + self._reserved < self._max_instances:
                        self._reserved += 1
                        launch = True
                        break

                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise self._exhausted(start)

                    logger.debug(
                        "Browser pool exhausted, waiting",
                        max_instances=self._max_instances,
                        remaining=round(remaining, 2),
                    )
                    try:
                        await asyncio.wait_for(self._cond.wait(), timeout=remaining)
                    except TimeoutError:
                        raise self._exhausted(start) from None
        finally:
            for stale in unhealthy:
                await self._close_browser(stale, reason="unhealthy")

        if not launch:
            assert browser is not None
            return browser

        return await self._launch_reserved()

    async def _take_available(self, unhealthy: list[ManagedBrowser]) -> ManagedBrowser | None:
        """Pop the first healthy available browser. Caller holds the lock."""
        while self._available:
            candidate = self._available.popleft()
            if await self._launcher.is_healthy(candidate.handle):
                candidate.in_use = True
                candidate.last_used_at = time.monotonic()
                return candidate
            self._browsers.pop(candidate.id, None)
            unhealthy.append(candidate)
        return None

    async def _launch_reserved(self) -> ManagedBrowser:
        """Launch into a slot reserved under the lock."""
        try:
            handle = await self._launcher.launch()
        except BaseException:
            async with self._cond:
                self._reserved -= 1
                self._cond.notify()
            raise

        browser = ManagedBrowser(
            id=f"browser-{uuid.uuid4().hex[:12]}",
            handle=handle,
            in_use=True,
            max_idle_time=self._config.max_idle_seconds,
        )
        async with self._cond:
            self._reserved -= 1
            self._browsers[browser.id] = browser
        self._total_created += 1

        logger.info(
            "New managed browser created",
            browser_id=browser.id,
            current_instances=len(self._browsers),
        )
        return browser

    async def _open_page(
        self,
        browser: ManagedBrowser,
        *,
        user_agent: str | None,
        proxy: str | None,
    ) -> PageAutomation:
        viewport = self._config.viewport
        try:
            return await self._launcher.new_page(
                browser.handle,
                user_agent=user_agent or self._scraper_config.user_agent,
                viewport={"width": viewport.width, "height": viewport.height},
                headers=get_stealth_headers(),
                proxy=proxy,
            )
        except Exception as e:
            async with self._cond:
                self._browsers.pop(browser.id, None)
                self._cond.notify()
            await self._close_browser(browser, reason="page_failed")
            if isinstance(e, BrowserLaunchError):
                raise
            raise BrowserLaunchError(f"failed to create page: {e}") from e

    def _exhausted(self, start: float) -> BrowserPoolExhaustedError:
        waited = round(time.monotonic() - start, 3)
        logger.warning(
            "Timeout waiting for browser instance",
            max_instances=self._max_instances,
            waited_seconds=waited,
        )
        return BrowserPoolExhaustedError(self._max_instances, waited)

    async def _release(self, browser: ManagedBrowser, page: PageAutomation) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.debug("Page close failed on release", browser_id=browser.id, error=str(e))

        close = False
        async with self._cond:
            browser.in_use = False
            browser.last_used_at = time.monotonic()
            browser.usage_count += 1

            if browser.id not in self._browsers:
                # Already removed by the stuck sweep or shutdown
                return

            if not self._closed and len(self._available) < self._max_idle_instances:
                self._available.append(browser)
            else:
                self._browsers.pop(browser.id)
                close = True
            self._cond.notify()

        if close:
            logger.info("Available set full, closing browser", browser_id=browser.id)
            await self._close_browser(browser, reason="capacity")
        else:
            logger.debug(
                "Browser returned to pool",
                browser_id=browser.id,
                usage_count=browser.usage_count,
            )

    async def _close_browser(self, browser: ManagedBrowser, *, reason: str) -> None:
        """Close a browser already removed from tracking."""
        try:
            await asyncio.wait_for(
                self._launcher.close_browser(browser.handle),
                timeout=self._config.close_timeout_seconds,
            )
        except TimeoutError:
            logger.error("Browser close operation timed out", browser_id=browser.id)
        except Exception as e:
            logger.warning("Failed to close browser", browser_id=browser.id, error=str(e))

        self._total_closed += 1
        logger.info(
            "Managed browser closed",
            browser_id=browser.id,
            reason=reason,
            usage_count=browser.usage_count,
            current_instances=len(self._browsers),
        )

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup(self) -> int:
        """Close idle, stuck and unhealthy browsers.

        Idle browsers are closed only down to min_instances. A stuck browser
        is dropped from tracking; its lease's later release is a no-op.

        Returns:
            Number of browsers closed.
        """
        now = time.monotonic()
        to_close: list[tuple[ManagedBrowser, str]] = []

        async with self._cond:
            closable_idle = max(0, len(self._browsers) - self._config.min_instances)

            for browser in list(self._browsers.values()):
                if browser.in_use:
                    if now - browser.last_used_at > self._config.stuck_timeout_seconds:
                        to_close.append((browser, "stuck"))
                    continue

                if closable_idle > 0 and now - browser.last_used_at > browser.max_idle_time:
                    to_close.append((browser, "idle"))
                    closable_idle -= 1
                elif not await self._launcher.is_healthy(browser.handle):
                    to_close.append((browser, "unhealthy"))

            for browser, _ in to_close:
                self._browsers.pop(browser.id, None)
                if browser in self._available:
                    self._available.remove(browser)

            if to_close:
                self._cond.notify_all()

        for browser, reason in to_close:
            await self._close_browser(browser, reason=reason)

        if to_close:
            logger.info(
                "Browser cleanup completed",
                closed=len(to_close),
                remaining_browsers=len(self._browsers),
            )
        return len(to_close)

    async def shutdown(self) -> None:
        """Stop the sweep, close every browser and stop the launcher."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down browser pool", browsers=len(self._browsers))

        await self._sweep.stop()

        async with self._cond:
            browsers = list(self._browsers.values())
            self._browsers.clear()
            self._available.clear()
            self._cond.notify_all()

        if browsers:
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        *(self._close_browser(b, reason="shutdown") for b in browsers),
                        return_exceptions=True,
                    ),
                    timeout=self._config.shutdown_grace_seconds,
                )
            except TimeoutError:
                logger.error("Browser pool shutdown grace period exceeded", browsers=len(browsers))

        await self._launcher.stop()
        logger.info("Browser pool shut down", total_created=self._total_created)

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_metrics(self) -> PoolMetrics:
        in_use = sum(1 for b in self._browsers.values() if b.in_use)
        average = (
            self._acquisition_seconds_total / self._acquisitions if self._acquisitions else 0.0
        )
        return PoolMetrics(
            total_created=self._total_created,
            total_closed=self._total_closed,
            current_active=len(self._browsers),
            available=len(self._available),
            in_use=in_use,
            queued_requests=self._queued,
            average_acquisition_seconds=round(average, 4),
            max_instances=self._max_instances,
        )

    def is_healthy(self) -> bool:
        """Pool is accepting leases and its sweep is alive."""
        return self._started and not self._closed and self._sweep.is_running
