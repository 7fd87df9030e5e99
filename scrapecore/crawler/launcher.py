"""
Browser launchers for the browser pool.

The pool only talks to the BrowserLauncher protocol; PlaywrightLauncher is
the production implementation that starts Chromium through Playwright.
"""

import asyncio
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from scrapecore.crawler.page import PageAutomation, PlaywrightPage
from scrapecore.crawler.stealth import apply_stealth_to_context, get_stealth_args
from scrapecore.utils.config import BrowserPoolConfig, get_settings
from scrapecore.utils.errors import BrowserLaunchError
from scrapecore.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, Playwright

logger = get_logger(__name__)


# Checked in order after CHROME_BIN / CHROME_PATH
COMMON_CHROME_PATHS: tuple[str, ...] = (
    "/usr/bin/chromium-browser",  # Alpine (Docker)
    "/usr/bin/chromium",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
)


def resolve_chrome_executable(
    environ: Mapping[str, str] | None = None,
    candidates: tuple[str, ...] = COMMON_CHROME_PATHS,
) -> str | None:
    """Find a system Chrome/Chromium binary.

    Args:
        environ: Environment to read CHROME_BIN / CHROME_PATH from.
        candidates: Fallback install locations.

    Returns:
        Path to an existing executable, or None to use Playwright's bundled
        Chromium.
    """
    env = os.environ if environ is None else environ

    for var in ("CHROME_BIN", "CHROME_PATH"):
        value = env.get(var)
        if value and Path(value).exists():
            return value

    for path in candidates:
        if Path(path).exists():
            return path

    return None


class BrowserLauncher(Protocol):
    """What the browser pool needs from a browser backend."""

    async def launch(self) -> Any:
        """Start a browser process and return its handle."""
        ...

    async def new_page(
        self,
        browser: Any,
        *,
        user_agent: str,
        viewport: dict[str, int],
        headers: dict[str, str],
        proxy: str | None = None,
    ) -> PageAutomation:
        """Open an isolated page on ``browser``."""
        ...

    async def is_healthy(self, browser: Any) -> bool:
        """Liveness probe (lists open pages)."""
        ...

    async def close_browser(self, browser: Any) -> None: ...

    async def stop(self) -> None:
        """Release launcher-wide resources."""
        ...


class PlaywrightLauncher:
    """Launches headless Chromium with stealth flags via Playwright.

    Playwright itself starts lazily on the first launch.
    """

    def __init__(self, config: BrowserPoolConfig | None = None):
        self._config = config or get_settings().browser_pool
        self._playwright: "Playwright | None" = None
        self._lock = asyncio.Lock()
        self._executable = resolve_chrome_executable()

    async def _ensure_playwright(self) -> "Playwright":
        """Ensure Playwright is initialized."""
        async with self._lock:
            if self._playwright is None:
                from playwright.async_api import async_playwright

                self._playwright = await async_playwright().start()
                if self._executable:
                    logger.info("Browser launcher using system Chrome", chrome_path=self._executable)
                else:
                    logger.warning("System Chrome not found, using bundled Chromium")
            return self._playwright

    async def launch(self) -> "Browser":
        playwright = await self._ensure_playwright()
        try:
            return await playwright.chromium.launch(
                headless=self._config.headless,
                args=get_stealth_args(),
                executable_path=self._executable,
            )
        except Exception as e:
            raise BrowserLaunchError(f"failed to launch browser: {e}") from e

    async def new_page(
        self,
        browser: "Browser",
        *,
        user_agent: str,
        viewport: dict[str, int],
        headers: dict[str, str],
        proxy: str | None = None,
    ) -> PageAutomation:
        try:
            context = await browser.new_context(
                user_agent=user_agent,
                viewport=viewport,
                extra_http_headers=headers,
                proxy={"server": proxy} if proxy else None,
            )
        except Exception as e:
            raise BrowserLaunchError(f"failed to create browser context: {e}") from e

        try:
            await apply_stealth_to_context(context)
            page = await context.new_page()
        except Exception as e:
            await context.close()
            raise BrowserLaunchError(f"failed to create page: {e}") from e

        page.set_default_timeout(self._config.page_timeout_seconds * 1000)
        return PlaywrightPage(page, context)

    async def is_healthy(self, browser: "Browser") -> bool:
        try:
            if not browser.is_connected():
                return False
            # Listing pages touches the connection
            _ = [page for context in browser.contexts for page in context.pages]
            return True
        except Exception:
            return False

    async def close_browser(self, browser: "Browser") -> None:
        await browser.close()

    async def stop(self) -> None:
        async with self._lock:
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug("Playwright stop failed", error=str(e))
                self._playwright = None
        logger.info("Browser launcher stopped")
