"""
Browser stealth utilities for scrapecore.

Anti-detection measures applied to every page handed out by the browser pool:
- navigator.webdriver / plugins / languages / chrome.runtime overrides
- notifications permission query override
- fixed desktop screen dimensions
- WebRTC disabled
- human-looking request headers and Chromium launch flags
"""

from typing import TYPE_CHECKING

from scrapecore.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)


# =============================================================================
# Stealth JavaScript Injections
# =============================================================================

STEALTH_JS = """
(() => {
    // Hide automation flag
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined,
        configurable: true
    });

    // Non-empty plugin list like a desktop browser
    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5],
        configurable: true
    });

    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en'],
        configurable: true
    });

    if (!window.chrome) {
        window.chrome = {};
    }
    if (!window.chrome.runtime) {
        window.chrome.runtime = {};
    }

    // Headless reports "denied" for notifications; mirror Notification.permission
    const originalQuery = navigator.permissions?.query?.bind(navigator.permissions);
    if (originalQuery) {
        navigator.permissions.query = (parameters) => (
            parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters)
        );
    }

    Object.defineProperty(screen, 'width', { get: () => 1920 });
    Object.defineProperty(screen, 'height', { get: () => 1080 });
    Object.defineProperty(screen, 'availWidth', { get: () => 1920 });
    Object.defineProperty(screen, 'availHeight', { get: () => 1050 });

    const RTCPeer = window.RTCPeerConnection || window.mozRTCPeerConnection || window.webkitRTCPeerConnection;
    if (RTCPeer) {
        window.RTCPeerConnection = function() {
            throw new Error('WebRTC is disabled');
        };
    }

    delete window.__playwright;
    delete window.__puppeteer;
})();
"""


# =============================================================================
# Headers / launch arguments
# =============================================================================


def get_stealth_headers() -> dict[str, str]:
    """Extra HTTP headers sent with every page request.

    Returns:
        Header name -> value.
    """
    return {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
    }


def get_stealth_args() -> list[str]:
    """Get Chromium launch arguments for stealth and container use.

    Returns:
        List of command-line arguments.
    """
    return [
        # Disable automation-controlled flag
        "--disable-blink-features=AutomationControlled",
        # Containers run as root without a usable sandbox
        "--no-sandbox",
        "--disable-web-security",
        # Keep background tabs running at full speed
        "--disable-background-timer-throttling",
        "--disable-backgrounding-occluded-windows",
        "--disable-renderer-backgrounding",
        # Small /dev/shm in containers
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-background-networking",
    ]


# =============================================================================
# Stealth Application
# =============================================================================


async def apply_stealth_to_context(context: "BrowserContext") -> None:
    """Apply stealth measures to a Playwright browser context.

    Every page opened in the context runs STEALTH_JS before site scripts.

    Args:
        context: Playwright browser context.
    """
    try:
        await context.add_init_script(STEALTH_JS)
        logger.debug("Stealth script applied to context")
    except Exception as e:
        logger.warning("Failed to apply stealth to context", error=str(e))
