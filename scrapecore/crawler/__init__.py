"""
Browser side of scrapecore: launcher, shared pool, stealth and page automation.
"""

from scrapecore.crawler.browser_pool import (
    BrowserInstance,
    BrowserPool,
    ManagedBrowser,
    PoolMetrics,
)
from scrapecore.crawler.human_behavior import HumanBehaviorSimulator
from scrapecore.crawler.launcher import BrowserLauncher, PlaywrightLauncher, resolve_chrome_executable
from scrapecore.crawler.page import PageAutomation, PlaywrightPage

__all__ = [
    "BrowserInstance",
    "BrowserPool",
    "ManagedBrowser",
    "PoolMetrics",
    "HumanBehaviorSimulator",
    "BrowserLauncher",
    "PlaywrightLauncher",
    "resolve_chrome_executable",
    "PageAutomation",
    "PlaywrightPage",
]
