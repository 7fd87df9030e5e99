"""
Scraping engines: browser automation, hosted API, and the hybrid selector.
"""

from scrapecore.engines.base import JobExtractor, ScrapeEngine, ScrapeOutcome
from scrapecore.engines.browser import BrowserEngine
from scrapecore.engines.factory import EngineFactory
from scrapecore.engines.firecrawl import FirecrawlEngine
from scrapecore.engines.hybrid import HybridEngine, HybridState

__all__ = [
    "JobExtractor",
    "ScrapeEngine",
    "ScrapeOutcome",
    "BrowserEngine",
    "EngineFactory",
    "FirecrawlEngine",
    "HybridEngine",
    "HybridState",
]
