"""
scrapecore - adaptive job-posting scraping core.

Worker pool, per-domain rate limiting, a shared headless browser pool,
CAPTCHA detection/solving and a browser-first engine that escalates to a
hosted scraping API when it meets a challenge.
"""

__version__ = "0.1.0"
