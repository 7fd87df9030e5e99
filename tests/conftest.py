"""
Pytest fixtures and configuration for scrapecore tests.

=============================================================================
Test Classification
=============================================================================

Primary Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  - Fast (<1s per test)
  - DEFAULT: Tests without marker are auto-classified as unit

- @pytest.mark.integration: Several components wired together, with fake
  browser, fake engines and mocked HTTP
  - Medium (<5s per test)

- @pytest.mark.e2e: Real Chromium / network access
  - DEFAULT EXCLUDED: Must use `pytest -m e2e` to run

- @pytest.mark.slow: Tests taking >5 seconds
  - DEFAULT EXCLUDED: Must use `pytest -m slow` to run

=============================================================================
Mock Strategy
=============================================================================

- Browser: FakeLauncher / FakeBrowser / FakePage (no Playwright process)
- Engines: FakeEngine with scripted outcomes
- LLM extraction: FakeExtractor
- 2captcha: mocked aiohttp session (MockResponse)
- Firecrawl: httpx.MockTransport
- File I/O: tmp_path fixture
"""

import asyncio
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

# Set test environment before importing anything else
os.environ["SCRAPECORE_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["SCRAPECORE_GENERAL__LOG_LEVEL"] = "DEBUG"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="scrapecore-test-")
for _secret in ("CAPTCHA_API_KEY", "FIRECRAWL_API_KEY", "FIRECRAWL_API_URL"):
    os.environ.pop(_secret, None)

from scrapecore.engines.base import ScrapeOutcome  # noqa: E402
from scrapecore.models import Job, ScrapeOptions  # noqa: E402
from scrapecore.utils.config import (  # noqa: E402
    BrowserPoolConfig,
    CaptchaConfig,
    FirecrawlConfig,
    RateLimitConfig,
    ScraperConfig,
    Settings,
    WorkersConfig,
    get_settings,
)
from scrapecore.utils.errors import NavigationError  # noqa: E402


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked external dependencies (<5s/test)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring a real browser or network (excluded by default)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit classification marker are unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Each test sees settings rebuilt from the current environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Browser fakes
# =============================================================================


CLEAN_JOB_HTML = """
<html><head><title>Backend Engineer - Example Corp</title></head>
<body><main><article>
<h1>Backend Engineer</h1>
<section>Company: Example Corp</section>
<section>Requirements: Python</section>
<a href="#">Apply now</a>
</article></main></body></html>
"""

RECAPTCHA_HTML = """
<html><head><title>Verify</title></head><body>
<form action="/verify" method="post">
<div class="g-recaptcha" data-sitekey="6LcRecaptchaSiteKey000000000000"></div>
</form></body></html>
"""

CLOUDFLARE_HTML = """
<html><head><title>Just a moment...</title></head><body>
<div id="cf-browser-verification">Checking your browser before accessing the site.</div>
</body></html>
"""


class FakePage:
    """In-memory PageAutomation.

    ``html`` may be a single string or a sequence; each content() call
    advances through the sequence and then repeats the last entry.
    """

    def __init__(self, html: str | Iterable[str] = CLEAN_JOB_HTML, *, fail_goto: Exception | None = None):
        self._pages = [html] if isinstance(html, str) else list(html)
        self._index = 0
        self._url = "about:blank"
        self.fail_goto = fail_goto
        self.visited: list[tuple[str, float]] = []
        self.scripts: list[tuple[str, Any]] = []
        self.fields: dict[str, str] = {}
        self.mouse: list[tuple[float, float]] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    async def goto(self, url: str, timeout: float) -> None:
        self.visited.append((url, timeout))
        if self.fail_goto is not None:
            raise self.fail_goto
        self._url = url

    async def content(self) -> str:
        html = self._pages[min(self._index, len(self._pages) - 1)]
        self._index += 1
        return html

    async def evaluate_script(self, script: str, arg: Any = None) -> Any:
        self.scripts.append((script, arg))
        return {"callbackCalled": False, "formSubmitted": True, "buttonClicked": False}

    async def set_form_field(self, selector: str, value: str) -> bool:
        self.fields[selector] = value
        return True

    async def mouse_move(self, x: float, y: float) -> None:
        self.mouse.append((x, y))

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    """Browser handle produced by FakeLauncher."""

    def __init__(self, number: int):
        self.number = number
        self.healthy = True
        self.closed = False


class FakeLauncher:
    """BrowserLauncher that never starts a process."""

    def __init__(self, html: str | Iterable[str] = CLEAN_JOB_HTML):
        self.html = html
        self.browsers: list[FakeBrowser] = []
        self.pages: list[FakePage] = []
        self.fail_launch: Exception | None = None
        self.fail_new_page: Exception | None = None
        self.goto_error: Exception | None = None
        self.stopped = False

    @property
    def launched(self) -> int:
        return len(self.browsers)

    @property
    def live(self) -> int:
        return sum(1 for b in self.browsers if not b.closed)

    async def launch(self) -> FakeBrowser:
        # Yield so concurrent acquires interleave as they would with a real launch
        await asyncio.sleep(0)
        if self.fail_launch is not None:
            raise self.fail_launch
        browser = FakeBrowser(len(self.browsers) + 1)
        self.browsers.append(browser)
        return browser

    async def new_page(
        self,
        browser: FakeBrowser,
        *,
        user_agent: str,
        viewport: dict[str, int],
        headers: dict[str, str],
        proxy: str | None = None,
    ) -> FakePage:
        if self.fail_new_page is not None:
            raise self.fail_new_page
        page = FakePage(self.html, fail_goto=self.goto_error)
        page.user_agent = user_agent
        page.proxy = proxy
        self.pages.append(page)
        return page

    async def is_healthy(self, browser: FakeBrowser) -> bool:
        return browser.healthy and not browser.closed

    async def close_browser(self, browser: FakeBrowser) -> None:
        browser.closed = True

    async def stop(self) -> None:
        self.stopped = True


# =============================================================================
# Engine and extractor fakes
# =============================================================================


def make_job(title: str = "Backend Engineer", company: str = "Example Corp", **fields: Any) -> Job:
    return Job(title=title, company_name=company, **fields)


class FakeExtractor:
    """JobExtractor returning a fixed job or raising a fixed error."""

    def __init__(self, job: Job | None = None, error: Exception | None = None):
        self.job = job or make_job()
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def extract_job_data(self, content: str, url: str) -> Job:
        self.calls.append((content, url))
        if self.error is not None:
            raise self.error
        return self.job


class FakeEngine:
    """ScrapeEngine with scripted outcomes.

    Each scrape() call consumes the next entry of ``outcomes``: an exception
    is raised, a Job is wrapped into a ScrapeOutcome. The last entry repeats.
    """

    def __init__(self, name: str, outcomes: list[Any] | None = None, healthy: bool = True):
        self.name = name
        self.outcomes = outcomes if outcomes is not None else [make_job()]
        self.healthy = healthy
        self.calls: list[tuple[str, ScrapeOptions | None]] = []
        self.cleanups = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def scrape(self, url: str, options: ScrapeOptions | None = None) -> ScrapeOutcome:
        index = min(len(self.calls), len(self.outcomes) - 1)
        self.calls.append((url, options))
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return ScrapeOutcome(job=outcome, engine=self.name, content_length=100)

    async def is_healthy(self) -> bool:
        return self.healthy

    async def cleanup(self) -> None:
        self.cleanups += 1


class FakeSolver:
    """CaptchaSolver returning a fixed token."""

    def __init__(self, token: str = "solved-token", healthy: bool = True, error: Exception | None = None):
        self.token = token
        self.healthy = healthy
        self.error = error
        self.challenges: list[Any] = []
        self.closed = False

    async def solve(self, challenge) -> str:
        self.challenges.append(challenge)
        if self.error is not None:
            raise self.error
        return self.token

    async def is_healthy(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def fake_solver() -> FakeSolver:
    return FakeSolver()


@pytest.fixture
def make_launcher():
    """Factory for FakeLauncher serving the given HTML sequence."""
    return FakeLauncher


@pytest.fixture
def make_engine():
    """Factory for FakeEngine(name, outcomes, healthy)."""
    return FakeEngine


@pytest.fixture
def make_extractor():
    """Factory for FakeExtractor(job, error)."""
    return FakeExtractor


@pytest.fixture
def make_page():
    """Factory for FakePage(html, fail_goto=...)."""
    return FakePage


@pytest.fixture
def make_solver():
    """Factory for FakeSolver(token, healthy, error)."""
    return FakeSolver


@pytest.fixture(name="make_job")
def make_job_fixture():
    """Factory for Job(title, company_name, **fields)."""
    return make_job


@pytest.fixture
def clean_job_html() -> str:
    return CLEAN_JOB_HTML


@pytest.fixture
def recaptcha_html() -> str:
    return RECAPTCHA_HTML


@pytest.fixture
def cloudflare_html() -> str:
    return CLOUDFLARE_HTML


@pytest.fixture
def navigation_error() -> NavigationError:
    return NavigationError("https://jobs.example.com/1", "net::ERR_TIMED_OUT")


@pytest.fixture
def fast_settings(tmp_path: Path) -> Settings:
    """Settings with every wait shortened for tests."""
    return Settings(
        workers=WorkersConfig(
            pool_size=2,
            queue_size=4,
            timeout_seconds=5.0,
            max_retries=2,
            retry_backoff_seconds=0.0,
            result_delivery_timeout_seconds=1.0,
        ),
        rate_limit=RateLimitConfig(rate_limit=100, rate_window_seconds=60.0),
        browser_pool=BrowserPoolConfig(
            max_instances=2,
            min_instances=0,
            acquire_timeout_seconds=0.5,
            cleanup_interval_seconds=60.0,
            close_timeout_seconds=1.0,
            shutdown_grace_seconds=2.0,
        ),
        scraper=ScraperConfig(request_timeout_seconds=5.0, settle_seconds=0.0),
        captcha=CaptchaConfig(
            api_key="test-captcha-key",
            polling_interval_seconds=0.0,
            timeout_seconds=1.0,
            post_submit_wait_seconds=0.0,
            challenge_settle_seconds=0.0,
        ),
        firecrawl=FirecrawlConfig(api_key="test-firecrawl-key", max_retries=2),
        general={"data_dir": str(tmp_path)},
    )


# =============================================================================
# aiohttp response mock (2captcha)
# =============================================================================


class MockResponse:
    """Mock aiohttp response usable as ``async with session.get(...)``."""

    def __init__(self, json_data: dict, status: int = 200):
        self._json_data = json_data
        self.status = status

    async def json(self, content_type: str | None = "application/json"):
        return self._json_data

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def make_mock_response():
    """Factory for creating mock responses."""

    def _make(json_data: dict, status: int = 200):
        return MockResponse(json_data, status)

    return _make


@pytest.fixture
def mock_aiohttp_session():
    """Session whose get/post return queued MockResponses."""
    session = MagicMock()
    session.closed = False
    return session
