"""
Tests for scrapecore/scheduler/manager.py

Wires the real worker pool, rate limiter, browser pool, browser engine and
hybrid selector together over a FakeLauncher, FakeSolver and a scripted
secondary engine.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-PM-N-01 | clean page, default engine | Equivalence – normal | success via browser | - |
| TC-PM-N-02 | unsolvable challenge | Equivalence – escalation | success via secondary, domain persisted | - |
| TC-PM-N-03 | known domain second time | Equivalence – fast path | no new browser launch | - |
| TC-PM-A-01 | initialize twice | Equivalence – abnormal | PoolNotRunningError | - |
| TC-PM-A-02 | operations before initialize | Equivalence – abnormal | PoolNotRunningError / unhealthy | - |
| TC-PM-N-04 | get_stats | Equivalence – normal | every section present | - |
| TC-PM-N-05 | async with | Equivalence – lifecycle | components stopped on exit | - |
| TC-PM-B-01 | shutdown twice | Boundary – idempotent | no error | - |
| TC-PM-N-06 | default collaborators | Equivalence – normal | 2captcha + Firecrawl built | - |
"""

import pytest
import pytest_asyncio

from scrapecore.captcha.solver import TwoCaptchaSolver
from scrapecore.engines.firecrawl import FirecrawlEngine
from scrapecore.models import ScrapeOptions
from scrapecore.scheduler.manager import PoolManager
from scrapecore.utils.errors import PoolNotRunningError

pytestmark = pytest.mark.integration

URL = "https://jobs.example.com/posting/1"


@pytest_asyncio.fixture
async def make_manager(fast_settings, fake_extractor, fake_solver, make_engine, make_launcher, clean_job_html):
    """Factory for initialized PoolManagers; shut down after the test."""
    managers: list[PoolManager] = []

    async def _make(*, html=clean_job_html, solver=None, secondary=None, initialize: bool = True):
        launcher = make_launcher(html)
        secondary = secondary or make_engine("firecrawl")
        manager = PoolManager(
            fake_extractor,
            fast_settings,
            launcher=launcher,
            solver=solver or fake_solver,
            secondary=secondary,
        )
        if initialize:
            await manager.initialize()
        managers.append(manager)
        return manager, launcher, secondary

    yield _make

    for manager in managers:
        await manager.shutdown()


class TestSubmit:
    @pytest.mark.asyncio
    async def test_clean_page_via_browser(self, make_manager, fake_extractor, clean_job_html) -> None:
        # Given
        manager, launcher, secondary = await make_manager()

        # When
        result = await manager.submit_job(URL)

        # Then
        assert result.success
        assert result.engine_path == "primary"
        assert result.job.job_url == URL
        assert fake_extractor.calls == [(clean_job_html, URL)]
        assert launcher.launched == 1
        assert secondary.call_count == 0

    @pytest.mark.asyncio
    async def test_challenge_escalates_and_is_remembered(
        self, make_manager, make_solver, cloudflare_html, fast_settings, tmp_path
    ) -> None:
        # Given: Cloudflare page and no solver available
        manager, launcher, secondary = await make_manager(html=cloudflare_html, solver=make_solver(healthy=False))

        # When
        first = await manager.submit_job(URL)
        second = await manager.submit_job("https://jobs.example.com/posting/2")

        # Then: escalated once, then straight to the secondary engine
        assert first.success and first.escalated
        assert first.engine_path == "secondary"
        assert second.success and second.escalated
        assert launcher.launched == 1
        assert secondary.call_count == 2
        assert manager.registry.is_known("jobs.example.com")
        registry_file = tmp_path / "captcha-domains.txt"
        assert "jobs.example.com\t" in registry_file.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_explicit_secondary_engine(self, make_manager) -> None:
        manager, launcher, secondary = await make_manager()

        result = await manager.submit_job(URL, ScrapeOptions(engine="firecrawl"))

        assert result.engine_path == "secondary"
        assert result.escalated is False
        assert launcher.launched == 0

    @pytest.mark.asyncio
    async def test_domain_stats(self, make_manager) -> None:
        manager, _, _ = await make_manager()
        await manager.submit_job(URL)

        stats = manager.get_domain_stats("jobs.example.com")

        assert stats["total_requests"] == 1
        assert stats["total_successes"] == 1
        assert manager.get_domain_stats("unseen.example.org") is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_twice(self, make_manager) -> None:
        manager, _, _ = await make_manager()

        with pytest.raises(PoolNotRunningError, match="already initialized"):
            await manager.initialize()

    @pytest.mark.asyncio
    async def test_not_initialized(self, make_manager) -> None:
        # Given
        manager, _, _ = await make_manager(initialize=False)

        # When/Then
        with pytest.raises(PoolNotRunningError, match="not initialized"):
            await manager.submit_job(URL)
        with pytest.raises(PoolNotRunningError):
            manager.get_stats()
        with pytest.raises(PoolNotRunningError):
            manager.get_domain_stats("jobs.example.com")
        assert manager.is_healthy() is False

    @pytest.mark.asyncio
    async def test_stats_sections(self, make_manager, fast_settings) -> None:
        # Given
        manager, _, _ = await make_manager()
        await manager.submit_job(URL)

        # When
        stats = manager.get_stats()

        # Then
        assert stats["initialized"] is True
        assert stats["worker_count"] == fast_settings.workers.pool_size
        assert stats["queue_capacity"] == fast_settings.workers.queue_size
        assert stats["pool_stats"]["jobs_successful"] == 1
        assert stats["rate_limiter_stats"]["tracked_domains"] == 1
        assert stats["browser_pool"]["max_instances"] == 2
        assert stats["captcha_domains"] == 0

    @pytest.mark.asyncio
    async def test_context_manager(
        self, fast_settings, fake_extractor, make_solver, make_engine, make_launcher
    ) -> None:
        # Given
        launcher = make_launcher()
        solver = make_solver()
        secondary = make_engine("firecrawl")

        # When
        async with PoolManager(
            fake_extractor, fast_settings, launcher=launcher, solver=solver, secondary=secondary
        ) as manager:
            assert manager.is_healthy() is True
            result = await manager.submit_job(URL)

        # Then
        assert result.success
        assert manager.initialized is False
        assert manager.is_healthy() is False
        assert launcher.stopped
        assert solver.closed
        assert secondary.cleanups == 1

        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_default_collaborators(self, fast_settings, fake_extractor, fake_launcher) -> None:
        # Given: only the launcher injected
        manager = PoolManager(fake_extractor, fast_settings, launcher=fake_launcher)

        # When
        await manager.initialize()
        try:
            # Then
            assert isinstance(manager._solver, TwoCaptchaSolver)
            assert isinstance(manager._secondary, FirecrawlEngine)
            assert manager.browser_pool.max_instances == fast_settings.resolved_max_browsers()
        finally:
            await manager.shutdown()
