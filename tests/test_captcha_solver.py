"""
Tests for scrapecore/captcha/solver.py

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-2C-N-01 | reCAPTCHA solved on 2nd poll | Equivalence – normal | token returned | - |
| TC-2C-N-02 | Turnstile task | Equivalence – normal | method=turnstile | - |
| TC-2C-A-01 | auto-solve disabled | Equivalence – abnormal | CaptchaSolverError | no HTTP |
| TC-2C-A-02 | no API key | Equivalence – abnormal | CaptchaSolverError | no HTTP |
| TC-2C-A-03 | in.php rejects | Equivalence – abnormal | error with code | - |
| TC-2C-A-04 | res.php returns error code | Equivalence – abnormal | error with code | - |
| TC-2C-B-01 | never ready within timeout | Boundary – timeout | TIMEOUT error | - |
| TC-2C-A-05 | network failure | Equivalence – abnormal | NETWORK error | - |
| TC-2C-N-03 | health: balance ok, cached | Equivalence – normal | True, one call | - |
| TC-2C-A-06 | health without key | Equivalence – abnormal | False | - |
| TC-2C-B-02 | health with zero balance | Boundary – balance | False | - |
| TC-CH-N-01 | clean page | Equivalence – normal | html unchanged | solver unused |
| TC-CH-N-02 | reCAPTCHA page | Equivalence – normal | token injected, new html | - |
| TC-CH-A-06 | reCAPTCHA still shown after token | Equivalence – abnormal | CaptchaDetectedError | - |
| TC-CH-B-01 | token accepted, page has no content | Boundary – resolution | CaptchaDetectedError | - |
| TC-CH-N-03 | Cloudflare, key after interaction | Equivalence – normal | resolved html | - |
| TC-CH-A-01 | Cloudflare, solver unhealthy | Equivalence – abnormal | CaptchaDetectedError | - |
| TC-CH-A-02 | Cloudflare, no key ever | Equivalence – abnormal | CaptchaDetectedError | - |
| TC-CH-A-03 | Cloudflare, still blocked after token | Equivalence – abnormal | CaptchaDetectedError | - |
| TC-CH-A-04 | solver raises | Equivalence – abnormal | error propagates | - |
| TC-CH-A-05 | injection fails | Equivalence – abnormal | CaptchaInjectionError | - |
"""

from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from scrapecore.captcha.detector import CaptchaChallenge, ChallengeKind
from scrapecore.captcha.solver import CaptchaHandler, TwoCaptchaSolver, inject_and_submit
from scrapecore.crawler.human_behavior import ChallengeInteractionConfig, HumanBehaviorSimulator
from scrapecore.utils.config import CaptchaConfig
from scrapecore.utils.errors import (
    CaptchaDetectedError,
    CaptchaInjectionError,
    CaptchaSolverError,
    ErrorKind,
)

pytestmark = pytest.mark.unit

PAGE_URL = "https://jobs.example.com/posting/1"

CLOUDFLARE_WITH_WIDGET = """
<html><head><title>Just a moment...</title></head><body>
<form><div class="cf-turnstile" data-sitekey="0x4AAAAAAAturnstileKey"></div></form>
</body></html>
"""


@pytest.fixture
def captcha_config() -> CaptchaConfig:
    return CaptchaConfig(
        api_key="test-key",
        api_url="https://2captcha.test",
        polling_interval_seconds=0.0,
        timeout_seconds=1.0,
        post_submit_wait_seconds=0.0,
        challenge_settle_seconds=0.0,
    )


@pytest.fixture
def solver(captcha_config: CaptchaConfig) -> TwoCaptchaSolver:
    return TwoCaptchaSolver(captcha_config)


@pytest.fixture
def human() -> HumanBehaviorSimulator:
    return HumanBehaviorSimulator(interaction=ChallengeInteractionConfig(gestures=1, time_scale=0.0))


@pytest.fixture
def recaptcha_challenge() -> CaptchaChallenge:
    return CaptchaChallenge(ChallengeKind.RECAPTCHA_V2, "6LcKey", PAGE_URL)


# =============================================================================
# TwoCaptchaSolver
# =============================================================================


class TestTwoCaptchaSolver:
    @pytest.mark.asyncio
    async def test_solve_recaptcha(
        self, solver, recaptcha_challenge, mock_aiohttp_session, make_mock_response
    ) -> None:
        # Given: task accepted, not ready once, then solved
        mock_aiohttp_session.post.return_value = make_mock_response({"status": 1, "request": "task-1"})
        mock_aiohttp_session.get.side_effect = [
            make_mock_response({"status": 0, "request": "CAPCHA_NOT_READY"}),
            make_mock_response({"status": 1, "request": "token-abc"}),
        ]

        # When
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            token = await solver.solve(recaptcha_challenge)

        # Then
        assert token == "token-abc"
        data = mock_aiohttp_session.post.call_args.kwargs["data"]
        assert data["method"] == "userrecaptcha"
        assert data["googlekey"] == "6LcKey"
        assert data["pageurl"] == PAGE_URL
        assert data["key"] == "test-key"
        assert mock_aiohttp_session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_solve_turnstile(self, solver, mock_aiohttp_session, make_mock_response) -> None:
        # Given
        mock_aiohttp_session.post.return_value = make_mock_response({"status": 1, "request": "task-2"})
        mock_aiohttp_session.get.return_value = make_mock_response({"status": 1, "request": "cf-token"})
        challenge = CaptchaChallenge(ChallengeKind.TURNSTILE, "0x4AAAAAAAturnstileKey", PAGE_URL)

        # When
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            token = await solver.solve(challenge)

        # Then
        assert token == "cf-token"
        data = mock_aiohttp_session.post.call_args.kwargs["data"]
        assert data["method"] == "turnstile"
        assert data["sitekey"] == "0x4AAAAAAAturnstileKey"

    @pytest.mark.asyncio
    async def test_disabled(self, captcha_config, recaptcha_challenge, mock_aiohttp_session) -> None:
        # Given
        solver = TwoCaptchaSolver(captcha_config.model_copy(update={"enable_auto_solve": False}))

        # When/Then
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            with pytest.raises(CaptchaSolverError, match="disabled"):
                await solver.solve(recaptcha_challenge)
        mock_aiohttp_session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_key(self, captcha_config, recaptcha_challenge) -> None:
        solver = TwoCaptchaSolver(captcha_config.model_copy(update={"api_key": ""}))

        with pytest.raises(CaptchaSolverError, match="not configured") as exc_info:
            await solver.solve(recaptcha_challenge)
        assert exc_info.value.kind is ErrorKind.CAPTCHA

    @pytest.mark.asyncio
    async def test_submit_rejected(
        self, solver, recaptcha_challenge, mock_aiohttp_session, make_mock_response
    ) -> None:
        # Given
        mock_aiohttp_session.post.return_value = make_mock_response(
            {"status": 0, "request": "ERROR_ZERO_BALANCE"}
        )

        # When/Then
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            with pytest.raises(CaptchaSolverError) as exc_info:
                await solver.solve(recaptcha_challenge)
        assert exc_info.value.code == "ERROR_ZERO_BALANCE"

    @pytest.mark.asyncio
    async def test_poll_error(self, solver, recaptcha_challenge, mock_aiohttp_session, make_mock_response) -> None:
        # Given
        mock_aiohttp_session.post.return_value = make_mock_response({"status": 1, "request": "task-3"})
        mock_aiohttp_session.get.return_value = make_mock_response(
            {"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"}
        )

        # When/Then
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            with pytest.raises(CaptchaSolverError) as exc_info:
                await solver.solve(recaptcha_challenge)
        assert exc_info.value.code == "ERROR_CAPTCHA_UNSOLVABLE"

    @pytest.mark.asyncio
    async def test_timeout(self, captcha_config, recaptcha_challenge, mock_aiohttp_session, make_mock_response) -> None:
        # Given: zero timeout, never ready
        solver = TwoCaptchaSolver(captcha_config.model_copy(update={"timeout_seconds": 0.0}))
        mock_aiohttp_session.post.return_value = make_mock_response({"status": 1, "request": "task-4"})
        mock_aiohttp_session.get.return_value = make_mock_response({"status": 0, "request": "CAPCHA_NOT_READY"})

        # When/Then
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            with pytest.raises(CaptchaSolverError, match="timed out") as exc_info:
                await solver.solve(recaptcha_challenge)
        assert exc_info.value.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_network_failure(self, solver, recaptcha_challenge, mock_aiohttp_session) -> None:
        # Given
        mock_aiohttp_session.post.side_effect = aiohttp.ClientConnectionError("connection refused")

        # When/Then
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            with pytest.raises(CaptchaSolverError) as exc_info:
                await solver.solve(recaptcha_challenge)
        assert exc_info.value.code == "NETWORK"

    @pytest.mark.asyncio
    async def test_health_cached(self, solver, mock_aiohttp_session, make_mock_response) -> None:
        # Given
        mock_aiohttp_session.get.return_value = make_mock_response({"status": 1, "request": "3.50"})

        # When
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            first = await solver.is_healthy()
            second = await solver.is_healthy()

        # Then
        assert first is True
        assert second is True
        assert mock_aiohttp_session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_health_without_key(self, captcha_config) -> None:
        solver = TwoCaptchaSolver(captcha_config.model_copy(update={"api_key": ""}))
        assert await solver.is_healthy() is False

    @pytest.mark.asyncio
    async def test_health_zero_balance(self, solver, mock_aiohttp_session, make_mock_response) -> None:
        # Given: an empty account
        mock_aiohttp_session.get.return_value = make_mock_response({"status": 1, "request": "0.00"})

        # When
        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            healthy = await solver.is_healthy()

        # Then
        assert healthy is False

    @pytest.mark.asyncio
    async def test_health_balance_failure(self, solver, mock_aiohttp_session, make_mock_response) -> None:
        mock_aiohttp_session.get.return_value = make_mock_response({"status": 0, "request": "ERROR_KEY_DOES_NOT_EXIST"})

        with patch.object(solver, "_get_session", AsyncMock(return_value=mock_aiohttp_session)):
            assert await solver.is_healthy() is False


# =============================================================================
# Injection and CaptchaHandler
# =============================================================================


class TestInjectAndSubmit:
    @pytest.mark.asyncio
    async def test_writes_field_and_runs_script(self, make_page, recaptcha_challenge) -> None:
        # Given
        page = make_page()

        # When
        result = await inject_and_submit(page, recaptcha_challenge, "tok")

        # Then
        assert page.fields == {'[name="g-recaptcha-response"]': "tok"}
        assert page.scripts[0][1] == {"token": "tok", "field": "g-recaptcha-response", "widget": ".g-recaptcha"}
        assert result["formSubmitted"] is True

    @pytest.mark.asyncio
    async def test_failure_wrapped(self, make_page, recaptcha_challenge) -> None:
        # Given: detached page
        page = make_page()
        page.set_form_field = AsyncMock(side_effect=RuntimeError("target closed"))

        # When/Then
        with pytest.raises(CaptchaInjectionError, match="target closed"):
            await inject_and_submit(page, recaptcha_challenge, "tok")


class TestCaptchaHandler:
    @pytest.mark.asyncio
    async def test_clean_page_untouched(self, make_page, fake_solver, captcha_config, human, clean_job_html) -> None:
        # Given
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        # When
        html = await handler.resolve(make_page(), PAGE_URL, clean_job_html)

        # Then
        assert html == clean_job_html
        assert fake_solver.challenges == []

    @pytest.mark.asyncio
    async def test_recaptcha_solved(
        self, make_page, fake_solver, captcha_config, human, recaptcha_html, clean_job_html
    ) -> None:
        # Given: page that shows content after submission
        page = make_page(clean_job_html)
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        # When
        html = await handler.resolve(page, PAGE_URL, recaptcha_html)

        # Then
        assert html == clean_job_html
        assert fake_solver.challenges[0].kind is ChallengeKind.RECAPTCHA_V2
        assert fake_solver.challenges[0].page_url == PAGE_URL
        assert page.fields['[name="g-recaptcha-response"]'] == "solved-token"

    @pytest.mark.asyncio
    async def test_recaptcha_still_shown_after_token(
        self, make_page, fake_solver, captcha_config, human, recaptcha_html
    ) -> None:
        # Given: the widget is still there after submission
        page = make_page(recaptcha_html)
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        # When/Then
        with pytest.raises(CaptchaDetectedError, match="still not resolved") as exc_info:
            await handler.resolve(page, PAGE_URL, recaptcha_html)
        assert exc_info.value.details["challenge_kind"] == "recaptcha_v2"
        assert len(fake_solver.challenges) == 1

    @pytest.mark.asyncio
    async def test_token_accepted_but_page_empty(
        self, make_page, fake_solver, captcha_config, human, recaptcha_html
    ) -> None:
        # Given: no widget left, but no real content either
        page = make_page("<html><body>Loading...</body></html>")
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        # When/Then
        with pytest.raises(CaptchaDetectedError, match="still not resolved"):
            await handler.resolve(page, PAGE_URL, recaptcha_html)

    @pytest.mark.asyncio
    async def test_cloudflare_key_after_interaction(
        self, make_page, fake_solver, captcha_config, human, cloudflare_html, clean_job_html
    ) -> None:
        # Given: widget appears after interaction, content after the token
        page = make_page([CLOUDFLARE_WITH_WIDGET, clean_job_html])
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        # When
        html = await handler.resolve(page, PAGE_URL, cloudflare_html)

        # Then
        assert html == clean_job_html
        assert fake_solver.challenges[0].kind is ChallengeKind.TURNSTILE
        assert fake_solver.challenges[0].site_key == "0x4AAAAAAAturnstileKey"
        assert page.mouse
        assert page.fields['[name="cf-turnstile-response"]'] == "solved-token"

    @pytest.mark.asyncio
    async def test_cloudflare_solver_unavailable(
        self, make_page, make_solver, captcha_config, human, cloudflare_html
    ) -> None:
        # Given
        solver = make_solver(healthy=False)
        handler = CaptchaHandler(solver, captcha_config, human)

        # When/Then
        with pytest.raises(CaptchaDetectedError, match="not available") as exc_info:
            await handler.resolve(make_page(cloudflare_html), PAGE_URL, cloudflare_html)
        assert exc_info.value.details["challenge_kind"] == "cloudflare"
        assert solver.challenges == []

    @pytest.mark.asyncio
    async def test_cloudflare_no_site_key(self, make_page, fake_solver, captcha_config, human, cloudflare_html) -> None:
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        with pytest.raises(CaptchaDetectedError, match="no site key"):
            await handler.resolve(make_page(cloudflare_html), PAGE_URL, cloudflare_html)

    @pytest.mark.asyncio
    async def test_cloudflare_still_blocked(
        self, make_page, fake_solver, captcha_config, human, cloudflare_html
    ) -> None:
        # Given: challenge persists after the token
        page = make_page(CLOUDFLARE_WITH_WIDGET)
        handler = CaptchaHandler(fake_solver, captcha_config, human)

        # When/Then
        with pytest.raises(CaptchaDetectedError, match="still not resolved"):
            await handler.resolve(page, PAGE_URL, cloudflare_html)
        assert len(fake_solver.challenges) == 1

    @pytest.mark.asyncio
    async def test_solver_error_propagates(
        self, make_page, make_solver, captcha_config, human, recaptcha_html
    ) -> None:
        solver = make_solver(error=CaptchaSolverError("2captcha solving failed: ERROR", code="ERROR"))
        handler = CaptchaHandler(solver, captcha_config, human)

        with pytest.raises(CaptchaSolverError):
            await handler.resolve(make_page(), PAGE_URL, recaptcha_html)
