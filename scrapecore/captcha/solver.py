"""
CAPTCHA solving, token injection and challenge orchestration.

- TwoCaptchaSolver: 2captcha HTTP API client (in.php / res.php) over aiohttp
- inject_and_submit: writes a solved token into the page and submits
- CaptchaHandler: the detect -> solve -> inject -> verify flow used by the
  browser engine
"""

import asyncio
import time
from typing import Any, Protocol

import aiohttp

from scrapecore.captcha.detector import (
    CaptchaChallenge,
    ChallengeKind,
    detect,
    extract_turnstile_site_key,
    is_resolved,
)
from scrapecore.crawler.human_behavior import HumanBehaviorSimulator
from scrapecore.crawler.page import PageAutomation
from scrapecore.utils.config import CaptchaConfig, get_settings
from scrapecore.utils.errors import (
    CaptchaDetectedError,
    CaptchaInjectionError,
    CaptchaSolverError,
)
from scrapecore.utils.logging import get_logger

logger = get_logger(__name__)


class CaptchaSolver(Protocol):
    """Service that turns a challenge into a response token."""

    async def solve(self, challenge: CaptchaChallenge) -> str: ...

    async def is_healthy(self) -> bool: ...


# =============================================================================
# 2captcha client
# =============================================================================


class TwoCaptchaSolver:
    """2captcha.com client.

    Submits a task to in.php, then polls res.php every polling interval until
    a token arrives or timeout_seconds elapses.
    """

    NOT_READY = "CAPCHA_NOT_READY"

    def __init__(self, config: CaptchaConfig | None = None):
        self._config = config or get_settings().captcha
        self._api_url = self._config.api_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self._health_cache: tuple[float, bool] | None = None

        if not self._config.api_key:
            logger.warning("2captcha API key not configured, captcha solving disabled")
        else:
            logger.info(
                "2captcha solver configured",
                timeout=self._config.timeout_seconds,
                polling_interval=self._config.polling_interval_seconds,
                enable_auto_solve=self._config.enable_auto_solve,
            )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _check_enabled(self) -> None:
        if not self._config.enable_auto_solve:
            raise CaptchaSolverError("captcha auto-solve is disabled")
        if not self._config.api_key:
            raise CaptchaSolverError("2captcha API key not configured")

    async def _submit(self, params: dict[str, str]) -> str:
        session = await self._get_session()
        data = {"key": self._config.api_key, "json": "1", **params}
        async with session.post(f"{self._api_url}/in.php", data=data) as response:
            payload = await response.json(content_type=None)

        if payload.get("status") != 1:
            code = str(payload.get("request", "UNKNOWN_ERROR"))
            raise CaptchaSolverError(f"2captcha rejected task: {code}", code=code)
        return str(payload["request"])

    async def _poll(self, task_id: str) -> str:
        session = await self._get_session()
        params = {"key": self._config.api_key, "action": "get", "id": task_id, "json": "1"}
        deadline = time.monotonic() + self._config.timeout_seconds

        while True:
            await asyncio.sleep(self._config.polling_interval_seconds)

            async with session.get(f"{self._api_url}/res.php", params=params) as response:
                payload = await response.json(content_type=None)

            if payload.get("status") == 1:
                return str(payload["request"])

            code = str(payload.get("request", "UNKNOWN_ERROR"))
            if code != self.NOT_READY:
                raise CaptchaSolverError(f"2captcha solving failed: {code}", code=code)

            if time.monotonic() >= deadline:
                raise CaptchaSolverError(
                    f"2captcha solving timed out after {self._config.timeout_seconds:g}s",
                    code="TIMEOUT",
                )

    async def solve(self, challenge: CaptchaChallenge) -> str:
        """Solve a reCAPTCHA v2 or Turnstile challenge.

        Args:
            challenge: Challenge with a site key and page URL.

        Returns:
            Response token.

        Raises:
            CaptchaSolverError: Disabled, unconfigured, rejected or timed out.
        """
        self._check_enabled()

        if not challenge.site_key:
            raise CaptchaSolverError("challenge has no site key", code="NO_SITE_KEY")

        if challenge.kind == ChallengeKind.RECAPTCHA_V2:
            params = {
                "method": "userrecaptcha",
                "googlekey": challenge.site_key,
                "pageurl": challenge.page_url,
            }
        else:
            params = {
                "method": "turnstile",
                "sitekey": challenge.site_key,
                "pageurl": challenge.page_url,
            }

        logger.info(
            "Starting captcha solving",
            kind=challenge.kind.value,
            site_key=challenge.site_key,
            page_url=challenge.page_url,
        )
        start = time.monotonic()

        try:
            task_id = await self._submit(params)
            token = await self._poll(task_id)
        except CaptchaSolverError as e:
            logger.error(
                "Failed to solve captcha",
                kind=challenge.kind.value,
                page_url=challenge.page_url,
                error=str(e),
            )
            raise
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("2captcha request failed", error=str(e))
            raise CaptchaSolverError(f"2captcha request failed: {e}", code="NETWORK") from e

        logger.info(
            "Captcha solved",
            kind=challenge.kind.value,
            page_url=challenge.page_url,
            solving_seconds=round(time.monotonic() - start, 2),
        )
        return token

    async def get_balance(self) -> float:
        session = await self._get_session()
        params = {"key": self._config.api_key, "action": "getbalance", "json": "1"}
        async with session.get(f"{self._api_url}/res.php", params=params) as response:
            payload = await response.json(content_type=None)

        if payload.get("status") != 1:
            code = str(payload.get("request", "UNKNOWN_ERROR"))
            raise CaptchaSolverError(f"2captcha balance check failed: {code}", code=code)
        return float(payload["request"])

    async def is_healthy(self) -> bool:
        """API key present and the account balance is positive.

        The result is cached for health_cache_seconds.
        """
        if not self._config.api_key:
            return False

        now = time.monotonic()
        if self._health_cache is not None:
            checked_at, healthy = self._health_cache
            if now - checked_at < self._config.health_cache_seconds:
                return healthy

        try:
            balance = await self.get_balance()
            healthy = balance > 0
            logger.info("2captcha health check", balance=balance, healthy=healthy)
        except Exception as e:
            logger.error("2captcha health check failed", error=str(e))
            healthy = False

        self._health_cache = (now, healthy)
        return healthy


# =============================================================================
# Token injection
# =============================================================================

_RESPONSE_FIELDS: dict[ChallengeKind, str] = {
    ChallengeKind.RECAPTCHA_V2: "g-recaptcha-response",
    ChallengeKind.TURNSTILE: "cf-turnstile-response",
    ChallengeKind.CLOUDFLARE: "cf-turnstile-response",
}

_SUBMIT_JS = """
({ token, field, widget }) => {
    // Fill every matching response field, including hand-named turnstile inputs
    const selector = field === 'g-recaptcha-response'
        ? '[name="g-recaptcha-response"], #g-recaptcha-response'
        : 'input[name*="turnstile"], input[name*="cf-turnstile"]';
    document.querySelectorAll(selector).forEach(el => {
        el.value = token;
        el.innerHTML = token;
    });

    let callbackCalled = false;
    const widgetEl = document.querySelector(widget) || document.querySelector('[data-sitekey]');
    if (widgetEl) {
        const callback = widgetEl.getAttribute('data-callback');
        if (callback && typeof window[callback] === 'function') {
            window[callback](token);
            callbackCalled = true;
        }
    }

    let formSubmitted = false;
    for (const form of document.querySelectorAll('form')) {
        if (form.querySelector(widget) || form.querySelector('[data-sitekey]')
            || form.querySelector('[name="' + field + '"]')) {
            form.submit();
            formSubmitted = true;
            break;
        }
    }

    let buttonClicked = false;
    for (const button of document.querySelectorAll('input[type="submit"], button[type="submit"], button')) {
        const text = (button.textContent || '').toLowerCase();
        const value = (button.value || '').toLowerCase();
        if (text.includes('submit') || text.includes('continue') || text.includes('verify')
            || value.includes('submit')) {
            button.click();
            buttonClicked = true;
            break;
        }
    }

    return { callbackCalled, formSubmitted, buttonClicked };
}
"""


async def inject_and_submit(
    page: PageAutomation,
    challenge: CaptchaChallenge,
    token: str,
) -> dict[str, Any]:
    """Write a solved token into the page and submit it.

    Args:
        page: Page showing the challenge.
        challenge: The challenge the token solves.
        token: Token returned by the solver.

    Returns:
        Which submission paths fired (callback, form, button).

    Raises:
        CaptchaInjectionError: If script evaluation fails.
    """
    field = _RESPONSE_FIELDS[challenge.kind]
    widget = ".g-recaptcha" if challenge.kind == ChallengeKind.RECAPTCHA_V2 else ".cf-turnstile"

    try:
        await page.set_form_field(f'[name="{field}"]', token)
        result = await page.evaluate_script(
            _SUBMIT_JS, {"token": token, "field": field, "widget": widget}
        )
    except Exception as e:
        raise CaptchaInjectionError(f"failed to inject {challenge.kind.value} solution: {e}") from e

    logger.debug("Captcha solution injected", kind=challenge.kind.value, result=result)
    return result or {}


# =============================================================================
# Orchestration
# =============================================================================


class CaptchaHandler:
    """Detects, solves and clears challenges on a browser page."""

    def __init__(
        self,
        solver: CaptchaSolver,
        config: CaptchaConfig | None = None,
        human: HumanBehaviorSimulator | None = None,
    ):
        self._solver = solver
        self._config = config or get_settings().captcha
        self._human = human or HumanBehaviorSimulator()

    @property
    def solver(self) -> CaptchaSolver:
        return self._solver

    async def resolve(self, page: PageAutomation, url: str, html: str) -> str:
        """Clear a challenge on ``page`` if ``html`` shows one.

        Args:
            page: Page the HTML was read from.
            url: Page URL sent to the solver.
            html: Current page HTML.

        Returns:
            Page HTML after the challenge (the input when there was none).

        Raises:
            CaptchaDetectedError: Challenge could not be cleared.
            CaptchaSolverError: Solver failed.
            CaptchaInjectionError: Token could not be written into the page.
        """
        challenge = detect(html, url)
        if challenge is None:
            return html

        logger.info(
            "Captcha detected",
            url=url,
            kind=challenge.kind.value,
            site_key=challenge.site_key,
        )

        if challenge.solvable:
            token = await self._solver.solve(challenge)
            await inject_and_submit(page, challenge, token)
            await self._wait(self._config.post_submit_wait_seconds)

            resolved_html = await page.content()
            if detect(resolved_html, url) is not None or not is_resolved(resolved_html):
                logger.error("Captcha token did not clear the challenge", url=url, kind=challenge.kind.value)
                raise CaptchaDetectedError(
                    f"{challenge.kind.value} challenge still not resolved after token injection for URL: {url}",
                    url=url,
                    challenge_kind=challenge.kind.value,
                )
            return resolved_html

        return await self._resolve_cloudflare(page, url, html)

    async def _resolve_cloudflare(self, page: PageAutomation, url: str, html: str) -> str:
        if not await self._solver.is_healthy():
            logger.error("Captcha solver not available for Cloudflare challenge", url=url)
            raise CaptchaDetectedError(
                f"cloudflare challenge detected but captcha solver is not available for URL: {url}",
                url=url,
                challenge_kind=ChallengeKind.CLOUDFLARE.value,
            )

        site_key = extract_turnstile_site_key(html)
        if site_key is None:
            logger.info("No Turnstile site key yet, simulating human behavior", url=url)
            await self._human.simulate_challenge_interaction(page)
            await self._wait(self._config.challenge_settle_seconds)

            site_key = extract_turnstile_site_key(await page.content())
            if site_key is None:
                raise CaptchaDetectedError(
                    f"cloudflare turnstile challenge detected but no site key found for URL: {url}",
                    url=url,
                    challenge_kind=ChallengeKind.CLOUDFLARE.value,
                )

        challenge = CaptchaChallenge(ChallengeKind.TURNSTILE, site_key, url)
        token = await self._solver.solve(challenge)
        await inject_and_submit(page, challenge, token)
        await self._wait(self._config.post_submit_wait_seconds)

        resolved_html = await page.content()
        if not is_resolved(resolved_html):
            logger.error("Turnstile token did not clear the challenge", url=url)
            raise CaptchaDetectedError(
                f"cloudflare challenge still not resolved after token injection for URL: {url}",
                url=url,
                challenge_kind=ChallengeKind.CLOUDFLARE.value,
            )

        logger.info("Cloudflare challenge resolved", url=url)
        return resolved_html

    @staticmethod
    async def _wait(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
