"""
Hybrid engine selector.

Tries the browser engine first and escalates to the hosted API when the
browser is stopped by a CAPTCHA. Domains that produced a CAPTCHA once are
remembered in the CaptchaDomainRegistry and go straight to the hosted API
on later requests.

States:
    unknown -> primary_attempt -> done(success)
    unknown -> primary_attempt -> escalated -> done(success | failure)
    unknown -> escalated (known CAPTCHA domain) -> done(success | failure)
    unknown -> primary_attempt -> done(failure)  (non-CAPTCHA failure)
"""

import asyncio
from enum import Enum

from scrapecore.captcha.registry import CaptchaDomainRegistry
from scrapecore.engines.base import ScrapeEngine, ScrapeOutcome
from scrapecore.models import ScrapeOptions
from scrapecore.utils.errors import ErrorKind, EscalationFailedError, ScrapeError, classify
from scrapecore.utils.logging import get_logger
from scrapecore.utils.urls import normalize_domain

logger = get_logger(__name__)


class HybridState(str, Enum):
    """Selector states, logged as the trail of each scrape."""

    UNKNOWN = "unknown"
    PRIMARY_ATTEMPT = "primary_attempt"
    ESCALATED = "escalated"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"


class HybridEngine:
    """Browser first, hosted API on CAPTCHA, with a learned domain fast path."""

    name = "hybrid"

    def __init__(
        self,
        primary: ScrapeEngine,
        secondary: ScrapeEngine,
        registry: CaptchaDomainRegistry,
    ):
        """Initialize the selector.

        Args:
            primary: Browser automation engine.
            secondary: Hosted scraping API engine.
            registry: Known-CAPTCHA domain memory.
        """
        self._primary = primary
        self._secondary = secondary
        self._registry = registry

    async def scrape(self, url: str, options: ScrapeOptions | None = None) -> ScrapeOutcome:
        """Scrape with escalation.

        Raises:
            EscalationFailedError: The hosted API failed after a CAPTCHA escalation.
            ScrapeError: Primary failure that is not CAPTCHA related, unchanged.
        """
        domain = normalize_domain(url)
        trail = [HybridState.UNKNOWN]

        if domain and self._registry.is_known(domain):
            trail.append(HybridState.ESCALATED)
            logger.info(
                "Known CAPTCHA domain, using secondary engine directly",
                url=url,
                domain=domain,
                engine=self._secondary.name,
            )
            try:
                outcome = await self._secondary.scrape(url, options)
            except Exception:
                self._log_trail(url, trail, HybridState.DONE_FAILURE)
                raise
            self._log_trail(url, trail, HybridState.DONE_SUCCESS)
            return ScrapeOutcome(
                job=outcome.job,
                engine=outcome.engine,
                content_length=outcome.content_length,
                escalated=True,
            )

        trail.append(HybridState.PRIMARY_ATTEMPT)
        logger.info("Attempting primary engine", url=url, engine=self._primary.name)

        try:
            outcome = await self._primary.scrape(url, options)
        except Exception as primary_error:
            if classify(primary_error) is not ErrorKind.CAPTCHA:
                self._log_trail(url, trail, HybridState.DONE_FAILURE)
                raise
            trail.append(HybridState.ESCALATED)
            return await self._escalate(url, domain, options, primary_error, trail)

        self._log_trail(url, trail, HybridState.DONE_SUCCESS)
        return outcome

    async def _escalate(
        self,
        url: str,
        domain: str,
        options: ScrapeOptions | None,
        primary_error: BaseException,
        trail: list[HybridState],
    ) -> ScrapeOutcome:
        logger.warning(
            "CAPTCHA detected, escalating to secondary engine",
            url=url,
            domain=domain,
            error=str(primary_error),
            engine=self._secondary.name,
        )

        if domain:
            loop = asyncio.get_running_loop()
            try:
                # File rewrite runs off the event loop
                if await loop.run_in_executor(None, self._registry.add, domain):
                    logger.info("Registered CAPTCHA domain", domain=domain)
            except OSError as e:
                logger.error("Failed to persist CAPTCHA domain", domain=domain, error=str(e))

        try:
            outcome = await self._secondary.scrape(url, options)
        except Exception as secondary_error:
            self._log_trail(url, trail, HybridState.DONE_FAILURE)
            raise EscalationFailedError(primary_error, secondary_error) from secondary_error

        self._log_trail(url, trail, HybridState.DONE_SUCCESS)
        return ScrapeOutcome(
            job=outcome.job,
            engine=outcome.engine,
            content_length=outcome.content_length,
            escalated=True,
        )

    def _log_trail(self, url: str, trail: list[HybridState], final: HybridState) -> None:
        trail.append(final)
        logger.info(
            "Hybrid scrape finished",
            url=url,
            states=" -> ".join(state.value for state in trail),
            success=final is HybridState.DONE_SUCCESS,
        )

    async def is_healthy(self) -> bool:
        primary_ok = await self._primary.is_healthy()
        secondary_ok = await self._secondary.is_healthy()
        if not (primary_ok and secondary_ok):
            logger.info("Hybrid engine unhealthy", primary=primary_ok, secondary=secondary_ok)
        return primary_ok and secondary_ok

    async def cleanup(self) -> None:
        errors: list[BaseException] = []
        for engine in (self._primary, self._secondary):
            try:
                await engine.cleanup()
            except Exception as e:
                logger.warning("Engine cleanup failed", engine=engine.name, error=str(e))
                errors.append(e)
        if errors:
            raise ScrapeError(f"hybrid cleanup failed: {errors[0]}") from errors[0]
