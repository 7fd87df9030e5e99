"""
Error taxonomy for scrapecore.

Every failure raised inside the core carries an ErrorKind assigned where the
error is created. Retry and escalation decisions read the kind, never the
message text.

Kinds follow the handling policy:
- admission: rejected before work starts (queue full, pool down, rate limited)
- resource: browser pool exhausted/unavailable, retried by the worker loop
- captcha: anti-bot challenge, triggers escalation to the hosted API
- content_invalid: not a job posting / low confidence, terminal
- auth: bad or missing credentials, terminal
- malformed: invalid request or unsupported option, terminal
- rate_limited: upstream told us to slow down, terminal for this job
- transient: navigation timeouts, transient HTTP, retried with backoff
- internal: unclassified failure, retried then wrapped
"""

import asyncio
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification attached to every ScrapeError."""

    ADMISSION = "admission"
    """Request rejected at the door (queue full, pool not running, domain rate limited).
    Action: fail fast, caller may retry later."""

    RESOURCE = "resource"
    """Browser pool exhausted or unavailable.
    Action: retried by the worker loop with linear backoff."""

    CAPTCHA = "captcha"
    """CAPTCHA / Cloudflare challenge could not be passed by the browser engine.
    Action: hybrid selector registers the domain and escalates."""

    CONTENT_INVALID = "content_invalid"
    """Page is not a job posting or extraction confidence is too low.
    Action: terminal, counts as a correct answer for rate limiting."""

    AUTH = "auth"
    """Credential missing or rejected by an upstream API.
    Action: terminal, logged as a configuration problem."""

    MALFORMED = "malformed"
    """Request is invalid (bad URL, unsupported engine, rejected payload).
    Action: terminal."""

    RATE_LIMITED = "rate_limited"
    """Upstream API quota or rate limit exceeded.
    Action: terminal for this job."""

    TRANSIENT = "transient"
    """Navigation timeout, connection reset, 5xx.
    Action: retried up to max_retries with linear backoff."""

    INTERNAL = "internal"
    """Unexpected failure without a classification.
    Action: retried, then wrapped with the attempt count."""


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.RESOURCE, ErrorKind.TRANSIENT, ErrorKind.INTERNAL}
)


class ScrapeError(Exception):
    """
    Base exception for all classified scrape failures.

    Provides a structured representation for API layers and logs.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize scrape error.

        Args:
            message: Human-readable error message.
            kind: Override of the class-level kind.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        """Whether the worker loop may retry this failure."""
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """
        Convert error to a response payload.

        Returns:
            Dictionary suitable for an API error response.
        """
        result: dict[str, Any] = {
            "ok": False,
            "error_kind": self.kind.value,
            "error_type": type(self).__name__,
            "error": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Admission
# =============================================================================


class QueueFullError(ScrapeError):
    """Raised when the job queue has no free slot."""

    kind = ErrorKind.ADMISSION

    def __init__(self, capacity: int):
        super().__init__("job queue is full", details={"queue_capacity": capacity})


class PoolNotRunningError(ScrapeError):
    """Raised when the worker pool is not accepting work."""

    kind = ErrorKind.ADMISSION

    def __init__(self, message: str = "worker pool is not running"):
        super().__init__(message)


class RateLimitedError(ScrapeError):
    """Raised when the local per-domain limiter rejects a job."""

    kind = ErrorKind.ADMISSION

    def __init__(self, domain: str):
        super().__init__(
            f"rate limit exceeded for domain: {domain}",
            details={"domain": domain},
        )
        self.domain = domain


# =============================================================================
# Resource
# =============================================================================


class BrowserPoolExhaustedError(ScrapeError):
    """Raised when no browser instance became available in time."""

    kind = ErrorKind.RESOURCE

    def __init__(self, max_instances: int, waited_seconds: float):
        super().__init__(
            "timeout waiting for browser instance",
            details={"max_instances": max_instances, "waited_seconds": waited_seconds},
        )


class BrowserPoolClosedError(ScrapeError):
    """Raised when acquiring from a pool that has been shut down."""

    kind = ErrorKind.RESOURCE

    def __init__(self) -> None:
        super().__init__("browser pool is shut down")


class BrowserLaunchError(ScrapeError):
    """Raised when a browser process or page could not be created."""

    kind = ErrorKind.RESOURCE


# =============================================================================
# Anti-bot
# =============================================================================


class CaptchaDetectedError(ScrapeError):
    """Raised when a challenge was detected and could not be passed."""

    kind = ErrorKind.CAPTCHA

    def __init__(self, message: str, *, url: str | None = None, challenge_kind: str | None = None):
        details: dict[str, Any] = {}
        if url:
            details["url"] = url
        if challenge_kind:
            details["challenge_kind"] = challenge_kind
        super().__init__(message, details=details or None)


class CaptchaSolverError(ScrapeError):
    """Raised by the CAPTCHA solving service client."""

    kind = ErrorKind.CAPTCHA

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message, details={"code": code} if code else None)
        self.code = code


class CaptchaInjectionError(ScrapeError):
    """Raised when a solved token could not be written into the page."""

    kind = ErrorKind.CAPTCHA


# =============================================================================
# Content / upstream
# =============================================================================


class NotJobPostingError(ScrapeError):
    """Raised when the content is not a job posting."""

    kind = ErrorKind.CONTENT_INVALID

    def __init__(self, detail: str = ""):
        message = "content is not a job posting"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, details={"detail": detail} if detail else None)


class AuthError(ScrapeError):
    """Raised when credentials are missing or rejected."""

    kind = ErrorKind.AUTH


class MalformedRequestError(ScrapeError):
    """Raised for invalid requests or unsupported options."""

    kind = ErrorKind.MALFORMED


class UpstreamRateLimitedError(ScrapeError):
    """Raised when an upstream API answers with a rate-limit response."""

    kind = ErrorKind.RATE_LIMITED


class TransientError(ScrapeError):
    """Raised for failures expected to clear on retry."""

    kind = ErrorKind.TRANSIENT


class NavigationError(TransientError):
    """Raised when page navigation fails or times out."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"failed to navigate to {url}: {reason}", details={"url": url})


class JobTimeoutError(TransientError):
    """Raised to a caller whose wait for a result expired."""

    def __init__(self, timeout: float):
        super().__init__(
            f"job processing timed out after {timeout:g}s",
            details={"timeout_seconds": timeout},
        )


# =============================================================================
# Composite
# =============================================================================


class RetryExhaustedError(ScrapeError):
    """Raised when all attempts failed with unclassified errors."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(
            f"scraping failed after {attempts} attempts, last error: {last_error}",
            kind=classify(last_error),
            details={"attempts": attempts, "last_error_type": type(last_error).__name__},
        )
        self.attempts = attempts
        self.last_error = last_error


class EscalationFailedError(ScrapeError):
    """Raised when the secondary engine fails after a CAPTCHA escalation."""

    def __init__(self, primary_error: BaseException, secondary_error: BaseException):
        super().__init__(
            "hybrid scraping failed - "
            f"primary: captcha detected ({primary_error}), "
            f"secondary: {secondary_error}",
            kind=classify(secondary_error),
            details={
                "primary_error": str(primary_error),
                "secondary_error": str(secondary_error),
            },
        )
        self.primary_error = primary_error
        self.secondary_error = secondary_error


def classify(exc: BaseException) -> ErrorKind:
    """
    Return the error kind for any exception.

    ScrapeError carries its own kind; timeouts and connection errors from
    libraries are transient; anything else is internal.
    """
    if isinstance(exc, ScrapeError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.INTERNAL


def is_retryable(exc: BaseException) -> bool:
    """Whether the worker loop may retry after this exception."""
    return classify(exc) in RETRYABLE_KINDS
