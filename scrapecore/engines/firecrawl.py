"""
Secondary engine: Firecrawl hosted scraping API.

Two paths:
- extract mode (use_extract): v2/scrape with a JSON schema so the API
  returns the job fields directly; falls back to scrape mode on failure
- scrape mode: v1/scrape for markdown/HTML, then the JobExtractor
"""

import asyncio
from typing import Any

import httpx
from pydantic import ValidationError

from scrapecore.engines.base import JobExtractor, ScrapeOutcome
from scrapecore.models import JOB_EXTRACTION_SCHEMA, Job, ScrapeOptions
from scrapecore.utils.backoff import calculate_linear_backoff
from scrapecore.utils.config import FirecrawlConfig, get_settings
from scrapecore.utils.errors import (
    AuthError,
    MalformedRequestError,
    NotJobPostingError,
    ScrapeError,
    TransientError,
    UpstreamRateLimitedError,
)
from scrapecore.utils.logging import get_logger

logger = get_logger(__name__)

# Cache age accepted by the hosted API for extract requests (48h, ms)
EXTRACT_MAX_AGE_MS = 172_800_000


def map_http_error(status_code: int, endpoint: str, body: str = "") -> ScrapeError:
    """Classify a non-2xx Firecrawl response.

    Args:
        status_code: HTTP status.
        endpoint: Request path, for the message.
        body: Response body (truncated into details).

    Returns:
        Classified error.
    """
    message = f"firecrawl {endpoint} returned status {status_code}"
    details = {"status_code": status_code, "body": body[:500]} if body else {"status_code": status_code}

    if status_code in (401, 403):
        return AuthError(message, details=details)
    if status_code in (400, 422):
        return MalformedRequestError(message, details=details)
    if status_code == 429:
        return UpstreamRateLimitedError(message, details=details)
    return TransientError(message, details=details)


def find_job_object(value: Any) -> dict[str, Any] | None:
    """Depth-first search for a dict carrying both title and company_name."""
    if isinstance(value, dict):
        if "title" in value and "company_name" in value:
            return value
        for child in value.values():
            found = find_job_object(child)
            if found is not None:
                return found
    elif isinstance(value, list):
        for item in value:
            found = find_job_object(item)
            if found is not None:
                return found
    return None


def validate_extracted_job(data: dict[str, Any], url: str) -> Job:
    """Build a Job from an extract payload.

    Raises:
        NotJobPostingError: Title or company missing, or fields unusable.
    """
    if not str(data.get("title") or "").strip():
        raise NotJobPostingError("extracted job missing title")
    if not str(data.get("company_name") or "").strip():
        raise NotJobPostingError("extracted job missing company_name")

    cleaned = {k: v for k, v in data.items() if v is not None}
    salary = cleaned.get("salary")
    if isinstance(salary, dict):
        cleaned["salary"] = {
            k: int(v) if k in ("min", "max") and isinstance(v, (int, float)) else v
            for k, v in salary.items()
            if v is not None
        }

    try:
        job = Job.model_validate(cleaned)
    except ValidationError as e:
        raise NotJobPostingError(f"extracted job failed validation: {e.error_count()} errors") from e

    if not job.job_url:
        job = job.model_copy(update={"job_url": url})
    return job


class FirecrawlEngine:
    """Scrapes through the Firecrawl HTTP API."""

    name = "firecrawl"

    def __init__(
        self,
        extractor: JobExtractor,
        config: FirecrawlConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Firecrawl engine.

        Args:
            extractor: Used in scrape mode to turn content into a Job.
            config: Firecrawl configuration. Uses settings if None.
            client: Preconfigured HTTP client (tests inject a mock transport).
        """
        self._extractor = extractor
        self._config = config or get_settings().firecrawl
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._config.api_key:
                headers["Authorization"] = f"Bearer {self._config.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._config.api_url.rstrip("/"),
                headers=headers,
                timeout=httpx.Timeout(self._config.timeout_seconds),
            )
            self._owns_client = True
        return self._client

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST and return the JSON body.

        Raises:
            ScrapeError: Classified by status; network failures are transient.
        """
        client = await self._get_client()
        try:
            response = await client.post(endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise TransientError(f"firecrawl {endpoint} timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientError(f"firecrawl {endpoint} request failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning("Firecrawl request failed", endpoint=endpoint, status_code=response.status_code)
            raise map_http_error(response.status_code, endpoint, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise TransientError(f"firecrawl {endpoint} returned invalid JSON") from e

    # =========================================================================
    # Extract mode
    # =========================================================================

    async def extract_job(self, url: str) -> Job:
        """Ask the API to extract the job with a JSON schema.

        Raises:
            NotJobPostingError: No job object, or required fields missing.
            ScrapeError: HTTP failure.
        """
        payload = {
            "url": url,
            "onlyMainContent": True,
            "maxAge": EXTRACT_MAX_AGE_MS,
            "parsers": ["pdf"],
            "formats": [{"type": "json", "schema": JOB_EXTRACTION_SCHEMA}],
        }
        logger.info("Sending Firecrawl extract request", url=url)

        root = await self._post("/v2/scrape", payload)

        match = find_job_object(root)
        if match is None:
            logger.warning("Could not find job object in extract response", url=url)
            raise NotJobPostingError("extract response did not contain a matching job object")

        return validate_extracted_job(match, url)

    # =========================================================================
    # Scrape mode
    # =========================================================================

    async def scrape_content(self, url: str) -> str:
        """Fetch page content as markdown (preferred) or HTML.

        Retries retryable failures up to max_retries attempts with a linear
        delay between them.

        Raises:
            TransientError: No content in the response, or retries exhausted.
            ScrapeError: Non-retryable HTTP failure.
        """
        payload = {"url": url, "formats": list(self._config.formats)}
        last_error: ScrapeError | None = None

        for attempt in range(1, self._config.max_retries + 1):
            logger.info(
                "Firecrawl scrape attempt",
                url=url,
                attempt=attempt,
                max_retries=self._config.max_retries,
            )
            try:
                body = await self._post("/v1/scrape", payload)
                break
            except ScrapeError as e:
                if not e.retryable:
                    raise
                last_error = e
                logger.info("Firecrawl scrape attempt failed", attempt=attempt, error=str(e))
                if attempt < self._config.max_retries:
                    await asyncio.sleep(calculate_linear_backoff(attempt, 1.0))
        else:
            assert last_error is not None
            raise TransientError(
                f"firecrawl scraping failed after {self._config.max_retries} attempts: {last_error}"
            ) from last_error

        data = body.get("data") if isinstance(body.get("data"), dict) else body
        content = data.get("markdown") or data.get("html") or ""
        if not content:
            raise TransientError("no content found in Firecrawl response")

        logger.info("Scraped content", url=url, content_length=len(content))
        return content

    async def scrape(self, url: str, options: ScrapeOptions | None = None) -> ScrapeOutcome:
        options = options or ScrapeOptions()
        logger.info("Starting Firecrawl scrape", url=url, use_extract=self._config.use_extract)

        if self._config.use_extract:
            try:
                job = await self.extract_job(url)
                logger.info(
                    "Firecrawl extract succeeded",
                    url=url,
                    job_title=job.title,
                    company=job.company_name,
                )
                return ScrapeOutcome(job=job, engine=self.name, content_length=0)
            except ScrapeError as e:
                logger.warning(
                    "Firecrawl extract failed; falling back to scrape + LLM",
                    url=url,
                    error=str(e),
                    error_kind=e.kind.value,
                )

        content = await self.scrape_content(url)

        if options.llm_provider == "disabled":
            raise MalformedRequestError("LLM processing is required for scraping but was disabled")

        job = await self._extractor.extract_job_data(content, url)
        if not job.job_url:
            job = job.model_copy(update={"job_url": url})

        logger.info("Firecrawl scrape completed", url=url, job_title=job.title, company=job.company_name)
        return ScrapeOutcome(job=job, engine=self.name, content_length=len(content))

    async def is_healthy(self) -> bool:
        if not self._config.api_key:
            logger.info("Firecrawl API key not configured")
            return False
        return True

    async def cleanup(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
