"""
Engine abstractions shared by every scraping backend.

The hybrid selector, the factory and the worker pool only depend on these
interfaces, never on a concrete engine.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from scrapecore.models import Job, ScrapeOptions


@dataclass(frozen=True)
class ScrapeOutcome:
    """Successful scrape result.

    Attributes:
        job: Extracted job posting.
        engine: Name of the engine that produced it.
        content_length: Size of the raw content handed to extraction
            (0 when the hosted API extracted the job itself).
        escalated: True when the hybrid selector fell back after a CAPTCHA.
    """

    job: Job
    engine: str
    content_length: int = 0
    escalated: bool = False

    @property
    def engine_path(self) -> str:
        """Return "primary" for the browser engine, "secondary" for the hosted API."""
        return "primary" if self.engine == "browser" else "secondary"


@runtime_checkable
class ScrapeEngine(Protocol):
    """A backend that turns a URL into a Job."""

    name: str

    async def scrape(self, url: str, options: ScrapeOptions | None = None) -> ScrapeOutcome:
        """Scrape ``url``.

        Raises:
            ScrapeError: Classified failure.
        """
        ...

    async def is_healthy(self) -> bool: ...

    async def cleanup(self) -> None: ...


@runtime_checkable
class JobExtractor(Protocol):
    """Turns raw page content into a Job (LLM-backed in production)."""

    async def extract_job_data(self, content: str, url: str) -> Job:
        """Extract structured fields.

        Raises:
            NotJobPostingError: If the content is not a job posting.
        """
        ...
