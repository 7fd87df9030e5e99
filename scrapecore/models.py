"""
Pydantic models exchanged across the scrape boundary.

Job is the structured output handed back to callers. ScrapeOptions is the
per-request input that travels with a job through the worker pool and the
engines.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

EngineName = Literal["hybrid", "auto", "firecrawl", "headed", "rod", "browser"]


class Salary(BaseModel):
    """Salary range of a posting."""

    currency: str = Field("", description="ISO currency code")
    min: int = Field(0, description="Lower bound")
    max: int = Field(0, description="Upper bound")


class Job(BaseModel):
    """Structured job posting extracted from a page."""

    title: str = Field(..., description="Job title")
    job_url: str = Field("", description="Canonical posting URL")
    company_name: str = Field(..., description="Hiring company")
    location: str = Field("", description="Location as written on the posting")
    currency: str = Field("", description="Salary currency (flat form)")
    salary_max: int | None = Field(None, description="Upper salary bound (flat form)")
    salary_min: int | None = Field(None, description="Lower salary bound (flat form)")
    salary: Salary = Field(default_factory=Salary)
    requirements: list[str] = Field(default_factory=list)
    description: str = ""
    responsibilities: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Backend Engineer",
                "job_url": "https://jobs.example.com/postings/42",
                "company_name": "Example Corp",
                "location": "Remote",
                "salary": {"currency": "USD", "min": 120000, "max": 160000},
                "requirements": ["5+ years Python"],
                "description": "Build the scraping platform.",
                "responsibilities": ["Own the worker pool"],
                "benefits": ["Health insurance"],
            }
        }
    )


class ScrapeOptions(BaseModel):
    """Per-request scrape options."""

    model_config = ConfigDict(extra="forbid")

    engine: EngineName | None = Field(None, description="Scraper engine; pool default when unset")
    timeout: float | None = Field(None, gt=0, description="Navigation timeout in seconds; also caps the caller wait")
    llm_provider: str | None = Field(None, description="Extraction provider; 'disabled' skips LLM")
    user_agent: str | None = Field(None, description="Override the configured user agent")
    proxy: str | None = Field(None, description="Proxy URL for the browser context")


# JSON schema sent to the hosted API in extract mode
JOB_EXTRACTION_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "job_url": {"type": "string"},
        "company_name": {"type": "string"},
        "location": {"type": "string"},
        "salary": {
            "type": "object",
            "properties": {
                "currency": {"type": "string"},
                "min": {"type": "number"},
                "max": {"type": "number"},
            },
        },
        "requirements": {"type": "array", "items": {"type": "string"}},
        "description": {"type": "string"},
        "responsibilities": {"type": "array", "items": {"type": "string"}},
        "benefits": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["title", "company_name"],
}
