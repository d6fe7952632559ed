"""
DTOs for results returned by the external job-search collaborator.
"""

from datetime import date

from pydantic import BaseModel, Field


class JobResult(BaseModel):
    """One job posting as returned by the search API."""

    job_id: str = Field(..., description="Source-side job identifier")
    title: str
    company_name: str
    location: str | None = None
    url: str | None = None
    posted_date: date | None = None
    description: str | None = Field(default=None, description="Truncated job description")
