"""Client for the external job-search API.

The executor only depends on the SearchClient protocol; ReedSearchClient is
the production implementation. Request timeouts are enforced here, not by
the scheduler.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Protocol

import requests

from src.core.clock import utc_today
from src.core.config import settings
from src.dtos.job_result_dto import JobResult

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_CHARS = 5000


class SearchError(Exception):
    """Base class for search API failures."""


class RateLimited(SearchError):
    """The API refused the call with HTTP 429."""


class NetworkError(SearchError):
    """Connection failure, timeout or 5xx from the API."""


class InvalidResponse(SearchError):
    """4xx other than 429, or a body that could not be parsed."""


class SearchClient(Protocol):
    def search(
        self,
        keywords: str,
        location: str,
        posted_within_days: int,
        *,
        api_key: str,
    ) -> list[JobResult]: ...


def parse_posted_date(value: Optional[str]) -> Optional[date]:
    """Reed dates are ``dd/mm/yyyy``."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%d/%m/%Y").date()
    except ValueError:
        return None


class ReedSearchClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        results_per_call: Optional[int] = None,
    ) -> None:
        self.base_url = (base_url or settings.SEARCH_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.SEARCH_REQUEST_TIMEOUT
        self.results_per_call = results_per_call or settings.SEARCH_RESULTS_PER_CALL

    def search(
        self,
        keywords: str,
        location: str,
        posted_within_days: int,
        *,
        api_key: str,
    ) -> list[JobResult]:
        params = {
            "keywords": keywords,
            "locationName": location,
            "postedByDirectEmployer": "true",
            "resultsToTake": self.results_per_call,
        }
        url = f"{self.base_url}/search"
        logger.info("Searching '%s' in %s", keywords, location)
        try:
            res = requests.get(
                url, params=params, auth=(api_key, ""), timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Search request failed: {e}") from e

        if res.status_code == 429:
            raise RateLimited("Search API rate limit hit")
        if res.status_code >= 500:
            raise NetworkError(f"Search API returned {res.status_code}")
        if res.status_code >= 400:
            raise InvalidResponse(f"Search API returned {res.status_code}")

        try:
            payload = res.json()
            rows = payload["results"]
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidResponse(f"Unexpected search response: {e}") from e

        cutoff = utc_today() - timedelta(days=posted_within_days)
        results: list[JobResult] = []
        for row in rows:
            posted = parse_posted_date(row.get("date"))
            if posted is not None and posted < cutoff:
                continue
            if not row.get("employerName") or not row.get("jobTitle"):
                continue
            description = row.get("jobDescription")
            results.append(
                JobResult(
                    job_id=str(row.get("jobId", "")),
                    title=row["jobTitle"],
                    company_name=row["employerName"],
                    location=row.get("locationName") or location,
                    url=row.get("jobUrl"),
                    posted_date=posted,
                    description=description[:DESCRIPTION_MAX_CHARS] if description else None,
                )
            )
        logger.info("Search '%s' in %s returned %d jobs", keywords, location, len(results))
        return results
