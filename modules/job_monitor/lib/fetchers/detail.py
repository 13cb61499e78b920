from __future__ import annotations

import logging

import requests
from bs4 import BeautifulSoup

from ..errors import DetailFetchError
from ..http_client import HttpClient
from ..models import JobDetail

log = logging.getLogger(__name__)

DESCRIPTION_SELECTOR = '#content, .job-description, [data-testid="job-description"]'
LOCATION_SELECTOR = '.location, [data-qa="job-location"], [data-testid="job-location"]'
DEPARTMENT_SELECTOR = '.department, [data-qa="job-department"], [data-testid="job-team"]'
SALARY_SELECTOR = '.salary, .compensation, [data-testid="salary"]'

REQUIREMENT_HINTS = ("require", "must have", "experience", "skills")
REMOTE_HINTS = ("remote", "work from home", "distributed")

MAX_DESCRIPTION = 500
MAX_REQUIREMENTS = 5


def parse_job_detail(html: str) -> JobDetail:
    """
    Pull the extended fields out of a job page.

    Heuristic: the first element matching each selector is used, requirement
    lines are <li>/<p> whose text mentions one of REQUIREMENT_HINTS, and
    "remote" means the page text mentions one of REMOTE_HINTS anywhere.
    """
    soup = BeautifulSoup(html, "html5lib")

    def first_text(selector: str) -> str:
        el = soup.select_one(selector)
        return el.get_text(" ", strip=True) if el else ""

    requirements: list[str] = []
    for el in soup.select("li, p"):
        text = el.get_text(" ", strip=True)
        if text and any(h in text.lower() for h in REQUIREMENT_HINTS):
            requirements.append(text)
            if len(requirements) >= MAX_REQUIREMENTS:
                break

    body = soup.body.get_text(" ", strip=True).lower() if soup.body else ""
    return JobDetail(
        description=first_text(DESCRIPTION_SELECTOR)[:MAX_DESCRIPTION],
        requirements=tuple(requirements),
        location=first_text(LOCATION_SELECTOR) or "Not specified",
        department=first_text(DEPARTMENT_SELECTOR) or "Not specified",
        salary=first_text(SALARY_SELECTOR) or None,
        remote=any(h in body for h in REMOTE_HINTS),
    )


class HttpDetailFetcher:
    """Fetch a job page over HTTP and parse it with parse_job_detail()."""

    def __init__(self, client: HttpClient | None = None) -> None:
        self._client = client or HttpClient()

    def fetch_job_detail(self, url: str) -> JobDetail:
        try:
            html = self._client.get_text(url)
        except requests.RequestException as e:
            raise DetailFetchError(f"GET {url} failed: {e}") from e
        log.debug("fetched job page %s (%d chars)", url, len(html))
        return parse_job_detail(html)

    def close(self) -> None:
        self._client.close()
