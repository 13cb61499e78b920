from __future__ import annotations

import logging

import requests

from ..config import SiteDescriptor
from ..errors import FetchError
from ..http_client import HttpClient
from ..models import RawPosting
from .extract import extract_raw_postings
from .registry import register

log = logging.getLogger(__name__)


@register("http")
class HttpFetcher:
    """
    Plain HTTP backend: GET the listing page and apply the site's CSS selectors.

    Works for server-rendered boards (Greenhouse, Lever, most ATS list pages).
    Pages that build their rows in JavaScript need the "browser" backend.
    """

    def __init__(self, client: HttpClient | None = None) -> None:
        self._client = client or HttpClient()

    def fetch_postings(self, site: SiteDescriptor) -> list[RawPosting]:
        if site.selectors is None:
            raise FetchError(f"{site.name}: no selectors configured")
        try:
            html = self._client.get_text(site.url)
        except requests.RequestException as e:
            raise FetchError(f"{site.name}: GET {site.url} failed: {e}") from e
        rows = extract_raw_postings(html, site.selectors, source=site.name)
        log.debug("%s: %d raw rows via http", site.name, len(rows))
        return rows

    def close(self) -> None:
        self._client.close()
