from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..config import SiteDescriptor
from ..models import JobDetail, RawPosting


@runtime_checkable
class PostingFetcher(Protocol):
    """
    Fetch backend contract.

    - fetch_postings(site) returns every row found on the listing page, in page
      order, without filtering (the normalizer decides what is a posting).
    - Any navigation/timeout/extraction failure is raised as FetchError.
    - One instance serves a whole run (sites are fetched one after another);
      close() releases sessions/browsers and is called once at the end.
    """

    def fetch_postings(self, site: SiteDescriptor) -> list[RawPosting]: ...

    def close(self) -> None: ...


@runtime_checkable
class DetailFetcher(Protocol):
    """Extended job page lookup; failures are raised as DetailFetchError."""

    def fetch_job_detail(self, url: str) -> JobDetail: ...
