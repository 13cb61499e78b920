from __future__ import annotations

import logging
from collections.abc import Sequence

from ..config import SiteDescriptor
from ..errors import FetchError
from ..models import RawPosting
from .base import PostingFetcher

log = logging.getLogger(__name__)


class FallbackFetcher:
    """
    Try several backends in order for one site; the first that does not raise
    FetchError wins. If all fail, raise one FetchError naming every attempt.
    Closing is left to whoever created the wrapped fetchers.
    """

    def __init__(self, fetchers: Sequence[tuple[str, PostingFetcher]]) -> None:
        if not fetchers:
            raise ValueError("FallbackFetcher needs at least one fetcher")
        self._fetchers = list(fetchers)

    def fetch_postings(self, site: SiteDescriptor) -> list[RawPosting]:
        failures: list[str] = []
        for method, fetcher in self._fetchers:
            try:
                return fetcher.fetch_postings(site)
            except FetchError as e:
                log.warning("%s: %s backend failed, trying next: %s", site.name, method, e)
                failures.append(f"{method}: {e}")
        raise FetchError(f"{site.name}: all fetch methods failed ({'; '.join(failures)})")

    def close(self) -> None:
        pass
