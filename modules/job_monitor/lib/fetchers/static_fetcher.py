from __future__ import annotations

from typing import Any

from ..config import SiteDescriptor
from ..errors import FetchError
from ..models import RawPosting
from .registry import register


@register("static")
class StaticFetcher:
    """
    A zero-network backend used for tests and dry runs.

    Each site's params may contain:
      - items: list[{title, url, location?, department?}]
      - error: str   # if set, fetch_postings raises FetchError with this message

    Items are returned as-is (no filtering), like a real backend would.
    """

    def fetch_postings(self, site: SiteDescriptor) -> list[RawPosting]:
        params: dict[str, Any] = dict(site.params or {})
        if params.get("error"):
            raise FetchError(f"{site.name}: {params['error']}")

        raw_items = params.get("items") or []
        if not isinstance(raw_items, list):
            raise FetchError(f"{site.name}: params.items must be a list")

        out: list[RawPosting] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            out.append(
                RawPosting(
                    title=str(item.get("title") or ""),
                    raw_url=str(item.get("url") or item.get("raw_url") or ""),
                    location=item.get("location"),
                    department=item.get("department"),
                )
            )
        return out

    def close(self) -> None:
        pass
