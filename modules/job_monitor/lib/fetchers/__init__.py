from __future__ import annotations

from .base import DetailFetcher, PostingFetcher
from .browser_fetcher import BrowserFetcher
from .detail import HttpDetailFetcher, parse_job_detail
from .fallback import FallbackFetcher
from .http_fetcher import HttpFetcher
from .registry import available, create, get, register
from .static_fetcher import StaticFetcher

__all__ = [
    "BrowserFetcher",
    "DetailFetcher",
    "FallbackFetcher",
    "HttpDetailFetcher",
    "HttpFetcher",
    "PostingFetcher",
    "StaticFetcher",
    "available",
    "create",
    "get",
    "parse_job_detail",
    "register",
]
