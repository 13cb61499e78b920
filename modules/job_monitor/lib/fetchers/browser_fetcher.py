from __future__ import annotations

import logging
from typing import Any

from ..config import SiteDescriptor
from ..errors import FetchError
from ..http_client import BROWSER_UA
from ..models import RawPosting
from .extract import extract_raw_postings
from .registry import register

log = logging.getLogger(__name__)

NAV_TIMEOUT_MS = 30_000
LIST_TIMEOUT_MS = 15_000


def _playwright_api(source: str = "browser"):
    """playwright.sync_api, or FetchError when the optional browser extra is missing."""
    try:
        from playwright import sync_api
    except ImportError as e:
        raise FetchError(f"{source}: playwright is not installed (pip install job-monitor[browser])") from e
    return sync_api


@register("browser")
class BrowserFetcher:
    """
    Headless Chromium backend (Playwright, sync API) for pages that render their
    listings client-side.

    One browser and one page are opened lazily on the first site and reused for
    every later site in the run; close() shuts them down.
    """

    def __init__(self, headless: bool = True) -> None:
        self._headless = headless
        self._pw: Any = None
        self._browser: Any = None
        self._page: Any = None

    def _ensure_page(self) -> Any:
        if self._page is None:
            self._pw = _playwright_api().sync_playwright().start()
            self._browser = self._pw.chromium.launch(
                headless=self._headless,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
            )
            context = self._browser.new_context(viewport={"width": 1280, "height": 720}, user_agent=BROWSER_UA)
            self._page = context.new_page()
        return self._page

    def fetch_postings(self, site: SiteDescriptor) -> list[RawPosting]:
        if site.selectors is None:
            raise FetchError(f"{site.name}: no selectors configured")
        api = _playwright_api(site.name)
        try:
            page = self._ensure_page()
            page.goto(site.url, wait_until="networkidle", timeout=NAV_TIMEOUT_MS)
            page.wait_for_selector(site.selectors.job_list, timeout=LIST_TIMEOUT_MS)
            html = page.content()
        except api.Error as e:
            raise FetchError(f"{site.name}: browser fetch of {site.url} failed: {e}") from e
        rows = extract_raw_postings(html, site.selectors, source=site.name)
        log.debug("%s: %d raw rows via browser", site.name, len(rows))
        return rows

    def close(self) -> None:
        browser, pw = self._browser, self._pw
        self._page = self._browser = self._pw = None
        try:
            if browser is not None:
                browser.close()
        finally:
            if pw is not None:
                pw.stop()
