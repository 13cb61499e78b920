from __future__ import annotations

from bs4 import BeautifulSoup, Tag

from ..config import SiteSelectors
from ..errors import FetchError
from ..models import RawPosting


def _text(el: Tag | None) -> str | None:
    if el is None:
        return None
    return el.get_text(" ", strip=True) or None


def extract_raw_postings(html: str, selectors: SiteSelectors, *, source: str = "") -> list[RawPosting]:
    """
    Apply a site's selectors to a listing page.

    Every element matched by job_list becomes one RawPosting if it contains both
    a title element and a link element. Header rows and empty cells are left in;
    the normalizer filters them. No job_list match at all is a FetchError,
    since a listing page that renders zero rows almost always means the
    selectors no longer fit the page.
    """
    soup = BeautifulSoup(html, "html5lib")
    rows = soup.select(selectors.job_list)
    if not rows:
        raise FetchError(f"{source or 'page'}: no elements match job_list selector {selectors.job_list!r}")

    out: list[RawPosting] = []
    for row in rows:
        title_el = row.select_one(selectors.job_title)
        link_el = row.select_one(selectors.job_url)
        if title_el is None or link_el is None:
            continue
        out.append(
            RawPosting(
                title=" ".join(title_el.get_text(" ", strip=True).split()),
                raw_url=str(link_el.get("href") or "").strip(),
                location=_text(row.select_one(selectors.location)) if selectors.location else None,
                department=_text(row.select_one(selectors.department)) if selectors.department else None,
            )
        )
    return out
