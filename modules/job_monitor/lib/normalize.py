from __future__ import annotations

from collections.abc import Iterable, Mapping

from .categorize import categorize
from .config import SiteDescriptor
from .models import Posting, RawPosting
from .utils import origin

# Text of the header row some listing tables render like a posting.
HEADER_SENTINEL = "Job"


def resolve_url(raw_url: str, site: SiteDescriptor) -> str:
    """
    Absolute links pass through untouched; anything else is prefixed with the
    site's url_prefix (or the origin of site.url). No path clean-up is done.
    """
    if raw_url.lower().startswith(("http://", "https://")):
        return raw_url
    return f"{site.url_prefix or origin(site.url)}{raw_url}"


def normalize(
    raw: RawPosting,
    site: SiteDescriptor,
    default_keywords: Mapping[str, Iterable[str]],
    *,
    is_new: bool = False,
) -> Posting | None:
    """
    Turn a RawPosting into a Posting, or return None for rows that are not
    postings (no title, no link, or the table header). Rejects are not logged.
    """
    title = (raw.title or "").strip()
    raw_url = (raw.raw_url or "").strip()
    if not title or not raw_url or title == HEADER_SENTINEL:
        return None

    keywords = site.category_keywords or default_keywords
    return Posting(
        title=title,
        url=resolve_url(raw_url, site),
        category=categorize(title, keywords),
        company=site.name,
        location=(raw.location or "").strip() or None,
        department=(raw.department or "").strip() or None,
        is_new=is_new,
    )
