from __future__ import annotations

from collections.abc import Iterable, Mapping

OTHER = "Other"


def categorize(title: str, keyword_table: Mapping[str, Iterable[str]]) -> str:
    """
    Return the first category (in table order) with a keyword contained in the
    title, compared case-insensitively; "Other" when nothing matches.

    A title matching keywords from several categories goes to whichever
    category is listed first, so table order is part of the configuration.
    """
    lowered = (title or "").lower()
    for category, keywords in keyword_table.items():
        if any(kw and kw.lower() in lowered for kw in keywords):
            return category
    return OTHER
