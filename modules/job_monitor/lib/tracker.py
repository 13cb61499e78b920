from __future__ import annotations

from collections.abc import Iterable, Mapping


class NoveltyTracker:
    """
    In-memory per-site baselines (site name -> titles seen last run).

    The title is the only identity key: a retitled posting looks new, and the
    same title at a different URL looks already seen. Storage is the caller's
    business; this class only answers queries and swaps sets.
    """

    def __init__(self, baselines: Mapping[str, Iterable[str]] | None = None) -> None:
        self._seen: dict[str, frozenset[str]] = {
            site: frozenset(titles) for site, titles in (baselines or {}).items()
        }

    def load(self, site: str, titles: Iterable[str]) -> None:
        self._seen[site] = frozenset(titles)

    def is_new(self, site: str, title: str) -> bool:
        return title not in self._seen.get(site, frozenset())

    def record_observed(self, site: str, titles: Iterable[str]) -> frozenset[str]:
        """Replace (not merge) the site's set with exactly `titles`."""
        observed = frozenset(titles)
        self._seen[site] = observed
        return observed

    def baseline(self, site: str) -> frozenset[str]:
        return self._seen.get(site, frozenset())

    def sites(self) -> list[str]:
        return list(self._seen)
