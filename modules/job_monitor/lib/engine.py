"""
Engine for one job monitor run: scrape each enabled site, decide novelty against
the stored baselines, persist the observed titles, and send one digest.

Features:
  - Sequential per-site scraping with a polite delay between sites
  - Per-site failure isolation (a failed site keeps its old baseline)
  - Fetch backend selection by name, with an optional fallback chain
  - Cooperative cancellation between sites via `stop_event`
  - Dependency injection for testability (`get_fetcher`, `store`, `notifier`,
    `detail_fetcher`, `sleep`)
  - Structured logging via `logging_bridge`
"""

from __future__ import annotations

import enum
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Protocol

from . import db, digest, logging_bridge
from .config import SiteDescriptor, Settings
from .errors import PersistError, RunCancelled
from .fetchers.base import DetailFetcher, PostingFetcher
from .fetchers.fallback import FallbackFetcher
from .models import NotificationPayload, Posting, SiteResult
from .normalize import normalize
from .tracker import NoveltyTracker

COMPONENT = "job_monitor.engine"

OUTCOME_SENT = "digest_sent"
OUTCOME_NO_NEW = "no_new_jobs"
OUTCOME_BUILT = "digest_built"  # digest ready but delivery disabled
OUTCOME_INGESTED = "ingested"  # ingest-only run: baselines updated, no digest


class RunState(enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    SCRAPING_SITE = "scraping_site"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"
    DONE = "done"
    FAILED = "failed"


class BaselineStore(Protocol):
    def load_baseline(self, site: str) -> set[str]: ...

    def save_baseline(self, site: str, titles: set[str]) -> None: ...


class Notifier(Protocol):
    def send_notification(self, payload: NotificationPayload) -> None: ...


@dataclass
class RunResult:
    outcome: str
    new_postings: list[Posting] = field(default_factory=list)
    all_postings: list[Posting] = field(default_factory=list)
    payload: NotificationPayload | None = None
    site_results: list[SiteResult] = field(default_factory=list)
    persisted_sites: list[str] = field(default_factory=list)
    unknown_sites: list[str] = field(default_factory=list)
    total_us: int = 0

    @property
    def failed_sites(self) -> list[str]:
        return [r.site for r in self.site_results if not r.ok]

    def meta(self) -> dict:
        """Small JSON-friendly summary handed back to the runner."""
        new_by_site: dict[str, int] = {}
        for p in self.new_postings:
            new_by_site[p.company] = new_by_site.get(p.company, 0) + 1
        return {
            "outcome": self.outcome,
            "new_total": len(self.new_postings),
            "seen_total": len(self.all_postings),
            "new_by_site": new_by_site,
            "failed_sites": self.failed_sites,
            "persisted_sites": list(self.persisted_sites),
            "unknown_sites": list(self.unknown_sites),
            "subject": self.payload.subject if self.payload else None,
            "total_us": self.total_us,
        }


# =============================================================================
# DEFAULT FETCHER LOOKUP (PRODUCTION)
# =============================================================================
def _default_get_fetcher(method: str) -> PostingFetcher:
    from .fetchers.registry import create

    return create(method)


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    *,
    get_fetcher: Callable[[str], PostingFetcher] | None = None,
    store: BaselineStore | None = None,
    notifier: Notifier | None = None,
    detail_fetcher: DetailFetcher | None = None,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunResult:
    """
    Run one complete cycle: scrape, detect novelty, persist, notify.

    Args:
        settings: validated monitor settings.
        get_fetcher: method name -> fetcher instance (defaults to the registry).
        store: baseline storage (defaults to SQLite at settings.sqlite_path).
        notifier: required when settings.delivers and something is new.
        detail_fetcher: used by the digest when settings.fetch_job_details.
        stop_event: when set, the run stops before the next site and raises
            RunCancelled without persisting anything.
        sleep: delay function between sites (tests pass a no-op).

    Raises:
        RunCancelled, DeliveryError, and anything unexpected outside the
        per-site scrape step.
    """
    start_ns = time.perf_counter_ns()
    get_fetcher_func = get_fetcher or _default_get_fetcher
    store = store or db.SqliteBaselineStore(settings.sqlite_path)
    fetchers: dict[str, PostingFetcher] = {}
    state = RunState.IDLE

    def _enter(new_state: RunState, **extra) -> None:
        nonlocal state
        state = new_state
        logging_bridge.activity({"component": COMPONENT, "op": "state", "state": new_state.value, **extra})

    try:
        # ---------------------------------------------------------------------
        # INITIALIZING: resolve sites, load baselines
        # ---------------------------------------------------------------------
        _enter(RunState.INITIALIZING)
        sites, unknown = settings.resolve_enabled()
        for name in unknown:
            logging_bridge.error({
                "component": COMPONENT,
                "op": "unknown_site",
                "site": name,
                "configured": [s.name for s in settings.sites],
            })

        tracker = NoveltyTracker()
        for site in sites:
            tracker.load(site.name, store.load_baseline(site.name))

        # ---------------------------------------------------------------------
        # SCRAPING: one site at a time
        # ---------------------------------------------------------------------
        site_results: list[SiteResult] = []
        for i, site in enumerate(sites):
            if stop_event is not None and stop_event.is_set():
                raise RunCancelled(f"cancelled before site {site.name!r} ({i}/{len(sites)} done)")
            if i > 0 and settings.site_delay_seconds > 0:
                sleep(settings.site_delay_seconds)
            _enter(RunState.SCRAPING_SITE, index=i, site=site.name)
            site_results.append(_scrape_site(settings, site, tracker, fetchers, get_fetcher_func))

        if stop_event is not None and stop_event.is_set():
            raise RunCancelled("cancelled after scraping, before persisting")

        # ---------------------------------------------------------------------
        # AGGREGATING
        # ---------------------------------------------------------------------
        _enter(RunState.AGGREGATING)
        all_postings = [p for r in site_results for p in r.postings]
        new_postings = [p for p in all_postings if p.is_new]

        # ---------------------------------------------------------------------
        # PERSISTING: replace each eligible site's baseline
        # ---------------------------------------------------------------------
        _enter(RunState.PERSISTING)
        persisted = _persist(settings, site_results, tracker, store)

        result = RunResult(
            outcome=OUTCOME_NO_NEW,
            new_postings=new_postings,
            all_postings=all_postings,
            site_results=site_results,
            persisted_sites=persisted,
            unknown_sites=unknown,
        )

        # ---------------------------------------------------------------------
        # NOTIFYING
        # ---------------------------------------------------------------------
        _enter(RunState.NOTIFYING)
        if settings.ingest_only_no_email:
            result.outcome = OUTCOME_INGESTED
        elif not new_postings:
            logging_bridge.activity({"component": COMPONENT, "op": "no_new", "sites": [s.name for s in sites]})
        else:
            result.payload = digest.build_digest(
                new_postings,
                fetch_details=settings.fetch_job_details,
                detail_fetcher=detail_fetcher,
                monitored_sites=[s.name for s in sites],
            )
            if settings.delivers:
                if notifier is None:
                    raise RuntimeError("Sending is enabled but no notifier was provided.")
                notifier.send_notification(result.payload)
                result.outcome = OUTCOME_SENT
                logging_bridge.activity({
                    "component": COMPONENT,
                    "op": "sent",
                    "subject": result.payload.subject,
                    "new_total": len(new_postings),
                })
            else:
                result.outcome = OUTCOME_BUILT

        result.total_us = int((time.perf_counter_ns() - start_ns) // 1000)
        _enter(RunState.DONE, outcome=result.outcome)
        _log_summary(result)
        return result
    except Exception as e:
        logging_bridge.error({
            "component": COMPONENT,
            "op": "state",
            "state": RunState.FAILED.value,
            "failed_in": state.value,
            "error": repr(e),
        })
        raise
    finally:
        _close_all(fetchers)


# =============================================================================
# STEPS
# =============================================================================
def _fetcher_for(
    settings: Settings,
    site: SiteDescriptor,
    fetchers: dict[str, PostingFetcher],
    get_fetcher: Callable[[str], PostingFetcher],
) -> PostingFetcher:
    """One instance per method per run; chains get wrapped in FallbackFetcher."""
    chain: list[tuple[str, PostingFetcher]] = []
    for method in settings.methods_for(site):
        if method not in fetchers:
            fetchers[method] = get_fetcher(method)
        chain.append((method, fetchers[method]))
    if len(chain) == 1:
        return chain[0][1]
    return FallbackFetcher(chain)


def _scrape_site(
    settings: Settings,
    site: SiteDescriptor,
    tracker: NoveltyTracker,
    fetchers: dict[str, PostingFetcher],
    get_fetcher: Callable[[str], PostingFetcher],
) -> SiteResult:
    t0 = time.perf_counter_ns()
    try:
        fetcher = _fetcher_for(settings, site, fetchers, get_fetcher)
        raw = fetcher.fetch_postings(site)
    except Exception as e:
        logging_bridge.error({
            "component": COMPONENT,
            "op": "site_failed",
            "site": site.name,
            "url": site.url,
            "error": repr(e),
        })
        return SiteResult(site=site.name, error=repr(e))

    postings: list[Posting] = []
    rejected = 0
    for row in raw:
        p = normalize(row, site, settings.default_category_keywords)
        if p is None:
            rejected += 1
            continue
        postings.append(replace(p, is_new=tracker.is_new(site.name, p.title)))

    result = SiteResult(site=site.name, postings=postings)
    logging_bridge.activity({
        "component": COMPONENT,
        "op": "site_scraped",
        "site": site.name,
        "raw": len(raw),
        "rejected": rejected,
        "found": len(postings),
        "new": len(result.new),
        "duration_us": int((time.perf_counter_ns() - t0) // 1000),
    })
    return result


def _persist(
    settings: Settings,
    site_results: list[SiteResult],
    tracker: NoveltyTracker,
    store: BaselineStore,
) -> list[str]:
    """
    Replace and save the baseline of every site that produced postings
    (or only of those with new postings, when persist_only_on_new).
    Returns the sites actually written.
    """
    persisted: list[str] = []
    for r in site_results:
        if not r.ok or not r.postings:
            continue
        if settings.persist_only_on_new and not r.new:
            continue
        observed = tracker.record_observed(r.site, (p.title for p in r.postings))
        try:
            store.save_baseline(r.site, set(observed))
        except PersistError as e:
            logging_bridge.error({
                "component": COMPONENT,
                "op": "persist_failed",
                "site": r.site,
                "error": repr(e),
            })
            continue
        persisted.append(r.site)
    return persisted


def _close_all(fetchers: dict[str, PostingFetcher]) -> None:
    for method, fetcher in fetchers.items():
        try:
            fetcher.close()
        except Exception as e:
            logging_bridge.error({"component": COMPONENT, "op": "close_failed", "method": method, "error": repr(e)})


def _log_summary(result: RunResult) -> None:
    logging_bridge.activity({
        "component": COMPONENT,
        "op": "summary",
        **result.meta(),
        "found_by_site": {r.site: len(r.postings) for r in result.site_results},
    })
