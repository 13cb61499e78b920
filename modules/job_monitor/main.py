from __future__ import annotations

import threading
from typing import Any

from .lib import db
from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.errors import ConfigError
from .lib.fetchers.detail import HttpDetailFetcher
from .lib.logging_bridge import activity as log_activity
from .lib.notify import EmailNotifier


def run(stop_event: threading.Event | None = None, **kwargs: Any) -> dict:
    """
    Entry point for the 'job_monitor' module.

    Accepts kwargs (from scheduler/runner), including:
      sites_path: str                      # JSON/YAML sites file (or JOB_MONITOR_SITES_PATH)
      sites: list[dict]                    # inline alternative
      enabled_sites: list[str] | "a,b"     # or ENABLED_SITES
      fetch_job_details: bool = False      # or FETCH_JOB_DETAILS
      sqlite_path: str = "/app/local/state/jobmonitor.db"
      fetch_method: str = "http"           # http | browser | static
      fallback_methods: list[str] = []
      site_delay_seconds: float = 2.0
      persist_only_on_new: bool = False
      email_to: list[str] | str            # or NOTIFICATION_EMAIL
      send_email: bool = True              # or SEND_EMAIL; JOB_MONITOR_DRY_RUN=1 disables

      # Special-run flags:
      ingest_only_no_email: bool = False

    The module sends its own digest, so the runner never emails on its behalf.

    Returns:
      meta dict (outcome, counts, failed/persisted sites, subject).

    Raises:
      ConfigError before any site is fetched; DeliveryError when the digest
      could not be sent; RunCancelled when `stop_event` fires between sites.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    notifier = None
    if settings.delivers:
        from service import emailer

        if not emailer.has_credentials():
            raise ConfigError(
                "Sending is enabled but SMTP credentials are missing. "
                "Set SMTP_USERNAME/SMTP_PASSWORD (or EMAIL_USER/EMAIL_PASS), or disable sending."
            )
        notifier = EmailNotifier(settings.email_to)

    sites, _unknown = settings.resolve_enabled()
    log_activity({
        "component": "job_monitor.main",
        "op": "start",
        "sites": [s.name for s in sites],
        "fetch_method": settings.fetch_method,
        "flags": {
            "fetch_job_details": settings.fetch_job_details,
            "persist_only_on_new": settings.persist_only_on_new,
            "send_email": settings.send_email,
            "ingest_only_no_email": settings.ingest_only_no_email,
        },
    })

    db.init_db(settings.sqlite_path)
    detail_fetcher = HttpDetailFetcher() if settings.fetch_job_details else None
    try:
        result = _run_engine(settings, notifier=notifier, detail_fetcher=detail_fetcher, stop_event=stop_event)
    finally:
        if detail_fetcher is not None:
            detail_fetcher.close()
    return result.meta()
