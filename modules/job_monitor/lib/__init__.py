# modules/job_monitor/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import SiteDescriptor, SiteSelectors, Settings
from .engine import RunResult, RunState, run_once
from .errors import (
    ConfigError,
    DeliveryError,
    DetailFetchError,
    FetchError,
    JobMonitorError,
    PersistError,
    RunCancelled,
)
from .models import JobDetail, NotificationPayload, Posting, RawPosting

__all__ = [
    "ConfigError",
    "DeliveryError",
    "DetailFetchError",
    "FetchError",
    "JobDetail",
    "JobMonitorError",
    "NotificationPayload",
    "PersistError",
    "Posting",
    "RawPosting",
    "RunCancelled",
    "RunResult",
    "RunState",
    "Settings",
    "SiteDescriptor",
    "SiteSelectors",
    "run_once",
]
