from __future__ import annotations


class JobMonitorError(Exception):
    """Base class for every error raised by the job monitor."""


class ConfigError(JobMonitorError, ValueError):
    """Raised when provided kwargs/env/sites file cannot form a valid Settings."""


class FetchError(JobMonitorError):
    """A site's listing page could not be fetched or extracted."""


class DetailFetchError(JobMonitorError):
    """Extended details for a single job could not be fetched."""


class PersistError(JobMonitorError):
    """A site's baseline could not be written."""


class DeliveryError(JobMonitorError):
    """The digest was built but could not be delivered."""

    # Raised after baselines are saved, so the whole run must not be repeated.
    retryable = False


class RunCancelled(JobMonitorError):
    """The run was aborted between sites at the caller's request."""
