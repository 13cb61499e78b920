from __future__ import annotations

import copy
import logging
from typing import Any

# Prefer the service's JSONL sink; default to stdlib logging when the monitor
# is imported on its own (scripts, notebooks). Silent on import.
_logging_backend = None
try:
    from service import logging_utils as _svc_logging

    _logging_backend = _svc_logging
except ImportError:
    _logging_backend = None

_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """Shallow-copy record and mask secret-looking top-level fields."""
    redacted = copy.copy(record)
    for k in list(redacted):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.startswith("smtp_") or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record (dict with at least 'component' and 'op').
    Goes to service.logging_utils when present, else std logging at INFO.
    """
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_activity_log(payload)
            return
        except (OSError, TypeError, ValueError):
            logging.getLogger("job_monitor.activity").debug("activity sink failed", exc_info=True)
    logging.getLogger("job_monitor.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """Same as activity(), for failures; std logging fallback at ERROR."""
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_error_log(payload)
            return
        except (OSError, TypeError, ValueError):
            logging.getLogger("job_monitor.error").debug("error sink failed", exc_info=True)
    logging.getLogger("job_monitor.error").error(payload)
