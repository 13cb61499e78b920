# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

# ---- Configuration (env, read on every write so tests can redirect) ---------
#
#   LOG_DIR                 base directory (default /app/local/logs)
#   ACTIVITY_LOG_PREFIX     default "activity"
#   ERROR_LOG_PREFIX        default "error"
#   LOG_MAX_BYTES           size rotation threshold; <=0 disables (default 0)
#
# Files are named {prefix}-YYYY-MM-DD.jsonl, so there is one file per day anyway.

DEFAULT_LOG_DIR = "/app/local/logs"
REDACTED = "***REDACTED***"

# Case-insensitive substrings of keys whose values never reach disk
_DEFAULT_REDACT_KEYS = frozenset({
    "password",
    "passwd",
    "token",
    "apikey",
    "api_key",
    "secret",
    "smtp_",
    "email_pass",
    "authorization",
    "cookie",
})

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


def _log_dir() -> str:
    return os.getenv("LOG_DIR") or DEFAULT_LOG_DIR


def _max_bytes() -> int:
    try:
        return int(os.getenv("LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one structured activity record to today's activity file.

    The record is redacted and stamped (ts/host/pid) on a copy; the caller's
    dict is never mutated. Raises OSError on unrecoverable I/O.
    """
    _write_jsonl(log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Same as write_activity_log(), into today's error file."""
    _write_jsonl(log_path_for_today(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def log_path_for_today(prefix: str) -> str:
    return os.path.join(_log_dir(), f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def read_records(path: str) -> list[dict[str, Any]]:
    """Load every JSON line of a log file (diagnostics and tests)."""
    if not os.path.exists(path):
        return []
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def redact(record: dict[str, Any], keys: Iterable[str] | None = None) -> dict[str, Any]:
    """Deep copy of `record` with secret-looking keys (substring match) masked."""
    return _redact_deep(record, tuple(k.lower() for k in (keys or _DEFAULT_REDACT_KEYS)))


# ---- Internal helpers --------------------------------------------------------


def _rotate_if_needed(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    rotated = f"{path}.{_dt.datetime.now().strftime('%Y%m%d-%H%M%S')}"
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, rotated)


def _scrub_bearer(value: str) -> str:
    # "Bearer abc" -> "Bearer ***REDACTED***"
    if "bearer " in value.lower():
        scheme = value.split(" ", 1)[0]
        return f"{scheme} {REDACTED}"
    return value


def _redact_deep(value: Any, patterns: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and any(p in k.lower() for p in patterns) else _redact_deep(v, patterns)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _stamp(record: dict[str, Any]) -> dict[str, Any]:
    out = dict(record)
    out.setdefault("ts", _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z"))
    meta = out.get("_meta") if isinstance(out.get("_meta"), dict) else {}
    out["_meta"] = {**meta, "host": _HOSTNAME, "pid": _PID}
    return out


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    payload = _stamp(redact(record))
    # default=str keeps odd values (sets, datetimes, enums) from breaking a log line
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    def _append() -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        _rotate_if_needed(path)
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _append()
    except OSError:
        # one retry for transient failures (dir removed under us, etc.)
        _append()
