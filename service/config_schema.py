# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the service config is invalid."""


TRIGGER_FIELDS = ("interval", "cron", "daily_time")
_INTERVAL_UNITS = {"weeks", "days", "hours", "minutes", "seconds"}
_CRON_FIELDS = {"year", "month", "day", "week", "day_of_week", "hour", "minute", "second"}
_DAILY_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_SEC = 5


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load and normalize the service configuration.

    Resolution order:
      1) explicit `path`
      2) os.environ['CONFIG_PATH']
      3) empty config (no jobs)

    Shape (JSON or YAML):
        timezone: "America/New_York"      # optional; TZ env or UTC
        jobs:
          - id: job_monitor
            module: modules.job_monitor.main
            interval: {minutes: 30}       # or cron: {...} | "*/30 * * * *", or daily_time: "08:00"
            kwargs: {sites_path: config/job_sites.yaml}
            timeout_sec: 900
            retries: 3
            retry_delay_sec: 5

    Returns the normalized dict; call validate() before scheduling.
    """
    resolved = path or os.environ.get("CONFIG_PATH")
    if not resolved:
        logger.info("CONFIG_PATH not provided; using empty default config.")
        cfg: dict[str, Any] = {"jobs": []}
    else:
        cfg = _read_any(resolved)
    _apply_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError describing the first problem found."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a mapping.")
    jobs = cfg.get("jobs")
    if not isinstance(jobs, list):
        raise ConfigError("Missing required top-level 'jobs' list.")
    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    seen_ids: set[str] = set()
    for idx, job in enumerate(jobs):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object.")
        module = job.get("module")
        if not isinstance(module, str) or not module.strip():
            raise ConfigError(f"Job {idx}: 'module' is required and must be a non-empty string.")

        job_id = derive_job_id(job, idx)
        if job_id in seen_ids:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen_ids.add(job_id)

        present = [k for k in TRIGGER_FIELDS if k in job]
        if len(present) != 1:
            raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(TRIGGER_FIELDS)}.")
        _validate_trigger(present[0], job[present[0]], job_id)

        if "kwargs" in job and not isinstance(job["kwargs"], dict):
            raise ConfigError(f"Job '{job_id}': 'kwargs' must be an object if provided.")
        for opt_str in ("summary", "description"):
            if opt_str in job and not isinstance(job[opt_str], str):
                raise ConfigError(f"Job '{job_id}': '{opt_str}' must be a string if provided.")

        if "coalesce" in job:
            _to_bool(job["coalesce"], field="coalesce", job_id=job_id)
        for name, allow_zero in _INT_FIELDS:
            if name in job:
                _to_int(job[name], field=name, job_id=job_id, allow_zero=allow_zero)


def derive_job_id(job: dict[str, Any], idx: int) -> str:
    # id | name | module -> id
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def parse_daily_time(value: str) -> tuple[int, int]:
    m = _DAILY_TIME_RE.match(value.strip())
    if not m:
        raise ConfigError(f"'daily_time' must match HH:MM (24h), got {value!r}.")
    hour, minute = int(m.group(1)), int(m.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigError(f"'daily_time' out of range (00:00..23:59), got {value!r}.")
    return hour, minute


# ---- Internals ----------------------------------------------------------------

_INT_FIELDS = (
    ("timeout_sec", True),
    ("retries", False),
    ("retry_delay_sec", True),
    ("max_instances", False),
    ("misfire_grace_time", True),
)


def _validate_trigger(kind: str, value: Any, job_id: str) -> None:
    if kind == "interval":
        if not isinstance(value, dict) or not value:
            raise ConfigError(f"Job '{job_id}': 'interval' must be a non-empty object like {{minutes: 30}}.")
        unknown = set(value) - _INTERVAL_UNITS
        if unknown:
            raise ConfigError(f"Job '{job_id}': unknown interval units {sorted(unknown)}.")
        total = sum(_to_int(v, field=f"interval.{k}", job_id=job_id, allow_zero=True) for k, v in value.items())
        if total <= 0:
            raise ConfigError(f"Job '{job_id}': 'interval' must be longer than zero.")
    elif kind == "cron":
        if isinstance(value, str):
            if len(value.split()) != 5:
                raise ConfigError(f"Job '{job_id}': cron string must have 5 fields.")
        elif isinstance(value, dict):
            unknown = set(value) - _CRON_FIELDS
            if unknown:
                raise ConfigError(f"Job '{job_id}': unknown cron fields {sorted(unknown)}.")
        else:
            raise ConfigError(f"Job '{job_id}': 'cron' must be a crontab string or an object.")
    elif kind == "daily_time":
        times = value.get("time") if isinstance(value, dict) else value
        if isinstance(times, str):
            times = [times]
        if not isinstance(times, list) or not times or not all(isinstance(t, str) for t in times):
            raise ConfigError(f"Job '{job_id}': 'daily_time' must be 'HH:MM', a list of them, or {{time: ...}}.")
        for t in times:
            try:
                parse_daily_time(t)
            except ConfigError as e:
                raise ConfigError(f"Job '{job_id}': {e}") from e


def _apply_defaults(cfg: dict[str, Any]) -> None:
    if not isinstance(cfg.get("jobs"), list):
        cfg["jobs"] = []
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    normalized: list[dict[str, Any]] = []
    for idx, job in enumerate(cfg["jobs"]):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object.")
        job_copy = dict(job)
        job_copy["id"] = derive_job_id(job_copy, idx)
        job_copy.setdefault("retries", DEFAULT_RETRIES)
        job_copy.setdefault("retry_delay_sec", DEFAULT_RETRY_DELAY_SEC)
        if "coalesce" in job_copy:
            job_copy["coalesce"] = _to_bool(job_copy["coalesce"], field="coalesce", job_id=job_copy["id"])
        for name, allow_zero in _INT_FIELDS:
            if name in job_copy:
                job_copy[name] = _to_int(job_copy[name], field=name, job_id=job_copy["id"], allow_zero=allow_zero)
        normalized.append(job_copy)
    cfg["jobs"] = normalized


def _to_bool(value: Any, *, field: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Job '{job_id}': '{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, job_id: str, allow_zero: bool) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.")
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"Job '{job_id}': '{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    try:
        data = json.loads(text) if path.lower().endswith(".json") else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping.")
    return data
