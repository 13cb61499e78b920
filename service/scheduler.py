# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from datetime import time as _dtime
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

JOB_DEFAULTS = {
    "coalesce": True,  # run only the latest if many were missed
    "max_instances": 1,  # never overlap runs against the same baseline store
}


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True)
class JobSpec:
    id: str
    trigger: Any  # apscheduler.triggers.base.BaseTrigger
    module: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    timeout_sec: int | None = None
    retries: int = config_schema.DEFAULT_RETRIES
    retry_delay_sec: int = config_schema.DEFAULT_RETRY_DELAY_SEC
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int | None = None
    summary: str | None = None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small facade around APScheduler so the CLI can manage lifecycle cleanly.

    stop() shuts the scheduler down and sets the shared stop event, so a
    monitor run in flight stops before its next site.
    """

    def __init__(self, scheduler: BackgroundScheduler, stop_event: threading.Event | None = None) -> None:
        self._scheduler = scheduler
        self.stop_event = stop_event or threading.Event()
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        self.stop_event.set()
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """Block until stop() (or timeout). True if stopped."""
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return [job.id for job in self._scheduler.get_jobs()]


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None) -> SchedulerController:
    """Load the service config (path or CONFIG_PATH), validate it and start."""
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    return start_from_config(cfg)


def start_from_config(cfg: dict[str, Any]) -> SchedulerController:
    """
    Build a BackgroundScheduler from an already loaded config, add every job
    and start it. APScheduler 3.x prefers a pytz scheduler timezone.
    """
    tz = resolve_timezone(cfg.get("timezone"))
    scheduler = _new_scheduler(tz, workers=_int_or(cfg.get("executor_workers"), 4) or 4)
    controller = SchedulerController(scheduler)

    for idx, raw in enumerate(cfg.get("jobs", [])):
        spec = make_job_spec(raw, tz, idx=idx)
        _add_job(scheduler, spec, controller.stop_event)

    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return controller


def start_watch(
    module: str,
    kwargs: dict[str, Any] | None,
    *,
    minutes: int,
    retries: int = config_schema.DEFAULT_RETRIES,
    retry_delay_sec: int = config_schema.DEFAULT_RETRY_DELAY_SEC,
    timeout_sec: int | None = None,
) -> SchedulerController:
    """Poll one module every `minutes`, with the first run immediately."""
    if minutes <= 0:
        raise ValueError("watch interval must be > 0 minutes")
    tz = resolve_timezone(None)
    scheduler = _new_scheduler(tz, workers=1)
    controller = SchedulerController(scheduler)
    spec = JobSpec(
        id=f"watch:{module}",
        trigger=IntervalTrigger(minutes=minutes, timezone=tz),
        module=module,
        kwargs=dict(kwargs or {}),
        timeout_sec=timeout_sec,
        retries=retries,
        retry_delay_sec=retry_delay_sec,
        summary=f"poll every {minutes} min",
    )
    _add_job(scheduler, spec, controller.stop_event, next_run_time=datetime.now(tz))
    scheduler.start()
    LOG.info("Watching %s every %d minute(s).", module, minutes)
    return controller


def resolve_timezone(name: str | None):
    """config 'timezone', else env TZ, else UTC (pytz object)."""
    tz_name = name or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (unknown tz '%s')", tz_name)
        return pytz.UTC


def make_job_spec(raw: dict[str, Any], tz, *, idx: int = 0) -> JobSpec:
    """Convert a normalized config job into a JobSpec with a built trigger."""
    module = raw.get("module")
    if not module:
        raise ValueError("Missing required key: module")
    return JobSpec(
        id=config_schema.derive_job_id(raw, idx),
        trigger=build_trigger(raw, tz),
        module=module,
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        retries=_int_or(raw.get("retries"), config_schema.DEFAULT_RETRIES) or 1,
        retry_delay_sec=_int_or(raw.get("retry_delay_sec"), config_schema.DEFAULT_RETRY_DELAY_SEC) or 0,
        max_instances=_int_or(raw.get("max_instances"), JOB_DEFAULTS["max_instances"]) or 1,
        coalesce=bool(raw.get("coalesce", JOB_DEFAULTS["coalesce"])),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary") or raw.get("description"),
    )


def build_trigger(trig_def: dict[str, Any], tz) -> Any:
    """
    Build an APScheduler trigger from a job dict (or any dict carrying exactly
    one trigger key).

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?}}
      {"cron": {second?, minute?, hour?, day?, day_of_week?, month?}}
      {"cron": "*/15 * * * *"}
      {"daily_time": "HH:MM" | ["HH:MM", ...]}
      {"daily_time": {"time": "HH:MM" | [...], "day_of_week"?: "mon-fri"}}

    `tz` may be a tz name or a tzinfo; it is applied to every trigger.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")
    tzinfo = pytz.timezone(tz) if isinstance(tz, str) else tz

    present = [k for k in config_schema.TRIGGER_FIELDS if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError(f"exactly one of {config_schema.TRIGGER_FIELDS} must be provided")
    kind = present[0]
    value = trig_def[kind]

    if kind == "interval":
        return _interval_trigger(value, tzinfo)
    if kind == "cron":
        return _cron_trigger(value, tzinfo)
    return _daily_trigger(value, tzinfo)


def preview_trigger(trigger, tz, count: int = 5, start: datetime | None = None) -> list[datetime]:
    """Next `count` fire times strictly after `start` (default now)."""
    now = start or datetime.now(tz=tz)
    prev = now
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


# ---- Trigger builders -------------------------------------------------------


def _interval_trigger(spec: Any, tzinfo) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")
    units = ("weeks", "days", "hours", "minutes", "seconds")
    unknown = set(spec) - {*units, "jitter"}
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

    kwargs: dict[str, int] = {}
    for name in (*units, "jitter"):
        if name not in spec:
            continue
        try:
            v = int(spec[name])
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        if v:
            kwargs[name] = v
    if not any(kwargs.get(u) for u in units):
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    return IntervalTrigger(timezone=tzinfo, **kwargs)


def _cron_trigger(spec: Any, tzinfo) -> CronTrigger:
    if isinstance(spec, str):
        fields = spec.strip().split()
        if len(fields) != 5:
            raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=tzinfo)
    if isinstance(spec, dict):
        allowed = {"second", "minute", "hour", "day", "day_of_week", "month", "week", "year"}
        unknown = set(spec) - allowed
        if unknown:
            raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")
        return CronTrigger(
            second=spec.get("second", 0),
            minute=spec.get("minute", 0),
            hour=spec.get("hour"),
            day=spec.get("day"),
            day_of_week=spec.get("day_of_week"),
            month=spec.get("month"),
            week=spec.get("week"),
            year=spec.get("year"),
            timezone=tzinfo,
        )
    raise ValueError("cron must be a crontab string or an object")


def _daily_trigger(spec: Any, tzinfo) -> Any:
    day_of_week = None
    times = spec
    if isinstance(spec, dict):
        unknown = set(spec) - {"time", "day_of_week"}
        if unknown:
            raise ValueError(f"daily_time has unknown field(s): {sorted(unknown)}")
        times = spec.get("time")
        day_of_week = spec.get("day_of_week")
    if times is None:
        raise ValueError("daily_time requires a time")
    if isinstance(times, str):
        times = [times]
    if not isinstance(times, (list, tuple)) or not times:
        raise ValueError("daily_time must be 'HH:MM' or a list of them")

    parsed = sorted({_parse_hhmm(str(t)) for t in times})
    triggers = [
        CronTrigger(second=s, minute=m, hour=h, day_of_week=day_of_week, timezone=tzinfo) for h, m, s in parsed
    ]
    return triggers[0] if len(triggers) == 1 else OrTrigger(triggers)


def _parse_hhmm(s: str) -> tuple[int, int, int]:
    parts = s.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
        ss = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as err:
        raise ValueError(f"daily_time must contain integers: {s!r}") from err
    _dtime(hh, mm, ss)  # range check
    return hh, mm, ss


# ---- Job registration ---------------------------------------------------------


def _new_scheduler(tz, *, workers: int) -> BackgroundScheduler:
    return BackgroundScheduler(
        timezone=tz,
        job_defaults=dict(JOB_DEFAULTS),
        executors={"default": ThreadPoolExecutor(workers)},
        jobstores={"default": MemoryJobStore()},
    )


def _add_job(
    scheduler: BackgroundScheduler,
    spec: JobSpec,
    stop_event: threading.Event,
    *,
    next_run_time: datetime | None = None,
) -> None:
    """
    Register a wrapper that runs the module through runner.run_module_once()
    (with the job's retries/timeout and the shared stop event) and logs the
    outcome. Failures are logged, never raised into APScheduler.
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            meta, run_id = runner.run_module_once(
                spec.module,
                spec.kwargs,
                trigger_type="scheduled",
                job_context={"job_id": spec.id, "summary": spec.summary},
                timeout_sec=spec.timeout_sec,
                retries=spec.retries,
                retry_delay_sec=spec.retry_delay_sec,
                stop_event=stop_event,
            )
        except Exception as e:
            LOG.exception("Job[%s] failed.", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started, error=repr(e))
            return
        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs (run_id=%s)", spec.id, duration, run_id)
        _write_activity(spec, status="ok", duration_s=duration, outcome=(meta or {}).get("outcome"))

    extra: dict[str, Any] = {}
    if next_run_time is not None:
        extra["next_run_time"] = next_run_time
    scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
        **extra,
    )
    LOG.debug("Registered job[%s] (module=%s, trigger=%s)", spec.id, spec.module, spec.trigger)


def _write_activity(spec: JobSpec, status: str, duration_s: float, **fields: Any) -> None:
    try:
        write_activity_log({
            "component": "scheduler",
            "op": "job_run",
            "job_id": spec.id,
            "module": spec.module,
            "status": status,
            "duration_ms": int(duration_s * 1000),
            **fields,
        })
    except OSError:
        LOG.debug("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _int_or(v: Any, default: int | None) -> int | None:
    """int(v), or default when v is None/invalid (lenient for config)."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default
