# service/runner.py
from __future__ import annotations

import importlib
import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from service import logging_utils

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _maybe_bool(v: str) -> Any:
    low = v.strip().lower()
    if low in ("true", "t", "yes", "y", "1"):
        return True
    if low in ("false", "f", "no", "n", "0"):
        return False
    return v


def _maybe_number(v: Any) -> Any:
    if not isinstance(v, str):
        return v
    s = v.strip()
    if s and (s.isdigit() or (s.startswith("-") and s[1:].isdigit())):
        return int(s)
    try:
        return float(s)
    except ValueError:
        return v


def normalize_kwargs(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Normalize job kwargs right before module.run(**kwargs):

      - keys ending in "_env" with a string value: the value is an ENV VAR NAME;
        the key is replaced by its stem holding the variable's value
        (e.g. email_to_env: "ALERT_TO" -> email_to: os.environ["ALERT_TO"]).
        Missing variables resolve to "" and are dropped.
      - other string values: JSON if they look like JSON ({...} / [...]),
        else common bool/number forms are coerced.
      - non-strings pass through unchanged.
    """
    if not kwargs:
        return {}

    normalized: dict[str, object] = {}
    for k, v in kwargs.items():
        if isinstance(k, str) and k.endswith("_env") and isinstance(v, str):
            value = os.getenv(v.strip(), "")
            if value:
                normalized[k[: -len("_env")]] = value
            continue

        if isinstance(v, str):
            s = v.strip()
            if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
                try:
                    normalized[k] = json.loads(s)
                    continue
                except json.JSONDecodeError:
                    pass
            normalized[k] = _maybe_number(_maybe_bool(s))
        else:
            normalized[k] = v
    return normalized


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import module and return its `run` callable."""
    mod = importlib.import_module(module_path)
    if not hasattr(mod, "run") or not callable(mod.run):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return mod.run  # type: ignore[no-any-return]


def _emit_activity(record: dict[str, Any]) -> None:
    try:
        logging_utils.write_activity_log(record)
    except (OSError, TypeError, ValueError) as e:
        log.warning("activity log write failed (%s); record=%s", e, record)


@dataclass
class RunResult:
    ok: bool
    message: str
    meta: dict[str, Any] | None = None


def _coerce_result(value: Any) -> RunResult:
    """
    Normalize a module's return value.

    Acceptable shapes:
      - None  -> nothing to report
      - dict  -> meta (may include 'message' and 'outcome')
    Modules deliver their own notifications; the runner only records.
    """
    if value is None:
        return RunResult(ok=True, message="OK")
    if isinstance(value, dict):
        return RunResult(ok=True, message=str(value.get("message") or value.get("outcome") or "OK"), meta=value)
    raise TypeError(f"Module return must be None or a dict, got {type(value).__name__}")


def _is_retryable(exc: BaseException) -> bool:
    # Bad configuration will not fix itself between attempts; errors may also
    # opt out with a false `retryable` attribute.
    if not isinstance(exc, Exception) or isinstance(exc, ValueError):
        return False
    return bool(getattr(exc, "retryable", True))


def _call_with_timeout(fn: Callable[[], Any], timeout_sec: int | None, stop_event: threading.Event) -> Any:
    if not timeout_sec:
        return fn()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner")
    try:
        fut = pool.submit(fn)
        try:
            return fut.result(timeout=timeout_sec)
        except FutureTimeout:
            # Ask a cooperative module to stop at its next checkpoint.
            stop_event.set()
            raise TimeoutError(f"Module run timed out after {timeout_sec}s") from None
    finally:
        pool.shutdown(wait=False)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    *,
    trigger_type: str = "scheduled",
    job_context: dict[str, object] | None = None,  # e.g., {"job_id": "...", "scheduled_for": "..."}
    timeout_sec: int | None = None,
    retries: int = 1,
    retry_delay_sec: float = 0,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[dict[str, Any] | None, str]:
    """
    Execute a module's run(**kwargs), retrying the whole run up to `retries`
    attempts with `retry_delay_sec` between them.

    `stop_event` is passed to the module (as the `stop_event` kwarg) and is
    also checked before each retry.

    Returns:
        (meta_or_none, run_id)
    Raises:
        The last attempt's exception, after writing the activity record.
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
    }
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    kw = normalize_kwargs(kwargs)
    run_callable = _resolve_callable(module)
    stop = stop_event or threading.Event()
    attempts = max(1, int(retries))

    result = RunResult(ok=False, message="not run")
    exc: BaseException | None = None
    attempt = 0
    t0 = time.monotonic()
    for attempt in range(1, attempts + 1):
        try:
            result = _coerce_result(_call_with_timeout(lambda: run_callable(stop_event=stop, **kw), timeout_sec, stop))
            exc = None
            break
        except BaseException as e:
            exc = e
            result = RunResult(ok=False, message=str(e) or type(e).__name__, meta={"exception_type": type(e).__name__})
            if attempt >= attempts or not _is_retryable(e) or stop.is_set():
                break
            log.warning("%s attempt %d/%d failed: %r; retrying in %ss", module, attempt, attempts, e, retry_delay_sec)
            if retry_delay_sec:
                sleep(retry_delay_sec)

    _emit_activity({
        "ts": now_iso(),
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "ok": result.ok,
        "message": result.message,
        "attempts": attempt,
        "duration_ms": int((time.monotonic() - t0) * 1000),
        "context": context,
        "kwargs": kw,
        "meta": result.meta or {},
    })

    if exc is not None:
        raise exc
    return result.meta, run_id
