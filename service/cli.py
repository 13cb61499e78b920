# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
run [--module M] [--sites a,b] [--kwargs k=v ...] [--no-email]
    - One monitor run via runner.run_module_once(...), with retries
    - Prints the outcome summary returned by the module

watch --minutes N [same options as run]
    - Polls the module every N minutes (first run immediately) until SIGINT/SIGTERM

serve
    - Starts the APScheduler service loop from the service config

list-jobs
    - Prints the jobs in the service config

validate-config
    - Loads/validates the service config; nonzero on error

list-sites [--kwargs k=v ...]
    - Prints the configured monitor sites and their stored baseline sizes

Exit codes: 0 ok, 1 run failure, 2 setup/config problem, 130 interrupted.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

DEFAULT_MODULE = "modules.job_monitor.main"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SETUP = 2
EXIT_INTERRUPTED = 130


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict. JSON-looking values (numbers,
    true/false/null, arrays, objects) are decoded; anything else stays a string.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k, v = k.strip(), v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _module_kwargs(args: argparse.Namespace) -> dict[str, Any]:
    kwargs = _parse_kv_pairs(args.kwargs or [])
    if getattr(args, "sites", None):
        kwargs["enabled_sites"] = args.sites
    if getattr(args, "no_email", False):
        kwargs["send_email"] = False
    return kwargs


def _print_table(rows: Iterable[tuple[str, ...]], headers: tuple[str, ...]) -> None:
    rows = [tuple(str(c) for c in r) for r in rows]
    widths = [max(len(h), *(len(r[i]) for r in rows)) if rows else len(h) for i, h in enumerate(headers)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    print(sep)
    for r in rows:
        print("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    print(sep)


def _print_meta(meta: dict[str, Any] | None) -> None:
    if not meta:
        print("DONE: module returned no summary.")
        return
    outcome = meta.get("outcome", "ok")
    print(f"DONE: {outcome} (new={meta.get('new_total', 0)}, seen={meta.get('seen_total', 0)})")
    for site, n in (meta.get("new_by_site") or {}).items():
        print(f"  {site}: {n} new")
    if meta.get("failed_sites"):
        print(f"  failed sites: {', '.join(meta['failed_sites'])}")
    if meta.get("unknown_sites"):
        print(f"  unknown sites (skipped): {', '.join(meta['unknown_sites'])}")
    if meta.get("subject"):
        print(f"  subject: {meta['subject']}")


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _wait_for_signal(controller: _scheduler.SchedulerController) -> None:
    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        controller.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)
    while not controller.join(timeout=0.3):
        pass


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return EXIT_SETUP
    print("OK: configuration is valid.")
    return EXIT_OK


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to load config: {e}", file=sys.stderr)
        return EXIT_SETUP
    rows = []
    for job in cfg.get("jobs", []):
        trigger = next((f"{k}={job[k]}" for k in _config_schema.TRIGGER_FIELDS if k in job), "-")
        rows.append((job["id"], job.get("module", "-"), trigger, job.get("summary") or ""))
    if not rows:
        print("No jobs found in config.")
        return EXIT_OK
    _print_table(rows, headers=("JOB", "MODULE", "TRIGGER", "SUMMARY"))
    return EXIT_OK


def cmd_list_sites(args: argparse.Namespace) -> int:
    from modules.job_monitor.lib import db
    from modules.job_monitor.lib.config import Settings
    from modules.job_monitor.lib.errors import ConfigError, PersistError

    kwargs = {**_runner.normalize_kwargs(_parse_kv_pairs(args.kwargs or [])), "send_email": False}
    try:
        settings = Settings.from_env_and_kwargs(kwargs)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_SETUP

    enabled = {s.name for s in settings.resolve_enabled()[0]}
    rows = []
    for site in settings.sites:
        try:
            baseline = len(db.load_baseline(settings.sqlite_path, site.name))
        except PersistError:
            baseline = "?"
        rows.append((
            site.name,
            "yes" if site.name in enabled else "no",
            " > ".join(settings.methods_for(site)),
            baseline,
            site.url,
        ))
    _print_table(rows, headers=("SITE", "ENABLED", "METHODS", "BASELINE", "URL"))
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    try:
        kwargs = _module_kwargs(args)
    except argparse.ArgumentTypeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_SETUP
    LOG.debug("Run module %s with kwargs=%s", args.module, kwargs)

    try:
        meta, run_id = _runner.run_module_once(
            args.module,
            kwargs,
            trigger_type="adhoc",
            retries=args.retries,
            retry_delay_sec=args.retry_delay,
            timeout_sec=args.timeout,
        )
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except (ImportError, AttributeError, ValueError) as e:
        # bad module path, bad settings: nothing ran
        print(f"SETUP ERROR: {e}", file=sys.stderr)
        return EXIT_SETUP
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "component": "cli",
            "op": "run",
            "module": args.module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return EXIT_FAILURE

    L.write_activity_log({
        "component": "cli",
        "op": "run",
        "run_id": run_id,
        "module": args.module,
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    _print_meta(meta)
    return EXIT_OK


def cmd_watch(args: argparse.Namespace) -> int:
    try:
        kwargs = _module_kwargs(args)
        controller = _scheduler.start_watch(
            args.module,
            kwargs,
            minutes=args.minutes,
            retries=args.retries,
            retry_delay_sec=args.retry_delay,
            timeout_sec=args.timeout,
        )
    except (argparse.ArgumentTypeError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_SETUP
    L.write_activity_log({"component": "cli", "op": "watch_start", "module": args.module, "minutes": args.minutes})
    try:
        _wait_for_signal(controller)
    except KeyboardInterrupt:
        controller.stop()
        return EXIT_INTERRUPTED
    L.write_activity_log({"component": "cli", "op": "watch_stop", "module": args.module, "ts": _now_iso()})
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler from config until SIGINT/SIGTERM."""
    try:
        controller = _scheduler.start(config_path=args.config)
    except (_config_schema.ConfigError, ValueError) as e:
        print(f"ERROR: cannot start scheduler: {e}", file=sys.stderr)
        return EXIT_SETUP
    L.write_activity_log({"component": "cli", "op": "serve_start", "jobs": list(controller.get_job_ids())})
    try:
        _wait_for_signal(controller)
    except KeyboardInterrupt:
        controller.stop()
        return EXIT_INTERRUPTED
    L.write_activity_log({"component": "cli", "op": "serve_stop"})
    return EXIT_OK


# ------------------------------- Argparse ------------------------------------
def _add_run_options(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--module", default=DEFAULT_MODULE, help=f"Module exposing run(**kwargs) (default {DEFAULT_MODULE}).")
    sp.add_argument("--sites", help="Comma-separated site names to monitor (overrides ENABLED_SITES).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module (JSON values supported).",
    )
    sp.add_argument("--no-email", action="store_true", help="Do everything except send the digest.")
    sp.add_argument("--retries", type=int, default=_config_schema.DEFAULT_RETRIES, help="Attempts per run.")
    sp.add_argument(
        "--retry-delay", type=float, default=_config_schema.DEFAULT_RETRY_DELAY_SEC, help="Seconds between attempts."
    )
    sp.add_argument("--timeout", type=int, default=None, help="Abort a run after this many seconds.")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m service.cli", description="Job monitor command-line tools")
    p.add_argument("--config", help="Path to service config file (fallbacks to CONFIG_PATH env).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("run", help="Run the monitor once.")
    _add_run_options(sp)
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("watch", help="Run the monitor every N minutes until interrupted.")
    _add_run_options(sp)
    sp.add_argument("--minutes", type=int, default=int(os.getenv("CHECK_INTERVAL_MINUTES", "60")))
    sp.set_defaults(func=cmd_watch)

    sp = sub.add_parser("serve", help="Run the scheduler from the service config.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("list-jobs", help="Print all jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    sp = sub.add_parser("list-sites", help="Print configured monitor sites and baseline sizes.")
    sp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Monitor settings (e.g. sites_path=...).")
    sp.set_defaults(func=cmd_list_sites)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
