# tests/conftest.py
import json
import os
import pathlib
import tempfile
import warnings

import pytest
from freezegun import freeze_time

from modules.job_monitor.lib import config as jm_config
from modules.job_monitor.lib.errors import DeliveryError, DetailFetchError, PersistError
from modules.job_monitor.lib.models import JobDetail, RawPosting

warnings.filterwarnings("error", category=DeprecationWarning, module="modules")


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="jm-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    # Nothing read from the developer's shell leaks into a test
    for name in (
        "ENABLED_SITES",
        "FETCH_JOB_DETAILS",
        "JOB_MONITOR_SITES_PATH",
        "JOB_MONITOR_DB",
        "JOB_MONITOR_FETCH_METHOD",
        "NOTIFICATION_EMAIL",
        "SMTP_USERNAME",
        "SMTP_PASSWORD",
        "EMAIL_USER",
        "EMAIL_PASS",
        "CONFIG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def no_email_env(monkeypatch):
    monkeypatch.setenv("SEND_EMAIL", "0")
    monkeypatch.setenv("JOB_MONITOR_DRY_RUN", "1")
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def log_dir() -> pathlib.Path:
    return pathlib.Path(os.environ["LOG_DIR"])


def read_log(log_dir: pathlib.Path, prefix: str) -> list[dict]:
    out: list[dict] = []
    for path in sorted(log_dir.glob(f"{prefix}-*.jsonl")):
        out.extend(json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip())
    return out


# ---------------------------------------------------------------------
# Sites / settings
# ---------------------------------------------------------------------
SELECTORS = {"job_list": "tr.job", "job_title": "a", "job_url": "a", "location": ".loc"}


@pytest.fixture
def sites_file(tmp_path: pathlib.Path) -> pathlib.Path:
    """A YAML sites file with two http sites and one static site."""
    path = tmp_path / "job_sites.yaml"
    path.write_text(
        """
sites:
  - name: Acme
    url: https://acme.test/careers
    url_prefix: https://acme.test
    selectors: {job_list: "tr.job", job_title: "a", job_url: "a", location: ".loc"}
    category_keywords:
      Eng: [engineer]
      Ops: [operations]
  - name: Globex
    url: https://globex.test/jobs
    selectors: {jobList: ".posting", jobTitle: "h3", jobUrl: "a"}
  - name: Initech
    url: https://initech.test/jobs
    method: static
    params:
      items:
        - {title: Analyst, url: /jobs/1}
""",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def db_path(tmp_path: pathlib.Path) -> str:
    return str(tmp_path / "state" / "jobmonitor.db")


@pytest.fixture
def make_settings(db_path):
    """
    Build Settings from inline site dicts. Sites default to the "static"
    method (engine tests inject their own fetcher); sending is off.
    """

    def _make(sites, **overrides):
        kwargs = {
            "sites": sites,
            "sqlite_path": db_path,
            "fetch_method": "static",
            "site_delay_seconds": 0,
            "send_email": False,
        }
        kwargs.update(overrides)
        return jm_config.Settings.from_env_and_kwargs(kwargs)

    return _make


# ---------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------
class FakeFetcher:
    """Returns scripted (title, url) rows per site name; an Exception value is raised instead."""

    def __init__(self, pages: dict | None = None) -> None:
        self.pages = dict(pages or {})
        self.calls: list[str] = []
        self.closed = False

    def fetch_postings(self, site):
        self.calls.append(site.name)
        page = self.pages.get(site.name, [])
        if isinstance(page, Exception):
            raise page
        return [RawPosting(title=t, raw_url=u) for t, u in page]

    def close(self) -> None:
        self.closed = True


class MemoryStore:
    def __init__(self, baselines: dict | None = None, fail_for: set | None = None) -> None:
        self.baselines = {k: set(v) for k, v in (baselines or {}).items()}
        self.fail_for = set(fail_for or ())
        self.saved: list[str] = []

    def load_baseline(self, site):
        return set(self.baselines.get(site, set()))

    def save_baseline(self, site, titles):
        if site in self.fail_for:
            raise PersistError(f"disk full for {site}")
        self.baselines[site] = set(titles)
        self.saved.append(site)


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail

    def send_notification(self, payload):
        if self.fail:
            raise DeliveryError("smtp down")
        self.sent.append(payload)


class FakeDetailFetcher:
    def __init__(self, details: dict | None = None) -> None:
        self.details = dict(details or {})
        self.calls: list[str] = []

    def fetch_job_detail(self, url):
        self.calls.append(url)
        detail = self.details.get(url)
        if detail is None:
            raise DetailFetchError(f"no page for {url}")
        return detail


@pytest.fixture
def sample_detail():
    return JobDetail(
        description="Build things.",
        requirements=("5+ years experience with Python", "Strong skills in SQL", "Must have a pulse"),
        location="Remote",
        department="Platform",
        salary="$150k - $200k",
        remote=True,
    )

