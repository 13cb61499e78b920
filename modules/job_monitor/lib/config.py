from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

from .errors import ConfigError
from .utils import split_names, truthy

DEFAULT_SQLITE_PATH = "/app/local/state/jobmonitor.db"
DEFAULT_FETCH_METHOD = "http"

# Order matters: the first category whose keywords match a title wins.
DEFAULT_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "AI & Research": (
        "ai", "artificial intelligence", "machine learning", "ml", "deep learning", "neural",
        "research", "scientist", "nlp", "computer vision", "robotics",
    ),
    "Infrastructure": (
        "infrastructure", "devops", "sre", "site reliability", "platform", "cloud", "kubernetes",
        "docker", "aws", "gcp", "azure", "network", "datacenter",
    ),
    "Software Engineering": (
        "software engineer", "developer", "programmer", "frontend", "backend", "full stack",
        "fullstack", "web developer", "mobile developer", "ios", "android",
    ),
    "Management": ("manager", "lead", "director", "head of", "vp", "vice president", "supervisor", "chief"),
    "Security": ("security", "cybersecurity", "infosec", "penetration testing", "vulnerability", "compliance"),
    "Data": ("data scientist", "data engineer", "analytics", "business intelligence", "data analyst", "statistician"),
    "Product": (
        "product manager", "product owner", "product designer", "ux", "ui", "user experience", "user interface",
    ),
    "Sales & Marketing": (
        "sales", "marketing", "business development", "account manager", "customer success", "growth",
    ),
    "Operations": ("operations", "program manager", "project manager", "coordinator", "administrative"),
}


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class SiteSelectors:
    """CSS selectors used by the HTML-based fetch backends."""

    job_list: str
    job_title: str
    job_url: str
    location: str | None = None
    department: str | None = None


@dataclass(frozen=True)
class SiteDescriptor:
    """
    One monitored employer career page.
    - name: stable identifier; also the baseline storage key and Posting.company
    - url: listing page
    - url_prefix: prepended to relative job links (falls back to the origin of url)
    - category_keywords: ordered {category: [keyword, ...]}; empty -> global default table
    - selectors: extraction hints for the http/browser backends
    - method: per-site fetch backend override (else Settings.fetch_method)
    - params: free-form backend options (e.g. static items)
    """

    name: str
    url: str
    url_prefix: str | None = None
    category_keywords: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    selectors: SiteSelectors | None = None
    method: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Settings:
    """
    Canonical configuration for one job monitor run.

    Sites come from a JSON/YAML file (`sites_path`, or JOB_MONITOR_SITES_PATH)
    or inline via the `sites` kwarg. Everything else is a plain value threaded
    through the engine; nothing downstream reads the environment.
    """

    sites: list[SiteDescriptor] = field(default_factory=list)
    default_category_keywords: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_KEYWORDS)
    )
    sites_path: str | None = None

    # Selection: None means every configured site, in file order
    enabled_sites: list[str] | None = None

    # Runtime behavior
    sqlite_path: str = DEFAULT_SQLITE_PATH
    fetch_method: str = DEFAULT_FETCH_METHOD
    fallback_methods: list[str] = field(default_factory=list)
    site_delay_seconds: float = 2.0
    fetch_job_details: bool = False
    persist_only_on_new: bool = False

    # Delivery
    email_to: list[str] = field(default_factory=list)
    send_email: bool = True
    ingest_only_no_email: bool = False

    # ------------- convenience -------------
    def resolve_enabled(self) -> tuple[list[SiteDescriptor], list[str]]:
        """
        Return (sites to run in enabled order, unknown enabled names).
        Unknown names are for the caller to warn about; they are never fatal.
        """
        by_name = {s.name: s for s in self.sites}
        if self.enabled_sites is None:
            return list(self.sites), []
        selected: list[SiteDescriptor] = []
        unknown: list[str] = []
        for name in self.enabled_sites:
            site = by_name.get(name)
            if site is None:
                unknown.append(name)
            elif site not in selected:
                selected.append(site)
        return selected, unknown

    def methods_for(self, site: SiteDescriptor) -> list[str]:
        """Preferred backend first, then the configured fallbacks (deduped)."""
        preferred = site.method or self.fetch_method
        chain = [preferred]
        for m in self.fallback_methods:
            if m not in chain:
                chain.append(m)
        return chain

    @property
    def delivers(self) -> bool:
        return self.send_email and not self.ingest_only_no_email

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            sites_path: str            # JSON/YAML file; or env JOB_MONITOR_SITES_PATH
            sites: list[dict]          # inline alternative to sites_path
            default_category_keywords: dict[str, list[str]]
            enabled_sites: list[str] | "a,b"    # env ENABLED_SITES
            fetch_job_details: bool             # env FETCH_JOB_DETAILS
            sqlite_path: str                    # env JOB_MONITOR_DB
            fetch_method: str = "http"          # env JOB_MONITOR_FETCH_METHOD
            fallback_methods: list[str] = []
            site_delay_seconds: float = 2.0
            persist_only_on_new: bool = false
            email_to: list[str] | str           # env NOTIFICATION_EMAIL
            send_email: bool = true             # env SEND_EMAIL; JOB_MONITOR_DRY_RUN forces false
            ingest_only_no_email: bool = false
        """
        kw = dict(kwargs or {})

        sites_path = str(kw.get("sites_path") or os.getenv("JOB_MONITOR_SITES_PATH") or "").strip() or None
        inline_sites = kw.get("sites")
        if inline_sites is not None:
            sites, file_defaults = _parse_sites(inline_sites), None
        elif sites_path:
            sites, file_defaults = load_sites_file(sites_path)
        else:
            raise ConfigError("No sites configured. Provide 'sites_path' (or JOB_MONITOR_SITES_PATH) or 'sites'.")

        keywords_raw = kw.get("default_category_keywords")
        if keywords_raw is not None:
            default_keywords = _parse_keyword_table(keywords_raw, where="default_category_keywords")
        else:
            default_keywords = file_defaults or dict(DEFAULT_CATEGORY_KEYWORDS)

        enabled_raw = kw.get("enabled_sites", os.getenv("ENABLED_SITES"))
        enabled = split_names(enabled_raw) if enabled_raw not in (None, "") else None

        fetch_details_raw = kw.get("fetch_job_details", os.getenv("FETCH_JOB_DETAILS"))

        if "send_email" in kw and kw["send_email"] is not None:
            send_email = truthy(kw["send_email"])
        else:
            send_email = truthy(os.getenv("SEND_EMAIL", "1"))
        if truthy(os.getenv("JOB_MONITOR_DRY_RUN")):
            send_email = False

        email_to_raw = kw.get("email_to") or os.getenv("NOTIFICATION_EMAIL")

        try:
            site_delay = float(kw.get("site_delay_seconds", 2.0))
        except (TypeError, ValueError) as e:
            raise ConfigError("'site_delay_seconds' must be a number.") from e

        settings = cls(
            sites=sites,
            default_category_keywords=default_keywords,
            sites_path=sites_path,
            enabled_sites=enabled,
            sqlite_path=str(kw.get("sqlite_path") or os.getenv("JOB_MONITOR_DB") or DEFAULT_SQLITE_PATH),
            fetch_method=str(
                kw.get("fetch_method") or os.getenv("JOB_MONITOR_FETCH_METHOD") or DEFAULT_FETCH_METHOD
            ).strip().lower(),
            fallback_methods=[m.lower() for m in split_names(kw.get("fallback_methods"))],
            site_delay_seconds=site_delay,
            fetch_job_details=truthy(fetch_details_raw),
            persist_only_on_new=truthy(kw.get("persist_only_on_new")),
            email_to=split_names(email_to_raw),
            send_email=send_email,
            ingest_only_no_email=truthy(kw.get("ingest_only_no_email")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Sites file
# -----------------------------
def load_sites_file(path: str) -> tuple[list[SiteDescriptor], dict[str, tuple[str, ...]] | None]:
    """
    Read a sites file and return (sites, default keyword table or None).

    Accepted shapes (JSON or YAML):
        {"sites": [...], "default_category_keywords": {...}}
        [...]   # bare list of sites
    """
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"sites file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"failed to read sites file: {path}: {e}") from e

    lower = path.lower()
    try:
        if lower.endswith(".json"):
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"sites file is not valid JSON/YAML: {path}: {e}") from e

    if isinstance(data, list):
        return _parse_sites(data), None
    if not isinstance(data, dict):
        raise ConfigError(f"sites file must hold a list or an object with 'sites': {path}")

    defaults = None
    if data.get("default_category_keywords") is not None:
        defaults = _parse_keyword_table(data["default_category_keywords"], where="default_category_keywords")
    return _parse_sites(data.get("sites")), defaults


# -----------------------------
# Helpers
# -----------------------------
def _pick(item: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if item.get(k) not in (None, ""):
            return item[k]
    return None


def _parse_keyword_table(value: Any, *, where: str) -> dict[str, tuple[str, ...]]:
    if value in (None, {}):
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{where} must be an object of category -> [keywords].")
    table: dict[str, tuple[str, ...]] = {}
    for category, keywords in value.items():
        if isinstance(keywords, str) or not isinstance(keywords, (list, tuple)):
            raise ConfigError(f"{where}[{category!r}] must be a list of keywords.")
        table[str(category)] = tuple(str(k).strip().lower() for k in keywords if str(k).strip())
    return table


def _parse_selectors(value: Any, *, where: str) -> SiteSelectors | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ConfigError(f"{where}.selectors must be an object.")
    job_list = _pick(value, "job_list", "jobList")
    job_title = _pick(value, "job_title", "jobTitle")
    job_url = _pick(value, "job_url", "jobUrl")
    if not (job_list and job_title and job_url):
        raise ConfigError(f"{where}.selectors requires 'job_list', 'job_title' and 'job_url'.")
    return SiteSelectors(
        job_list=str(job_list),
        job_title=str(job_title),
        job_url=str(job_url),
        location=_pick(value, "location"),
        department=_pick(value, "department"),
    )


def _parse_sites(value: Any) -> list[SiteDescriptor]:
    """
    Parse a list of site objects:
      [{"name": "...", "url": "...", "url_prefix": "...", "category_keywords": {...},
        "selectors": {...}, "method": "...", "params": {...}}, ...]
    camelCase aliases (urlPrefix, categoryKeywords, jobList, ...) are accepted.
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError("Expected a list of site objects.")
    out: list[SiteDescriptor] = []
    seen: set[str] = set()
    for i, item in enumerate(value):
        if not isinstance(item, Mapping):
            raise ConfigError(f"Site[{i}] must be an object.")
        name = str(item.get("name") or "").strip()
        url = str(item.get("url") or "").strip()
        if not name or not url:
            raise ConfigError(f"Site[{i}] requires 'name' and 'url'.")
        if name in seen:
            raise ConfigError(f"Duplicate site name {name!r}.")
        seen.add(name)

        params = item.get("params") or {}
        if not isinstance(params, Mapping):
            raise ConfigError(f"Site {name!r}: 'params' must be an object.")
        method = _pick(item, "method")
        prefix = _pick(item, "url_prefix", "urlPrefix")

        out.append(
            SiteDescriptor(
                name=name,
                url=url,
                url_prefix=str(prefix).strip() if prefix else None,
                category_keywords=_parse_keyword_table(
                    _pick(item, "category_keywords", "categoryKeywords"), where=f"Site {name!r}.category_keywords"
                ),
                selectors=_parse_selectors(item.get("selectors"), where=f"Site {name!r}"),
                method=str(method).strip().lower() if method else None,
                params=dict(params),
            )
        )
    return out


def _validate_settings(s: Settings) -> None:
    from .fetchers.registry import available

    if not s.sites:
        raise ConfigError("No sites configured.")
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if s.site_delay_seconds < 0:
        raise ConfigError("'site_delay_seconds' must be >= 0.")

    known = set(available())
    for m in [s.fetch_method, *s.fallback_methods, *(site.method for site in s.sites if site.method)]:
        if m not in known:
            raise ConfigError(f"Unknown fetch method {m!r}; expected one of {sorted(known)}.")

    for site in s.sites:
        if (site.method or s.fetch_method) in {"http", "browser"} and site.selectors is None:
            raise ConfigError(f"Site {site.name!r} needs 'selectors' for the {site.method or s.fetch_method!r} backend.")

    if s.delivers and not s.email_to:
        raise ConfigError("No recipients. Provide 'email_to' or NOTIFICATION_EMAIL, or disable sending.")
