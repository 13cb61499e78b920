from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RawPosting:
    """
    One row as handed back by a fetch backend, before any validation.
    Never persisted.
    """

    title: str
    raw_url: str
    location: str | None = None
    department: str | None = None


@dataclass(frozen=True)
class Posting:
    """
    Canonical job posting.

    `is_new` is decided once, against the baseline loaded at the start of the
    run, and is not touched again even if the baseline changes later on.
    """

    title: str
    url: str  # absolute
    category: str
    company: str  # == SiteDescriptor.name
    location: str | None = None
    department: str | None = None
    is_new: bool = False


@dataclass(frozen=True)
class JobDetail:
    description: str = ""
    requirements: tuple[str, ...] = ()
    location: str = "Not specified"
    department: str = "Not specified"
    salary: str | None = None
    remote: bool | None = None


@dataclass(frozen=True)
class NotificationPayload:
    subject: str
    body: str  # plain text
    html: str | None = None


@dataclass
class SiteResult:
    """
    Outcome of scraping one site during a run.
    - postings: normalized postings (rejected rows are already dropped)
    - error: repr of the failure if the fetch failed (postings is then empty)
    """

    site: str
    postings: list[Posting] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def new(self) -> list[Posting]:
        return [p for p in self.postings if p.is_new]
