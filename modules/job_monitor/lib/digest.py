"""
Digest builder: turns the new postings of one run into an email payload.

Grouping is company first, then category, both in the order they are first
met in the input (no sorting). Rendering is deterministic for a given input
order and date. Nothing here touches the network except the optional,
injected detail lookup, whose per-job failures only drop that job's extra lines.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from . import logging_bridge, render
from .fetchers.base import DetailFetcher
from .models import JobDetail, NotificationPayload, Posting

Grouped = dict[str, dict[str, list[Posting]]]


def group_postings(postings: Sequence[Posting]) -> Grouped:
    """company -> category -> postings, keeping first-seen order at both levels."""
    grouped: Grouped = {}
    for p in postings:
        grouped.setdefault(p.company, {}).setdefault(p.category, []).append(p)
    return grouped


def collect_details(
    postings: Sequence[Posting],
    detail_fetcher: DetailFetcher,
) -> dict[int, JobDetail]:
    """
    Look up extended details per posting (keyed by position in `postings`).
    A failed lookup is logged and leaves that posting out of the result.
    """
    details: dict[int, JobDetail] = {}
    for idx, p in enumerate(postings):
        try:
            details[idx] = detail_fetcher.fetch_job_detail(p.url)
        except Exception as e:
            logging_bridge.error({
                "component": "job_monitor.digest",
                "op": "detail_failed",
                "company": p.company,
                "title": p.title,
                "url": p.url,
                "error": repr(e),
            })
    return details


def build_digest(
    new_postings: Sequence[Posting],
    *,
    fetch_details: bool = False,
    detail_fetcher: DetailFetcher | None = None,
    monitored_sites: Sequence[str] | None = None,
    today: date | None = None,
) -> NotificationPayload | None:
    """
    Build the notification for this run's new postings.

    Returns None for an empty input: there is nothing to say and nothing must
    be sent. `fetch_details` only has an effect when a `detail_fetcher` is given.
    """
    postings = list(new_postings)
    if not postings:
        return None

    day = (today or date.today()).isoformat()
    details = collect_details(postings, detail_fetcher) if fetch_details and detail_fetcher else {}
    detail_for = {id(p): details[i] for i, p in enumerate(postings) if i in details}

    grouped = group_postings(postings)
    companies = list(grouped)

    lines: list[str] = [
        f"Job Alert - {day}",
        f"Found {len(postings)} new job posting(s) across {len(companies)} companies:",
        "",
    ]
    for company, categories in grouped.items():
        company_total = sum(len(items) for items in categories.values())
        lines.append(f"{company} ({company_total} jobs):")
        for category, items in categories.items():
            lines.append(f"  {category} ({len(items)}):")
            for p in items:
                lines.extend(_job_lines(p, detail_for.get(id(p))))
                lines.append("")
        lines.append("")

    if monitored_sites:
        lines.append(f"Monitoring: {', '.join(monitored_sites)}")

    subject = f"{len(postings)} New Job(s) at {', '.join(companies)} - {day}"
    html = render.wrap_document(
        render.build_sections(grouped, detail_for),
        heading=f"Job Alert - {day}",
        intro=f"Found {len(postings)} new job posting(s) across {len(companies)} companies.",
        footer=f"Monitoring: {', '.join(monitored_sites)}" if monitored_sites else None,
    )
    return NotificationPayload(subject=subject, body="\n".join(lines).rstrip() + "\n", html=html)


def _job_lines(p: Posting, detail: JobDetail | None) -> list[str]:
    out = [f"    - {p.title}", f"      {p.url}"]
    if p.location:
        out.append(f"      Location: {p.location}")
    if p.department:
        out.append(f"      Department: {p.department}")
    if detail is not None:
        out.extend(f"      {line}" for line in render.detail_lines(detail))
    return out
