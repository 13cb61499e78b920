from __future__ import annotations

from collections.abc import Mapping

from . import utils
from .models import JobDetail, Posting


def build_sections(
    grouped: Mapping[str, Mapping[str, list[Posting]]],
    details: Mapping[int, JobDetail] | None = None,
) -> str:
    """
    HTML alternative of the digest body, in the same order as the text version.

    Each company:
      <h3>{company} ({n} jobs)</h3>
      <h4>{category} ({n})</h4>
      <table> Title | Link | Location | Department | Notes </table>

    `details` is keyed by id() of the Posting, as built by digest.build_digest.
    """
    details = details or {}
    sections: list[str] = []
    for company, categories in grouped.items():
        company_total = sum(len(items) for items in categories.values())
        parts = [f"<h3>{utils.esc(company)} ({company_total} jobs)</h3>"]
        for category, items in categories.items():
            rows: list[str] = []
            for p in items:
                link_html = f'<a href="{utils.esc(p.url)}">{utils.esc(p.url)}</a>'
                notes = _notes(details.get(id(p)))
                rows.append(
                    f"<tr><td>{utils.esc(p.title)}</td><td>{link_html}</td>"
                    f"<td>{utils.esc(p.location)}</td><td>{utils.esc(p.department)}</td>"
                    f"<td>{utils.esc(notes)}</td></tr>"
                )
            parts.append(f"<h4>{utils.esc(category)} ({len(items)})</h4>")
            parts.append(
                "<table border='1' cellspacing='0' cellpadding='6'>"
                "<tr><th>Title</th><th>Link</th><th>Location</th><th>Department</th><th>Notes</th></tr>"
                + "".join(rows)
                + "</table>"
            )
        sections.append("\n".join(parts))
    return "\n".join(sections)


def wrap_document(
    content_html: str,
    *,
    heading: str | None = None,
    intro: str | None = None,
    footer: str | None = None,
) -> str:
    """Wrap the sections with a heading, a summary line and an optional footer."""
    parts: list[str] = ["<div>"]
    if heading:
        parts.append(f"<h2>{utils.esc(heading)}</h2>")
    if intro:
        parts.append(f"<p>{utils.esc(intro)}</p>")
    parts.append(content_html)
    if footer:
        parts.append(f"<p><small>{utils.esc(footer)}</small></p>")
    parts.append("</div>")
    return "\n".join(parts)


def detail_lines(detail: JobDetail) -> list[str]:
    """The extra lines shown for a posting whose details were fetched."""
    out: list[str] = []
    if detail.remote:
        out.append("Remote-friendly")
    if detail.salary:
        out.append(f"Salary: {detail.salary}")
    if detail.requirements:
        out.append(f"Key Requirements: {', '.join(detail.requirements[:2])}")
    return out


def _notes(detail: JobDetail | None) -> str:
    return "; ".join(detail_lines(detail)) if detail is not None else ""
