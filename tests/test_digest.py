# tests/test_digest.py
from datetime import date

from conftest import FakeDetailFetcher

from modules.job_monitor.lib import digest, render
from modules.job_monitor.lib.models import JobDetail, Posting

DAY = date(2025, 1, 1)


def _p(title, company="Acme", category="Eng", **kw):
    return Posting(
        title=title,
        url=f"https://{company.lower()}.test/{title.lower()}",
        category=category,
        company=company,
        is_new=True,
        **kw,
    )


def test_empty_input_builds_nothing():
    assert digest.build_digest([], today=DAY) is None


def test_one_company_header_with_both_categories():
    payload = digest.build_digest([_p("Engineer", category="Eng"), _p("Operator", category="Ops")], today=DAY)

    body = payload.body
    assert body.count("Acme (2 jobs):") == 1
    assert "  Eng (1):" in body
    assert "  Ops (1):" in body
    assert body.index("Eng (1)") < body.index("Ops (1)")


def test_exact_text_layout():
    payload = digest.build_digest(
        [_p("Engineer", location="Remote"), _p("Clerk", company="Globex", category="Other", department="Admin")],
        monitored_sites=["Acme", "Globex", "Initech"],
        today=DAY,
    )

    assert payload.subject == "2 New Job(s) at Acme, Globex - 2025-01-01"
    assert payload.body == (
        "Job Alert - 2025-01-01\n"
        "Found 2 new job posting(s) across 2 companies:\n"
        "\n"
        "Acme (1 jobs):\n"
        "  Eng (1):\n"
        "    - Engineer\n"
        "      https://acme.test/engineer\n"
        "      Location: Remote\n"
        "\n"
        "\n"
        "Globex (1 jobs):\n"
        "  Other (1):\n"
        "    - Clerk\n"
        "      https://globex.test/clerk\n"
        "      Department: Admin\n"
        "\n"
        "\n"
        "Monitoring: Acme, Globex, Initech\n"
    )


def test_first_seen_order_not_alphabetical():
    postings = [_p("Z", company="Zeta", category="Ops"), _p("A", company="Alpha"), _p("Y", company="Zeta")]
    payload = digest.build_digest(postings, today=DAY)

    assert payload.subject.startswith("3 New Job(s) at Zeta, Alpha - ")
    assert payload.body.index("Zeta (2 jobs)") < payload.body.index("Alpha (1 jobs)")
    zeta = payload.body[payload.body.index("Zeta") : payload.body.index("Alpha (")]
    assert zeta.index("Ops (1)") < zeta.index("Eng (1)")


def test_input_not_mutated():
    postings = [_p("B"), _p("A")]
    before = list(postings)
    digest.build_digest(postings, today=DAY)
    assert postings == before


def test_details_only_when_enabled(sample_detail):
    p = _p("Engineer")
    fetcher = FakeDetailFetcher({p.url: sample_detail})

    off = digest.build_digest([p], fetch_details=False, detail_fetcher=fetcher, today=DAY)
    on = digest.build_digest([p], fetch_details=True, detail_fetcher=fetcher, today=DAY)

    assert "Remote-friendly" not in off.body
    assert fetcher.calls == [p.url]
    assert "      Remote-friendly\n" in on.body
    assert "      Salary: $150k - $200k\n" in on.body
    assert "      Key Requirements: 5+ years experience with Python, Strong skills in SQL\n" in on.body
    assert "Must have a pulse" not in on.body


def test_detail_failure_for_one_job_keeps_both(sample_detail, log_dir):
    from conftest import read_log

    ok, bad = _p("Engineer"), _p("Manager")
    fetcher = FakeDetailFetcher({ok.url: sample_detail})

    payload = digest.build_digest([ok, bad], fetch_details=True, detail_fetcher=fetcher, today=DAY)

    assert "- Engineer" in payload.body and "- Manager" in payload.body
    assert payload.body.count("Salary:") == 1
    manager_block = payload.body[payload.body.index("- Manager") :]
    assert "Salary:" not in manager_block
    assert any(r.get("op") == "detail_failed" for r in read_log(log_dir, "error-test"))


def test_html_alternative_is_escaped_and_grouped():
    payload = digest.build_digest([_p("Senior <script>alert(1)</script>")], monitored_sites=["Acme"], today=DAY)

    assert "<h3>Acme (1 jobs)</h3>" in payload.html
    assert "<h4>Eng (1)</h4>" in payload.html
    assert "&lt;script&gt;" in payload.html
    assert "<script>" not in payload.html
    assert "Monitoring: Acme" in payload.html


def test_detail_lines_skip_missing_fields():
    assert render.detail_lines(JobDetail()) == []
    assert render.detail_lines(JobDetail(remote=False, salary="$1")) == ["Salary: $1"]


def test_group_postings_keeps_order():
    grouped = digest.group_postings([_p("a", category="X"), _p("b", category="Y"), _p("c", category="X")])
    assert list(grouped["Acme"]) == ["X", "Y"]
    assert [p.title for p in grouped["Acme"]["X"]] == ["a", "c"]
