import json

from service import logging_utils as L


def test_activity_and_error_files_per_day(log_dir, frozen_utc):
    L.write_activity_log({"component": "t", "op": "a"})
    L.write_error_log({"component": "t", "op": "e"})

    assert L.log_path_for_today("activity-test").endswith("activity-test-2025-01-01.jsonl")
    act = L.read_records(L.log_path_for_today("activity-test"))
    err = L.read_records(L.log_path_for_today("error-test"))
    assert [r["op"] for r in act] == ["a"]
    assert [r["op"] for r in err] == ["e"]
    assert act[0]["ts"].startswith("2025-01-01")
    assert set(act[0]["_meta"]) == {"host", "pid"}


def test_secrets_are_redacted_deeply(log_dir):
    record = {
        "op": "x",
        "kwargs": {"smtp_password": "hunter2", "email_to": "me@x.test"},
        "headers": [{"Authorization": "Bearer abc"}, {"note": "Bearer xyz"}],
    }
    L.write_activity_log(record)

    line = L.read_records(L.log_path_for_today("activity-test"))[0]
    assert line["kwargs"] == {"smtp_password": L.REDACTED, "email_to": "me@x.test"}
    assert line["headers"] == [{"Authorization": L.REDACTED}, {"note": f"Bearer {L.REDACTED}"}]
    # caller's dict untouched
    assert record["kwargs"]["smtp_password"] == "hunter2"


def test_odd_values_do_not_break_a_line(log_dir):
    L.write_activity_log({"op": "x", "sites": {"Acme"}})
    raw = (log_dir / L.log_path_for_today("activity-test").rsplit("/", 1)[1]).read_text(encoding="utf-8")
    assert json.loads(raw)["sites"] == "{'Acme'}"


def test_rotation_by_size(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_MAX_BYTES", "10")
    L.write_activity_log({"op": "first"})
    L.write_activity_log({"op": "second"})

    files = sorted(p.name for p in log_dir.iterdir())
    assert len(files) == 2
    assert [r["op"] for r in L.read_records(L.log_path_for_today("activity-test"))] == ["second"]


def test_read_records_missing_file(tmp_path):
    assert L.read_records(str(tmp_path / "none.jsonl")) == []
