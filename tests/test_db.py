# tests/test_db.py
import sqlite3

import pytest

from modules.job_monitor.lib import db
from modules.job_monitor.lib.errors import PersistError


def test_missing_db_is_empty_baseline(tmp_path):
    assert db.load_baseline(str(tmp_path / "none.db"), "Acme") == set()
    assert db.count_rows(str(tmp_path / "none.db")) == 0
    assert db.list_sites(str(tmp_path / "none.db")) == []


def test_save_then_load_round_trip(db_path):
    db.save_baseline(db_path, "Acme", {"Engineer", "Manager"})
    db.save_baseline(db_path, "Globex", ["Engineer"])

    assert db.load_baseline(db_path, "Acme") == {"Engineer", "Manager"}
    assert db.load_baseline(db_path, "Globex") == {"Engineer"}
    assert db.list_sites(db_path) == ["Acme", "Globex"]
    assert db.count_rows(db_path) == 3
    assert db.count_rows(db_path, "Acme") == 2


def test_save_replaces_site_set(db_path):
    db.save_baseline(db_path, "Acme", {"A", "B"})
    db.save_baseline(db_path, "Acme", {"A"})
    assert db.load_baseline(db_path, "Acme") == {"A"}


def test_first_seen_kept_for_surviving_titles(db_path):
    db.save_baseline(db_path, "Acme", {"A"})
    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE baselines SET first_seen_utc = '2000-01-01T00:00:00Z'")
    db.save_baseline(db_path, "Acme", {"A", "B"})

    with sqlite3.connect(db_path) as conn:
        rows = dict(conn.execute("SELECT title, first_seen_utc FROM baselines WHERE site = 'Acme'"))
    assert rows["A"] == "2000-01-01T00:00:00Z"
    assert rows["B"] != "2000-01-01T00:00:00Z"


def test_save_error_becomes_persist_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(PersistError):
        db.save_baseline(str(blocker / "sub" / "x.db"), "Acme", {"A"})


def test_store_wrapper_and_reset(db_path):
    store = db.SqliteBaselineStore(db_path)
    store.save_baseline("Acme", {"A"})
    assert store.load_baseline("Acme") == {"A"}
    db.reset_db(db_path)
    assert db.load_baseline(db_path, "Acme") == set()
