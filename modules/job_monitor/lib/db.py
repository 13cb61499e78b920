from __future__ import annotations

import contextlib
import os
import sqlite3
from collections.abc import Iterable

from .errors import PersistError
from .logging_bridge import error as log_error
from .utils import now_iso

# ---- Public API -------------------------------------------------------------


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


def load_baseline(sqlite_path: str, site: str) -> set[str]:
    """
    Titles recorded for `site` by the last saved run.
    A missing DB file or an unknown site is simply an empty set (first run).
    """
    if not os.path.exists(sqlite_path):
        return set()
    try:
        with contextlib.closing(_connect(sqlite_path)) as conn:
            _apply_pragmas(conn)
            _ensure_schema(conn)
            rows = conn.execute("SELECT title FROM baselines WHERE site = ?", (site,)).fetchall()
    except sqlite3.Error as e:
        raise PersistError(f"failed to load baseline for {site!r}: {e}") from e
    return {title for (title,) in rows}


def save_baseline(sqlite_path: str, site: str, titles: Iterable[str]) -> None:
    """
    Replace the stored titles for `site` with exactly `titles`.

    One transaction per site: either the whole new set lands or the old one is
    left as it was. first_seen_utc is kept for titles that survive.
    """
    wanted = set(titles)
    ts = now_iso()
    try:
        init_db(sqlite_path)
        with contextlib.closing(_connect(sqlite_path)) as conn:
            _apply_pragmas(conn)
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                existing = {
                    title: first_seen
                    for title, first_seen in cur.execute(
                        "SELECT title, first_seen_utc FROM baselines WHERE site = ?", (site,)
                    )
                }
                cur.execute("DELETE FROM baselines WHERE site = ?", (site,))
                cur.executemany(
                    "INSERT INTO baselines (site, title, first_seen_utc) VALUES (?, ?, ?)",
                    [(site, title, existing.get(title, ts)) for title in sorted(wanted)],
                )
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
    except (sqlite3.Error, OSError) as e:
        log_error({
            "component": "job_monitor.db",
            "op": "save_baseline",
            "sqlite_path": sqlite_path,
            "site": site,
            "error": repr(e),
        })
        raise PersistError(f"failed to save baseline for {site!r}: {e}") from e


class SqliteBaselineStore:
    """The engine's storage collaborator, bound to one SQLite file."""

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path

    def load_baseline(self, site: str) -> set[str]:
        return load_baseline(self.sqlite_path, site)

    def save_baseline(self, site: str, titles: Iterable[str]) -> None:
        save_baseline(self.sqlite_path, site, titles)


# ---- Nice-to-have helpers for tests & diagnostics --------------------------


def count_rows(sqlite_path: str, site: str | None = None) -> int:
    """Return rows in the baselines table (optionally for one site); 0 if DB missing."""
    if not os.path.exists(sqlite_path):
        return 0
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)
        if site is None:
            (n,) = conn.execute("SELECT COUNT(*) FROM baselines").fetchone()
        else:
            (n,) = conn.execute("SELECT COUNT(*) FROM baselines WHERE site = ?", (site,)).fetchone()
    return int(n or 0)


def list_sites(sqlite_path: str) -> list[str]:
    """Site names that have a stored baseline, alphabetically."""
    if not os.path.exists(sqlite_path):
        return []
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)
        rows = conn.execute("SELECT DISTINCT site FROM baselines ORDER BY site").fetchall()
    return [site for (site,) in rows]


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file entirely (for pytest fixtures).
    Safe if it doesn't exist.
    """
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # Autocommit mode; transactions are opened explicitly.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS baselines (
          id INTEGER PRIMARY KEY,
          site  TEXT NOT NULL,
          title TEXT NOT NULL,
          first_seen_utc TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_baselines_site_title
          ON baselines (site, title);
        """
    )
