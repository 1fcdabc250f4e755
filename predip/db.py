from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If a bind-mounted *file* path does not exist, container runtimes tend to
    create a *directory* at that location, and sqlite then fails with
    "unable to open database file". When the configured path is a directory
    the journal file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "predip.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


_schema_ready = False


def init_db() -> None:
    """Create the journal table if it does not exist."""
    global _schema_ready
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              member TEXT,
              pool TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_member ON events(member);
            """
        )
    _schema_ready = True


def log_event(level: str, message: str, member: str | None = None, pool: str | None = None) -> None:
    if not _schema_ready:
        init_db()
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, member, pool, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), member, pool, message),
        )


def latest_events(limit: int = 100, member: str | None = None) -> list[dict[str, Any]]:
    if not _schema_ready:
        init_db()
    with connect() as conn:
        if member:
            rows = conn.execute(
                "SELECT * FROM events WHERE member=? ORDER BY id DESC LIMIT ?", (member, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
