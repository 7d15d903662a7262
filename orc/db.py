from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from . import settings as _settings_module


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _events_db() -> str:
    # Looked up on every call so tests and the CLI can swap settings.
    return _settings_module.settings.events_db


def enabled() -> bool:
    return bool(_events_db())


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount), the journal
    file is placed inside it.
    """
    p = os.path.abspath(_events_db())
    if os.path.isdir(p):
        p = os.path.join(p, "orc-events.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Open the journal; commit on success and always close."""
    conn = sqlite3.connect(_resolve_db_path())
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              run_id TEXT,
              step TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_run ON events(run_id);
            """
        )


def log_event(level: str, message: str, run_id: str | None = None, step: str | None = None) -> bool:
    """Append an event to the journal. Never pass secret values in `message`.

    The journal is an audit trail only: if it cannot be written the event is
    dropped and False is returned, so callers carry on.
    """
    if not enabled():
        return False
    try:
        init_db()
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, run_id, step, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level.upper(), run_id, step, message),
            )
    except (sqlite3.Error, OSError):
        return False
    return True


def latest_events(limit: int = 100, run_id: str | None = None) -> list[dict[str, Any]]:
    if not enabled():
        return []
    init_db()
    with connect() as conn:
        if run_id:
            rows = conn.execute(
                "SELECT * FROM events WHERE run_id=? ORDER BY id DESC LIMIT ?", (run_id, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
