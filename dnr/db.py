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

    If the configured path is a directory (Docker creates one when a
    bind-mounted file does not exist yet), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "dnr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              network TEXT,
              container TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_network ON events(network);
            """
        )


def log_event(level: str, message: str, network: str | None = None, container: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, network, container, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), network, container, message),
        )


def latest_events(limit: int = 100, network: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if network:
            rows = conn.execute(
                "SELECT * FROM events WHERE network=? ORDER BY id DESC LIMIT ?", (network, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def try_log_event(level: str, message: str, network: str | None = None, container: str | None = None) -> bool:
    """log_event for audit records written while an apply is running; False if the write failed."""
    try:
        log_event(level, message, network=network, container=container)
        return True
    except sqlite3.Error:
        return False
