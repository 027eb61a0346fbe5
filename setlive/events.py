from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime

logger = logging.getLogger("setlive")


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory the journal lives inside it.
    """
    p = os.path.abspath(path)
    if os.path.isdir(p):
        p = os.path.join(p, "setlive-events.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


class EventLog:
    """Observability sink handed to every component.

    ``info`` and ``error`` never influence control flow. ``fatal`` marks the end
    of the run; the caller decides how to terminate.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = _resolve_db_path(db_path) if db_path else None
        if self.db_path:
            self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  app TEXT,
                  version TEXT,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                """
            )

    def info(self, message: str, app: str | None = None, version: str | None = None) -> None:
        self._record("INFO", message, app, version)

    def error(self, message: str, app: str | None = None, version: str | None = None) -> None:
        self._record("ERROR", message, app, version)

    def fatal(self, message: str, app: str | None = None, version: str | None = None) -> None:
        self._record("FATAL", message, app, version)

    def _record(self, level: str, message: str, app: str | None, version: str | None) -> None:
        text = f"{app}: {message}" if app else message
        logger.log(logging.CRITICAL if level == "FATAL" else getattr(logging, level), text)
        if not self.db_path:
            return
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO events (ts, level, app, version, message) VALUES (?, ?, ?, ?, ?)",
                    (utc_now(), level, app, version, message),
                )
        except sqlite3.Error as e:
            logger.warning("could not journal event: %s", e)
