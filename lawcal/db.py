"""Database utilities for the law office calendar."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from flask import current_app, g, has_app_context

import lawcal_config


# Global schema version for the calendar database.
_SCHEMA_VERSION = 2

# Columns holding JSON-encoded values.
JSON_COLUMNS = ("lawyers", "changes", "details")

logger = logging.getLogger("lawcal.db")


class StoreError(RuntimeError):
    """Raised when a store call fails; the current action is aborted."""


class RecordNotFound(LookupError):
    """Raised when a referenced row does not exist."""


def _app_db_path() -> Path:
    """Return the path for the calendar database."""
    if has_app_context():
        configured = current_app.config.get("DATABASE")
        if configured:
            return Path(lawcal_config.database_path_from(str(configured)))
    return Path(lawcal_config.DATABASE)


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )

    row = conn.execute(
        "SELECT value FROM app_meta WHERE key = 'schema_version'"
    ).fetchone()
    current_version = int(row["value"]) if row else 0

    if current_version < 1:
        _migrate_to_v1(conn)
        current_version = 1

    if current_version < 2:
        _migrate_to_v2(conn)
        current_version = 2

    conn.execute(
        "INSERT INTO app_meta(key, value) VALUES('schema_version', ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (str(_SCHEMA_VERSION),),
    )
    conn.commit()


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """Flat model: one row per occurrence, chained by ``case_ref``."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            date TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            long_description TEXT,
            court_name TEXT,
            lawyers TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'open'
                CHECK(status IN ('open','postponed','closed','deleted')),
            postponed_to TEXT,
            case_ref TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
            deleted_at TEXT
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_date ON events(date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_case_ref ON events(case_ref)")
    # At most one live (open/closed) occurrence per matter and day.
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_events_live_occurrence
        ON events(case_ref, date)
        WHERE status IN ('open','closed')
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS event_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_ref TEXT NOT NULL,
            kind TEXT NOT NULL
                CHECK(kind IN ('create','update','postpone','note','close','reopen','delete')),
            message TEXT,
            changes TEXT,
            from_date TEXT,
            to_date TEXT,
            actor TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_event_logs_case_ref ON event_logs(case_ref, created_at)"
    )

    conn.execute(
        "INSERT INTO app_meta(key, value) VALUES('schema_version', '1') "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value"
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Normalized model: cases own sessions, both referenced by activity logs."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            court_name TEXT,
            lawyers TEXT NOT NULL DEFAULT '[]',
            reviewer TEXT,
            description TEXT,
            long_description TEXT,
            status TEXT NOT NULL DEFAULT 'active'
                CHECK(status IN ('active','completed','cancelled')),
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
            created_by TEXT
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS case_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER NOT NULL,
            session_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'scheduled'
                CHECK(status IN ('scheduled','completed','postponed','cancelled')),
            postponed_to TEXT,
            postpone_reason TEXT,
            notes TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
            UNIQUE(case_id, session_date),
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_case_sessions_date ON case_sessions(session_date)"
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS activity_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER,
            session_id INTEGER,
            action_type TEXT NOT NULL CHECK(action_type IN (
                'case_created','case_updated','case_completed','case_cancelled',
                'session_scheduled','session_postponed','session_completed','session_cancelled',
                'note_added'
            )),
            description TEXT NOT NULL,
            details TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
            created_by TEXT,
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE,
            FOREIGN KEY(session_id) REFERENCES case_sessions(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_activity_logs_case ON activity_logs(case_id, created_at)"
    )

    conn.execute(
        """
        CREATE VIEW IF NOT EXISTS v_calendar_sessions AS
        SELECT
            s.id AS session_id,
            s.case_id,
            s.session_date,
            s.status AS session_status,
            s.postponed_to,
            s.postpone_reason,
            s.notes,
            s.created_at AS session_created_at,
            c.title,
            c.court_name,
            c.lawyers,
            c.reviewer,
            c.description,
            c.long_description,
            c.status AS case_status
        FROM case_sessions s
        JOIN cases c ON c.id = s.case_id
        """
    )


def connect(db_path: Path) -> sqlite3.Connection:
    _ensure_parent_dir(db_path)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    _ensure_schema(conn)
    return conn


def get_app_db() -> sqlite3.Connection:
    """Return a connection to the calendar database bound to Flask's context."""
    if "app_db" not in g:
        try:
            g.app_db = connect(_app_db_path())
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open the calendar database: {exc}") from exc
    return g.app_db


def close_app_db(_: Optional[BaseException]) -> None:
    conn = g.pop("app_db", None)
    if conn is not None:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run several statements as one unit; any failure rolls all of them back."""
    conn = get_app_db()
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.error("Store call failed, transaction rolled back: %s", exc)
        raise StoreError(str(exc)) from exc
    except Exception:
        conn.rollback()
        raise


def query(sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    conn = get_app_db()
    try:
        return conn.execute(sql, tuple(params)).fetchall()
    except sqlite3.Error as exc:
        raise StoreError(str(exc)) from exc


def query_one(sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
    rows = query(sql, params)
    return rows[0] if rows else None


def encode_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = dict(row)
    for key in JSON_COLUMNS:
        raw = out.get(key)
        if isinstance(raw, str):
            try:
                out[key] = json.loads(raw)
            except json.JSONDecodeError:
                out[key] = None
    return out
