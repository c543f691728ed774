"""Normalized calendar model: cases, their court sessions and an activity log.

A case stays one row across reschedules. Postponing a session flags it and
schedules a new session for the same case; ``(case_id, session_date)`` is
unique in the store so repeating a postpone never duplicates the new session.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from lawcal.db import RecordNotFound, encode_json, query, row_to_dict, transaction
from lawcal.forms import (
    ValidationError,
    clean_names,
    normalize_ws,
    optional_text,
    parse_iso_date,
    pick_fields,
    require_title,
)

EDITABLE_FIELDS = ("title", "court_name", "lawyers", "reviewer", "description", "long_description")

logger = logging.getLogger("lawcal.cases")


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="milliseconds")


def _load_case(conn: sqlite3.Connection, case_id: int) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM cases WHERE id = ?", (case_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f"Case {case_id} not found")
    return row_to_dict(row)


def _load_session(conn: sqlite3.Connection, session_id: int) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM case_sessions WHERE id = ?", (session_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f"Session {session_id} not found")
    return row_to_dict(row)


def _log(
    conn: sqlite3.Connection,
    case_id: Optional[int],
    session_id: Optional[int],
    action_type: str,
    description: str,
    details: Optional[Mapping[str, Any]] = None,
    created_by: Optional[str] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO activity_logs(case_id, session_id, action_type, description, details, created_at, created_by)
        VALUES(?, ?, ?, ?, ?, ?, ?)
        """,
        (case_id, session_id, action_type, description, encode_json(details), _now(), created_by),
    )
    return int(cur.lastrowid)


def fetch_month_sessions(start: date, end: date) -> List[Dict[str, Any]]:
    rows = query(
        """
        SELECT * FROM v_calendar_sessions
        WHERE session_date BETWEEN ? AND ?
        ORDER BY session_date ASC, session_created_at ASC, session_id ASC
        """,
        (start.isoformat(), end.isoformat()),
    )
    return [row_to_dict(row) for row in rows]


def get_case(case_id: int) -> Dict[str, Any]:
    rows = query("SELECT * FROM cases WHERE id = ?", (case_id,))
    if not rows:
        raise RecordNotFound(f"Case {case_id} not found")
    case = row_to_dict(rows[0])
    case["sessions"] = [
        row_to_dict(row)
        for row in query(
            "SELECT * FROM case_sessions WHERE case_id = ? ORDER BY session_date ASC, id ASC",
            (case_id,),
        )
    ]
    return case


def create_case_and_session(payload: Mapping[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
    """Insert the case and its first session together, or neither."""
    title = require_title(payload.get("title"))
    session_date = parse_iso_date(payload.get("session_date"), field="session_date")

    with transaction() as conn:
        cur = conn.execute(
            """
            INSERT INTO cases(title, court_name, lawyers, reviewer, description,
                              long_description, status, created_at, created_by)
            VALUES(?, ?, ?, ?, ?, ?, 'active', ?, ?)
            """,
            (
                title,
                optional_text(payload.get("court_name")),
                encode_json(clean_names(payload.get("lawyers"))),
                optional_text(payload.get("reviewer")),
                optional_text(payload.get("description")),
                optional_text(payload.get("long_description")),
                _now(),
                created_by,
            ),
        )
        case_id = int(cur.lastrowid)
        cur = conn.execute(
            """
            INSERT INTO case_sessions(case_id, session_date, status, created_at)
            VALUES(?, ?, 'scheduled', ?)
            """,
            (case_id, session_date.isoformat(), _now()),
        )
        session_id = int(cur.lastrowid)
        _log(conn, case_id, None, "case_created", f"Case created: {title}", created_by=created_by)
        _log(
            conn,
            case_id,
            session_id,
            "session_scheduled",
            f"Session scheduled for {session_date.isoformat()}",
            details={"session_date": session_date.isoformat()},
            created_by=created_by,
        )
        case_row = _load_case(conn, case_id)
        session_row = _load_session(conn, session_id)

    logger.info("Created case %s with session on %s", case_id, session_date.isoformat())
    return {"case": case_row, "session": session_row}


def update_case(case_id: int, patch: Mapping[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
    values = pick_fields(patch, EDITABLE_FIELDS)
    cleaned: Dict[str, Any] = {}
    for key, value in values.items():
        if key == "title":
            cleaned[key] = require_title(value)
        elif key == "lawyers":
            cleaned[key] = clean_names(value)
        else:
            cleaned[key] = optional_text(value)
    if not cleaned:
        raise ValidationError("Nothing to update.")

    with transaction() as conn:
        current = _load_case(conn, case_id)
        changes = {
            key: {"old": current.get(key), "new": value}
            for key, value in cleaned.items()
            if current.get(key) != value
        }
        if not changes:
            return current
        assignments = ", ".join(f"{key} = ?" for key in changes)
        params = [
            encode_json(cleaned[key]) if key == "lawyers" else cleaned[key]
            for key in changes
        ]
        conn.execute(f"UPDATE cases SET {assignments} WHERE id = ?", (*params, case_id))
        _log(conn, case_id, None, "case_updated", "Case details updated", details=changes, created_by=created_by)
        return _load_case(conn, case_id)


def _set_case_status(
    case_id: int,
    status: str,
    action_type: str,
    description: str,
    allowed_from: tuple,
    created_by: Optional[str],
) -> Dict[str, Any]:
    with transaction() as conn:
        current = _load_case(conn, case_id)
        if current["status"] not in allowed_from:
            raise ValidationError(f"Case is already {current['status']}.")
        conn.execute("UPDATE cases SET status = ? WHERE id = ?", (status, case_id))
        _log(
            conn,
            case_id,
            None,
            action_type,
            description,
            details={"status": {"old": current["status"], "new": status}},
            created_by=created_by,
        )
        return _load_case(conn, case_id)


def complete_case(case_id: int, created_by: Optional[str] = None) -> Dict[str, Any]:
    return _set_case_status(case_id, "completed", "case_completed", "Case closed", ("active",), created_by)


def cancel_case(case_id: int, created_by: Optional[str] = None) -> Dict[str, Any]:
    return _set_case_status(case_id, "cancelled", "case_cancelled", "Case cancelled", ("active",), created_by)


def reopen_case(case_id: int, created_by: Optional[str] = None) -> Dict[str, Any]:
    # There is no dedicated action type for reopening.
    return _set_case_status(
        case_id, "active", "case_updated", "Case reopened", ("completed", "cancelled"), created_by
    )


def postpone_session(
    session_id: int,
    to_date: Any,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Flag the session postponed and schedule the case on ``to_date``.

    Returns ``{"session": <postponed row>, "next": <scheduled row>}``.
    """
    target = parse_iso_date(to_date, field="to_date").isoformat()
    reason = optional_text(reason)

    with transaction() as conn:
        current = _load_session(conn, session_id)
        case = _load_case(conn, current["case_id"])
        if case["status"] != "active":
            raise ValidationError("Reopen the case before postponing its sessions.")
        if current["status"] not in ("scheduled", "postponed"):
            raise ValidationError(f"Cannot postpone a {current['status']} session.")
        if current["status"] == "postponed" and current["postponed_to"] != target:
            raise ValidationError("Session already postponed; reschedule the newer session instead.")
        if current["session_date"] == target:
            raise ValidationError("The new date must differ from the current session date.")

        existing = conn.execute(
            "SELECT * FROM case_sessions WHERE case_id = ? AND session_date = ?",
            (current["case_id"], target),
        ).fetchone()

        # Repeating a postpone that already happened changes nothing, even if
        # the session it created has since moved on.
        if current["status"] == "postponed":
            return {"session": current, "next": row_to_dict(existing)}

        if existing is not None and existing["status"] in ("completed", "cancelled"):
            raise ValidationError(
                f"The case already has a {existing['status']} session on {target}; pick another date."
            )

        conn.execute(
            """
            UPDATE case_sessions
            SET status = 'postponed', postponed_to = ?, postpone_reason = ?
            WHERE id = ?
            """,
            (target, reason, session_id),
        )
        # An earlier postponed session on the target date is brought back
        # rather than duplicated; a scheduled one is left untouched.
        conn.execute(
            """
            INSERT INTO case_sessions(case_id, session_date, status, created_at)
            VALUES(?, ?, 'scheduled', ?)
            ON CONFLICT(case_id, session_date) DO UPDATE
                SET status = 'scheduled', postponed_to = NULL, postpone_reason = NULL
                WHERE case_sessions.status = 'postponed'
            """,
            (current["case_id"], target, _now()),
        )
        next_row = row_to_dict(
            conn.execute(
                "SELECT * FROM case_sessions WHERE case_id = ? AND session_date = ?",
                (current["case_id"], target),
            ).fetchone()
        )
        _log(
            conn,
            current["case_id"],
            session_id,
            "session_postponed",
            f"Session postponed from {current['session_date']} to {target}",
            details={"from": current["session_date"], "to": target, "reason": reason},
            created_by=created_by,
        )
        postponed = _load_session(conn, session_id)

    logger.info("Postponed session %s to %s", session_id, target)
    return {"session": postponed, "next": next_row}


def _set_session_status(
    session_id: int, status: str, action_type: str, created_by: Optional[str]
) -> Dict[str, Any]:
    with transaction() as conn:
        current = _load_session(conn, session_id)
        if current["status"] != "scheduled":
            raise ValidationError(f"Only scheduled sessions can be marked {status}.")
        conn.execute("UPDATE case_sessions SET status = ? WHERE id = ?", (status, session_id))
        _log(
            conn,
            current["case_id"],
            session_id,
            action_type,
            f"Session on {current['session_date']} {status}",
            created_by=created_by,
        )
        return _load_session(conn, session_id)


def complete_session(session_id: int, created_by: Optional[str] = None) -> Dict[str, Any]:
    return _set_session_status(session_id, "completed", "session_completed", created_by)


def cancel_session(session_id: int, created_by: Optional[str] = None) -> Dict[str, Any]:
    return _set_session_status(session_id, "cancelled", "session_cancelled", created_by)


def add_note(
    case_id: int,
    message: str,
    session_id: Optional[int] = None,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    text = normalize_ws(message)
    if not text:
        raise ValidationError("Note text is required.")
    with transaction() as conn:
        _load_case(conn, case_id)
        if session_id is not None:
            session_row = _load_session(conn, session_id)
            if session_row["case_id"] != case_id:
                raise ValidationError("Session does not belong to this case.")
        log_id = _log(conn, case_id, session_id, "note_added", text, created_by=created_by)
        row = conn.execute("SELECT * FROM activity_logs WHERE id = ?", (log_id,)).fetchone()
    return row_to_dict(row)


def list_activity(case_id: int) -> List[Dict[str, Any]]:
    rows = query(
        "SELECT * FROM activity_logs WHERE case_id = ? ORDER BY created_at ASC, id ASC",
        (case_id,),
    )
    return [row_to_dict(row) for row in rows]
