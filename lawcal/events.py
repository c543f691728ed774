"""Flat calendar model: one ``events`` row per court date.

A matter's history is a chain of rows sharing ``case_ref``: postponing marks
the current row ``postponed`` and adds a fresh ``open`` row on the new date.
Rows are never hard-deleted; ``soft_delete_event`` flags them instead.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from lawcal.db import RecordNotFound, encode_json, query, query_one, row_to_dict, transaction
from lawcal.forms import (
    ValidationError,
    clean_names,
    normalize_ws,
    optional_text,
    parse_iso_date,
    pick_fields,
    require_title,
)

EDITABLE_FIELDS = ("title", "description", "long_description", "court_name", "lawyers")

logger = logging.getLogger("lawcal.events")


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="milliseconds")


def _load(conn: sqlite3.Connection, event_id: int) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
    if row is None or row["status"] == "deleted":
        raise RecordNotFound(f"Event {event_id} not found")
    return row_to_dict(row)


def _log(
    conn: sqlite3.Connection,
    case_ref: str,
    kind: str,
    message: Optional[str] = None,
    changes: Optional[Mapping[str, Any]] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    actor: Optional[str] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO event_logs(case_ref, kind, message, changes, from_date, to_date, actor, created_at)
        VALUES(?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (case_ref, kind, message, encode_json(changes), from_date, to_date, actor, _now()),
    )
    return int(cur.lastrowid)


def _successor(conn: sqlite3.Connection, case_ref: str, on_date: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        """
        SELECT * FROM events
        WHERE case_ref = ? AND date = ? AND status <> 'deleted'
        ORDER BY CASE WHEN status IN ('open','closed') THEN 0 ELSE 1 END, id DESC
        LIMIT 1
        """,
        (case_ref, on_date),
    ).fetchone()
    return row_to_dict(row)


def _clean_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    values = pick_fields(patch, EDITABLE_FIELDS)
    cleaned: Dict[str, Any] = {}
    for key, value in values.items():
        if key == "title":
            cleaned[key] = require_title(value)
        elif key == "lawyers":
            cleaned[key] = clean_names(value)
        else:
            cleaned[key] = optional_text(value)
    return cleaned


def fetch_month_events(start: date, end: date) -> List[Dict[str, Any]]:
    rows = query(
        """
        SELECT * FROM events
        WHERE date BETWEEN ? AND ? AND status <> 'deleted'
        ORDER BY date ASC, created_at ASC, id ASC
        """,
        (start.isoformat(), end.isoformat()),
    )
    return [row_to_dict(row) for row in rows]


def get_event(event_id: int) -> Dict[str, Any]:
    row = query_one("SELECT * FROM events WHERE id = ? AND status <> 'deleted'", (event_id,))
    if row is None:
        raise RecordNotFound(f"Event {event_id} not found")
    return row_to_dict(row)


def create_event(payload: Mapping[str, Any], actor: Optional[str] = None) -> Dict[str, Any]:
    title = require_title(payload.get("title"))
    on_date = parse_iso_date(payload.get("date"))
    case_ref = normalize_ws(payload.get("case_ref")) or uuid.uuid4().hex

    with transaction() as conn:
        live = conn.execute(
            "SELECT id FROM events WHERE case_ref = ? AND date = ? AND status IN ('open','closed')",
            (case_ref, on_date.isoformat()),
        ).fetchone()
        if live is not None:
            raise ValidationError(f"Case {case_ref!r} already has an entry on {on_date.isoformat()}.")
        cur = conn.execute(
            """
            INSERT INTO events(date, title, description, long_description, court_name,
                               lawyers, status, case_ref, created_at)
            VALUES(?, ?, ?, ?, ?, ?, 'open', ?, ?)
            """,
            (
                on_date.isoformat(),
                title,
                optional_text(payload.get("description")),
                optional_text(payload.get("long_description")),
                optional_text(payload.get("court_name")),
                encode_json(clean_names(payload.get("lawyers"))),
                case_ref,
                _now(),
            ),
        )
        event = _load(conn, int(cur.lastrowid))
        _log(conn, case_ref, "create", message=title, to_date=event["date"], actor=actor)

    logger.info("Created event %s (%s) on %s", event["id"], case_ref, event["date"])
    return event


def update_event(event_id: int, patch: Mapping[str, Any], actor: Optional[str] = None) -> Dict[str, Any]:
    cleaned = _clean_patch(patch)
    if not cleaned:
        raise ValidationError("Nothing to update.")

    with transaction() as conn:
        current = _load(conn, event_id)
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
        conn.execute(f"UPDATE events SET {assignments} WHERE id = ?", (*params, event_id))
        _log(conn, current["case_ref"], "update", message="Case details updated", changes=changes, actor=actor)
        updated = _load(conn, event_id)

    return updated


def postpone_event(
    event_id: int,
    to_date: Any,
    actor: Optional[str] = None,
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """Mark the row postponed and open a new occurrence on ``to_date``.

    Returns ``{"original": ..., "next": ...}``. Repeating the same postpone
    leaves exactly one live row on ``to_date`` for the matter.
    """
    target = parse_iso_date(to_date, field="to_date")

    with transaction() as conn:
        current = _load(conn, event_id)
        if current["status"] == "closed":
            raise ValidationError("Reopen the case before postponing it.")
        if current["date"] == target.isoformat():
            raise ValidationError("The new date must differ from the current date.")
        if current["status"] == "postponed" and current["postponed_to"] != target.isoformat():
            raise ValidationError("Already postponed; reschedule the newer occurrence instead.")
        if current["status"] == "postponed":
            # Already done; the successor may have moved on since.
            return {"original": current, "next": _successor(conn, current["case_ref"], target.isoformat())}

        conn.execute(
            "UPDATE events SET status = 'postponed', postponed_to = ? WHERE id = ?",
            (target.isoformat(), event_id),
        )
        conn.execute(
            """
            INSERT INTO events(date, title, description, long_description, court_name,
                               lawyers, status, case_ref, created_at)
            VALUES(?, ?, ?, ?, ?, ?, 'open', ?, ?)
            ON CONFLICT DO NOTHING
            """,
            (
                target.isoformat(),
                current["title"],
                current["description"],
                current["long_description"],
                current["court_name"],
                encode_json(current.get("lawyers") or []),
                current["case_ref"],
                _now(),
            ),
        )
        _log(
            conn,
            current["case_ref"],
            "postpone",
            message=optional_text(message),
            from_date=current["date"],
            to_date=target.isoformat(),
            actor=actor,
        )
        original = _load(conn, event_id)
        nxt = _successor(conn, current["case_ref"], target.isoformat())

    logger.info("Postponed event %s from %s to %s", event_id, current["date"], target.isoformat())
    return {"original": original, "next": nxt}


def _set_status(event_id: int, status: str, kind: str, allowed_from: tuple, actor: Optional[str]) -> Dict[str, Any]:
    with transaction() as conn:
        current = _load(conn, event_id)
        if current["status"] not in allowed_from:
            raise ValidationError(f"Cannot {kind} a case that is {current['status']}.")
        conn.execute("UPDATE events SET status = ? WHERE id = ?", (status, event_id))
        _log(conn, current["case_ref"], kind, actor=actor)
        return _load(conn, event_id)


def close_event(event_id: int, actor: Optional[str] = None) -> Dict[str, Any]:
    return _set_status(event_id, "closed", "close", ("open", "postponed"), actor)


def reopen_event(event_id: int, actor: Optional[str] = None) -> Dict[str, Any]:
    return _set_status(event_id, "open", "reopen", ("closed",), actor)


def soft_delete_event(event_id: int, actor: Optional[str] = None) -> Dict[str, Any]:
    with transaction() as conn:
        current = _load(conn, event_id)
        deleted_at = _now()
        conn.execute(
            "UPDATE events SET status = 'deleted', deleted_at = ? WHERE id = ?",
            (deleted_at, event_id),
        )
        _log(conn, current["case_ref"], "delete", from_date=current["date"], actor=actor)
        row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()

    logger.info("Soft-deleted event %s", event_id)
    return row_to_dict(row)


def list_event_logs(case_ref: str) -> List[Dict[str, Any]]:
    rows = query(
        "SELECT * FROM event_logs WHERE case_ref = ? ORDER BY created_at ASC, id ASC",
        (case_ref,),
    )
    return [row_to_dict(row) for row in rows]


def add_event_note(case_ref: str, message: str, actor: Optional[str] = None) -> Dict[str, Any]:
    text = normalize_ws(message)
    if not text:
        raise ValidationError("Note text is required.")
    case_ref = normalize_ws(case_ref)
    if query_one("SELECT 1 FROM events WHERE case_ref = ? LIMIT 1", (case_ref,)) is None:
        raise RecordNotFound(f"Case {case_ref!r} not found")
    with transaction() as conn:
        log_id = _log(conn, case_ref, "note", message=text, actor=actor)
        row = conn.execute("SELECT * FROM event_logs WHERE id = ?", (log_id,)).fetchone()
    return row_to_dict(row)
