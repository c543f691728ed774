"""Normalized model: cases, sessions, postponement and the activity log."""

from datetime import date

import pytest

from lawcal import cases
from lawcal.db import RecordNotFound, StoreError, get_app_db
from lawcal.forms import ValidationError

JUNE = (date(2024, 6, 1), date(2024, 7, 5))


def new_case(title="Smith v. Jones", session_date="2024-06-10", **extra):
    payload = {"title": title, "session_date": session_date, "court_name": "District Court"}
    payload.update(extra)
    return cases.create_case_and_session(payload, created_by="admin")


def session_count(case_id):
    return get_app_db().execute(
        "SELECT COUNT(*) AS c FROM case_sessions WHERE case_id = ?", (case_id,)
    ).fetchone()["c"]


def test_create_case_with_first_session(app_ctx):
    created = new_case(lawyers=["A. Lawyer", "A. Lawyer", " B. Counsel "], reviewer="R. Partner")
    case, session = created["case"], created["session"]
    assert case["status"] == "active"
    assert case["lawyers"] == ["A. Lawyer", "B. Counsel"]
    assert case["created_by"] == "admin"
    assert session["status"] == "scheduled"
    assert session["case_id"] == case["id"]

    rows = cases.fetch_month_sessions(*JUNE)
    assert len(rows) == 1
    assert rows[0]["title"] == "Smith v. Jones"
    assert rows[0]["session_date"] == "2024-06-10"
    assert rows[0]["lawyers"] == ["A. Lawyer", "B. Counsel"]

    actions = [log["action_type"] for log in cases.list_activity(case["id"])]
    assert actions == ["case_created", "session_scheduled"]


def test_failed_session_insert_rolls_back_the_case(app_ctx):
    conn = get_app_db()
    conn.execute(
        """
        CREATE TRIGGER reject_sessions BEFORE INSERT ON case_sessions
        BEGIN SELECT RAISE(ABORT, 'sessions unavailable'); END;
        """
    )
    conn.commit()

    with pytest.raises(StoreError):
        new_case()
    assert conn.execute("SELECT COUNT(*) AS c FROM cases").fetchone()["c"] == 0
    assert conn.execute("SELECT COUNT(*) AS c FROM activity_logs").fetchone()["c"] == 0


def test_validation_happens_before_any_write(app_ctx):
    with pytest.raises(ValidationError):
        new_case(title="")
    with pytest.raises(ValidationError):
        new_case(session_date="")
    assert cases.fetch_month_sessions(*JUNE) == []


def test_postpone_schedules_new_session_once(app_ctx):
    created = new_case()
    session_id = created["session"]["id"]

    result = cases.postpone_session(session_id, "2024-06-17", reason="Judge unavailable")
    assert result["session"]["status"] == "postponed"
    assert result["session"]["postponed_to"] == "2024-06-17"
    assert result["session"]["postpone_reason"] == "Judge unavailable"
    assert result["next"]["status"] == "scheduled"
    assert result["next"]["session_date"] == "2024-06-17"

    again = cases.postpone_session(session_id, "2024-06-17", reason="Judge unavailable")
    assert again["next"]["id"] == result["next"]["id"]
    assert session_count(created["case"]["id"]) == 2

    postponed_logs = [
        log for log in cases.list_activity(created["case"]["id"])
        if log["action_type"] == "session_postponed"
    ]
    assert len(postponed_logs) == 1
    assert postponed_logs[0]["details"] == {
        "from": "2024-06-10", "to": "2024-06-17", "reason": "Judge unavailable"
    }

    by_day = {row["session_date"]: row["session_status"] for row in cases.fetch_month_sessions(*JUNE)}
    assert by_day == {"2024-06-10": "postponed", "2024-06-17": "scheduled"}


def test_postpone_back_to_an_earlier_date_revives_that_session(app_ctx):
    created = new_case()
    first = created["session"]["id"]
    moved = cases.postpone_session(first, "2024-06-17")
    back = cases.postpone_session(moved["next"]["id"], "2024-06-10")
    assert back["next"]["id"] == first
    assert back["next"]["status"] == "scheduled"
    assert back["next"]["postponed_to"] is None
    assert session_count(created["case"]["id"]) == 2


def test_postpone_rules(app_ctx):
    created = new_case()
    session_id = created["session"]["id"]
    with pytest.raises(ValidationError):
        cases.postpone_session(session_id, "2024-06-10")
    with pytest.raises(ValidationError):
        cases.postpone_session(session_id, "someday")
    cases.postpone_session(session_id, "2024-06-17")
    with pytest.raises(ValidationError):
        cases.postpone_session(session_id, "2024-06-24")
    with pytest.raises(RecordNotFound):
        cases.postpone_session(9999, "2024-06-24")


def test_close_and_reopen_case(app_ctx):
    created = new_case()
    case_id = created["case"]["id"]

    closed = cases.complete_case(case_id)
    assert closed["status"] == "completed"
    with pytest.raises(ValidationError):
        cases.complete_case(case_id)
    with pytest.raises(ValidationError):
        cases.postpone_session(created["session"]["id"], "2024-06-17")

    reopened = cases.reopen_case(case_id)
    assert reopened["status"] == "active"
    assert cases.cancel_case(case_id)["status"] == "cancelled"

    actions = [log["action_type"] for log in cases.list_activity(case_id)]
    assert actions[-3:] == ["case_completed", "case_updated", "case_cancelled"]


def test_session_complete_and_cancel(app_ctx):
    created = new_case()
    session_id = created["session"]["id"]
    assert cases.complete_session(session_id)["status"] == "completed"
    with pytest.raises(ValidationError):
        cases.cancel_session(session_id)

    other = new_case(title="Doe v. Roe", session_date="2024-06-12")
    assert cases.cancel_session(other["session"]["id"])["status"] == "cancelled"


def test_update_case_logs_changes(app_ctx):
    case_id = new_case()["case"]["id"]
    updated = cases.update_case(case_id, {"reviewer": "R. Partner", "lawyers": "X, Y"}, created_by="admin")
    assert updated["reviewer"] == "R. Partner"
    assert updated["lawyers"] == ["X", "Y"]

    log = cases.list_activity(case_id)[-1]
    assert log["action_type"] == "case_updated"
    assert log["details"] == {
        "reviewer": {"old": None, "new": "R. Partner"},
        "lawyers": {"old": [], "new": ["X", "Y"]},
    }

    unchanged = cases.update_case(case_id, {"reviewer": "R. Partner"})
    assert unchanged["reviewer"] == "R. Partner"
    assert cases.list_activity(case_id)[-1]["id"] == log["id"]


def test_notes_and_timeline(app_ctx):
    created = new_case()
    case_id = created["case"]["id"]
    note = cases.add_note(case_id, "Client brought documents", session_id=created["session"]["id"])
    assert note["action_type"] == "note_added"
    assert note["session_id"] == created["session"]["id"]
    assert cases.list_activity(case_id)[-1]["id"] == note["id"]

    other = new_case(title="Doe v. Roe")
    with pytest.raises(ValidationError):
        cases.add_note(case_id, "wrong session", session_id=other["session"]["id"])
    with pytest.raises(ValidationError):
        cases.add_note(case_id, " ")
    with pytest.raises(RecordNotFound):
        cases.add_note(9999, "nobody")


def test_get_case_includes_sessions(app_ctx):
    created = new_case()
    cases.postpone_session(created["session"]["id"], "2024-06-17")
    case = cases.get_case(created["case"]["id"])
    assert [s["session_date"] for s in case["sessions"]] == ["2024-06-10", "2024-06-17"]
    with pytest.raises(RecordNotFound):
        cases.get_case(9999)


def test_repeated_postpone_after_the_chain_moved_on(app_ctx):
    created = new_case()
    first = created["session"]["id"]
    second = cases.postpone_session(first, "2024-06-17")["next"]["id"]
    cases.postpone_session(second, "2024-06-24")

    again = cases.postpone_session(first, "2024-06-17")
    assert again["session"]["status"] == "postponed"
    assert again["next"]["id"] == second
    assert again["next"]["status"] == "postponed"

    rows = get_app_db().execute(
        "SELECT session_date, status FROM case_sessions WHERE case_id = ? ORDER BY session_date",
        (created["case"]["id"],),
    ).fetchall()
    assert [tuple(r) for r in rows] == [
        ("2024-06-10", "postponed"),
        ("2024-06-17", "postponed"),
        ("2024-06-24", "scheduled"),
    ]
    postponed_logs = [
        log for log in cases.list_activity(created["case"]["id"])
        if log["action_type"] == "session_postponed"
    ]
    assert len(postponed_logs) == 2


@pytest.mark.parametrize("closer", [cases.cancel_session, cases.complete_session])
def test_postpone_onto_a_finished_session_date_is_rejected(app_ctx, closer):
    created = new_case()
    case_id = created["case"]["id"]
    conn = get_app_db()
    cur = conn.execute(
        "INSERT INTO case_sessions(case_id, session_date, status, created_at) "
        "VALUES(?, '2024-06-17', 'scheduled', '2024-06-01T00:00:00.000')",
        (case_id,),
    )
    conn.commit()
    closer(cur.lastrowid)

    with pytest.raises(ValidationError):
        cases.postpone_session(created["session"]["id"], "2024-06-17")

    by_date = {s["session_date"]: s["status"] for s in cases.get_case(case_id)["sessions"]}
    assert by_date["2024-06-10"] == "scheduled"
    actions = [log["action_type"] for log in cases.list_activity(case_id)]
    assert "session_postponed" not in actions
