from __future__ import annotations

import logging
from datetime import date, timedelta
from functools import wraps
from typing import Any, Dict, Optional

import click
from flask import (
    Flask, request, jsonify, render_template, send_from_directory, g
)

from lawcal import __version__
from lawcal.auth import AUTH_COOKIE, AuthGate, AuthStatus
from lawcal.db import StoreError, RecordNotFound, close_app_db, get_app_db
from lawcal.forms import ValidationError
from lawcal.grid import CalendarView, SATURDAY, add_months, parse_month, weekday_order
from lawcal import cases as cases_service
from lawcal import events as events_service
from lawcal.suggestions import MRUStore, suggest

# ---- App config (pulled from lawcal_config.py) --------------------------
try:
    import lawcal_config as config
except Exception as e:
    raise RuntimeError("lawcal_config.py missing or invalid") from e


SESSION_LIFETIME = timedelta(days=7)
WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


# ---- Flask setup --------------------------------------------------------
app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.config.update(
    DATABASE=config.DATABASE,
    ADMIN_PASSWORD=config.ADMIN_PASSWORD,
    SESSION_COOKIE_NAME=AUTH_COOKIE,
    SESSION_COOKIE_SECURE=True,
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Strict",
    PERMANENT_SESSION_LIFETIME=SESSION_LIFETIME,
    WEEK_START=SATURDAY,
)

auth_gate = AuthGate(lambda: app.config.get("ADMIN_PASSWORD") or "")


def _log_auth_change(status: AuthStatus) -> None:
    app.logger.info("Auth changed: %s", status.user_type)


auth_gate.subscribe(_log_auth_change)


@app.before_request
def _load_auth_status() -> None:
    g.auth = auth_gate.get_auth_status()


@app.teardown_appcontext
def close_application_db(exc: Optional[BaseException]) -> None:
    close_app_db(exc)


@app.context_processor
def inject_auth_status() -> Dict[str, Any]:
    status = g.get("auth") or auth_gate.get_auth_status()
    return {"auth": status, "app_version": __version__}


def current_actor() -> str:
    return g.auth.user_type


def require_admin_api(handler):
    @wraps(handler)
    def wrapper(*args, **kwargs):
        status = g.get("auth")
        if status is None or not status.is_logged_in:
            return jsonify({"ok": False, "msg": "Administrator access required."}), 401
        return handler(*args, **kwargs)

    return wrapper


def mru_store() -> MRUStore:
    return MRUStore(app.config.get("MRU_BACKEND"))


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


# ---- Error handling -----------------------------------------------------
@app.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    return jsonify({"ok": False, "msg": str(exc)}), 400


@app.errorhandler(RecordNotFound)
def handle_not_found(exc: RecordNotFound):
    return jsonify({"ok": False, "msg": str(exc.args[0]) if exc.args else "Not found."}), 404


@app.errorhandler(StoreError)
def handle_store_error(exc: StoreError):
    app.logger.exception("Store call failed on %s %s: %s", request.method, request.path, exc)
    return jsonify({"ok": False, "msg": "The calendar store is unavailable. Please try again."}), 500


# ---- Diagnostics --------------------------------------------------------
@app.get("/ping")
def ping():
    return "pong"


# ---- Page & offline cache -----------------------------------------------
@app.route("/")
def home():
    week_start = app.config.get("WEEK_START", SATURDAY)
    weekdays = [WEEKDAY_NAMES[i] for i in weekday_order(week_start)]
    return render_template(
        "calendar.html",
        weekdays=weekdays,
        initial_month=date.today().strftime("%Y-%m"),
    )


@app.get("/sw.js")
def service_worker():
    response = send_from_directory(app.static_folder, "sw.js", mimetype="application/javascript")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["Service-Worker-Allowed"] = "/"
    return response


@app.get("/manifest.json")
def manifest():
    return send_from_directory(app.static_folder, "manifest.json", mimetype="application/manifest+json")


# ---- Auth ---------------------------------------------------------------
@app.get("/api/auth/status")
def api_auth_status():
    return jsonify({"ok": True, "auth": g.auth.as_dict()})


@app.post("/api/auth/login")
def api_login():
    password = json_body().get("password")
    if not isinstance(password, str) or not password.strip():
        return jsonify({"ok": False, "msg": "Password is required."}), 400
    if not auth_gate.login(password):
        return jsonify({"ok": False, "msg": "Incorrect password."}), 401
    g.auth = auth_gate.get_auth_status()
    return jsonify({"ok": True, "auth": g.auth.as_dict()})


@app.post("/api/auth/logout")
def api_logout():
    auth_gate.logout()
    g.auth = auth_gate.get_auth_status()
    return jsonify({"ok": True, "auth": g.auth.as_dict()})


# ---- Calendar fetch -----------------------------------------------------
def _calendar_payload(view: CalendarView, records: list) -> Dict[str, Any]:
    view.load(records)
    start, end = view.fetch_range()
    return {
        "ok": True,
        "month": view.current_month.strftime("%Y-%m"),
        "prev": add_months(view.current_month, -1).strftime("%Y-%m"),
        "next": add_months(view.current_month, 1).strftime("%Y-%m"),
        "range": {"start": start.isoformat(), "end": end.isoformat()},
        "days": view.cells(),
    }


@app.get("/api/calendar")
def api_calendar():
    """Sessions for the padded month grid (normalized model)."""
    month = parse_month(request.args.get("month"))
    view = CalendarView(
        month,
        padded=True,
        week_start=app.config.get("WEEK_START", SATURDAY),
        date_key="session_date",
    )
    start, end = view.fetch_range()
    sessions = cases_service.fetch_month_sessions(start, end)
    return jsonify(_calendar_payload(view, sessions))


@app.get("/api/events")
def api_events():
    """Flat events for the exact days of the month."""
    month = parse_month(request.args.get("month"))
    view = CalendarView(month, padded=False, date_key="date")
    start, end = view.fetch_range()
    events = events_service.fetch_month_events(start, end)
    return jsonify(_calendar_payload(view, events))


# ---- Flat model mutations -----------------------------------------------
@app.post("/api/events")
@require_admin_api
def api_create_event():
    event = events_service.create_event(json_body(), actor=current_actor())
    app.logger.info("Event %s created by %s", event["id"], current_actor())
    return jsonify({"ok": True, "event": event}), 201


@app.get("/api/events/<int:event_id>")
def api_get_event(event_id: int):
    return jsonify({"ok": True, "event": events_service.get_event(event_id)})


@app.patch("/api/events/<int:event_id>")
@require_admin_api
def api_update_event(event_id: int):
    event = events_service.update_event(event_id, json_body(), actor=current_actor())
    return jsonify({"ok": True, "event": event})


@app.post("/api/events/<int:event_id>/postpone")
@require_admin_api
def api_postpone_event(event_id: int):
    data = json_body()
    result = events_service.postpone_event(
        event_id, data.get("to_date"), actor=current_actor(), message=data.get("message")
    )
    return jsonify({"ok": True, **result})


@app.post("/api/events/<int:event_id>/close")
@require_admin_api
def api_close_event(event_id: int):
    return jsonify({"ok": True, "event": events_service.close_event(event_id, actor=current_actor())})


@app.post("/api/events/<int:event_id>/reopen")
@require_admin_api
def api_reopen_event(event_id: int):
    return jsonify({"ok": True, "event": events_service.reopen_event(event_id, actor=current_actor())})


@app.delete("/api/events/<int:event_id>")
@require_admin_api
def api_delete_event(event_id: int):
    event = events_service.soft_delete_event(event_id, actor=current_actor())
    app.logger.info("Event %s soft-deleted by %s", event_id, current_actor())
    return jsonify({"ok": True, "event": event})


@app.get("/api/event-logs/<case_ref>")
def api_event_logs(case_ref: str):
    return jsonify({"ok": True, "logs": events_service.list_event_logs(case_ref)})


@app.post("/api/event-logs/<case_ref>")
@require_admin_api
def api_add_event_note(case_ref: str):
    log = events_service.add_event_note(case_ref, json_body().get("message") or "", actor=current_actor())
    return jsonify({"ok": True, "log": log}), 201


# ---- Normalized model mutations -----------------------------------------
@app.post("/api/cases")
@require_admin_api
def api_create_case():
    result = cases_service.create_case_and_session(json_body(), created_by=current_actor())
    app.logger.info("Case %s created by %s", result["case"]["id"], current_actor())
    return jsonify({"ok": True, **result}), 201


@app.get("/api/cases/<int:case_id>")
def api_get_case(case_id: int):
    return jsonify({"ok": True, "case": cases_service.get_case(case_id)})


@app.patch("/api/cases/<int:case_id>")
@require_admin_api
def api_update_case(case_id: int):
    case = cases_service.update_case(case_id, json_body(), created_by=current_actor())
    return jsonify({"ok": True, "case": case})


@app.post("/api/cases/<int:case_id>/<action>")
@require_admin_api
def api_case_status(case_id: int, action: str):
    handlers = {
        "complete": cases_service.complete_case,
        "cancel": cases_service.cancel_case,
        "reopen": cases_service.reopen_case,
    }
    handler = handlers.get(action)
    if handler is None:
        return jsonify({"ok": False, "msg": f"Unknown case action {action!r}."}), 404
    return jsonify({"ok": True, "case": handler(case_id, created_by=current_actor())})


@app.post("/api/sessions/<int:session_id>/postpone")
@require_admin_api
def api_postpone_session(session_id: int):
    data = json_body()
    result = cases_service.postpone_session(
        session_id, data.get("to_date"), reason=data.get("reason"), created_by=current_actor()
    )
    return jsonify({"ok": True, **result})


@app.post("/api/sessions/<int:session_id>/complete")
@require_admin_api
def api_complete_session(session_id: int):
    session_row = cases_service.complete_session(session_id, created_by=current_actor())
    return jsonify({"ok": True, "session": session_row})


@app.post("/api/sessions/<int:session_id>/cancel")
@require_admin_api
def api_cancel_session(session_id: int):
    session_row = cases_service.cancel_session(session_id, created_by=current_actor())
    return jsonify({"ok": True, "session": session_row})


@app.get("/api/cases/<int:case_id>/activity")
def api_case_activity(case_id: int):
    cases_service.get_case(case_id)
    return jsonify({"ok": True, "logs": cases_service.list_activity(case_id)})


@app.post("/api/cases/<int:case_id>/notes")
@require_admin_api
def api_add_case_note(case_id: int):
    data = json_body()
    session_id = data.get("session_id")
    try:
        session_id = int(session_id) if session_id not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("Invalid session_id.") from None
    log = cases_service.add_note(
        case_id, data.get("message") or "", session_id=session_id, created_by=current_actor()
    )
    return jsonify({"ok": True, "log": log}), 201


# ---- Suggestions --------------------------------------------------------
@app.get("/api/suggestions/<field>")
def api_suggestions(field: str):
    result = suggest(field, request.args.get("q") or "", mru_store=mru_store())
    return jsonify({"ok": True, **result})


@app.post("/api/suggestions/<field>")
@require_admin_api
def api_remember_suggestion(field: str):
    recent = mru_store().remember(field, json_body().get("value"))
    return jsonify({"ok": True, "field": field, "recent": recent})


# ---- CLI ----------------------------------------------------------------
@app.cli.command("set-admin-password")
@click.password_option()
def set_admin_password_command(password: str) -> None:
    """Store the shared admin password in the encrypted secrets file."""
    config.save_admin_password(password)
    app.config["ADMIN_PASSWORD"] = password
    click.echo("Admin password updated.")


@app.cli.command("set-database")
@click.argument("path")
def set_database_command(path: str) -> None:
    """Point the calendar at another SQLite file (path or sqlite:/// URL)."""
    config.save_database_path(path)
    app.config["DATABASE"] = config.DATABASE
    with app.app_context():
        get_app_db()
    click.echo(f"Calendar database: {config.DATABASE}")


# ---- Entrypoint ---------------------------------------------------------
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print("Calendar database:", config.DATABASE)
    app.config["SESSION_COOKIE_SECURE"] = False
    app.run(host="0.0.0.0", port=5000, debug=True)
