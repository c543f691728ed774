"""Environment and settings lookup for the calendar app."""

from __future__ import annotations

import os
from typing import Any

from lawcal.settings import settings_manager

_manager = settings_manager

_SQLITE_URL_PREFIX = "sqlite:///"


def _get_secret(key: str) -> Any:
    try:
        return _manager.get_secret(key)
    except RuntimeError:
        # Secrets store unreadable with the current passphrase.
        return _manager.get(key)


def database_path_from(raw: str) -> str:
    """Accept either a filesystem path or a ``sqlite:///`` URL."""
    raw = (raw or "").strip()
    if raw.startswith(_SQLITE_URL_PREFIX):
        return raw[len(_SQLITE_URL_PREFIX):]
    return raw


DATABASE = database_path_from(
    os.environ.get("LAWCAL_DATABASE")
    or _manager.get("database_path")
    or str(_manager.paths.config_dir / "calendar.db")
)

SECRET_KEY = (
    os.environ.get("LAWCAL_SECRET_KEY")
    or _manager.get("flask_secret_key")
    or "dev-local-secret-key"
)

ADMIN_PASSWORD = (
    os.environ.get("LAWCAL_ADMIN_PASSWORD")
    or _get_secret("admin_password")
    or "admin123"
)


def save_admin_password(pw: str) -> None:
    try:
        _manager.set_secret("admin_password", pw)
    except RuntimeError:
        _manager.set("admin_password", pw)
    global ADMIN_PASSWORD
    ADMIN_PASSWORD = pw


def save_database_path(path_str: str) -> None:
    _manager.set("database_path", path_str)
    global DATABASE
    DATABASE = database_path_from(path_str)
