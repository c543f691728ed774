"""Service layer helpers for the law office calendar."""

from . import settings, security, db, forms, auth, grid, events, cases, suggestions  # noqa: F401

__version__ = "2.1.0"

__all__ = [
    "settings",
    "security",
    "db",
    "forms",
    "auth",
    "grid",
    "events",
    "cases",
    "suggestions",
]
