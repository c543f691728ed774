"""Input cleaning shared by the JSON API and the services."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional


class ValidationError(ValueError):
    """Raised when submitted data is incomplete or malformed; nothing is written."""


def normalize_ws(s: Any) -> str:
    return re.sub(r"\s+", " ", str(s or "")).strip()


def optional_text(value: Any) -> Optional[str]:
    """Collapse blank input to ``None`` so the store keeps NULLs, not empty strings."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def clean_names(values: Any) -> list[str]:
    """Lawyer lists arrive either as arrays or comma/newline separated text."""
    if values is None:
        return []
    if isinstance(values, str):
        values = re.split(r"[,\n،]", values)
    out: list[str] = []
    for item in values:
        name = normalize_ws(item)
        if name and name not in out:
            out.append(name)
    return out


def parse_iso_date(value: Any, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = normalize_ws(value)
    if not raw:
        raise ValidationError(f"{field} is required.")
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use YYYY-MM-DD.") from None


def require_title(value: Any) -> str:
    title = normalize_ws(value)
    if not title:
        raise ValidationError("Title is required.")
    return title


def pick_fields(payload: Mapping[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    return {key: payload[key] for key in allowed if key in payload}
