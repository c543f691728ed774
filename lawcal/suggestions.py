"""Autocomplete for the free-text case fields (court, reviewer, lawyers)."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from lawcal.db import query, row_to_dict
from lawcal.forms import ValidationError, normalize_ws
from lawcal.settings import SettingsManager, settings_manager

SUGGESTION_FIELDS = ("court_name", "reviewer", "lawyers")
ARRAY_FIELDS = ("lawyers",)
STORE_SCAN_LIMIT = 1000
MRU_LIMIT = 15
DEFAULT_LIMIT = 10


def require_field(field: str) -> str:
    if field not in SUGGESTION_FIELDS:
        raise ValidationError(f"No suggestions for field {field!r}.")
    return field


def fetch_store_values(field: str, limit: int = STORE_SCAN_LIMIT) -> List[str]:
    """Values of ``field`` from the most recent cases, newest first."""
    require_field(field)
    rows = query(
        f"SELECT {field} FROM cases ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    )
    values: List[str] = []
    for row in rows:
        raw = row_to_dict(row)[field]
        items = raw if field in ARRAY_FIELDS else [raw]
        for item in items or []:
            text = normalize_ws(item)
            if text:
                values.append(text)
    return values


def rank_by_frequency(values: Iterable[str]) -> List[str]:
    # Counter keeps first-seen order, and sorted() is stable, so ties stay
    # newest first.
    counts = Counter(values)
    return [value for value, _ in sorted(counts.items(), key=lambda kv: -kv[1])]


def merge_suggestions(
    mru: Iterable[str],
    ranked: Iterable[str],
    query_text: str = "",
    limit: int = DEFAULT_LIMIT,
) -> List[str]:
    needle = normalize_ws(query_text).casefold()
    out: List[str] = []
    seen = set()
    for value in list(mru) + list(ranked):
        if value in seen:
            continue
        if needle and needle not in value.casefold():
            continue
        seen.add(value)
        out.append(value)
        if len(out) >= limit:
            break
    return out


class MRUStore:
    """Most-recently-used values per field, persisted as JSON lists."""

    def __init__(self, backend: Optional[SettingsManager] = None, cap: int = MRU_LIMIT) -> None:
        self.backend = backend or settings_manager
        self.cap = cap

    @staticmethod
    def key_for(field: str) -> str:
        return f"mru_{require_field(field)}"

    def get(self, field: str) -> List[str]:
        return self.backend.get_list(self.key_for(field))[: self.cap]

    def remember(self, field: str, value: Any) -> List[str]:
        text = normalize_ws(value)
        if not text:
            raise ValidationError("Suggestion value is required.")
        current = [item for item in self.get(field) if item != text]
        updated = [text, *current][: self.cap]
        self.backend.set_list(self.key_for(field), updated)
        return updated


def suggest(
    field: str,
    query_text: str = "",
    mru_store: Optional[MRUStore] = None,
    limit: int = DEFAULT_LIMIT,
) -> Dict[str, Any]:
    require_field(field)
    store = mru_store or MRUStore()
    ranked = rank_by_frequency(fetch_store_values(field))
    return {
        "field": field,
        "query": query_text,
        "suggestions": merge_suggestions(store.get(field), ranked, query_text, limit),
    }
