"""Month grid and day bucketing for the calendar page."""

from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from lawcal.forms import ValidationError

# ``date.weekday()`` numbering (Monday == 0).
SATURDAY = 5
SUNDAY = 6

DateLike = Union[date, datetime, str]
KeyFunc = Callable[[Any], Optional[DateLike]]


def as_day(value: Optional[DateLike]) -> Optional[date]:
    """Timezone-naive calendar day of a date, datetime or ISO string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if len(raw) < 10:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def parse_month(raw: Optional[str], today: Optional[date] = None) -> date:
    """``YYYY-MM`` (or any ISO date) to the first day of that month."""
    if not raw:
        base = today or date.today()
        return base.replace(day=1)
    raw = raw.strip()
    try:
        if len(raw) == 7:
            return datetime.strptime(raw, "%Y-%m").date()
        return date.fromisoformat(raw[:10]).replace(day=1)
    except ValueError:
        raise ValidationError(f"Invalid month {raw!r}. Use YYYY-MM.") from None


def add_months(month: date, n: int) -> date:
    index = month.year * 12 + (month.month - 1) + n
    return date(index // 12, index % 12 + 1, 1)


def month_bounds(month: date) -> Tuple[date, date]:
    first = month.replace(day=1)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return first, first.replace(day=last_day)


def grid_bounds(month: date, padded: bool = True, week_start: int = SATURDAY) -> Tuple[date, date]:
    first, last = month_bounds(month)
    if not padded:
        return first, last
    lead = (first.weekday() - week_start) % 7
    trail = (week_start + 6 - last.weekday()) % 7
    return first - timedelta(days=lead), last + timedelta(days=trail)


def month_days(month: date, padded: bool = True, week_start: int = SATURDAY) -> List[date]:
    start, end = grid_bounds(month, padded=padded, week_start=week_start)
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def weekday_order(week_start: int = SATURDAY) -> List[int]:
    return [(week_start + i) % 7 for i in range(7)]


def bucket_by_day(records: Iterable[Any], key: Union[str, KeyFunc]) -> Dict[date, List[Any]]:
    """Group records under the calendar day of their date field."""
    getter: KeyFunc
    if callable(key):
        getter = key
    else:
        field = key

        def getter(record: Any) -> Optional[DateLike]:
            if isinstance(record, Mapping):
                return record.get(field)
            return getattr(record, field, None)

    buckets: Dict[date, List[Any]] = defaultdict(list)
    for record in records:
        day = as_day(getter(record))
        if day is not None:
            buckets[day].append(record)
    return dict(buckets)


class CalendarView:
    """Displayed month plus the records fetched for it.

    Each navigation bumps ``generation``; a fetch result is applied only if
    it was started for the current generation, so a slow response for a
    month the user already left never overwrites the newer one. A request
    handler builds one view per request and uses ``load``; the browser page
    keeps the same generation check for its own in-flight fetches.
    """

    def __init__(
        self,
        current_month: Optional[date] = None,
        padded: bool = True,
        week_start: int = SATURDAY,
        date_key: Union[str, KeyFunc] = "date",
    ) -> None:
        self.current_month = (current_month or date.today()).replace(day=1)
        self.padded = padded
        self.week_start = week_start
        self.date_key = date_key
        self.generation = 0
        self._buckets: Dict[date, List[Any]] = {}

    def _navigate(self, months: int) -> None:
        self.current_month = add_months(self.current_month, months)
        self.generation += 1
        self._buckets = {}

    def next_month(self) -> None:
        self._navigate(1)

    def prev_month(self) -> None:
        self._navigate(-1)

    def days(self) -> List[date]:
        return month_days(self.current_month, padded=self.padded, week_start=self.week_start)

    def fetch_range(self) -> Tuple[date, date]:
        return grid_bounds(self.current_month, padded=self.padded, week_start=self.week_start)

    def begin_fetch(self) -> int:
        return self.generation

    def apply_fetch(self, generation: int, records: Iterable[Any]) -> bool:
        if generation != self.generation:
            return False
        self.load(records)
        return True

    def load(self, records: Iterable[Any]) -> None:
        self._buckets = bucket_by_day(records, self.date_key)

    def records_for(self, day: date) -> List[Any]:
        return list(self._buckets.get(day, []))

    def cells(self, today: Optional[date] = None) -> List[dict]:
        today = today or date.today()
        month = self.current_month.month
        return [
            {
                "date": day.isoformat(),
                "day": day.day,
                "in_month": day.month == month,
                "is_today": day == today,
                "items": self.records_for(day),
            }
            for day in self.days()
        ]
