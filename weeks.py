# weeks.py
"""
Week identifiers of the form "<year>-W<n>".

Weeks start on Monday. A week belongs to the calendar year of its Monday, and
week 1 of a year is the one starting on the first Monday of that year; the days
of January before it belong to the last week of the previous year. This is not
ISO-8601 numbering: 2024-12-30 is ISO week 2025-W1 but here it is 2024-W53.
"""
from __future__ import annotations
import re
from datetime import date, datetime, timedelta

from errors import ValidationError

WEEK_ID_RE = re.compile(r"^(\d{4})-W(\d{1,2})$")


def _as_date(d: date) -> date:
    return d.date() if isinstance(d, datetime) else d


def monday_of(d: date) -> date:
    d = _as_date(d)
    return d - timedelta(days=d.weekday())


def first_monday(year: int) -> date:
    jan1 = date(year, 1, 1)
    return jan1 + timedelta(days=(7 - jan1.weekday()) % 7)


def weeks_in_year(year: int) -> int:
    """Number of Mondays in the year (52 or 53)."""
    return (date(year, 12, 31) - first_monday(year)).days // 7 + 1


def week_id_for(d: date) -> str:
    monday = monday_of(d)
    year = monday.year
    n = (monday - first_monday(year)).days // 7 + 1
    return f"{year}-W{n}"


def parse_week_id(week_id: str) -> tuple[int, int]:
    """Returns (year, n). Raises ValidationError for anything that is not a real week of that year."""
    m = WEEK_ID_RE.match(week_id or "")
    if not m:
        raise ValidationError(f"malformed week id {week_id!r}")
    year, n = int(m.group(1)), int(m.group(2))
    if not 1 <= n <= weeks_in_year(year):
        raise ValidationError(f"week {n} out of range for {year}")
    return year, n


def normalize_week_id(week_id: str) -> str:
    """Canonical unpadded form: `2024-W05` becomes `2024-W5`."""
    year, n = parse_week_id(week_id)
    return f"{year}-W{n}"


def monday_for(week_id: str) -> date:
    year, n = parse_week_id(week_id)
    return first_monday(year) + timedelta(weeks=n - 1)


def week_days(week_id: str) -> list[date]:
    """The seven dates of the week, Monday to Sunday."""
    monday = monday_for(week_id)
    return [monday + timedelta(days=i) for i in range(7)]


def week_range(week_id: str) -> tuple[date, date]:
    monday = monday_for(week_id)
    return monday, monday + timedelta(days=6)


def month_of_week(week_id: str) -> tuple[int, int]:
    """(year, month) of the week's Monday. A week spanning two months counts wholly in the first."""
    monday = monday_for(week_id)
    return monday.year, monday.month


def shift_week(week_id: str, delta: int) -> str:
    return week_id_for(monday_for(week_id) + timedelta(weeks=delta))


def weeks_in_month(year: int, month: int) -> list[str]:
    """Week ids whose Monday falls in the given month."""
    d = first_monday(year)
    out = []
    while d.year == year:
        if d.month == month:
            out.append(week_id_for(d))
        elif d.month > month:
            break
        d += timedelta(weeks=1)
    return out


__all__ = [
    "monday_of", "first_monday", "weeks_in_year", "week_id_for", "parse_week_id",
    "normalize_week_id", "monday_for", "week_days", "week_range", "month_of_week", "shift_week", "weeks_in_month",
]
