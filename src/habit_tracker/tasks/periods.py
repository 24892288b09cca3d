# src/habit_tracker/tasks/periods.py

"""
Period calculator.

A period is the half-open interval [start, end) in which progress toward a goal
is accumulated. start is always the given date; end is one DAILY/WEEKLY/MONTHLY
step later. Month steps clamp to the last valid day (Jan 31 -> Feb 28/29).
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta

from ..core.errors import ValidationError
from .task_models import Frequency, Period

logger = logging.getLogger(__name__)

_DMY_FORMAT = "%d-%m-%Y"


def parse_date(raw: date | str, *, field: str = "date") -> date:
    """
    Accept a date, an ISO `YYYY-MM-DD` string, or the legacy `DD-MM-YYYY` form.
    """
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.strptime(text, _DMY_FORMAT).date()
    except ValueError:
        raise ValidationError(
            f"invalid {field} {text!r}; use YYYY-MM-DD or DD-MM-YYYY", field=field
        ) from None


def format_date(d: date, style: str = "iso") -> str:
    return d.strftime(_DMY_FORMAT) if style == "dmy" else d.isoformat()


def _last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, months: int) -> date:
    if months == 0:
        return d
    m0 = (d.month - 1) + months
    year = d.year + (m0 // 12)
    month = (m0 % 12) + 1
    day = min(d.day, _last_day_of_month(year, month))
    return date(year, month, day)


def compute_period(frequency: Frequency | str, start_date: date) -> Period:
    """
    Return [start_date, start_date + one step).

    A raw string that is not a known frequency falls back to DAILY (with a warning)
    so rows written by older versions can still be rolled over.
    """
    freq = frequency if isinstance(frequency, Frequency) else Frequency.from_db(frequency)

    if freq is Frequency.WEEKLY:
        end = start_date + timedelta(weeks=1)
    elif freq is Frequency.MONTHLY:
        end = add_months(start_date, 1)
    else:
        end = start_date + timedelta(days=1)

    return Period(start=start_date, end=end)


def next_period(frequency: Frequency | str, current: Period) -> Period:
    """The period that immediately follows `current`."""
    return compute_period(frequency, current.end)
