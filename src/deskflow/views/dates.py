from __future__ import annotations

from datetime import date, datetime
from enum import Enum


class DueBucket(str, Enum):
    OVERDUE = "overdue"
    TODAY = "today"
    TOMORROW = "tomorrow"
    THIS_WEEK = "this_week"
    FUTURE = "future"
    NONE = "none"


def local_today() -> date:
    return date.today()


def as_day(value: date | datetime | str | None) -> date | None:
    """Reduce ``value`` to a calendar day, ignoring any time of day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.split("T")[0])
    except ValueError:
        return None


def days_until(day: date | datetime | str | None, today: date | None = None) -> int | None:
    target = as_day(day)
    if target is None:
        return None
    return (target - (today or local_today())).days


def classify_due(day: date | datetime | str | None, today: date | None = None) -> DueBucket:
    delta = days_until(day, today)
    if delta is None:
        return DueBucket.NONE
    if delta < 0:
        return DueBucket.OVERDUE
    if delta == 0:
        return DueBucket.TODAY
    if delta == 1:
        return DueBucket.TOMORROW
    if delta <= 7:
        return DueBucket.THIS_WEEK
    return DueBucket.FUTURE


def is_due_today(day: date | datetime | str | None, today: date | None = None) -> bool:
    return classify_due(day, today) is DueBucket.TODAY


def is_overdue(day: date | datetime | str | None, today: date | None = None) -> bool:
    return classify_due(day, today) is DueBucket.OVERDUE
