from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime


class ValidationError(ValueError):
    pass


def require(value: str | None, field: str) -> None:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required.")


def validate_enum(value: str | None, allowed: Iterable[str], field: str) -> None:
    if value is None:
        return
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")


def parse_date(value: str | date | None, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be YYYY-MM-DD.")
    try:
        return date.fromisoformat(value.split("T")[0])
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD.") from exc


def parse_datetime(value: str | None, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be ISO 8601.")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"{field} must be ISO 8601.") from exc


def ensure_no_cycle(
    project_id: str | None,
    parent_id: str | None,
    parent_of: Mapping[str, str | None],
) -> None:
    """Reject a parent assignment that would make the project tree cyclic.

    ``parent_of`` maps every known project id to its current parent id. A new
    project (``project_id`` is None) can only close a cycle through a dangling
    parent, so only an unknown parent is rejected for it.
    """
    if not parent_id:
        return
    if parent_id not in parent_of:
        raise ValidationError("parent project not found.")
    if project_id is None:
        return
    if parent_id == project_id:
        raise ValidationError("A project cannot be its own parent.")
    seen: set[str] = set()
    current: str | None = parent_id
    while current:
        if current == project_id:
            raise ValidationError("parent project would create a cycle.")
        if current in seen:
            break
        seen.add(current)
        current = parent_of.get(current)
