from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count

ERROR_TTL = 5.0
SUCCESS_TTL = 3.0


@dataclass(frozen=True)
class Notice:
    notice_id: int
    level: str
    message: str
    expires_at: float


class Notifier:
    """Transient, dismissible messages for the user; nothing here is retried."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._ids = count(1)
        self._notices: list[Notice] = []

    def error(self, message: str) -> Notice:
        return self._push("error", message, ERROR_TTL)

    def success(self, message: str) -> Notice:
        return self._push("success", message, SUCCESS_TTL)

    def dismiss(self, notice_id: int) -> None:
        self._notices = [notice for notice in self._notices if notice.notice_id != notice_id]

    def active(self) -> list[Notice]:
        now = self._clock()
        self._notices = [notice for notice in self._notices if notice.expires_at > now]
        return list(self._notices)

    def _push(self, level: str, message: str, ttl: float) -> Notice:
        notice = Notice(notice_id=next(self._ids), level=level, message=message, expires_at=self._clock() + ttl)
        self._notices.append(notice)
        return notice
