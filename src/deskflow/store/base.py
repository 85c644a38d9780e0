from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Record = dict[str, Any]
SnapshotListener = Callable[[list[Record]], None]


class StoreError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(StoreError):
    pass


class PermissionDenied(StoreError):
    pass


class Subscription:
    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        if self._cancel is None:
            return
        cancel, self._cancel = self._cancel, None
        cancel()


class RemoteStore(Protocol):
    async def create(self, collection: str, fields: Record) -> str: ...

    async def update(self, collection: str, doc_id: str, fields: Record) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def snapshot(self, collection: str) -> list[Record]: ...

    async def subscribe(self, collection: str, on_change: SnapshotListener) -> Subscription: ...

    async def close(self) -> None: ...


class SnapshotHub:
    """Fan full-collection snapshots out to subscribers.

    Every listener receives the whole collection, newest first. Snapshots are
    pushed on subscribe, after each successful local write (``refresh``) and,
    when ``poll_interval`` is set, whenever a poll sees the collection change.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[list[Record]]],
        poll_interval: float | None = None,
    ) -> None:
        self._fetch = fetch
        self._poll_interval = poll_interval
        self._listeners: dict[str, list[SnapshotListener]] = defaultdict(list)
        self._fingerprints: dict[str, str] = {}
        self._poll_task: asyncio.Task | None = None

    async def subscribe(self, collection: str, on_change: SnapshotListener) -> Subscription:
        records = await self._fetch(collection)
        self._listeners[collection].append(on_change)
        self._fingerprints[collection] = _fingerprint(records)
        _deliver(on_change, collection, records)
        self._ensure_polling()
        return Subscription(lambda: self._remove(collection, on_change))

    async def refresh(self, collection: str, *, force: bool = True) -> bool:
        listeners = self._listeners.get(collection)
        if not listeners:
            return False
        records = await self._fetch(collection)
        fingerprint = _fingerprint(records)
        if not force and self._fingerprints.get(collection) == fingerprint:
            return False
        self._fingerprints[collection] = fingerprint
        for listener in list(listeners):
            _deliver(listener, collection, records)
        return True

    async def refresh_quietly(self, collection: str) -> None:
        try:
            await self.refresh(collection)
        except StoreError as exc:
            # The write already landed; the next poll or write will deliver it.
            logger.warning("snapshot refresh failed collection=%s error=%s", collection, exc)

    async def close(self) -> None:
        self._listeners.clear()
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    def _remove(self, collection: str, listener: SnapshotListener) -> None:
        listeners = self._listeners.get(collection) or []
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(collection, None)
            self._fingerprints.pop(collection, None)

    def _ensure_polling(self) -> None:
        if not self._poll_interval or self._poll_task is not None:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll())

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            for collection in list(self._listeners):
                try:
                    await self.refresh(collection, force=False)
                except StoreError as exc:
                    logger.warning("snapshot poll failed collection=%s error=%s", collection, exc)


def normalize_timestamp(value: Any) -> str | None:
    """Return ``value`` as UTC ISO 8601 text (``2026-01-02T03:04:05.000000Z``)."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        parsed = datetime.fromtimestamp(seconds, UTC)
    elif isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def newest_first(records: list[Record]) -> list[Record]:
    return sorted(records, key=lambda record: record.get("created_at") or "", reverse=True)


def _fingerprint(records: list[Record]) -> str:
    payload = json.dumps(records, sort_keys=True, default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def _deliver(listener: SnapshotListener, collection: str, records: list[Record]) -> None:
    try:
        listener([dict(record) for record in records])
    except Exception:
        logger.exception("snapshot listener failed collection=%s", collection)
