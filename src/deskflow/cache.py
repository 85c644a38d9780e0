from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from deskflow.domain.kinds import EntityKind
from deskflow.domain.models import Followup, KnowledgeEntry, Project, Stakeholder, Subtask, Task
from deskflow.domain.rules import ValidationError
from deskflow.store.base import NotFoundError, Record, RemoteStore, Subscription

logger = logging.getLogger(__name__)

MODELS: dict[EntityKind, Any] = {
    EntityKind.TASK: Task,
    EntityKind.PROJECT: Project,
    EntityKind.STAKEHOLDER: Stakeholder,
    EntityKind.FOLLOWUP: Followup,
    EntityKind.SUBTASK: Subtask,
    EntityKind.KNOWLEDGE: KnowledgeEntry,
}

ChangeListener = Callable[[EntityKind], None]


class EntityCache:
    """In-memory copy of every collection, fed only by store snapshots.

    Nothing but ``apply_snapshot`` writes to the collections. Readers must
    treat the contents as eventually consistent: a write returns before or
    after the snapshot reflecting it, depending on the backend.
    """

    def __init__(self) -> None:
        self._items: dict[EntityKind, tuple[Any, ...]] = {kind: () for kind in EntityKind}
        self._index: dict[EntityKind, dict[str, Any]] = {kind: {} for kind in EntityKind}
        self._revisions: dict[EntityKind, int] = {kind: 0 for kind in EntityKind}
        self._subscriptions: list[Subscription] = []
        self._listeners: list[ChangeListener] = []

    async def attach(self, store: RemoteStore) -> None:
        if self._subscriptions:
            raise RuntimeError("EntityCache is already attached.")
        try:
            for kind in EntityKind:
                subscription = await store.subscribe(kind.value, self._listener_for(kind))
                self._subscriptions.append(subscription)
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

    @property
    def attached(self) -> bool:
        return bool(self._subscriptions)

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def apply_snapshot(self, kind: EntityKind, records: list[Record]) -> None:
        model = MODELS[kind]
        items = []
        for record in records:
            try:
                items.append(model.from_record(record))
            except (KeyError, TypeError, ValidationError) as exc:
                record_id = record.get("id") if isinstance(record, dict) else None
                logger.warning("skipping malformed %s record id=%s error=%s", kind.value, record_id, exc)
        self._items[kind] = tuple(items)
        self._index[kind] = {item.id: item for item in items}
        self._revisions[kind] += 1
        for listener in list(self._listeners):
            listener(kind)

    def revision(self, kind: EntityKind) -> int:
        return self._revisions[kind]

    def all(self, kind: EntityKind) -> tuple[Any, ...]:
        return self._items[kind]

    def find(self, kind: EntityKind, item_id: str | None) -> Any | None:
        if not item_id:
            return None
        return self._index[kind].get(item_id)

    def get(self, kind: EntityKind, item_id: str) -> Any:
        item = self.find(kind, item_id)
        if item is None:
            raise NotFoundError(f"{kind.value}/{item_id} not found.")
        return item

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self._items[EntityKind.TASK]

    @property
    def projects(self) -> tuple[Project, ...]:
        return self._items[EntityKind.PROJECT]

    @property
    def stakeholders(self) -> tuple[Stakeholder, ...]:
        return self._items[EntityKind.STAKEHOLDER]

    @property
    def followups(self) -> tuple[Followup, ...]:
        return self._items[EntityKind.FOLLOWUP]

    @property
    def subtasks(self) -> tuple[Subtask, ...]:
        return self._items[EntityKind.SUBTASK]

    @property
    def knowledge(self) -> tuple[KnowledgeEntry, ...]:
        return self._items[EntityKind.KNOWLEDGE]

    def _listener_for(self, kind: EntityKind):
        def on_change(records: list[Record]) -> None:
            self.apply_snapshot(kind, records)

        return on_change
