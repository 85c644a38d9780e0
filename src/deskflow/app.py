from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from pathlib import Path
from typing import Any, TypeVar

from deskflow.adapters.airtable.client import AirtableClient
from deskflow.adapters.airtable.store import DEFAULT_MAPPING_PATH, AirtableDocumentStore, load_mapping
from deskflow.cache import EntityCache
from deskflow.config import WorkspaceConfig, WorkspaceError
from deskflow.domain.kinds import EntityKind
from deskflow.domain.rules import ValidationError
from deskflow.notices import Notifier
from deskflow.services.coordinator import MutationCoordinator
from deskflow.services.events import EventLogger
from deskflow.services.handlers import EntityHandler
from deskflow.state import UiState
from deskflow.store.base import RemoteStore, StoreError
from deskflow.store.schema import Schema, load_schema
from deskflow.store.sqlite import SqliteDocumentStore
from deskflow.views import projector
from deskflow.views.dates import local_today

logger = logging.getLogger(__name__)

T = TypeVar("T")


def open_store(workspace: WorkspaceConfig, schema: Schema, mapping_path: Path | None = None) -> RemoteStore:
    backend = workspace.backend
    poll_interval = workspace.sync.poll_interval
    if backend.provider == "sqlite":
        return SqliteDocumentStore(backend.sqlite_path, poll_interval=poll_interval)
    api_key = os.getenv("AIRTABLE_API_KEY")
    if not api_key:
        raise WorkspaceError("AIRTABLE_API_KEY is not set.")
    client = AirtableClient(api_key=api_key, base_id=backend.base_id or "")
    mapping = load_mapping(mapping_path or DEFAULT_MAPPING_PATH)
    return AirtableDocumentStore(client, mapping, schema, backend.tables, poll_interval=poll_interval)


class Session:
    """One user's live view of the workspace.

    Owns the cache, the UI selections and the notifications. Every intent
    method reports failures as error notices and returns a falsy value
    instead of raising.
    """

    def __init__(
        self,
        store: RemoteStore,
        schema: Schema | None = None,
        events: EventLogger | None = None,
        cascade_subtasks: bool = True,
        today: Callable[[], date] = local_today,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.schema = schema or load_schema()
        self.cache = EntityCache()
        self.state = UiState()
        self.notices = notifier or Notifier()
        self.today = today
        self.coordinator = MutationCoordinator(
            store,
            self.cache,
            self.schema,
            events=events,
            cascade_subtasks=cascade_subtasks,
        )

    @classmethod
    def from_workspace(cls, workspace: WorkspaceConfig, schema_path: Path | None = None) -> Session:
        schema = load_schema(schema_path)
        events = EventLogger(path=workspace.events_path, workspace=workspace.name, enabled=workspace.sync.events)
        return cls(
            open_store(workspace, schema),
            schema=schema,
            events=events,
            cascade_subtasks=workspace.sync.cascade_subtasks,
        )

    async def start(self) -> None:
        await self.cache.attach(self.store)

    async def close(self) -> None:
        self.cache.close()
        await self.store.close()

    async def __aenter__(self) -> Session:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ---- intents

    async def submit(self, kind: EntityKind | str, fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        handler = self._handler(kind)
        if handler is None:
            return None
        kind = handler.kind
        editing_id = editing_id or self.state.editing_id(kind)
        item_id = await self._guard(
            f"save {handler.label}",
            lambda: self.coordinator.save(kind, fields, editing_id),
        )
        if item_id is None:
            return None
        verb = "updated" if editing_id else "created"
        self.notices.success(f"{handler.label.capitalize()} {verb} successfully")
        self.state.end_edit()
        return item_id

    async def submit_task(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        return await self.submit(EntityKind.TASK, form_fields, editing_id)

    async def submit_project(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        return await self.submit(EntityKind.PROJECT, form_fields, editing_id)

    async def submit_stakeholder(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        return await self.submit(EntityKind.STAKEHOLDER, form_fields, editing_id)

    async def submit_followup(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        fields = dict(form_fields)
        if not fields.get("stakeholder_id") and self.state.followup_stakeholder_id:
            fields["stakeholder_id"] = self.state.followup_stakeholder_id
        return await self.submit(EntityKind.FOLLOWUP, fields, editing_id)

    async def submit_subtask(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        return await self.submit(EntityKind.SUBTASK, form_fields, editing_id)

    async def submit_knowledge(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str | None:
        return await self.submit(EntityKind.KNOWLEDGE, form_fields, editing_id)

    async def delete_entity(self, kind: EntityKind | str, item_id: str) -> bool:
        handler = self._handler(kind)
        if handler is None:
            return False
        report = await self._guard(
            f"delete {handler.label}",
            lambda: self.coordinator.delete(handler.kind, item_id),
        )
        if report is None:
            return False
        self.notices.success(f"{handler.label.capitalize()} deleted successfully")
        if self.state.viewing is not None and self.state.viewing.item_id == item_id:
            self.state.end_view()
        return True

    async def change_status(self, kind: EntityKind | str, item_id: str, status: str) -> bool:
        handler = self._handler(kind)
        if handler is None:
            return False
        done = await self._guard(
            f"update {handler.label} status",
            lambda: self._true(self.coordinator.change_status(handler.kind, item_id, status)),
        )
        return bool(done)

    async def reorder_tasks(self, id_sequence: Sequence[str]) -> bool:
        report = await self._guard("reorder tasks", lambda: self.coordinator.reorder_tasks(id_sequence))
        return report is not None

    def set_filter(self, view: str, name: str, value: str | None) -> bool:
        try:
            self.state.set_filter(view, name, value)
        except ValidationError as exc:
            self.notices.error(str(exc))
            return False
        return True

    def switch_tab(self, view: str, tab: str) -> bool:
        try:
            self.state.switch_tab(view, tab)
        except ValidationError as exc:
            self.notices.error(str(exc))
            return False
        return True

    def open_edit(self, kind: EntityKind | str, item_id: str) -> Any | None:
        handler = self._handler(kind)
        if handler is None:
            return None
        return self.state.begin_edit(handler.kind, item_id, self.cache)

    def open_view(self, kind: EntityKind | str, item_id: str) -> Any | None:
        handler = self._handler(kind)
        if handler is None:
            return None
        return self.state.begin_view(handler.kind, item_id, self.cache)

    # ---- projections

    def visible(self, view: str) -> list:
        today = self.today()
        if view == "tasks":
            return projector.project_tasks(self.cache, self.state.tasks, today)
        if view == "projects":
            return projector.project_projects(self.cache, self.state.projects)
        if view == "knowledge":
            return projector.project_knowledge(self.cache, self.state.knowledge)
        if view == "stakeholders":
            return projector.stakeholder_summaries(self.cache)
        raise ValueError(f"Unknown view: {view}")

    def counts(self) -> projector.Counts:
        return projector.counts(self.cache, self.today())

    def _handler(self, kind: EntityKind | str) -> EntityHandler | None:
        try:
            return self.coordinator.handler(kind)
        except ValidationError as exc:
            self.notices.error(str(exc))
            return None

    async def _guard(self, action: str, call: Callable[[], Awaitable[T]]) -> T | None:
        try:
            return await call()
        except (StoreError, ValidationError) as exc:
            logger.info("intent failed action=%s error=%s", action, exc)
            self.notices.error(f"Failed to {action}: {exc}")
            return None

    @staticmethod
    async def _true(call: Awaitable[None]) -> bool:
        await call
        return True
