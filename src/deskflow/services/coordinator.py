from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from deskflow.cache import EntityCache
from deskflow.domain import rules
from deskflow.domain.kinds import EntityKind
from deskflow.services.events import EventLogger
from deskflow.services.handlers import HANDLERS, EntityHandler
from deskflow.store.base import RemoteStore, StoreError
from deskflow.store.schema import Schema, validate_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeStep:
    action: str
    kind: EntityKind
    item_id: str


@dataclass
class CascadeReport:
    steps: list[CascadeStep] = field(default_factory=list)

    def ids(self, action: str, kind: EntityKind) -> list[str]:
        return [step.item_id for step in self.steps if step.action == action and step.kind is kind]


class CascadeError(StoreError):
    """A multi-call operation failed after some of its calls had already landed."""

    def __init__(self, report: CascadeReport, failed: CascadeStep, cause: StoreError) -> None:
        super().__init__(
            f"{failed.action} {failed.kind.value}/{failed.item_id} failed after "
            f"{len(report.steps)} completed step(s): {cause}",
            status_code=cause.status_code,
        )
        self.report = report
        self.failed = failed
        self.cause = cause


class MutationCoordinator:
    """Turns user intents into store calls, including referential cascades.

    The coordinator reads the cache to find dependents but never writes to
    it; the store's snapshots bring the cache up to date. Cascades run one
    call at a time, dependents first, and stop at the first failure.
    """

    def __init__(
        self,
        store: RemoteStore,
        cache: EntityCache,
        schema: Schema,
        events: EventLogger | None = None,
        cascade_subtasks: bool = True,
    ) -> None:
        self.store = store
        self.cache = cache
        self.schema = schema
        self.events = events
        self.cascade_subtasks = cascade_subtasks

    def handler(self, kind: EntityKind | str) -> EntityHandler:
        return HANDLERS[EntityKind.parse(kind)]

    async def save(self, kind: EntityKind | str, fields: dict[str, Any], editing_id: str | None = None) -> str:
        handler = self.handler(kind)
        if editing_id is not None:
            self.cache.get(handler.kind, editing_id)
            cleaned = validate_document(self.schema, handler.kind.value, fields, partial=True)
        else:
            cleaned = validate_document(
                self.schema,
                handler.kind.value,
                {**handler.defaults, **fields},
                partial=False,
            )
        self._check_references(handler.kind, cleaned)
        handler.check_fields(self, cleaned, editing_id)

        if editing_id is not None:
            await self.store.update(handler.kind.value, editing_id, cleaned)
            self._log("update", handler.kind, editing_id, cleaned)
            return editing_id
        item_id = await self.store.create(handler.kind.value, cleaned)
        self._log("create", handler.kind, item_id, cleaned)
        return item_id

    async def submit_task(self, form_fields: dict[str, Any], editing_id: str | None = None) -> str:
        return await self.save(EntityKind.TASK, form_fields, editing_id)

    async def delete(self, kind: EntityKind | str, item_id: str) -> CascadeReport:
        handler = self.handler(kind)
        self.cache.get(handler.kind, item_id)
        report = CascadeReport()
        await handler.delete(self, item_id, report)
        return report

    async def change_status(self, kind: EntityKind | str, item_id: str, status: str) -> None:
        handler = self.handler(kind)
        status = getattr(status, "value", status)
        handler.check_status(status)
        self.cache.get(handler.kind, item_id)
        await self.store.update(handler.kind.value, item_id, {"status": status})
        self._log("status", handler.kind, item_id, ["status"])

    async def reorder_tasks(self, id_sequence: Sequence[str]) -> CascadeReport:
        """Give the visible tasks dense positions 0..n-1, writing only the ones that moved."""
        if len(set(id_sequence)) != len(id_sequence):
            raise rules.ValidationError("Task order contains duplicate ids.")
        tasks = [self.cache.find(EntityKind.TASK, task_id) for task_id in id_sequence]
        report = CascadeReport()
        for position, task in enumerate(task for task in tasks if task is not None):
            if task.order == position:
                continue
            await self._step(report, CascadeStep("reorder", EntityKind.TASK, task.id), {"order": position})
        return report

    async def clear_reference(self, report: CascadeReport, kind: EntityKind, item_id: str, field_name: str) -> None:
        await self._step(report, CascadeStep("unlink", kind, item_id), {field_name: None})

    async def remove(self, report: CascadeReport, kind: EntityKind, item_id: str) -> None:
        await self._step(report, CascadeStep("delete", kind, item_id), None)

    async def _step(self, report: CascadeReport, step: CascadeStep, fields: dict[str, Any] | None) -> None:
        try:
            if fields is None:
                await self.store.delete(step.kind.value, step.item_id)
            else:
                await self.store.update(step.kind.value, step.item_id, fields)
        except StoreError as exc:
            if not report.steps:
                raise
            logger.warning("cascade stopped step=%s completed=%d error=%s", step, len(report.steps), exc)
            self._log("cascade_failed", step.kind, step.item_id, list(fields or []), error=str(exc))
            raise CascadeError(report, step, exc) from exc
        report.steps.append(step)
        self._log(step.action, step.kind, step.item_id, list(fields or []))

    def _check_references(self, kind: EntityKind, fields: dict[str, Any]) -> None:
        for field_name, spec in self.schema.fields(kind.value).items():
            if spec.get("type") != "ref" or not fields.get(field_name):
                continue
            target = EntityKind(spec["ref"])
            if self.cache.find(target, fields[field_name]) is None:
                raise rules.ValidationError(f"{field_name} refers to a missing {target.value} record.")

    def _log(
        self,
        event_type: str,
        kind: EntityKind,
        item_id: str,
        changed_fields,
        error: str | None = None,
    ) -> None:
        if self.events is None:
            return
        self.events.log(
            event_type=event_type,
            entity_type=kind.value,
            entity_id=item_id,
            changed_fields=list(changed_fields),
            error=error,
        )
