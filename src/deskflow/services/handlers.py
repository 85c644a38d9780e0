"""Per-kind behaviour behind the generic coordinator operations.

Each entity kind has one handler; the coordinator looks handlers up by
``EntityKind`` and never branches on the kind itself.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from deskflow.domain import rules
from deskflow.domain.kinds import (
    EntityKind,
    FollowupStatus,
    FollowupType,
    KnowledgeCategory,
    Priority,
    ProjectStatus,
    TaskStatus,
)
from deskflow.domain.models import Attachment

if TYPE_CHECKING:
    from deskflow.services.coordinator import CascadeReport, MutationCoordinator


class EntityHandler:
    kind: EntityKind
    label: str
    status_enum: type[Enum] | None = None
    defaults: dict[str, Any] = {}

    @property
    def statuses(self) -> list[str]:
        if self.status_enum is None:
            return []
        return [status.value for status in self.status_enum]

    def check_status(self, status: str) -> None:
        if self.status_enum is None:
            raise rules.ValidationError(f"A {self.label} has no status.")
        rules.validate_enum(status, self.statuses, "status")

    def check_fields(self, coordinator: MutationCoordinator, fields: dict[str, Any], editing_id: str | None) -> None:
        _check_attachments(fields.get("attachments"))

    async def delete(self, coordinator: MutationCoordinator, item_id: str, report: CascadeReport) -> None:
        await coordinator.remove(report, self.kind, item_id)


class TaskHandler(EntityHandler):
    kind = EntityKind.TASK
    label = "task"
    status_enum = TaskStatus
    defaults = {"priority": Priority.MEDIUM.value, "status": TaskStatus.TODO.value, "is_today": False}

    async def delete(self, coordinator: MutationCoordinator, item_id: str, report: CascadeReport) -> None:
        if coordinator.cascade_subtasks:
            for subtask in coordinator.cache.subtasks:
                if subtask.task_id == item_id:
                    await coordinator.remove(report, EntityKind.SUBTASK, subtask.id)
        await coordinator.remove(report, self.kind, item_id)


class ProjectHandler(EntityHandler):
    kind = EntityKind.PROJECT
    label = "project"
    status_enum = ProjectStatus
    defaults = {"status": ProjectStatus.PLANNING.value}

    def check_fields(self, coordinator: MutationCoordinator, fields: dict[str, Any], editing_id: str | None) -> None:
        super().check_fields(coordinator, fields, editing_id)
        if "parent_id" not in fields:
            return
        parent_of = {project.id: project.parent_id for project in coordinator.cache.projects}
        rules.ensure_no_cycle(editing_id, fields["parent_id"], parent_of)

    async def delete(self, coordinator: MutationCoordinator, item_id: str, report: CascadeReport) -> None:
        await self._delete_tree(coordinator, item_id, report, visited=set())

    async def _delete_tree(
        self,
        coordinator: MutationCoordinator,
        project_id: str,
        report: CascadeReport,
        visited: set[str],
    ) -> None:
        visited.add(project_id)
        for task in list(coordinator.cache.tasks):
            if task.project_id == project_id:
                await coordinator.clear_reference(report, EntityKind.TASK, task.id, "project_id")
        for child in list(coordinator.cache.projects):
            if child.parent_id == project_id and child.id not in visited:
                await self._delete_tree(coordinator, child.id, report, visited)
        await coordinator.remove(report, self.kind, project_id)


class StakeholderHandler(EntityHandler):
    kind = EntityKind.STAKEHOLDER
    label = "stakeholder"

    async def delete(self, coordinator: MutationCoordinator, item_id: str, report: CascadeReport) -> None:
        cache = coordinator.cache
        for followup in list(cache.followups):
            if followup.stakeholder_id == item_id:
                await coordinator.remove(report, EntityKind.FOLLOWUP, followup.id)
        for task in list(cache.tasks):
            if task.stakeholder_id == item_id:
                await coordinator.clear_reference(report, EntityKind.TASK, task.id, "stakeholder_id")
        for project in list(cache.projects):
            if project.stakeholder_id == item_id:
                await coordinator.clear_reference(report, EntityKind.PROJECT, project.id, "stakeholder_id")
        await coordinator.remove(report, self.kind, item_id)


class FollowupHandler(EntityHandler):
    kind = EntityKind.FOLLOWUP
    label = "followup"
    status_enum = FollowupStatus
    defaults = {"type": FollowupType.OTHER.value, "status": FollowupStatus.PENDING.value}


class SubtaskHandler(EntityHandler):
    kind = EntityKind.SUBTASK
    label = "subtask"
    status_enum = TaskStatus
    defaults = {"priority": Priority.MEDIUM.value, "status": TaskStatus.TODO.value}


class KnowledgeHandler(EntityHandler):
    kind = EntityKind.KNOWLEDGE
    label = "knowledge entry"
    defaults = {"category": KnowledgeCategory.REFERENCE.value}


def _check_attachments(value: Any) -> None:
    if not value:
        return
    if not isinstance(value, list):
        raise rules.ValidationError("attachments must be a list.")
    for item in value:
        rules.require(Attachment.from_record(item).value, "attachment value")


HANDLERS: dict[EntityKind, EntityHandler] = {
    handler.kind: handler
    for handler in (
        TaskHandler(),
        ProjectHandler(),
        StakeholderHandler(),
        FollowupHandler(),
        SubtaskHandler(),
        KnowledgeHandler(),
    )
}
