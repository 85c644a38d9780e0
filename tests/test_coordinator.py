import asyncio
from pathlib import Path

import pytest

from deskflow.cache import EntityCache
from deskflow.domain.kinds import EntityKind
from deskflow.domain.rules import ValidationError
from deskflow.services.coordinator import CascadeError, MutationCoordinator
from deskflow.services.events import EventLogger, read_events
from deskflow.store.base import StoreError
from deskflow.store.schema import load_schema
from deskflow.store.sqlite import SqliteDocumentStore


class FlakyStore:
    """Wraps a real store and fails writes that touch ``fail_on`` ids."""

    def __init__(self, inner: SqliteDocumentStore, fail_on: set[str]) -> None:
        self.inner = inner
        self.fail_on = fail_on

    async def create(self, collection, fields):
        return await self.inner.create(collection, fields)

    async def update(self, collection, doc_id, fields):
        if doc_id in self.fail_on:
            raise StoreError("service unavailable", status_code=503)
        await self.inner.update(collection, doc_id, fields)

    async def delete(self, collection, doc_id):
        if doc_id in self.fail_on:
            raise StoreError("service unavailable", status_code=503)
        await self.inner.delete(collection, doc_id)

    async def snapshot(self, collection):
        return await self.inner.snapshot(collection)

    async def subscribe(self, collection, on_change):
        return await self.inner.subscribe(collection, on_change)

    async def close(self):
        await self.inner.close()


async def _open(tmp_path: Path, fail_on: set[str] | None = None, **kwargs):
    store = SqliteDocumentStore(tmp_path / "documents.sqlite")
    remote = FlakyStore(store, fail_on if fail_on is not None else set())
    cache = EntityCache()
    await cache.attach(remote)
    coordinator = MutationCoordinator(remote, cache, load_schema(), **kwargs)
    return remote, cache, coordinator


def test_create_applies_defaults(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        task_id = await coordinator.submit_task({"title": "Write notes", "due_date": "2026-03-10"})
        task = cache.get(EntityKind.TASK, task_id)
        assert (task.priority, task.status, task.is_today) == ("medium", "todo", False)
        assert task.due_date.isoformat() == "2026-03-10"
        assert task.created_at is not None
        await store.close()

    asyncio.run(scenario())


def test_invalid_saves_write_nothing(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.TASK, {"title": "   "})
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.TASK, {"title": "x", "priority": "urgent"})
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.TASK, {"title": "x", "project_id": "ghost"})
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.STAKEHOLDER, {"name": "Ada", "nickname": "A"})
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.TASK, {"title": "x", "attachments": [{"type": "video", "value": "v"}]})
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.KNOWLEDGE, {"title": "x", "attachments": [{"type": "url", "value": " "}]})
        assert cache.tasks == ()
        assert await store.snapshot("tasks") == []
        await store.close()

    asyncio.run(scenario())


def test_update_is_partial(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        task_id = await coordinator.save(EntityKind.TASK, {"title": "Draft", "description": "v1"})
        await coordinator.save(EntityKind.TASK, {"description": "v2", "due_date": ""}, editing_id=task_id)
        task = cache.get(EntityKind.TASK, task_id)
        assert task.title == "Draft"
        assert task.description == "v2"
        assert task.due_date is None
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.TASK, {"title": ""}, editing_id=task_id)
        await store.close()

    asyncio.run(scenario())


def test_status_change_keeps_other_fields(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        task_id = await coordinator.save(
            EntityKind.TASK,
            {"title": "Ship", "description": "Release 2", "due_date": "2026-03-12", "priority": "high"},
        )
        await coordinator.change_status(EntityKind.TASK, task_id, "completed")
        task = cache.get(EntityKind.TASK, task_id)
        assert task.status == "completed"
        assert (task.description, task.priority) == ("Release 2", "high")
        assert task.due_date.isoformat() == "2026-03-12"

        with pytest.raises(ValidationError):
            await coordinator.change_status(EntityKind.TASK, task_id, "archived")
        stakeholder_id = await coordinator.save(EntityKind.STAKEHOLDER, {"name": "Ada"})
        with pytest.raises(ValidationError):
            await coordinator.change_status(EntityKind.STAKEHOLDER, stakeholder_id, "active")
        await store.close()

    asyncio.run(scenario())


def test_project_delete_unlinks_tasks_and_removes_children(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        parent = await coordinator.save(EntityKind.PROJECT, {"name": "A"})
        child = await coordinator.save(EntityKind.PROJECT, {"name": "B", "parent_id": parent})
        other = await coordinator.save(EntityKind.PROJECT, {"name": "C"})
        t1 = await coordinator.save(EntityKind.TASK, {"title": "In A", "project_id": parent})
        t2 = await coordinator.save(EntityKind.TASK, {"title": "In B", "project_id": child})
        t3 = await coordinator.save(EntityKind.TASK, {"title": "In C", "project_id": other})

        report = await coordinator.delete(EntityKind.PROJECT, parent)

        assert [project.id for project in cache.projects] == [other]
        assert cache.get(EntityKind.TASK, t1).project_id is None
        assert cache.get(EntityKind.TASK, t2).project_id is None
        assert cache.get(EntityKind.TASK, t3).project_id == other
        assert report.ids("unlink", EntityKind.TASK) == [t1, t2]
        assert report.ids("delete", EntityKind.PROJECT) == [child, parent]
        await store.close()

    asyncio.run(scenario())


def test_project_delete_walks_the_whole_tree(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        a = await coordinator.save(EntityKind.PROJECT, {"name": "A"})
        b = await coordinator.save(EntityKind.PROJECT, {"name": "B", "parent_id": a})
        c = await coordinator.save(EntityKind.PROJECT, {"name": "C", "parent_id": b})
        in_a = await coordinator.save(EntityKind.TASK, {"title": "In A", "project_id": a})
        in_c = await coordinator.save(EntityKind.TASK, {"title": "In C", "project_id": c})

        report = await coordinator.delete(EntityKind.PROJECT, a)

        assert cache.projects == ()
        assert report.ids("delete", EntityKind.PROJECT) == [c, b, a]
        assert report.ids("unlink", EntityKind.TASK) == [in_a, in_c]
        assert cache.get(EntityKind.TASK, in_c).project_id is None
        await store.close()

    asyncio.run(scenario())


def test_stakeholder_delete_cascades(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        ada = await coordinator.save(EntityKind.STAKEHOLDER, {"name": "Ada"})
        bo = await coordinator.save(EntityKind.STAKEHOLDER, {"name": "Bo"})
        await coordinator.save(EntityKind.FOLLOWUP, {"stakeholder_id": ada, "title": "Call", "type": "call"})
        await coordinator.save(EntityKind.FOLLOWUP, {"stakeholder_id": ada, "title": "Email"})
        kept = await coordinator.save(EntityKind.FOLLOWUP, {"stakeholder_id": bo, "title": "Meet"})
        task = await coordinator.save(EntityKind.TASK, {"title": "Brief Ada", "stakeholder_id": ada})
        project = await coordinator.save(EntityKind.PROJECT, {"name": "Audit", "stakeholder_id": ada})

        report = await coordinator.delete(EntityKind.STAKEHOLDER, ada)

        assert [followup.id for followup in cache.followups] == [kept]
        assert cache.get(EntityKind.TASK, task).stakeholder_id is None
        assert cache.get(EntityKind.PROJECT, project).stakeholder_id is None
        assert [person.id for person in cache.stakeholders] == [bo]
        assert len(report.ids("delete", EntityKind.FOLLOWUP)) == 2
        assert report.steps[-1].item_id == ada
        await store.close()

    asyncio.run(scenario())


def test_task_delete_removes_subtasks(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        task_id = await coordinator.save(EntityKind.TASK, {"title": "Move office"})
        await coordinator.save(EntityKind.SUBTASK, {"task_id": task_id, "title": "Pack"})
        await coordinator.save(EntityKind.SUBTASK, {"task_id": task_id, "title": "Label"})
        report = await coordinator.delete(EntityKind.TASK, task_id)
        assert cache.tasks == ()
        assert cache.subtasks == ()
        assert len(report.ids("delete", EntityKind.SUBTASK)) == 2
        await store.close()

    asyncio.run(scenario())


def test_task_delete_can_leave_subtasks(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path, cascade_subtasks=False)
        task_id = await coordinator.save(EntityKind.TASK, {"title": "Move office"})
        await coordinator.save(EntityKind.SUBTASK, {"task_id": task_id, "title": "Pack"})
        await coordinator.delete(EntityKind.TASK, task_id)
        assert cache.tasks == ()
        assert [subtask.title for subtask in cache.subtasks] == ["Pack"]
        await store.close()

    asyncio.run(scenario())


def test_reorder_writes_only_moved_tasks(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        t1 = await coordinator.save(EntityKind.TASK, {"title": "One", "order": 0})
        t2 = await coordinator.save(EntityKind.TASK, {"title": "Two", "order": 1})
        t3 = await coordinator.save(EntityKind.TASK, {"title": "Three", "order": 2})

        report = await coordinator.reorder_tasks([t1, t3, "unknown", t2])

        assert report.ids("reorder", EntityKind.TASK) == [t3, t2]
        orders = {task.id: task.order for task in cache.tasks}
        assert orders == {t1: 0, t3: 1, t2: 2}
        with pytest.raises(ValidationError):
            await coordinator.reorder_tasks([t1, t1])
        await store.close()

    asyncio.run(scenario())


def test_project_cycles_are_rejected(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        a = await coordinator.save(EntityKind.PROJECT, {"name": "A"})
        b = await coordinator.save(EntityKind.PROJECT, {"name": "B", "parent_id": a})
        c = await coordinator.save(EntityKind.PROJECT, {"name": "C", "parent_id": b})
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.PROJECT, {"parent_id": c}, editing_id=a)
        with pytest.raises(ValidationError):
            await coordinator.save(EntityKind.PROJECT, {"parent_id": a}, editing_id=a)
        await coordinator.save(EntityKind.PROJECT, {"parent_id": None}, editing_id=c)
        assert cache.get(EntityKind.PROJECT, a).parent_id is None
        assert cache.get(EntityKind.PROJECT, c).parent_id is None
        await store.close()

    asyncio.run(scenario())


def test_partial_cascade_failure_reports_completed_steps(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        ada = await coordinator.save(EntityKind.STAKEHOLDER, {"name": "Ada"})
        followup = await coordinator.save(EntityKind.FOLLOWUP, {"stakeholder_id": ada, "title": "Call"})
        task = await coordinator.save(EntityKind.TASK, {"title": "Brief", "stakeholder_id": ada})
        store.fail_on.add(task)

        with pytest.raises(CascadeError) as excinfo:
            await coordinator.delete(EntityKind.STAKEHOLDER, ada)

        error = excinfo.value
        assert error.report.ids("delete", EntityKind.FOLLOWUP) == [followup]
        assert error.failed.item_id == task
        assert error.status_code == 503
        assert cache.followups == ()
        assert cache.find(EntityKind.STAKEHOLDER, ada) is not None
        assert cache.get(EntityKind.TASK, task).stakeholder_id == ada
        await store.close()

    asyncio.run(scenario())


def test_first_step_failure_is_not_a_cascade_error(tmp_path: Path) -> None:
    async def scenario() -> None:
        store, cache, coordinator = await _open(tmp_path)
        task = await coordinator.save(EntityKind.TASK, {"title": "Brief"})
        store.fail_on.add(task)
        with pytest.raises(StoreError) as excinfo:
            await coordinator.delete(EntityKind.TASK, task)
        assert not isinstance(excinfo.value, CascadeError)
        assert cache.find(EntityKind.TASK, task) is not None
        await store.close()

    asyncio.run(scenario())


def test_mutations_are_logged(tmp_path: Path) -> None:
    events_path = tmp_path / "events.ndjson"

    async def scenario() -> None:
        events = EventLogger(path=events_path, workspace="demo")
        store, cache, coordinator = await _open(tmp_path, events=events)
        task = await coordinator.save(EntityKind.TASK, {"title": "Brief"})
        await coordinator.change_status(EntityKind.TASK, task, "in-progress")
        await coordinator.delete(EntityKind.TASK, task)
        await store.close()

    asyncio.run(scenario())
    logged = read_events(events_path)
    assert [event["event_type"] for event in logged] == ["create", "status", "delete"]
    assert all(event["entity_type"] == "tasks" for event in logged)
    assert logged[1]["changed_fields"] == ["status"]
