"""Derived views over the entity cache.

Everything here is a pure function of the cache contents, the filter state
and the current day; nothing writes to the cache or talks to the store.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from deskflow.cache import EntityCache
from deskflow.domain.kinds import ALL_TAB, EntityKind, FollowupStatus, TaskStatus, TaskTab
from deskflow.domain.models import Followup, KnowledgeEntry, Project, Stakeholder, Subtask, Task
from deskflow.state import KnowledgeFilters, ProjectFilters, TaskFilters
from deskflow.views.dates import DueBucket, classify_due, local_today

Option = tuple[str, str]


@dataclass(frozen=True)
class TaskDetail:
    task: Task
    project: Project | None
    stakeholder: Stakeholder | None
    subtasks: list[Subtask]
    due: DueBucket


@dataclass(frozen=True)
class ProjectDetail:
    project: Project
    parent: Project | None
    stakeholder: Stakeholder | None
    children: list[Project]
    tasks: list[Task]
    completed_tasks: int
    progress: int


@dataclass(frozen=True)
class StakeholderDetail:
    stakeholder: Stakeholder
    tasks: list[Task]
    projects: list[Project]
    followups: list[Followup]
    pending_followups: int
    completed_followups: int


@dataclass(frozen=True)
class Counts:
    today: int
    overdue: int
    completed: int
    projects: int
    stakeholders: int


# ---- tasks


def in_tab(task: Task, tab: TaskTab | str, today: date | None = None) -> bool:
    tab = TaskTab(tab)
    bucket = classify_due(task.due_date, today)
    completed = task.status == TaskStatus.COMPLETED.value
    if tab is TaskTab.COMPLETED:
        return completed
    if completed:
        return False
    if tab is TaskTab.TODAY:
        return task.is_today or bucket is DueBucket.TODAY
    if tab is TaskTab.OVERDUE:
        return not task.is_today and bucket is DueBucket.OVERDUE
    return not task.is_today and bucket not in {DueBucket.TODAY, DueBucket.OVERDUE}


def task_tab(task: Task, today: date | None = None) -> TaskTab:
    for tab in (TaskTab.COMPLETED, TaskTab.TODAY, TaskTab.OVERDUE):
        if in_tab(task, tab, today):
            return tab
    return TaskTab.BACKLOG


def matches_search(query: str | None, *texts: str | None) -> bool:
    if not query:
        return True
    needle = query.strip().lower()
    if not needle:
        return True
    return any(needle in text.lower() for text in texts if text)


def filter_tasks(tasks: Iterable[Task], filters: TaskFilters, today: date | None = None) -> list[Task]:
    today = today or local_today()
    selected = [task for task in tasks if in_tab(task, filters.tab, today)]
    if filters.priority:
        selected = [task for task in selected if task.priority == filters.priority]
    if filters.status:
        selected = [task for task in selected if task.status == filters.status]
    if filters.project_id:
        selected = [task for task in selected if task.project_id == filters.project_id]
    if filters.stakeholder_id:
        selected = [task for task in selected if task.stakeholder_id == filters.stakeholder_id]
    if filters.search:
        selected = [task for task in selected if matches_search(filters.search, task.title, task.description)]
    return selected


def order_tasks(tasks: Sequence[Task]) -> list[Task]:
    """Manual order when every task has one, otherwise due date with undated tasks last."""
    if tasks and all(task.order is not None for task in tasks):
        return sorted(tasks, key=lambda task: task.order)
    return sorted(tasks, key=lambda task: (task.due_date is None, task.due_date or date.min))


def project_tasks(cache: EntityCache, filters: TaskFilters, today: date | None = None) -> list[Task]:
    return order_tasks(filter_tasks(cache.tasks, filters, today))


def task_detail(cache: EntityCache, task_id: str, today: date | None = None) -> TaskDetail | None:
    task = cache.find(EntityKind.TASK, task_id)
    if task is None:
        return None
    return TaskDetail(
        task=task,
        project=cache.find(EntityKind.PROJECT, task.project_id),
        stakeholder=cache.find(EntityKind.STAKEHOLDER, task.stakeholder_id),
        subtasks=[subtask for subtask in cache.subtasks if subtask.task_id == task.id],
        due=classify_due(task.due_date, today),
    )


# ---- projects


def filter_projects(projects: Iterable[Project], filters: ProjectFilters) -> list[Project]:
    selected = list(projects)
    if filters.tab and filters.tab != ALL_TAB:
        selected = [project for project in selected if project.status == filters.tab]
    if filters.stakeholder_id:
        selected = [project for project in selected if project.stakeholder_id == filters.stakeholder_id]
    if filters.search:
        selected = [
            project for project in selected if matches_search(filters.search, project.name, project.description)
        ]
    return selected


def project_projects(cache: EntityCache, filters: ProjectFilters) -> list[Project]:
    return filter_projects(cache.projects, filters)


def top_level_projects(projects: Iterable[Project]) -> list[Project]:
    return [project for project in projects if not project.parent_id]


def child_projects(cache: EntityCache, project_id: str) -> list[Project]:
    return [project for project in cache.projects if project.parent_id == project_id]


def descendant_ids(cache: EntityCache, project_id: str) -> set[str]:
    found: set[str] = set()
    pending = [project_id]
    while pending:
        current = pending.pop()
        for child in child_projects(cache, current):
            if child.id not in found and child.id != project_id:
                found.add(child.id)
                pending.append(child.id)
    return found


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, not Python's banker's rounding
    return int(100 * completed / total + 0.5)


def project_progress(cache: EntityCache, project_id: str) -> int:
    tasks = [task for task in cache.tasks if task.project_id == project_id]
    completed = sum(1 for task in tasks if task.status == TaskStatus.COMPLETED.value)
    return progress_percent(completed, len(tasks))


def project_detail(cache: EntityCache, project_id: str) -> ProjectDetail | None:
    project = cache.find(EntityKind.PROJECT, project_id)
    if project is None:
        return None
    tasks = [task for task in cache.tasks if task.project_id == project.id]
    completed = sum(1 for task in tasks if task.status == TaskStatus.COMPLETED.value)
    return ProjectDetail(
        project=project,
        parent=cache.find(EntityKind.PROJECT, project.parent_id),
        stakeholder=cache.find(EntityKind.STAKEHOLDER, project.stakeholder_id),
        children=child_projects(cache, project.id),
        tasks=tasks,
        completed_tasks=completed,
        progress=progress_percent(completed, len(tasks)),
    )


# ---- knowledge


def filter_knowledge(entries: Iterable[KnowledgeEntry], filters: KnowledgeFilters) -> list[KnowledgeEntry]:
    selected = list(entries)
    if filters.tab and filters.tab != ALL_TAB:
        selected = [entry for entry in selected if entry.category == filters.tab]
    if filters.search:
        selected = [
            entry for entry in selected if matches_search(filters.search, entry.title, entry.content, entry.tags)
        ]
    return selected


def project_knowledge(cache: EntityCache, filters: KnowledgeFilters) -> list[KnowledgeEntry]:
    return filter_knowledge(cache.knowledge, filters)


# ---- stakeholders


def stakeholder_detail(cache: EntityCache, stakeholder_id: str) -> StakeholderDetail | None:
    stakeholder = cache.find(EntityKind.STAKEHOLDER, stakeholder_id)
    if stakeholder is None:
        return None
    return _stakeholder_detail(cache, stakeholder)


def stakeholder_summaries(cache: EntityCache) -> list[StakeholderDetail]:
    return [_stakeholder_detail(cache, stakeholder) for stakeholder in cache.stakeholders]


def _stakeholder_detail(cache: EntityCache, stakeholder: Stakeholder) -> StakeholderDetail:
    followups = [followup for followup in cache.followups if followup.stakeholder_id == stakeholder.id]
    return StakeholderDetail(
        stakeholder=stakeholder,
        tasks=[task for task in cache.tasks if task.stakeholder_id == stakeholder.id],
        projects=[project for project in cache.projects if project.stakeholder_id == stakeholder.id],
        followups=followups,
        pending_followups=sum(1 for f in followups if f.status == FollowupStatus.PENDING.value),
        completed_followups=sum(1 for f in followups if f.status == FollowupStatus.COMPLETED.value),
    )


# ---- counters and select options


def counts(cache: EntityCache, today: date | None = None) -> Counts:
    today = today or local_today()
    return Counts(
        today=sum(1 for task in cache.tasks if in_tab(task, TaskTab.TODAY, today)),
        overdue=sum(1 for task in cache.tasks if in_tab(task, TaskTab.OVERDUE, today)),
        completed=sum(1 for task in cache.tasks if in_tab(task, TaskTab.COMPLETED, today)),
        projects=len(cache.projects),
        stakeholders=len(cache.stakeholders),
    )


def project_options(cache: EntityCache) -> list[Option]:
    return [(project.id, project.name) for project in cache.projects]


def parent_project_options(cache: EntityCache, editing_id: str | None = None) -> list[Option]:
    """Projects that may become the parent of ``editing_id`` without forming a cycle."""
    if editing_id is None:
        return project_options(cache)
    excluded = descendant_ids(cache, editing_id) | {editing_id}
    return [(project.id, project.name) for project in cache.projects if project.id not in excluded]


def stakeholder_options(cache: EntityCache) -> list[Option]:
    return [(stakeholder.id, stakeholder.name) for stakeholder in cache.stakeholders]
