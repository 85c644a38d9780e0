from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer

from deskflow import __version__
from deskflow.app import Session
from deskflow.config import (
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from deskflow.domain.kinds import EntityKind
from deskflow.notices import Notice
from deskflow.services import exports
from deskflow.store.base import StoreError
from deskflow.views import projector
from deskflow.views.dates import classify_due

T = TypeVar("T")

app = typer.Typer(help="Deskflow CLI")
workspace_app = typer.Typer(help="Workspace management")
task_app = typer.Typer(help="Tasks")
project_app = typer.Typer(help="Projects")
stakeholder_app = typer.Typer(help="Stakeholders")
followup_app = typer.Typer(help="Stakeholder follow-ups")
subtask_app = typer.Typer(help="Subtasks")
kb_app = typer.Typer(help="Knowledge base")
export_app = typer.Typer(help="Exports")

app.add_typer(workspace_app, name="workspace")
app.add_typer(task_app, name="task")
app.add_typer(project_app, name="project")
app.add_typer(stakeholder_app, name="stakeholder")
app.add_typer(followup_app, name="followup")
app.add_typer(subtask_app, name="subtask")
app.add_typer(kb_app, name="kb")
app.add_typer(export_app, name="export")


@app.callback()
def version_callback(version: bool = typer.Option(False, "--version", help="Show version and exit.")):
    if version:
        typer.echo(__version__)
        raise typer.Exit()


@app.command("init")
def init() -> None:
    """Initialize directories for workspaces and exports."""
    ensure_workspaces_dir()
    Path("exports").mkdir(exist_ok=True)
    typer.echo("Initialized deskflow directories.")


@app.command("counts")
def counts() -> None:
    result = _with_session(lambda session: _now(session.counts()))
    typer.echo(
        f"today={result.today} overdue={result.overdue} completed={result.completed} "
        f"projects={result.projects} stakeholders={result.stakeholders}"
    )


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    provider: str = typer.Option("sqlite", "--provider", help="sqlite or airtable"),
    base: str | None = typer.Option(None, "--base", help="Airtable base ID (app...)."),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(False, "--force", help="Overwrite existing workspace config if it exists."),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(f"Workspace already exists: {config_path}. Use --force to overwrite.")
    try:
        config_path = write_workspace_config(name, provider=provider, base_id=base)
    except WorkspaceError as exc:
        _exit_with_error(str(exc))
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


# ---- tasks


@task_app.command("add")
def task_add(
    title: str = typer.Argument(...),
    description: str | None = typer.Option(None, "--description"),
    priority: str = typer.Option("medium", "--priority"),
    status: str = typer.Option("todo", "--status"),
    due: str | None = typer.Option(None, "--due"),
    project: str | None = typer.Option(None, "--project"),
    stakeholder: str | None = typer.Option(None, "--stakeholder"),
    today: bool = typer.Option(False, "--today/--no-today"),
    url: list[str] | None = typer.Option(None, "--url", help="Attach a link."),
    document: list[str] | None = typer.Option(None, "--doc", help="Attach a document reference."),
) -> None:
    fields = {
        "title": title,
        "description": description,
        "priority": priority,
        "status": status,
        "due_date": due,
        "project_id": project,
        "stakeholder_id": stakeholder,
        "is_today": today,
        "attachments": _attachments(url, document),
    }
    task_id = _with_session(lambda session: session.submit_task(fields))
    typer.echo(f"Created task: {task_id}")


@task_app.command("list")
def task_list(
    tab: str = typer.Option("today", "--tab", help="today, backlog, completed or overdue"),
    priority: str | None = typer.Option(None, "--priority"),
    status: str | None = typer.Option(None, "--status"),
    project: str | None = typer.Option(None, "--project"),
    stakeholder: str | None = typer.Option(None, "--stakeholder"),
    search: str | None = typer.Option(None, "--search"),
) -> None:
    filters = {
        "priority": priority,
        "status": status,
        "project": project,
        "stakeholder": stakeholder,
        "search": search,
    }

    async def action(session: Session) -> list:
        session.switch_tab("tasks", tab)
        for name, value in filters.items():
            session.set_filter("tasks", name, value)
        return session.visible("tasks")

    _echo_tasks(_with_session(action))


@task_app.command("today")
def task_today() -> None:
    """Shortcut for `task list --tab today`."""
    _echo_tasks(_with_session(lambda session: _now(session.visible("tasks"))))


@task_app.command("show")
def task_show(task_id: str = typer.Argument(...)) -> None:
    detail = _with_session(lambda session: _now(projector.task_detail(session.cache, task_id)))
    if detail is None:
        _exit_with_error("Task not found.")
    task = detail.task
    tab = projector.task_tab(task)
    typer.echo(f"{task.title} [{task.status}] priority={task.priority} due={detail.due.value} tab={tab.value}")
    if detail.project:
        typer.echo(f"project: {detail.project.name}")
    if detail.stakeholder:
        typer.echo(f"stakeholder: {detail.stakeholder.name}")
    for attachment in task.attachments:
        typer.echo(f"attachment: {attachment.type} {attachment.display_name}")
    for subtask in detail.subtasks:
        typer.echo(f"subtask: {subtask.id} | {subtask.title} | {subtask.status}")


@task_app.command("status")
def task_status(task_id: str = typer.Argument(...), status: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.change_status(EntityKind.TASK, task_id, status))
    typer.echo(f"Task {task_id} -> {status}")


@task_app.command("delete")
def task_delete(task_id: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.delete_entity(EntityKind.TASK, task_id))
    typer.echo(f"Deleted task: {task_id}")


@task_app.command("reorder")
def task_reorder(task_ids: list[str] = typer.Argument(..., help="Task ids in their new order.")) -> None:
    _with_session(lambda session: session.reorder_tasks(task_ids))
    typer.echo(f"Reordered {len(task_ids)} task(s).")


# ---- projects


@project_app.command("add")
def project_add(
    name: str = typer.Argument(...),
    description: str | None = typer.Option(None, "--description"),
    status: str = typer.Option("planning", "--status"),
    parent: str | None = typer.Option(None, "--parent"),
    stakeholder: str | None = typer.Option(None, "--stakeholder"),
    deadline: str | None = typer.Option(None, "--deadline"),
    url: list[str] | None = typer.Option(None, "--url", help="Attach a link."),
) -> None:
    fields = {
        "name": name,
        "description": description,
        "status": status,
        "parent_id": parent,
        "stakeholder_id": stakeholder,
        "deadline": deadline,
        "attachments": _attachments(url, None),
    }
    project_id = _with_session(lambda session: session.submit_project(fields))
    typer.echo(f"Created project: {project_id}")


@project_app.command("list")
def project_list(
    tab: str = typer.Option("all", "--tab"),
    stakeholder: str | None = typer.Option(None, "--stakeholder"),
    search: str | None = typer.Option(None, "--search"),
) -> None:
    async def action(session: Session) -> list:
        session.switch_tab("projects", tab)
        session.set_filter("projects", "stakeholder", stakeholder)
        session.set_filter("projects", "search", search)
        return [(project, projector.project_progress(session.cache, project.id)) for project in session.visible("projects")]

    rows = _with_session(action)
    if not rows:
        typer.echo("No projects.")
        return
    for project, progress in rows:
        parent = f" (child of {project.parent_id})" if project.parent_id else ""
        typer.echo(f"{project.id} | {project.name} | {project.status} | {progress}%{parent}")


@project_app.command("show")
def project_show(project_id: str = typer.Argument(...)) -> None:
    detail = _with_session(lambda session: _now(projector.project_detail(session.cache, project_id)))
    if detail is None:
        _exit_with_error("Project not found.")
    project = detail.project
    typer.echo(f"{project.name} [{project.status}] progress={detail.progress}%")
    if detail.parent:
        typer.echo(f"parent: {detail.parent.name}")
    if detail.stakeholder:
        typer.echo(f"stakeholder: {detail.stakeholder.name}")
    for child in detail.children:
        typer.echo(f"child: {child.id} | {child.name}")
    for task in detail.tasks:
        typer.echo(f"task: {task.id} | {task.title} | {task.status}")


@project_app.command("status")
def project_status(project_id: str = typer.Argument(...), status: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.change_status(EntityKind.PROJECT, project_id, status))
    typer.echo(f"Project {project_id} -> {status}")


@project_app.command("delete")
def project_delete(project_id: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.delete_entity(EntityKind.PROJECT, project_id))
    typer.echo(f"Deleted project: {project_id}")


# ---- stakeholders


@stakeholder_app.command("add")
def stakeholder_add(
    name: str = typer.Argument(...),
    email: str | None = typer.Option(None, "--email"),
    phone: str | None = typer.Option(None, "--phone"),
    role: str | None = typer.Option(None, "--role"),
    company: str | None = typer.Option(None, "--company"),
    notes: str | None = typer.Option(None, "--notes"),
) -> None:
    fields = {"name": name, "email": email, "phone": phone, "role": role, "company": company, "notes": notes}
    stakeholder_id = _with_session(lambda session: session.submit_stakeholder(fields))
    typer.echo(f"Created stakeholder: {stakeholder_id}")


@stakeholder_app.command("list")
def stakeholder_list() -> None:
    summaries = _with_session(lambda session: _now(session.visible("stakeholders")))
    if not summaries:
        typer.echo("No stakeholders.")
        return
    for summary in summaries:
        person = summary.stakeholder
        typer.echo(
            f"{person.id} | {person.name} | {person.company or ''} | "
            f"pending={summary.pending_followups} completed={summary.completed_followups}"
        )


@stakeholder_app.command("show")
def stakeholder_show(stakeholder_id: str = typer.Argument(...)) -> None:
    detail = _with_session(lambda session: _now(projector.stakeholder_detail(session.cache, stakeholder_id)))
    if detail is None:
        _exit_with_error("Stakeholder not found.")
    person = detail.stakeholder
    typer.echo(f"{person.name} <{person.email or ''}> {person.role or ''} {person.company or ''}".strip())
    typer.echo(f"followups: pending={detail.pending_followups} completed={detail.completed_followups}")
    for followup in detail.followups:
        typer.echo(f"followup: {followup.id} | {followup.title} | {followup.followup_type} | {followup.status}")
    for task in detail.tasks:
        typer.echo(f"task: {task.id} | {task.title} | {task.status}")
    for project in detail.projects:
        typer.echo(f"project: {project.id} | {project.name} | {project.status}")


@stakeholder_app.command("delete")
def stakeholder_delete(stakeholder_id: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.delete_entity(EntityKind.STAKEHOLDER, stakeholder_id))
    typer.echo(f"Deleted stakeholder: {stakeholder_id}")


# ---- follow-ups and subtasks


@followup_app.command("add")
def followup_add(
    stakeholder_id: str = typer.Argument(...),
    title: str = typer.Argument(...),
    description: str | None = typer.Option(None, "--description"),
    followup_type: str = typer.Option("other", "--type"),
    status: str = typer.Option("pending", "--status"),
    on: str | None = typer.Option(None, "--date"),
) -> None:
    fields = {
        "stakeholder_id": stakeholder_id,
        "title": title,
        "description": description,
        "type": followup_type,
        "status": status,
        "date": on,
    }
    followup_id = _with_session(lambda session: session.submit_followup(fields))
    typer.echo(f"Created followup: {followup_id}")


@followup_app.command("status")
def followup_status(followup_id: str = typer.Argument(...), status: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.change_status(EntityKind.FOLLOWUP, followup_id, status))
    typer.echo(f"Followup {followup_id} -> {status}")


@followup_app.command("delete")
def followup_delete(followup_id: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.delete_entity(EntityKind.FOLLOWUP, followup_id))
    typer.echo(f"Deleted followup: {followup_id}")


@subtask_app.command("add")
def subtask_add(
    task_id: str = typer.Argument(...),
    title: str = typer.Argument(...),
    description: str | None = typer.Option(None, "--description"),
    priority: str = typer.Option("medium", "--priority"),
    due: str | None = typer.Option(None, "--due"),
) -> None:
    fields = {"task_id": task_id, "title": title, "description": description, "priority": priority, "due_date": due}
    subtask_id = _with_session(lambda session: session.submit_subtask(fields))
    typer.echo(f"Created subtask: {subtask_id}")


@subtask_app.command("status")
def subtask_status(subtask_id: str = typer.Argument(...), status: str = typer.Argument(...)) -> None:
    _with_session(lambda session: session.change_status(EntityKind.SUBTASK, subtask_id, status))
    typer.echo(f"Subtask {subtask_id} -> {status}")


# ---- knowledge base


@kb_app.command("add")
def kb_add(
    title: str = typer.Argument(...),
    content: str | None = typer.Option(None, "--content"),
    category: str = typer.Option("reference", "--category"),
    tags: str | None = typer.Option(None, "--tags"),
    url: list[str] | None = typer.Option(None, "--url", help="Attach a link."),
) -> None:
    fields = {
        "title": title,
        "content": content,
        "category": category,
        "tags": tags,
        "attachments": _attachments(url, None),
    }
    entry_id = _with_session(lambda session: session.submit_knowledge(fields))
    typer.echo(f"Created knowledge entry: {entry_id}")


@kb_app.command("list")
def kb_list(
    tab: str = typer.Option("all", "--tab"),
    search: str | None = typer.Option(None, "--search"),
) -> None:
    async def action(session: Session) -> list:
        session.switch_tab("knowledge", tab)
        session.set_filter("knowledge", "search", search)
        return session.visible("knowledge")

    entries = _with_session(action)
    if not entries:
        typer.echo("No knowledge entries.")
        return
    for entry in entries:
        typer.echo(f"{entry.id} | {entry.title} | {entry.category} | {entry.tags or ''}")


# ---- exports


@export_app.command("excel")
def export_excel(out: str = typer.Option(..., "--out")) -> None:
    _with_session(lambda session: _now(exports.export_excel(session.cache, Path(out), session.today())))
    typer.echo(f"Exported Excel to {out}")


@export_app.command("csv")
def export_csv(out: str = typer.Option(..., "--out")) -> None:
    paths = _with_session(lambda session: _now(exports.export_csv_tables(session.cache, Path(out), session.today())))
    typer.echo(f"Exported {len(paths)} CSV file(s) to {out}")


def _with_session(action: Callable[[Session], Awaitable[T]]) -> T:
    ws = _load_workspace()

    async def runner() -> tuple[T, list[Notice]]:
        async with Session.from_workspace(ws) as session:
            result = await action(session)
            return result, session.notices.active()

    try:
        result, notices = asyncio.run(runner())
    except (StoreError, WorkspaceError) as exc:
        _exit_with_error(str(exc))
    errors = [notice for notice in notices if notice.level == "error"]
    if errors:
        _exit_with_error("; ".join(notice.message for notice in errors))
    return result


def _echo_tasks(tasks: list) -> None:
    if not tasks:
        typer.echo("No tasks.")
        return
    for task in tasks:
        due = task.due_date.isoformat() if task.due_date else ""
        typer.echo(
            f"{task.id} | {task.title} | {task.priority} | {task.status} | {due} | {classify_due(task.due_date).value}"
        )


async def _now(value: T) -> T:
    return value


def _attachments(urls: list[str] | None, documents: list[str] | None) -> list[dict[str, Any]]:
    attachments = [{"type": "url", "value": value.strip()} for value in urls or [] if value.strip()]
    attachments.extend({"type": "document", "value": value.strip()} for value in documents or [] if value.strip())
    return attachments


def _load_workspace():
    try:
        return load_workspace()
    except WorkspaceError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1) from exc


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
