from __future__ import annotations

import csv
from collections.abc import Iterable
from dataclasses import fields, is_dataclass
from datetime import date
from pathlib import Path
from typing import Any

from openpyxl import Workbook

from deskflow.cache import EntityCache
from deskflow.domain.kinds import EntityKind, TaskTab
from deskflow.state import TaskFilters
from deskflow.views import projector


def export_excel(cache: EntityCache, out_path: Path, today: date | None = None) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)

    for title, rows in _sheets(cache, today):
        ws = wb.create_sheet(title=title)
        _write_sheet(ws, rows)

    wb.save(out_path)


def export_csv_tables(cache: EntityCache, out_dir: Path, today: date | None = None) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for title, rows in _sheets(cache, today):
        headers = list(rows[0].keys()) if rows else []
        csv_path = out_dir / f"{title}.csv"
        with csv_path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            for row in rows:
                writer.writerow([row[h] for h in headers])
        written.append(csv_path)
    return written


def _sheets(cache: EntityCache, today: date | None) -> list[tuple[str, list[dict[str, Any]]]]:
    sheets: list[tuple[str, list[dict[str, Any]]]] = []
    for tab in TaskTab:
        tasks = projector.project_tasks(cache, TaskFilters(tab=tab.value), today)
        sheets.append((f"tasks_{tab.value}", [_row(task) for task in tasks]))
    project_rows = []
    for project in cache.projects:
        row = _row(project)
        row["progress"] = projector.project_progress(cache, project.id)
        project_rows.append(row)
    sheets.append((EntityKind.PROJECT.value, project_rows))
    for kind in (EntityKind.STAKEHOLDER, EntityKind.FOLLOWUP, EntityKind.SUBTASK, EntityKind.KNOWLEDGE):
        sheets.append((kind.value, [_row(item) for item in cache.all(kind)]))
    return sheets


def _row(item: Any) -> dict[str, Any]:
    if not is_dataclass(item):
        raise TypeError(f"Cannot export {type(item).__name__}")
    row: dict[str, Any] = {}
    for field in fields(item):
        value = getattr(item, field.name)
        if field.name == "attachments":
            value = len(value)
        elif isinstance(value, date):
            value = value.isoformat()
        row[field.name] = value
    return row


def _write_sheet(ws, rows: Iterable[dict[str, Any]]) -> None:
    rows = list(rows)
    if not rows:
        return
    headers = list(rows[0].keys())
    ws.append(headers)
    for row in rows:
        ws.append([row[h] for h in headers])
