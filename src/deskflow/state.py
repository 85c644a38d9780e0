from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

from deskflow.cache import EntityCache
from deskflow.domain import rules
from deskflow.domain.kinds import (
    ALL_TAB,
    EntityKind,
    KnowledgeCategory,
    Priority,
    ProjectStatus,
    TaskStatus,
    TaskTab,
)
from deskflow.domain.rules import ValidationError


@dataclass(frozen=True)
class TaskFilters:
    tab: str = TaskTab.TODAY.value
    priority: str | None = None
    status: str | None = None
    project_id: str | None = None
    stakeholder_id: str | None = None
    search: str | None = None


@dataclass(frozen=True)
class ProjectFilters:
    tab: str = ALL_TAB
    stakeholder_id: str | None = None
    search: str | None = None


@dataclass(frozen=True)
class KnowledgeFilters:
    tab: str = ALL_TAB
    search: str | None = None


@dataclass(frozen=True)
class Target:
    kind: EntityKind
    item_id: str


TABS: dict[str, list[str]] = {
    "tasks": [tab.value for tab in TaskTab],
    "projects": [ALL_TAB, *[status.value for status in ProjectStatus]],
    "knowledge": [ALL_TAB, *[category.value for category in KnowledgeCategory]],
}

FILTER_ALIASES: dict[str, dict[str, str]] = {
    "tasks": {"project": "project_id", "stakeholder": "stakeholder_id"},
    "projects": {"stakeholder": "stakeholder_id"},
    "knowledge": {},
}

FILTER_ENUMS: dict[tuple[str, str], list[str]] = {
    ("tasks", "priority"): [p.value for p in Priority],
    ("tasks", "status"): [s.value for s in TaskStatus],
}


@dataclass
class UiState:
    """Selections that drive projections for the current session; never persisted."""

    tasks: TaskFilters = field(default_factory=TaskFilters)
    projects: ProjectFilters = field(default_factory=ProjectFilters)
    knowledge: KnowledgeFilters = field(default_factory=KnowledgeFilters)
    editing: Target | None = None
    viewing: Target | None = None
    followup_stakeholder_id: str | None = None

    def filters(self, view: str) -> Any:
        if view not in TABS:
            raise ValidationError(f"view must be one of: {', '.join(sorted(TABS))}")
        return getattr(self, view)

    def switch_tab(self, view: str, tab: str) -> None:
        current = self.filters(view)
        rules.validate_enum(tab, TABS[view], f"{view} tab")
        setattr(self, view, replace(current, tab=tab))

    def set_filter(self, view: str, name: str, value: str | None) -> None:
        current = self.filters(view)
        attr = FILTER_ALIASES[view].get(name, name)
        allowed = {f.name for f in fields(current)} - {"tab"}
        if attr not in allowed:
            raise ValidationError(f"{view} filter must be one of: {', '.join(sorted(allowed))}")
        cleaned = value.strip() if isinstance(value, str) else value
        if not cleaned:
            cleaned = None
        enum_values = FILTER_ENUMS.get((view, attr))
        if enum_values is not None:
            rules.validate_enum(cleaned, enum_values, attr)
        setattr(self, view, replace(current, **{attr: cleaned}))

    def clear_filters(self, view: str) -> None:
        current = self.filters(view)
        setattr(self, view, type(current)(tab=current.tab))

    def begin_edit(self, kind: EntityKind, item_id: str, cache: EntityCache) -> Any | None:
        item = cache.find(kind, item_id)
        if item is None:
            return None
        self.editing = Target(kind=kind, item_id=item_id)
        if kind is EntityKind.FOLLOWUP:
            self.followup_stakeholder_id = item.stakeholder_id
        return item

    def end_edit(self) -> None:
        if self.editing is not None and self.editing.kind is EntityKind.FOLLOWUP:
            self.followup_stakeholder_id = None
        self.editing = None

    def begin_view(self, kind: EntityKind, item_id: str, cache: EntityCache) -> Any | None:
        item = cache.find(kind, item_id)
        if item is None:
            return None
        self.viewing = Target(kind=kind, item_id=item_id)
        return item

    def end_view(self) -> None:
        self.viewing = None

    def editing_id(self, kind: EntityKind) -> str | None:
        if self.editing is None or self.editing.kind is not kind:
            return None
        return self.editing.item_id
