import pytest

from deskflow.cache import EntityCache
from deskflow.domain.kinds import EntityKind
from deskflow.domain.rules import ValidationError
from deskflow.state import UiState


def test_defaults() -> None:
    state = UiState()
    assert state.tasks.tab == "today"
    assert state.projects.tab == "all"
    assert state.knowledge.tab == "all"
    assert state.editing is None


def test_switch_tab_validates() -> None:
    state = UiState()
    state.switch_tab("tasks", "overdue")
    state.switch_tab("projects", "on-hold")
    state.switch_tab("knowledge", "faq")
    assert (state.tasks.tab, state.projects.tab, state.knowledge.tab) == ("overdue", "on-hold", "faq")
    with pytest.raises(ValidationError):
        state.switch_tab("tasks", "someday")
    with pytest.raises(ValidationError):
        state.switch_tab("calendar", "today")


def test_set_filter_aliases_and_clears() -> None:
    state = UiState()
    state.set_filter("tasks", "project", "p1")
    state.set_filter("tasks", "priority", "high")
    state.set_filter("tasks", "search", "  report ")
    assert (state.tasks.project_id, state.tasks.priority, state.tasks.search) == ("p1", "high", "report")

    state.set_filter("tasks", "search", "   ")
    assert state.tasks.search is None

    state.switch_tab("tasks", "backlog")
    state.clear_filters("tasks")
    assert state.tasks.tab == "backlog"
    assert state.tasks.priority is None
    assert state.tasks.project_id is None


def test_set_filter_rejects_unknown_names_and_values() -> None:
    state = UiState()
    with pytest.raises(ValidationError):
        state.set_filter("tasks", "priority", "urgent")
    with pytest.raises(ValidationError):
        state.set_filter("knowledge", "stakeholder", "s1")
    with pytest.raises(ValidationError):
        state.set_filter("projects", "tab", "active")


def test_begin_edit_of_missing_item_is_silent() -> None:
    state = UiState()
    cache = EntityCache()
    assert state.begin_edit(EntityKind.TASK, "missing", cache) is None
    assert state.editing is None
    assert state.begin_view(EntityKind.PROJECT, "missing", cache) is None
    assert state.viewing is None


def test_editing_followup_remembers_stakeholder() -> None:
    state = UiState()
    cache = EntityCache()
    cache.apply_snapshot(EntityKind.FOLLOWUP, [{"id": "f1", "stakeholder_id": "s1", "title": "Call"}])
    followup = state.begin_edit(EntityKind.FOLLOWUP, "f1", cache)
    assert followup.title == "Call"
    assert state.followup_stakeholder_id == "s1"
    assert state.editing_id(EntityKind.FOLLOWUP) == "f1"
    assert state.editing_id(EntityKind.TASK) is None

    state.end_edit()
    assert state.editing is None
    assert state.followup_stakeholder_id is None
