"""Centralized todo store.

Holds the task list plus filter, selection and UI state as one immutable
``TodoState`` snapshot. Every action swaps the snapshot and notifies
subscribers; persistence of tasks is delegated to the datastore, only the
focus-mode flag is written to the user's preferences.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Iterable, Mapping

from taskboard.errors import TaskboardError
from taskboard.preferences import FOCUS_MODE_KEY, PreferenceStore
from taskboard.todo_schema import (
    QUICK_FILTERS,
    SORT_OPTIONS,
    TODO_STATUSES,
    VIEW_MODES,
    Todo,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DateRange:
    start: str = ""
    end: str = ""


@dataclass(frozen=True)
class TodoFilters:
    search_query: str = ""
    quick_filter: str = "all"
    sort_option: str = "urgency"
    show_completed: bool = False
    high_priority_only: bool = False
    status_filter: str = "all"
    assigned_to_filter: str = "all"
    customer_filter: str = "all"
    has_attachments_filter: bool | None = None
    date_range_filter: DateRange = DateRange()
    project_filter: str | None = None
    tag_filter: tuple[str, ...] = ()


@dataclass(frozen=True)
class BulkActionState:
    selected_todos: frozenset[str] = frozenset()
    show_bulk_actions: bool = False


@dataclass(frozen=True)
class UIState:
    view_mode: str = "list"
    show_advanced_filters: bool = False
    show_celebration: bool = False
    celebration_text: str = ""
    show_progress_summary: bool = False
    show_welcome_back: bool = False
    show_weekly_chart: bool = False
    show_shortcuts: bool = False
    show_activity_feed: bool = False
    show_strategic_dashboard: bool = False
    show_archive_view: bool = False
    show_merge_modal: bool = False
    show_duplicate_modal: bool = False
    show_email_modal: bool = False
    focus_mode: bool = False


UI_FLAGS = frozenset(
    item.name
    for item in fields(UIState)
    if item.name not in {"view_mode", "celebration_text", "focus_mode"}
)
FILTER_FIELDS = frozenset(item.name for item in fields(TodoFilters))
_STR_FILTERS = (
    "search_query",
    "quick_filter",
    "sort_option",
    "status_filter",
    "assigned_to_filter",
    "customer_filter",
)
_BOOL_FILTERS = ("show_completed", "high_priority_only")


@dataclass(frozen=True)
class TodoState:
    todos: tuple[Todo, ...] = ()
    users: tuple[str, ...] = ()
    users_with_colors: tuple[Mapping[str, str], ...] = ()
    loading: bool = True
    connected: bool = False
    error: str | None = None
    projects: tuple[Mapping[str, Any], ...] = ()
    tags: tuple[Mapping[str, Any], ...] = ()
    filters: TodoFilters = TodoFilters()
    bulk_actions: BulkActionState = BulkActionState()
    ui: UIState = UIState()
    custom_order: tuple[str, ...] = ()
    dependencies: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def find(self, todo_id: str) -> Todo | None:
        for todo in self.todos:
            if todo.id == todo_id:
                return todo
        return None


Listener = Callable[[Any, Any], None]
Selector = Callable[[TodoState], Any]


@dataclass
class _Subscription:
    listener: Listener
    selector: Selector | None
    last: Any


def _normalize_date_range(value: Any) -> DateRange:
    if isinstance(value, DateRange):
        bounds = (value.start, value.end)
    elif isinstance(value, Mapping):
        bounds = (value.get("start") or "", value.get("end") or "")
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        bounds = (value[0] or "", value[1] or "")
    else:
        bounds = None
    if bounds is not None and all(isinstance(bound, str) for bound in bounds):
        return DateRange(start=bounds[0], end=bounds[1])
    raise TaskboardError(
        "INVALID_FILTER",
        "date_range_filter must have a start and an end.",
        {"date_range_filter": str(value)},
    )


def _validate_filter_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(changes) - FILTER_FIELDS)
    if unknown:
        raise TaskboardError(
            "UNKNOWN_FIELD",
            "Unknown filter fields.",
            {"fields": unknown},
        )
    validated = dict(changes)
    for key in _STR_FILTERS:
        if key in validated and not isinstance(validated[key], str):
            raise TaskboardError(
                "INVALID_FILTER",
                f"{key} must be a string.",
                {key: str(validated[key])},
            )
    for key in _BOOL_FILTERS:
        if key in validated and not isinstance(validated[key], bool):
            raise TaskboardError(
                "INVALID_FILTER",
                f"{key} must be a boolean.",
                {key: str(validated[key])},
            )
    project = validated.get("project_filter")
    if project is not None and not isinstance(project, str):
        raise TaskboardError(
            "INVALID_FILTER",
            "project_filter must be a string or null.",
            {"project_filter": str(project)},
        )
    if "tag_filter" in validated:
        tags = validated["tag_filter"]
        if tags is not None and (
            not isinstance(tags, (list, tuple)) or not all(isinstance(tag, str) for tag in tags)
        ):
            raise TaskboardError(
                "INVALID_FILTER",
                "tag_filter must be a list of strings.",
                {"tag_filter": str(tags)},
            )
    if "quick_filter" in validated and validated["quick_filter"] not in QUICK_FILTERS:
        raise TaskboardError(
            "INVALID_FILTER",
            "Unsupported quick filter.",
            {"quick_filter": str(validated["quick_filter"])},
        )
    if "sort_option" in validated and validated["sort_option"] not in SORT_OPTIONS:
        raise TaskboardError(
            "INVALID_FILTER",
            "Unsupported sort option.",
            {"sort_option": str(validated["sort_option"])},
        )
    if "status_filter" in validated and validated["status_filter"] not in (
        "all",
        *TODO_STATUSES,
    ):
        raise TaskboardError(
            "INVALID_FILTER",
            "Unsupported status filter.",
            {"status_filter": str(validated["status_filter"])},
        )
    attachments = validated.get("has_attachments_filter")
    if attachments is not None and not isinstance(attachments, bool):
        raise TaskboardError(
            "INVALID_FILTER",
            "has_attachments_filter must be true, false or null.",
            {"has_attachments_filter": str(attachments)},
        )
    if "date_range_filter" in validated:
        validated["date_range_filter"] = _normalize_date_range(validated["date_range_filter"])
    if "tag_filter" in validated:
        validated["tag_filter"] = tuple(validated["tag_filter"] or ())
    return validated


class TodoStore:
    def __init__(self, preferences: PreferenceStore | None = None) -> None:
        self._state = TodoState()
        self._lock = threading.RLock()
        self._subscriptions: list[_Subscription] = []
        self._preferences = preferences

    def get_state(self) -> TodoState:
        return self._state

    def subscribe(
        self, listener: Listener, selector: Selector | None = None
    ) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it.

        Without a selector the listener receives ``(state, previous_state)`` on
        every action. With one it receives ``(slice, previous_slice)`` only
        when the selected slice changes.
        """
        with self._lock:
            last = selector(self._state) if selector is not None else None
            subscription = _Subscription(listener, selector, last)
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def _set(self, action: str, updater: Callable[[TodoState], TodoState]) -> None:
        with self._lock:
            previous = self._state
            self._state = updater(previous)
            logger.debug("store action %s", action)
            for subscription in list(self._subscriptions):
                if subscription.selector is None:
                    subscription.listener(self._state, previous)
                    continue
                selected = subscription.selector(self._state)
                if selected != subscription.last:
                    before = subscription.last
                    subscription.last = selected
                    subscription.listener(selected, before)

    # -- core data ---------------------------------------------------------

    def set_todos(self, todos: Iterable[Todo]) -> None:
        todos = tuple(todos)
        self._set("set_todos", lambda state: replace(state, todos=todos))

    def add_todo(self, todo: Todo) -> None:
        self._set("add_todo", lambda state: replace(state, todos=(todo, *state.todos)))

    def update_todo(self, todo_id: str, updates: Mapping[str, Any]) -> None:
        def apply(state: TodoState) -> TodoState:
            return replace(
                state,
                todos=tuple(
                    todo.with_updates(updates) if todo.id == todo_id else todo
                    for todo in state.todos
                ),
            )

        self._set("update_todo", apply)

    def replace_todo(self, todo: Todo) -> None:
        self._set(
            "replace_todo",
            lambda state: replace(
                state,
                todos=tuple(todo if item.id == todo.id else item for item in state.todos),
            ),
        )

    def delete_todo(self, todo_id: str) -> None:
        def apply(state: TodoState) -> TodoState:
            selected = state.bulk_actions.selected_todos - {todo_id}
            return replace(
                state,
                todos=tuple(todo for todo in state.todos if todo.id != todo_id),
                bulk_actions=replace(state.bulk_actions, selected_todos=selected),
            )

        self._set("delete_todo", apply)

    def restore_todos(self, entries: Iterable[tuple[int, Todo]]) -> None:
        """Re-insert removed todos at their former indexes (ascending order)."""
        entries = sorted(entries, key=lambda entry: entry[0])

        def apply(state: TodoState) -> TodoState:
            todos = list(state.todos)
            present = {todo.id for todo in todos}
            for index, todo in entries:
                if todo.id in present:
                    continue
                todos.insert(min(index, len(todos)), todo)
                present.add(todo.id)
            return replace(state, todos=tuple(todos))

        self._set("restore_todos", apply)

    def set_users(self, users: Iterable[str]) -> None:
        users = tuple(users)
        self._set("set_users", lambda state: replace(state, users=users))

    def set_users_with_colors(self, users: Iterable[Mapping[str, str]]) -> None:
        users = tuple(dict(user) for user in users)
        self._set(
            "set_users_with_colors",
            lambda state: replace(state, users_with_colors=users),
        )

    def set_loading(self, loading: bool) -> None:
        self._set("set_loading", lambda state: replace(state, loading=loading))

    def set_connected(self, connected: bool) -> None:
        self._set("set_connected", lambda state: replace(state, connected=connected))

    def set_error(self, error: str | None) -> None:
        self._set("set_error", lambda state: replace(state, error=error))

    def set_projects(self, projects: Iterable[Mapping[str, Any]]) -> None:
        projects = tuple(projects)
        self._set("set_projects", lambda state: replace(state, projects=projects))

    def set_tags(self, tags: Iterable[Mapping[str, Any]]) -> None:
        tags = tuple(tags)
        self._set("set_tags", lambda state: replace(state, tags=tags))

    def set_dependencies(self, todo_id: str, deps: Mapping[str, Any]) -> None:
        self._set(
            "set_dependencies",
            lambda state: replace(
                state, dependencies={**state.dependencies, todo_id: dict(deps)}
            ),
        )

    # -- filters -----------------------------------------------------------

    def set_filters(self, **changes: Any) -> None:
        validated = _validate_filter_changes(changes)
        self._set(
            "set_filters",
            lambda state: replace(state, filters=replace(state.filters, **validated)),
        )

    def set_search_query(self, query: str) -> None:
        self.set_filters(search_query=query)

    def set_quick_filter(self, quick_filter: str) -> None:
        self.set_filters(quick_filter=quick_filter)

    def set_sort_option(self, sort_option: str) -> None:
        self.set_filters(sort_option=sort_option)

    def set_show_completed(self, show: bool) -> None:
        self.set_filters(show_completed=show)

    def set_high_priority_only(self, enabled: bool) -> None:
        self.set_filters(high_priority_only=enabled)

    def set_status_filter(self, status: str) -> None:
        self.set_filters(status_filter=status)

    def set_assigned_to_filter(self, user: str) -> None:
        self.set_filters(assigned_to_filter=user)

    def set_customer_filter(self, customer: str) -> None:
        self.set_filters(customer_filter=customer)

    def set_has_attachments_filter(self, has: bool | None) -> None:
        self.set_filters(has_attachments_filter=has)

    def set_date_range_filter(self, start: str = "", end: str = "") -> None:
        self.set_filters(date_range_filter=DateRange(start=start, end=end))

    def set_project_filter(self, project_id: str | None) -> None:
        self.set_filters(project_filter=project_id)

    def set_tag_filter(self, tag_ids: Iterable[str]) -> None:
        self.set_filters(tag_filter=tuple(tag_ids))

    def reset_filters(self) -> None:
        self._set("reset_filters", lambda state: replace(state, filters=TodoFilters()))

    def clear_advanced_filters(self) -> None:
        self.set_filters(
            status_filter="all",
            assigned_to_filter="all",
            customer_filter="all",
            has_attachments_filter=None,
            date_range_filter=DateRange(),
            project_filter=None,
            tag_filter=(),
        )

    # -- selection ---------------------------------------------------------

    def _select(
        self, action: str, selection: Callable[[frozenset[str]], frozenset[str]]
    ) -> None:
        def apply(state: TodoState) -> TodoState:
            selected = selection(state.bulk_actions.selected_todos)
            return replace(
                state,
                bulk_actions=BulkActionState(
                    selected_todos=selected, show_bulk_actions=bool(selected)
                ),
            )

        self._set(action, apply)

    def set_selected_todos(self, ids: Iterable[str]) -> None:
        selected = frozenset(ids)
        self._select("set_selected_todos", lambda _: selected)

    def toggle_todo_selection(self, todo_id: str) -> None:
        self._select("toggle_todo_selection", lambda selected: selected ^ {todo_id})

    def select_all_todos(self, ids: Iterable[str]) -> None:
        selected = frozenset(ids)
        self._select("select_all_todos", lambda _: selected)

    def clear_selection(self) -> None:
        self._select("clear_selection", lambda _: frozenset())

    def set_show_bulk_actions(self, show: bool) -> None:
        self._set(
            "set_show_bulk_actions",
            lambda state: replace(
                state, bulk_actions=replace(state.bulk_actions, show_bulk_actions=show)
            ),
        )

    # -- ui ----------------------------------------------------------------

    def set_view_mode(self, mode: str) -> None:
        if mode not in VIEW_MODES:
            raise TaskboardError(
                "INVALID_VIEW_MODE",
                "Unsupported view mode.",
                {"view_mode": str(mode)},
            )
        self._set("set_view_mode", lambda state: replace(state, ui=replace(state.ui, view_mode=mode)))

    def set_ui(self, **flags: bool) -> None:
        unknown = sorted(set(flags) - UI_FLAGS)
        if unknown:
            raise TaskboardError(
                "UNKNOWN_FIELD",
                "Unknown UI flags.",
                {"fields": unknown},
            )
        self._set("set_ui", lambda state: replace(state, ui=replace(state.ui, **flags)))

    def set_show_celebration(self, show: bool, text: str = "") -> None:
        self._set(
            "set_show_celebration",
            lambda state: replace(
                state,
                ui=replace(state.ui, show_celebration=show, celebration_text=text),
            ),
        )

    def set_focus_mode(self, enabled: bool) -> None:
        if self._preferences is not None:
            self._preferences.set(FOCUS_MODE_KEY, bool(enabled))
        self._set(
            "set_focus_mode",
            lambda state: replace(state, ui=replace(state.ui, focus_mode=bool(enabled))),
        )

    def toggle_focus_mode(self) -> None:
        with self._lock:
            self.set_focus_mode(not self._state.ui.focus_mode)

    def hydrate_focus_mode(self) -> None:
        if self._preferences is None:
            return
        if self._preferences.get(FOCUS_MODE_KEY) is True:
            self.set_focus_mode(True)

    # -- ordering ----------------------------------------------------------

    def set_custom_order(self, order: Iterable[str]) -> None:
        order = tuple(order)
        self._set("set_custom_order", lambda state: replace(state, custom_order=order))
