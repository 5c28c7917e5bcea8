"""Todo endpoints: listing, CRUD, ordering and derived views."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import Request

from taskboard.api_router import api_router
from taskboard.duplicates import find_potential_duplicates, should_check_for_duplicates
from taskboard.errors import TaskboardError, success_response
from taskboard.payload import (
    _ensure_payload_dict,
    _optional_bool,
    _optional_str,
    _reject_unknown_fields,
    _require_str,
)
from taskboard.selectors import (
    filter_archived_todos,
    has_active_advanced_filters,
    select_archived_todos,
    select_filter_counts,
    select_filtered_todos,
    select_todo_stats,
    select_unique_customers,
    select_visible_todos,
)
from taskboard.store import FILTER_FIELDS, TodoState
from taskboard.todo_schema import DEFAULT_PRIORITY
from taskboard.user_scope import get_request_workspace


def _rolled_back(operation: str, todo_id: str | None = None) -> TaskboardError:
    details = {"operation": operation}
    if todo_id:
        details["id"] = todo_id
    return TaskboardError(
        "DATASTORE_ERROR",
        f"Failed to {operation}; local changes were rolled back.",
        details,
    )


def _state_summary(state: TodoState) -> dict[str, Any]:
    return {
        "loading": state.loading,
        "connected": state.connected,
        "error": state.error,
        "users": list(state.users),
        "projects": [dict(project) for project in state.projects],
        "tags": [dict(tag) for tag in state.tags],
        "selected": sorted(state.bulk_actions.selected_todos),
        "show_bulk_actions": state.bulk_actions.show_bulk_actions,
    }


def filters_to_dict(state: TodoState) -> dict[str, Any]:
    filters = asdict(state.filters)
    filters["tag_filter"] = list(state.filters.tag_filter)
    return filters


@api_router.post("/todos:list")
def list_todos(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Return the filtered, sorted visible todos for the current team."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    workspace = get_request_workspace(request)
    state = workspace.store.get_state()
    visible = select_visible_todos(state.todos)
    todos = select_filtered_todos(
        visible, state.filters, workspace.user_name, state.custom_order
    )
    return success_response(
        {
            "todos": [todo.to_row() for todo in todos],
            "filters": filters_to_dict(state),
            "counts": select_filter_counts(visible, workspace.user_name),
            "has_active_advanced_filters": has_active_advanced_filters(state.filters),
            **_state_summary(state),
        }
    )


@api_router.post("/todos:filters")
def set_filters(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Update (or reset) the workspace filters."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set(FILTER_FIELDS) | {"reset", "clear_advanced"})

    workspace = get_request_workspace(request)
    if _optional_bool(payload, "reset", False):
        workspace.store.reset_filters()
    if _optional_bool(payload, "clear_advanced", False):
        workspace.store.clear_advanced_filters()
    changes = {key: value for key, value in payload.items() if key in FILTER_FIELDS}
    if changes:
        workspace.store.set_filters(**changes)

    state = workspace.store.get_state()
    return success_response(
        {
            "filters": filters_to_dict(state),
            "has_active_advanced_filters": has_active_advanced_filters(state.filters),
            "customers": select_unique_customers(select_visible_todos(state.todos)),
        }
    )


@api_router.post("/todos:create")
def create_todo(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Create a todo; optimistic in the store, rolled back on datastore failure."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(
        payload,
        {"text", "priority", "due_date", "assigned_to", "subtasks", "transcription"},
    )
    if "text" not in payload:
        raise TaskboardError(
            "MISSING_FIELDS",
            "text is required.",
            {"fields": ["text"]},
        )
    subtasks = payload.get("subtasks") or []
    if not isinstance(subtasks, list) or not all(isinstance(item, dict) for item in subtasks):
        raise TaskboardError(
            "INVALID_TYPE",
            "subtasks must be a list of objects.",
            {"subtasks": str(subtasks)},
        )

    workspace = get_request_workspace(request)
    todo = workspace.todos.create_todo(
        payload["text"],
        priority=payload.get("priority") or DEFAULT_PRIORITY,
        due_date=_optional_str(payload, "due_date"),
        assigned_to=_optional_str(payload, "assigned_to"),
        subtasks=subtasks,
        transcription=_optional_str(payload, "transcription"),
    )
    if todo is None:
        raise _rolled_back("create task")
    return success_response({"todo": todo.to_row()})


@api_router.post("/todos:update")
def update_todo(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id", "fields"})

    todo_id = _require_str(payload, "id")
    fields = payload.get("fields")
    if not isinstance(fields, dict) or not fields:
        raise TaskboardError(
            "INVALID_TYPE",
            "fields must be a non-empty object.",
            {"fields": str(fields)},
        )

    workspace = get_request_workspace(request)
    if not workspace.todos.update_todo(todo_id, fields):
        raise _rolled_back("update task", todo_id)
    todo = workspace.store.get_state().find(todo_id)
    return success_response({"todo": todo.to_row() if todo else None})


@api_router.post("/todos:delete")
def delete_todo(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id"})

    todo_id = _require_str(payload, "id")
    workspace = get_request_workspace(request)
    if not workspace.team.has_permission("can_delete_tasks"):
        raise TaskboardError(
            "PERMISSION_DENIED",
            "You do not have permission to delete tasks.",
            {"permission": "can_delete_tasks"},
        )
    if not workspace.todos.delete_todo(todo_id):
        raise _rolled_back("delete task", todo_id)
    return success_response({"id": todo_id, "deleted": True})


@api_router.post("/todos:toggle")
def toggle_todo(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id"})

    todo_id = _require_str(payload, "id")
    workspace = get_request_workspace(request)
    if not workspace.todos.toggle_complete(todo_id):
        raise _rolled_back("toggle task", todo_id)
    todo = workspace.store.get_state().find(todo_id)
    return success_response({"todo": todo.to_row() if todo else None})


@api_router.post("/todos:refresh")
def refresh_todos(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    workspace = get_request_workspace(request)
    refreshed = workspace.todos.refresh()
    state = workspace.store.get_state()
    return success_response(
        {"refreshed": refreshed, "count": len(state.todos), **_state_summary(state)}
    )


@api_router.post("/todos:reorder")
def reorder_todo(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Move a todo to ``new_index`` or one step ``up``/``down`` in the manual order."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id", "new_index", "direction"})

    todo_id = _require_str(payload, "id")
    new_index = payload.get("new_index")
    if new_index is not None and (not isinstance(new_index, int) or isinstance(new_index, bool)):
        raise TaskboardError(
            "INVALID_TYPE",
            "new_index must be an integer.",
            {"new_index": str(new_index)},
        )
    direction = _optional_str(payload, "direction")

    workspace = get_request_workspace(request)
    order = workspace.todos.reorder(todo_id, new_index=new_index, direction=direction)
    if order is None:
        raise _rolled_back("reorder task", todo_id)
    return success_response({"order": order})


@api_router.post("/todos:stats")
def todo_stats(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    workspace = get_request_workspace(request)
    state = workspace.store.get_state()
    return success_response({"stats": select_todo_stats(select_visible_todos(state.todos))})


@api_router.post("/todos:archived")
def archived_todos(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Completed todos untouched for 48 hours, optionally searched."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"query"})

    query = _optional_str(payload, "query") or ""
    workspace = get_request_workspace(request)
    archived = select_archived_todos(workspace.store.get_state().todos)
    return success_response(
        {"todos": [todo.to_row() for todo in filter_archived_todos(archived, query)]}
    )


@api_router.post("/todos:duplicates")
def find_duplicates(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"text", "threshold"})

    text = _require_str(payload, "text")
    threshold = payload.get("threshold", 0.3)
    if not isinstance(threshold, (int, float)) or isinstance(threshold, bool):
        raise TaskboardError(
            "INVALID_TYPE",
            "threshold must be a number.",
            {"threshold": str(threshold)},
        )

    workspace = get_request_workspace(request)
    if not should_check_for_duplicates(text):
        return success_response({"checked": False, "matches": []})
    matches = find_potential_duplicates(text, workspace.store.get_state().todos, threshold)
    return success_response(
        {"checked": True, "matches": [match.to_dict() for match in matches]}
    )
