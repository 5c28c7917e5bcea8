"""Selection and bulk-operation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from taskboard.api_router import api_router
from taskboard.bulk_actions import get_date_offset
from taskboard.errors import TaskboardError, success_response
from taskboard.payload import (
    _ensure_payload_dict,
    _optional_bool,
    _optional_str,
    _reject_unknown_fields,
    _require_str,
    _require_str_list,
)
from taskboard.user_scope import get_request_workspace
from taskboard.workspace import Workspace


def _selection(workspace: Workspace) -> dict[str, Any]:
    bulk_state = workspace.store.get_state().bulk_actions
    return {
        "selected": sorted(bulk_state.selected_todos),
        "selected_count": len(bulk_state.selected_todos),
        "show_bulk_actions": bulk_state.show_bulk_actions,
    }


def _bulk_result(workspace: Workspace, operation: str, applied: bool) -> dict[str, Any]:
    if not applied:
        raise TaskboardError(
            "DATASTORE_ERROR",
            f"Bulk {operation} failed; local changes were rolled back.",
            {"operation": operation},
        )
    return success_response({"applied": True, **_selection(workspace)})


def _require_selection(workspace: Workspace) -> None:
    if workspace.bulk.selected_count == 0:
        raise TaskboardError(
            "EMPTY_SELECTION",
            "No tasks are selected.",
            {},
        )


@api_router.post("/bulk:select")
def select_todo(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Toggle one todo in the selection, or force it with ``selected``."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id", "selected"})

    todo_id = _require_str(payload, "id")
    selected = payload.get("selected")
    if selected is not None:
        selected = _optional_bool(payload, "selected", False)

    workspace = get_request_workspace(request)
    workspace.bulk.handle_select_todo(todo_id, selected)
    return success_response(_selection(workspace))


@api_router.post("/bulk:select_all")
def select_all(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"ids"})

    ids = _require_str_list(payload, "ids")
    workspace = get_request_workspace(request)
    workspace.bulk.select_all(ids)
    return success_response(_selection(workspace))


@api_router.post("/bulk:clear")
def clear_selection(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    workspace = get_request_workspace(request)
    workspace.bulk.clear_selection()
    return success_response(_selection(workspace))


@api_router.post("/bulk:delete")
def bulk_delete(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Delete the selection; ``confirm`` must be true."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"confirm"})

    confirmed = _optional_bool(payload, "confirm", False)
    workspace = get_request_workspace(request)
    _require_selection(workspace)
    if not confirmed:
        raise TaskboardError(
            "CONFIRMATION_REQUIRED",
            "Deleting tasks requires confirm=true.",
            {"count": workspace.bulk.selected_count},
        )
    return _bulk_result(workspace, "delete", workspace.bulk.bulk_delete(lambda count: True))


@api_router.post("/bulk:assign")
def bulk_assign(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"assigned_to"})

    assigned_to = _optional_str(payload, "assigned_to")
    workspace = get_request_workspace(request)
    _require_selection(workspace)
    return _bulk_result(workspace, "assign", workspace.bulk.bulk_assign(assigned_to))


@api_router.post("/bulk:complete")
def bulk_complete(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    workspace = get_request_workspace(request)
    _require_selection(workspace)
    return _bulk_result(workspace, "complete", workspace.bulk.bulk_complete())


@api_router.post("/bulk:reschedule")
def bulk_reschedule(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Set a due date on the selection, either explicit or ``days_from_today``."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"due_date", "days_from_today"})

    due_date = _optional_str(payload, "due_date")
    days = payload.get("days_from_today")
    if due_date is None:
        if not isinstance(days, int) or isinstance(days, bool):
            raise TaskboardError(
                "MISSING_FIELDS",
                "due_date or days_from_today is required.",
                {"fields": ["due_date", "days_from_today"]},
            )
        due_date = get_date_offset(days)

    workspace = get_request_workspace(request)
    _require_selection(workspace)
    return _bulk_result(workspace, "reschedule", workspace.bulk.bulk_reschedule(due_date))


@api_router.post("/bulk:set_priority")
def bulk_set_priority(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"priority"})

    priority = _require_str(payload, "priority")
    workspace = get_request_workspace(request)
    _require_selection(workspace)
    return _bulk_result(workspace, "set priority", workspace.bulk.bulk_set_priority(priority))


@api_router.post("/bulk:merge")
def merge_todos(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Merge the selected todos into ``primary_id``."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"primary_id"})

    primary_id = _require_str(payload, "primary_id")
    workspace = get_request_workspace(request)
    if not workspace.bulk.merge_todos(primary_id):
        raise TaskboardError(
            "DATASTORE_ERROR",
            "Merge failed; local changes were rolled back.",
            {"operation": "merge", "primary_id": primary_id},
        )
    todo = workspace.store.get_state().find(primary_id)
    return success_response({"todo": todo.to_row() if todo else None, **_selection(workspace)})
