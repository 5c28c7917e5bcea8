"""Activity log endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from taskboard.activity import DEFAULT_ACTIVITY_LIMIT
from taskboard.api_router import api_router
from taskboard.errors import TaskboardError, success_response
from taskboard.payload import _ensure_payload_dict, _optional_str, _reject_unknown_fields
from taskboard.user_scope import get_request_workspace


@api_router.post("/activity:list")
def list_activity(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Read activity entries for the current team, newest first."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"limit", "todo_id"})

    limit = payload.get("limit", DEFAULT_ACTIVITY_LIMIT)
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        raise TaskboardError(
            "INVALID_TYPE",
            "limit must be a positive integer.",
            {"limit": str(limit)},
        )
    todo_id = _optional_str(payload, "todo_id")

    workspace = get_request_workspace(request)
    entries = workspace.activity.read_entries(limit=limit, todo_id=todo_id)
    return success_response({"entries": entries})
