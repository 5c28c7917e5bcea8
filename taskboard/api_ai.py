"""LLM-backed text parsing endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from taskboard.ai_parse import parse_content_to_subtasks
from taskboard.api_router import api_router
from taskboard.errors import success_response
from taskboard.payload import _ensure_payload_dict, _optional_str, _reject_unknown_fields
from taskboard.user_scope import get_request_user_id


@api_router.post("/ai:parse_subtasks")
def parse_subtasks(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Extract subtasks from an email, voicemail or message."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"content", "content_type", "parent_task_text"})

    get_request_user_id(request)
    result = parse_content_to_subtasks(
        payload.get("content"),
        content_type=_optional_str(payload, "content_type"),
        parent_task_text=_optional_str(payload, "parent_task_text"),
        client=request.app.state.workspaces.ai_client,
    )
    return success_response(result)
