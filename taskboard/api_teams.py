"""Team (tenant) endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from taskboard.api_router import api_router
from taskboard.errors import success_response
from taskboard.payload import _ensure_payload_dict, _reject_unknown_fields, _require_str
from taskboard.user_scope import get_request_workspace


@api_router.post("/teams:list")
def list_teams(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    team = get_request_workspace(request).team
    return success_response(
        {
            "teams": [membership.to_dict() for membership in team.teams],
            "current_team_id": team.current_team_id,
            "error": team.error,
        }
    )


@api_router.post("/teams:current")
def current_team(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())

    return success_response(get_request_workspace(request).team.to_dict())


@api_router.post("/teams:switch")
def switch_team(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Switch the workspace to another team the user belongs to."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"team_id"})

    team_id = _require_str(payload, "team_id")
    workspace = get_request_workspace(request)
    workspace.team.switch_team(team_id)
    return success_response(workspace.team.to_dict())


@api_router.post("/teams:refresh")
def refresh_teams(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Reload memberships; ``retry`` also clears a previous load error."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"retry"})

    workspace = get_request_workspace(request)
    if payload.get("retry") is True:
        workspace.team.retry()
    else:
        workspace.team.refresh_teams()
    return success_response(workspace.team.to_dict())
