"""Request-scoped user identity and workspace helpers."""

from __future__ import annotations

import re

from fastapi import Request

from taskboard.errors import TaskboardError
from taskboard.workspace import Workspace

USER_ID_HEADER = "X-Taskboard-User-Id"
USER_NAME_HEADER = "X-Taskboard-User-Name"
SERVICE_TOKEN_HEADER = "X-Taskboard-Service-Token"
AUTH_EXEMPT_PATHS = {"/health"}
ANONYMOUS_USER_ID = "anonymous"

_VALID_USER_ID = re.compile(r"^[A-Za-z0-9_]{3,128}$")


def normalize_user_id(raw_user_id: str) -> str:
    """Normalize and validate a user id from request context."""
    if not isinstance(raw_user_id, str):
        raise TaskboardError(
            "INVALID_USER_ID",
            "User id must be a string.",
            {"type": type(raw_user_id).__name__},
        )

    normalized = raw_user_id.strip().replace("-", "")
    if not normalized:
        raise TaskboardError(
            "AUTH_REQUIRED",
            "Missing required user identity header.",
            {"header": USER_ID_HEADER},
        )

    if not _VALID_USER_ID.fullmatch(normalized):
        raise TaskboardError(
            "INVALID_USER_ID",
            "User id contains invalid characters.",
            {"user_id": raw_user_id},
        )
    return normalized


def get_request_user_id(request: Request) -> str:
    """Read and cache the normalized user id from request state/headers."""
    cached = getattr(request.state, "user_id", None)
    if isinstance(cached, str) and cached.strip():
        normalized = normalize_user_id(cached)
        request.state.user_id = normalized
        return normalized

    raw_user_id = request.headers.get(USER_ID_HEADER)
    if raw_user_id is None:
        config = getattr(request.app.state, "config", None)
        if config is not None and not config.require_user_header:
            request.state.user_id = ANONYMOUS_USER_ID
            return ANONYMOUS_USER_ID
        raise TaskboardError(
            "AUTH_REQUIRED",
            "Missing required user identity header.",
            {"header": USER_ID_HEADER},
        )

    normalized = normalize_user_id(raw_user_id)
    request.state.user_id = normalized
    return normalized


def get_request_user_name(request: Request) -> str:
    """Display name used for created_by/updated_by; defaults to the user id."""
    raw_name = request.headers.get(USER_NAME_HEADER)
    if raw_name is not None and raw_name.strip():
        return raw_name.strip()
    return get_request_user_id(request)


def get_request_workspace(request: Request) -> Workspace:
    user_id = get_request_user_id(request)
    return request.app.state.workspaces.get(user_id, get_request_user_name(request))
