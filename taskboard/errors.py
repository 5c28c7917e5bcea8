"""Structured error types for taskboard responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class ErrorResponse:
    """Serializable error payload returned by taskboard handlers."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class TaskboardError(RuntimeError):
    """Exception carrying a structured error response."""

    def __init__(
        self, code: str, message: str, details: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.error = ErrorResponse(
            code=code, message=message, details=dict(details or {})
        )

    @property
    def code(self) -> str:
        return self.error.code


class DatastoreError(RuntimeError):
    """Raised by datastore backends; ``code`` mirrors the Postgres/PostgREST code."""

    def __init__(
        self, code: str, message: str, details: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = dict(details or {})


UNDEFINED_TABLE = "42P01"
NO_ROWS = "PGRST116"

HTTP_STATUS_BY_CODE = {
    "PERMISSION_DENIED": 403,
    "TODO_NOT_FOUND": 404,
    "TEAM_NOT_FOUND": 404,
    "DATASTORE_ERROR": 502,
    "AI_REQUEST_FAILED": 502,
}


def status_for_error(error: ErrorResponse) -> int:
    return HTTP_STATUS_BY_CODE.get(error.code, 400)


def success_response(payload: dict[str, Any]) -> dict[str, Any]:
    """Wrap a successful response in the standard envelope."""
    return {"ok": True, "data": payload}


def error_response(error: ErrorResponse) -> dict[str, Any]:
    """Wrap an error response in the standard envelope."""
    return {"ok": False, "error": error.to_dict()}
