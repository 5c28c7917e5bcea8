"""Payload validation helpers for taskboard endpoints."""

from __future__ import annotations

from typing import Any

from taskboard.errors import TaskboardError


def _ensure_payload_dict(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise TaskboardError(
            "INVALID_TYPE",
            "Payload must be an object.",
            {"type": type(payload).__name__},
        )
    return payload


def _reject_unknown_fields(payload: dict[str, Any], allowed_fields: set[str]) -> None:
    unknown_fields = sorted(set(payload) - allowed_fields)
    if unknown_fields:
        raise TaskboardError(
            "UNKNOWN_FIELD",
            "Unknown fields are not allowed.",
            {"fields": unknown_fields},
        )


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        raise TaskboardError(
            "MISSING_FIELDS",
            f"{key} is required.",
            {"fields": [key]},
        )
    if not isinstance(value, str) or not value.strip():
        raise TaskboardError(
            "INVALID_TYPE",
            f"{key} must be a non-empty string.",
            {key: str(value)},
        )
    return value.strip()


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TaskboardError(
            "INVALID_TYPE",
            f"{key} must be a string.",
            {key: str(value)},
        )
    return value


def _optional_bool(payload: dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise TaskboardError(
            "INVALID_TYPE",
            f"{key} must be a boolean.",
            {key: str(value)},
        )
    return value


def _require_str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if value is None:
        raise TaskboardError(
            "MISSING_FIELDS",
            f"{key} is required.",
            {"fields": [key]},
        )
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise TaskboardError(
            "INVALID_TYPE",
            f"{key} must be a list of strings.",
            {key: str(value)},
        )
    return list(value)
