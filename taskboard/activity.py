"""Activity log writes and reads against the ``activity_log`` table."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from taskboard.datastore import Datastore
from taskboard.errors import DatastoreError, TaskboardError
from taskboard.todo_schema import ACTIVITY_ACTIONS

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "activity_log"
DEFAULT_ACTIVITY_LIMIT = 50


def _build_activity_entry(
    action: str,
    user_name: str,
    todo_id: str | None,
    todo_text: str | None,
    details: Mapping[str, Any] | None,
    team_id: str | None,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "action": action,
        "todo_id": todo_id or None,
        "todo_text": todo_text or None,
        "user_name": user_name,
        "details": dict(details or {}),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    if team_id:
        entry["team_id"] = team_id
    return entry


class ActivityLogger:
    """Audit trail for one workspace; scoped to the active team when there is one."""

    def __init__(
        self,
        datastore: Datastore,
        team_id: str | None = None,
        *,
        team_required: bool = False,
    ) -> None:
        self._datastore = datastore
        self.team_id = team_id
        self.team_required = team_required

    def log(
        self,
        action: str,
        user_name: str,
        todo_id: str | None = None,
        todo_text: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        if action not in ACTIVITY_ACTIONS:
            raise TaskboardError(
                "INVALID_ACTIVITY",
                "Unsupported activity action.",
                {"action": action},
            )
        if not user_name:
            raise TaskboardError(
                "MISSING_FIELDS",
                "user_name is required to log activity.",
                {"fields": ["user_name"]},
            )
        entry = _build_activity_entry(action, user_name, todo_id, todo_text, details, self.team_id)
        try:
            rows = self._datastore.table(ACTIVITY_TABLE).insert(entry).execute()
        except DatastoreError as exc:
            # Audit failures never undo the operation that triggered them.
            logger.error("Failed to log activity %s for %s: %s", action, todo_id, exc)
            return None
        return rows[0] if rows else entry

    def read_entries(
        self, limit: int = DEFAULT_ACTIVITY_LIMIT, todo_id: str | None = None
    ) -> list[dict[str, Any]]:
        if limit < 1:
            raise TaskboardError(
                "INVALID_LIMIT",
                "limit must be a positive integer.",
                {"limit": limit},
            )
        if self.team_required and not self.team_id:
            return []
        query = (
            self._datastore.table(ACTIVITY_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
        )
        if todo_id:
            query = query.eq("todo_id", todo_id)
        if self.team_id:
            query = query.eq("team_id", self.team_id)
        try:
            return query.execute()
        except DatastoreError as exc:
            logger.error("Failed to read activity: %s", exc)
            raise TaskboardError(
                "DATASTORE_ERROR",
                "Could not read the activity log.",
                {"code": exc.code},
            ) from exc
