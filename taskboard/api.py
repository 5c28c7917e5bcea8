"""Endpoint registration."""

# ruff: noqa: F401

from __future__ import annotations

from fastapi import FastAPI

from taskboard.api_router import api_router

# Import modules to register routes with the shared router.
from taskboard import api_activity, api_ai, api_bulk, api_teams, api_todos

# Re-export endpoints for tests and direct imports.
from taskboard.api_activity import list_activity
from taskboard.api_ai import parse_subtasks
from taskboard.api_bulk import (
    bulk_assign,
    bulk_complete,
    bulk_delete,
    bulk_reschedule,
    bulk_set_priority,
    clear_selection,
    merge_todos,
    select_all,
    select_todo,
)
from taskboard.api_teams import current_team, list_teams, refresh_teams, switch_team
from taskboard.api_todos import (
    archived_todos,
    create_todo,
    delete_todo,
    find_duplicates,
    list_todos,
    refresh_todos,
    reorder_todo,
    set_filters,
    todo_stats,
    toggle_todo,
    update_todo,
)


def register_api_handlers(app: FastAPI) -> None:
    app.include_router(api_router)
