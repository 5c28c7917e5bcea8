"""Selection-driven bulk operations with optimistic apply and rollback."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

from taskboard.activity import ActivityLogger
from taskboard.datastore import Datastore
from taskboard.errors import DatastoreError, TaskboardError
from taskboard.store import TodoStore
from taskboard.todo_data import TODOS_TABLE
from taskboard.todo_schema import (
    DEFAULT_PRIORITY,
    PRIORITY_ORDER,
    Todo,
    ensure_attachment_capacity,
    parse_timestamp,
    updates_to_row,
    validate_due_date,
    validate_priority,
)

logger = logging.getLogger(__name__)

PermissionCheck = Callable[[str], bool]
ConfirmCallback = Callable[[int], bool]
DetailsBuilder = Callable[[Todo], "dict[str, Any] | None"]


def get_date_offset(days: int, today: date | None = None) -> str:
    """ISO date ``days`` from today (UTC)."""
    base = today or datetime.now(timezone.utc).date()
    return (base + timedelta(days=days)).isoformat()


def _created_label(todo: Todo) -> str:
    created = parse_timestamp(todo.created_at)
    return created.date().isoformat() if created is not None else "unknown date"


def build_merged_fields(
    primary: Todo, secondaries: list[Todo], merged_at: datetime | None = None
) -> dict[str, Any]:
    """Field values of the primary task after absorbing ``secondaries``."""
    merged_at = merged_at or datetime.now(timezone.utc)
    notes = [primary.notes, *(todo.notes for todo in secondaries)]
    notes.append(f"\n--- Merged Tasks ({merged_at.strftime('%Y-%m-%d %H:%M UTC')}) ---")
    notes.extend(f'• "{todo.text}" (created {_created_label(todo)})' for todo in secondaries)

    attachments = primary.attachments + tuple(
        attachment for todo in secondaries for attachment in todo.attachments
    )
    ensure_attachment_capacity(len(attachments))

    priority = min(
        (todo.priority or DEFAULT_PRIORITY for todo in (primary, *secondaries)),
        key=lambda value: PRIORITY_ORDER.get(value, PRIORITY_ORDER[DEFAULT_PRIORITY]),
    )
    return {
        "text": f"{primary.text} [+{len(secondaries)} merged]" if secondaries else primary.text,
        "notes": "\n".join(note for note in notes if note),
        "attachments": attachments,
        "subtasks": primary.subtasks
        + tuple(subtask for todo in secondaries for subtask in todo.subtasks),
        "priority": priority,
        "merged_from": primary.merged_from + tuple(todo.id for todo in secondaries),
    }


class BulkActions:
    def __init__(
        self,
        datastore: Datastore,
        store: TodoStore,
        activity: ActivityLogger,
        user_name: str,
        permission_check: PermissionCheck | None = None,
    ) -> None:
        self._datastore = datastore
        self._store = store
        self._activity = activity
        self.user_name = user_name
        self._permission_check = permission_check

    # -- selection ---------------------------------------------------------

    @property
    def selected_count(self) -> int:
        return len(self._store.get_state().bulk_actions.selected_todos)

    def get_selected_todos(self) -> list[Todo]:
        state = self._store.get_state()
        selected = state.bulk_actions.selected_todos
        return [todo for todo in state.todos if todo.id in selected]

    def handle_select_todo(self, todo_id: str, selected: bool | None = None) -> None:
        is_selected = todo_id in self._store.get_state().bulk_actions.selected_todos
        if selected is None or selected != is_selected:
            self._store.toggle_todo_selection(todo_id)

    def select_all(self, visible_ids: Iterable[str]) -> None:
        self._store.select_all_todos(visible_ids)

    def clear_selection(self) -> None:
        self._store.clear_selection()

    # -- operations --------------------------------------------------------

    def _restore_fields(self, originals: list[Todo], keys: Iterable[str]) -> None:
        keys = list(keys)
        for todo in originals:
            self._store.update_todo(todo.id, {key: getattr(todo, key) for key in keys})

    def _bulk_update(
        self,
        label: str,
        values: Mapping[str, Any],
        activity_action: str,
        details_for: DetailsBuilder,
    ) -> bool:
        originals = self.get_selected_todos()
        if not originals:
            return False
        ids = [todo.id for todo in originals]

        for todo_id in ids:
            self._store.update_todo(todo_id, values)
        self._store.clear_selection()

        try:
            self._datastore.table(TODOS_TABLE).update(updates_to_row(values)).in_(
                "id", ids
            ).execute()
        except DatastoreError as exc:
            logger.error("Error bulk %s for %d tasks: %s", label, len(ids), exc)
            self._restore_fields(originals, values)
            return False

        for todo in originals:
            details = details_for(todo)
            if details is None:
                continue
            self._activity.log(
                activity_action,
                self.user_name,
                todo.id,
                todo.text,
                {**details, "bulk_action": True},
            )
        return True

    def bulk_delete(self, confirm: ConfirmCallback | None = None) -> bool:
        if self._permission_check is not None and not self._permission_check("can_delete_tasks"):
            raise TaskboardError(
                "PERMISSION_DENIED",
                "You do not have permission to delete tasks.",
                {"permission": "can_delete_tasks"},
            )
        state = self._store.get_state()
        selected = state.bulk_actions.selected_todos
        removed = [(index, todo) for index, todo in enumerate(state.todos) if todo.id in selected]
        if not removed:
            return False
        if confirm is not None and not confirm(len(removed)):
            return False
        ids = [todo.id for _, todo in removed]

        for todo_id in ids:
            self._store.delete_todo(todo_id)
        self._store.clear_selection()

        try:
            self._datastore.table(TODOS_TABLE).delete().in_("id", ids).execute()
        except DatastoreError as exc:
            logger.error("Error bulk deleting %d tasks: %s", len(ids), exc)
            self._store.restore_todos(removed)
            return False

        for _, todo in removed:
            self._activity.log(
                "task_deleted", self.user_name, todo.id, todo.text, {"bulk_action": True}
            )
        return True

    def bulk_assign(self, assigned_to: str | None) -> bool:
        return self._bulk_update(
            "assigning",
            {"assigned_to": assigned_to or None},
            "assigned_to_changed",
            lambda todo: {"from": todo.assigned_to, "to": assigned_to or None},
        )

    def bulk_complete(self) -> bool:
        return self._bulk_update(
            "completing",
            {"completed": True, "status": "done"},
            "task_completed",
            lambda todo: None if todo.completed else {},
        )

    def bulk_reschedule(self, due_date: str) -> bool:
        due_date = validate_due_date(due_date)
        return self._bulk_update(
            "rescheduling",
            {"due_date": due_date},
            "due_date_changed",
            lambda todo: {"from": todo.due_date, "to": due_date},
        )

    def bulk_set_priority(self, priority: str) -> bool:
        validate_priority(priority)
        return self._bulk_update(
            "setting priority",
            {"priority": priority},
            "priority_changed",
            lambda todo: {"from": todo.priority, "to": priority},
        )

    def merge_todos(self, primary_id: str) -> bool:
        state = self._store.get_state()
        selected = state.bulk_actions.selected_todos
        to_merge = [(index, todo) for index, todo in enumerate(state.todos) if todo.id in selected]
        if len(to_merge) < 2:
            raise TaskboardError(
                "INVALID_MERGE",
                "Select at least two tasks to merge.",
                {"selected": len(to_merge)},
            )
        primary = next((todo for _, todo in to_merge if todo.id == primary_id), None)
        if primary is None:
            raise TaskboardError(
                "INVALID_MERGE",
                "The primary task must be part of the selection.",
                {"primary_id": primary_id},
            )
        secondaries = [(index, todo) for index, todo in to_merge if todo.id != primary_id]
        secondary_todos = [todo for _, todo in secondaries]
        secondary_ids = [todo.id for todo in secondary_todos]
        merged = build_merged_fields(primary, secondary_todos)

        self._store.update_todo(primary_id, merged)
        for todo_id in secondary_ids:
            self._store.delete_todo(todo_id)
        self._store.clear_selection()

        def rollback() -> None:
            self._store.replace_todo(primary)
            self._store.restore_todos(secondaries)

        try:
            self._datastore.table(TODOS_TABLE).update(updates_to_row(merged)).eq(
                "id", primary_id
            ).execute()
        except DatastoreError as exc:
            logger.error("Error updating merged todo %s: %s", primary_id, exc)
            rollback()
            return False

        try:
            self._datastore.table(TODOS_TABLE).delete().in_("id", secondary_ids).execute()
        except DatastoreError as exc:
            logger.error("Error deleting merged todos %s: %s", secondary_ids, exc)
            original = updates_to_row({key: getattr(primary, key) for key in merged})
            try:
                self._datastore.table(TODOS_TABLE).update(original).eq("id", primary_id).execute()
            except DatastoreError as restore_exc:
                logger.error("Failed to restore merged todo %s: %s", primary_id, restore_exc)
            rollback()
            return False

        self._activity.log(
            "tasks_merged",
            self.user_name,
            primary_id,
            merged["text"],
            {"merged_count": len(secondary_ids), "merged_ids": secondary_ids},
        )
        return True
