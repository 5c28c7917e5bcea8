"""Todo fetching, change subscription and optimistic CRUD for one workspace."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Mapping

from taskboard.activity import ActivityLogger
from taskboard.datastore import SUBSCRIBED, Channel, ChangeEvent, Datastore
from taskboard.errors import DatastoreError, TaskboardError
from taskboard.selectors import select_filtered_todos, select_visible_todos
from taskboard.store import TodoStore
from taskboard.todo_schema import (
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    Subtask,
    Todo,
    utc_now_iso,
    validate_due_date,
    validate_priority,
    validate_text,
    validate_updates,
    updates_to_row,
)

logger = logging.getLogger(__name__)

TODOS_TABLE = "todos"
USERS_TABLE = "users"
PROJECTS_TABLE = "projects"
TAGS_TABLE = "tags"
DEFAULT_USER_COLOR = "#0033A0"
FETCH_ERROR_MESSAGE = "Failed to connect to database."
REORDER_DIRECTIONS = ("up", "down")


def _todo_not_found(todo_id: str) -> TaskboardError:
    return TaskboardError("TODO_NOT_FOUND", "Task not found.", {"id": todo_id})


class TodoDataService:
    """Keeps the store in sync with the ``todos`` table.

    Writes are applied to the store first and reverted when the datastore
    call fails, so callers see the change immediately.
    """

    def __init__(
        self,
        datastore: Datastore,
        store: TodoStore,
        activity: ActivityLogger,
        user_id: str,
        user_name: str,
        team_id: str | None = None,
        *,
        team_required: bool = False,
    ) -> None:
        self._datastore = datastore
        self._store = store
        self._activity = activity
        self.user_id = user_id
        self.user_name = user_name
        self.team_id = team_id
        self.team_required = team_required
        self._channel: Channel | None = None
        self._active = False

    @property
    def channel_name(self) -> str:
        return f"todos-{self.team_id or 'global'}-{self.user_id}"

    @property
    def active(self) -> bool:
        return self._active

    @property
    def unscoped(self) -> bool:
        """True when team scoping is required but no team is selected."""
        return self.team_required and not self.team_id

    # -- loading -----------------------------------------------------------

    def fetch_todos(self) -> bool:
        if self.unscoped:
            self._store.set_todos([])
            self._store.set_projects([])
            self._store.set_tags([])
            self._store.set_error(None)
            self._store.set_loading(False)
            return True
        query = self._datastore.table(TODOS_TABLE).select("*").order("created_at", desc=True)
        if self.team_id:
            query = query.eq("team_id", self.team_id)
        try:
            rows = query.execute()
        except DatastoreError as exc:
            logger.error("Error fetching todos: %s", exc)
            self._store.set_error(FETCH_ERROR_MESSAGE)
            self._store.set_loading(False)
            return False

        try:
            user_rows = self._datastore.table(USERS_TABLE).select("name, color").order("name").execute()
        except DatastoreError as exc:
            logger.warning("Error fetching users: %s", exc)
            user_rows = []

        todos = [Todo.from_row(row) for row in rows]
        self._store.set_todos(todos)
        names: list[str] = []
        for name in [row.get("name") for row in user_rows] + [todo.created_by for todo in todos]:
            if name and name not in names:
                names.append(name)
        self._store.set_users(names)
        self._store.set_users_with_colors(
            {"name": row["name"], "color": row.get("color") or DEFAULT_USER_COLOR}
            for row in user_rows
            if row.get("name")
        )
        self._store.set_projects(self._fetch_team_rows(PROJECTS_TABLE))
        self._store.set_tags(self._fetch_team_rows(TAGS_TABLE))
        self._store.set_error(None)
        self._store.set_loading(False)
        return True

    def _fetch_team_rows(self, table: str) -> list[dict[str, Any]]:
        query = self._datastore.table(table).select("*").order("name")
        if self.team_id:
            query = query.eq("team_id", self.team_id)
        try:
            return query.execute()
        except DatastoreError as exc:
            logger.warning("Error fetching %s: %s", table, exc)
            return []

    def refresh(self) -> bool:
        self._store.set_loading(True)
        return self.fetch_todos()

    # -- change feed -------------------------------------------------------

    def start(self) -> None:
        if self._channel is not None:
            self.stop()
        if self.unscoped:
            logger.info("No team selected for %s; not subscribing to todos", self.user_id)
            return
        self._active = True
        channel = self._datastore.channel(self.channel_name)
        team_filter = ("team_id", self.team_id) if self.team_id else None
        channel.on("*", TODOS_TABLE, self._handle_change, filter=team_filter)
        self._channel = channel
        channel.subscribe(self._handle_status)

    def stop(self) -> None:
        self._active = False
        channel, self._channel = self._channel, None
        if channel is not None:
            self._datastore.remove_channel(channel)
        self._store.set_connected(False)

    def _handle_status(self, status: str) -> None:
        if self._active:
            self._store.set_connected(status == SUBSCRIBED)

    def _handle_change(self, event: ChangeEvent) -> None:
        if not self._active:
            return
        if event.event_type == "INSERT" and event.new is not None:
            todo = Todo.from_row(event.new)
            # Optimistic inserts echo back from the feed.
            if self._store.get_state().find(todo.id) is None:
                self._store.add_todo(todo)
        elif event.event_type == "UPDATE" and event.new is not None:
            todo = Todo.from_row(event.new)
            if self._store.get_state().find(todo.id) is not None:
                self._store.replace_todo(todo)
        elif event.event_type == "DELETE" and event.old is not None:
            self._store.delete_todo(str(event.old.get("id")))

    # -- writes ------------------------------------------------------------

    def create_todo(
        self,
        text: str,
        priority: str = DEFAULT_PRIORITY,
        due_date: str | None = None,
        assigned_to: str | None = None,
        subtasks: Iterable[Subtask | Mapping[str, Any]] | None = None,
        transcription: str | None = None,
    ) -> Todo | None:
        if self.unscoped:
            raise TaskboardError(
                "TEAM_NOT_FOUND",
                "Join or select a team before adding tasks.",
                {"user_id": self.user_id},
            )
        text = validate_text(text)
        validate_priority(priority)
        due_date = validate_due_date(due_date)
        subtasks = tuple(
            item if isinstance(item, Subtask) else Subtask.from_row(item)
            for item in subtasks or ()
        )
        todo = Todo(
            id=str(uuid.uuid4()),
            text=text,
            created_at=utc_now_iso(),
            created_by=self.user_name,
            priority=priority,
            due_date=due_date,
            assigned_to=assigned_to or None,
            subtasks=subtasks,
            transcription=transcription or None,
            team_id=self.team_id,
        )

        self._store.add_todo(todo)

        row: dict[str, Any] = {
            "id": todo.id,
            "text": todo.text,
            "completed": todo.completed,
            "created_at": todo.created_at,
            "created_by": todo.created_by,
        }
        if todo.status != DEFAULT_STATUS:
            row["status"] = todo.status
        if todo.priority != DEFAULT_PRIORITY:
            row["priority"] = todo.priority
        if todo.due_date:
            row["due_date"] = todo.due_date
        if todo.assigned_to:
            row["assigned_to"] = todo.assigned_to
        if todo.subtasks:
            row["subtasks"] = [subtask.to_row() for subtask in todo.subtasks]
        if todo.transcription:
            row["transcription"] = todo.transcription
        if todo.team_id:
            row["team_id"] = todo.team_id

        try:
            self._datastore.table(TODOS_TABLE).insert(row).execute()
        except DatastoreError as exc:
            logger.error("Error adding todo %s: %s", todo.id, exc)
            self._store.delete_todo(todo.id)
            return None

        self._activity.log(
            "task_created",
            self.user_name,
            todo.id,
            todo.text,
            {
                "priority": todo.priority,
                "assigned_to": todo.assigned_to,
                "due_date": todo.due_date,
                "has_subtasks": bool(todo.subtasks),
                "has_transcription": bool(todo.transcription),
            },
        )
        return todo

    def update_todo(self, todo_id: str, updates: Mapping[str, Any]) -> bool:
        current = self._store.get_state().find(todo_id)
        if current is None:
            raise _todo_not_found(todo_id)
        changes = validate_updates(updates)
        changes["updated_at"] = utc_now_iso()
        changes["updated_by"] = self.user_name

        self._store.update_todo(todo_id, changes)
        try:
            self._datastore.table(TODOS_TABLE).update(updates_to_row(changes)).eq(
                "id", todo_id
            ).execute()
        except DatastoreError as exc:
            logger.error("Error updating todo %s: %s", todo_id, exc)
            self._store.replace_todo(current)
            return False
        return True

    def delete_todo(self, todo_id: str) -> bool:
        state = self._store.get_state()
        current = state.find(todo_id)
        if current is None:
            raise _todo_not_found(todo_id)
        index = state.todos.index(current)

        self._store.delete_todo(todo_id)
        try:
            self._datastore.table(TODOS_TABLE).delete().eq("id", todo_id).execute()
        except DatastoreError as exc:
            logger.error("Error deleting todo %s: %s", todo_id, exc)
            self._store.restore_todos([(index, current)])
            return False

        self._activity.log("task_deleted", self.user_name, todo_id, current.text)
        return True

    def toggle_complete(self, todo_id: str) -> bool:
        current = self._store.get_state().find(todo_id)
        if current is None:
            raise _todo_not_found(todo_id)
        completed = not current.completed
        success = self.update_todo(
            todo_id, {"completed": completed, "status": "done" if completed else "todo"}
        )
        if success:
            self._activity.log(
                "task_completed" if completed else "task_reopened",
                self.user_name,
                todo_id,
                current.text,
            )
        return success

    # -- ordering ----------------------------------------------------------

    def _current_order(self) -> list[str]:
        state = self._store.get_state()
        visible = select_visible_todos(state.todos)
        if state.custom_order:
            known = set(state.custom_order)
            order = [todo_id for todo_id in state.custom_order if state.find(todo_id)]
            order.extend(todo.id for todo in visible if todo.id not in known)
            return order
        return [
            todo.id
            for todo in select_filtered_todos(
                visible, state.filters, self.user_name, state.custom_order
            )
        ]

    def reorder(
        self,
        todo_id: str,
        new_index: int | None = None,
        direction: str | None = None,
    ) -> list[str] | None:
        """Move a task within the manual order and persist ``display_order``.

        Returns the new order, or None when the datastore rejected the write
        (the previous order is restored).
        """
        state = self._store.get_state()
        current = state.find(todo_id)
        if current is None:
            raise _todo_not_found(todo_id)

        order = self._current_order()
        if todo_id not in order:
            order.append(todo_id)
        old_index = order.index(todo_id)
        if new_index is None:
            if direction not in REORDER_DIRECTIONS:
                raise TaskboardError(
                    "INVALID_REORDER",
                    "Provide new_index or a direction of 'up' or 'down'.",
                    {"direction": direction},
                )
            new_index = old_index - 1 if direction == "up" else old_index + 1
        new_index = max(0, min(new_index, len(order) - 1))

        order.pop(old_index)
        order.insert(new_index, todo_id)

        previous_order = state.custom_order
        previous_todos = {todo.id: todo for todo in state.todos}
        changed = [
            (index, item)
            for index, item in enumerate(order)
            if previous_todos.get(item) is not None
            and previous_todos[item].display_order != index
        ]

        self._store.set_custom_order(order)
        for index, item in changed:
            self._store.update_todo(item, {"display_order": index})

        timestamp = utc_now_iso()
        try:
            for index, item in changed:
                self._datastore.table(TODOS_TABLE).update(
                    {"display_order": index, "updated_at": timestamp}
                ).eq("id", item).execute()
        except DatastoreError as exc:
            logger.error("Error reordering todo %s: %s", todo_id, exc)
            self._store.set_custom_order(previous_order)
            for _, item in changed:
                self._store.replace_todo(previous_todos[item])
            return None

        self._activity.log(
            "task_reordered",
            self.user_name,
            todo_id,
            current.text,
            {"from": old_index, "to": new_index},
        )
        return order
