"""Task (todo) records, enumerations and validation."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from typing import Any, Mapping

from taskboard.errors import TaskboardError

TODO_STATUSES = ("todo", "in_progress", "done")
TODO_PRIORITIES = ("low", "medium", "high", "urgent")
RECURRENCE_PATTERNS = ("daily", "weekly", "monthly")
SORT_OPTIONS = ("created", "due_date", "priority", "alphabetical", "custom", "urgency")
QUICK_FILTERS = ("all", "my_tasks", "due_today", "overdue")
VIEW_MODES = ("list", "kanban")

DEFAULT_PRIORITY = "medium"
DEFAULT_STATUS = "todo"

PRIORITY_ORDER = {
    "urgent": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
}

ACTIVITY_ACTIONS = frozenset(
    {
        "task_created",
        "task_updated",
        "task_deleted",
        "task_completed",
        "task_reopened",
        "status_changed",
        "priority_changed",
        "assigned_to_changed",
        "due_date_changed",
        "subtask_added",
        "subtask_completed",
        "subtask_deleted",
        "notes_updated",
        "template_created",
        "template_used",
        "attachment_added",
        "attachment_removed",
        "tasks_merged",
        "task_reordered",
    }
)

ALLOWED_ATTACHMENT_TYPES: dict[str, tuple[str, str]] = {
    "application/pdf": ("pdf", "document"),
    "application/msword": ("doc", "document"),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (
        "docx",
        "document",
    ),
    "application/vnd.ms-excel": ("xls", "document"),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (
        "xlsx",
        "document",
    ),
    "application/vnd.ms-powerpoint": ("ppt", "document"),
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": (
        "pptx",
        "document",
    ),
    "text/plain": ("txt", "document"),
    "text/csv": ("csv", "document"),
    "image/jpeg": ("jpg", "image"),
    "image/png": ("png", "image"),
    "image/gif": ("gif", "image"),
    "image/webp": ("webp", "image"),
    "image/svg+xml": ("svg", "image"),
    "audio/mpeg": ("mp3", "audio"),
    "audio/wav": ("wav", "audio"),
    "audio/ogg": ("ogg", "audio"),
    "audio/webm": ("webm", "audio"),
    "audio/mp4": ("m4a", "audio"),
    "audio/x-m4a": ("m4a", "audio"),
    "video/mp4": ("mp4", "video"),
    "video/webm": ("webm", "video"),
    "video/quicktime": ("mov", "video"),
    "application/zip": ("zip", "archive"),
    "application/x-rar-compressed": ("rar", "archive"),
}

MAX_ATTACHMENT_SIZE = 25 * 1024 * 1024
MAX_ATTACHMENTS_PER_TODO = 10


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Subtask:
    id: str
    text: str
    completed: bool = False
    priority: str = DEFAULT_PRIORITY
    estimated_minutes: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Subtask":
        estimated = row.get("estimatedMinutes", row.get("estimated_minutes"))
        return cls(
            id=str(row.get("id") or ""),
            text=str(row.get("text") or ""),
            completed=bool(row.get("completed", False)),
            priority=row.get("priority") or DEFAULT_PRIORITY,
            estimated_minutes=int(estimated) if estimated is not None else None,
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "priority": self.priority,
        }
        if self.estimated_minutes is not None:
            row["estimatedMinutes"] = self.estimated_minutes
        return row


@dataclass(frozen=True)
class Attachment:
    id: str
    file_name: str
    file_type: str
    file_size: int
    storage_path: str
    mime_type: str
    uploaded_by: str
    uploaded_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Attachment":
        return cls(
            id=str(row.get("id") or ""),
            file_name=str(row.get("file_name") or ""),
            file_type=str(row.get("file_type") or ""),
            file_size=int(row.get("file_size") or 0),
            storage_path=str(row.get("storage_path") or ""),
            mime_type=str(row.get("mime_type") or ""),
            uploaded_by=str(row.get("uploaded_by") or ""),
            uploaded_at=str(row.get("uploaded_at") or ""),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "storage_path": self.storage_path,
            "mime_type": self.mime_type,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": self.uploaded_at,
        }


@dataclass(frozen=True)
class Todo:
    """A single task row.

    Instances are immutable; store mutations replace them, so a reference
    captured before an optimistic change still describes the prior state.
    """

    id: str
    text: str
    created_at: str
    created_by: str
    completed: bool = False
    status: str = DEFAULT_STATUS
    priority: str = DEFAULT_PRIORITY
    assigned_to: str | None = None
    due_date: str | None = None
    notes: str | None = None
    recurrence: str | None = None
    updated_at: str | None = None
    updated_by: str | None = None
    subtasks: tuple[Subtask, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    transcription: str | None = None
    merged_from: tuple[str, ...] = ()
    project_id: str | None = None
    tag_ids: tuple[str, ...] = ()
    team_id: str | None = None
    display_order: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Todo":
        completed = bool(row.get("completed", False))
        status = row.get("status") or ("done" if completed else DEFAULT_STATUS)
        display_order = row.get("display_order")
        return cls(
            id=str(row["id"]),
            text=str(row.get("text") or ""),
            created_at=str(row.get("created_at") or ""),
            created_by=str(row.get("created_by") or ""),
            completed=completed,
            status=status,
            priority=row.get("priority") or DEFAULT_PRIORITY,
            assigned_to=row.get("assigned_to") or None,
            due_date=row.get("due_date") or None,
            notes=row.get("notes"),
            recurrence=row.get("recurrence"),
            updated_at=row.get("updated_at"),
            updated_by=row.get("updated_by"),
            subtasks=tuple(Subtask.from_row(item) for item in row.get("subtasks") or []),
            attachments=tuple(
                Attachment.from_row(item) for item in row.get("attachments") or []
            ),
            transcription=row.get("transcription"),
            merged_from=tuple(row.get("merged_from") or ()),
            project_id=row.get("project_id"),
            tag_ids=tuple(row.get("tag_ids") or ()),
            team_id=row.get("team_id"),
            display_order=int(display_order) if display_order is not None else None,
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "subtasks":
                value = [subtask.to_row() for subtask in value]
            elif item.name == "attachments":
                value = [attachment.to_row() for attachment in value]
            elif isinstance(value, tuple):
                value = list(value)
            row[item.name] = value
        return row

    def with_updates(self, updates: Mapping[str, Any]) -> "Todo":
        return replace(self, **coerce_updates(updates))


TODO_FIELDS = frozenset(item.name for item in fields(Todo))
IMMUTABLE_TODO_FIELDS = frozenset({"id", "created_at", "created_by", "team_id", "merged_from"})
_OPTIONAL_STR_FIELDS = ("assigned_to", "notes", "transcription", "project_id", "updated_by")
_RECORD_LIST_FIELDS = {"subtasks": Subtask, "attachments": Attachment}


def coerce_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize a partial update (row-shaped or record-shaped) to record values."""
    unknown = sorted(set(updates) - TODO_FIELDS)
    if unknown:
        raise TaskboardError(
            "UNKNOWN_FIELD",
            "Unknown todo fields.",
            {"fields": unknown},
        )
    coerced: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "subtasks":
            value = tuple(
                item if isinstance(item, Subtask) else Subtask.from_row(item)
                for item in value or ()
            )
        elif key == "attachments":
            value = tuple(
                item if isinstance(item, Attachment) else Attachment.from_row(item)
                for item in value or ()
            )
        elif key in {"merged_from", "tag_ids"}:
            value = tuple(value or ())
        coerced[key] = value
    return coerced


def updates_to_row(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Serialize a partial update for the datastore."""
    row: dict[str, Any] = {}
    for key, value in coerce_updates(updates).items():
        if key in {"subtasks", "attachments"}:
            value = [item.to_row() for item in value]
        elif isinstance(value, tuple):
            value = list(value)
        row[key] = value
    return row


def validate_text(text: Any) -> str:
    if not isinstance(text, str) or not text.strip():
        raise TaskboardError(
            "INVALID_TEXT",
            "Task text must be a non-empty string.",
            {"text": str(text)},
        )
    return text.strip()


def validate_status(status: Any) -> str:
    if status not in TODO_STATUSES:
        raise TaskboardError(
            "INVALID_STATUS",
            "Unsupported status.",
            {"status": str(status), "allowed": list(TODO_STATUSES)},
        )
    return status


def validate_priority(priority: Any) -> str:
    if priority not in TODO_PRIORITIES:
        raise TaskboardError(
            "INVALID_PRIORITY",
            "Unsupported priority.",
            {"priority": str(priority), "allowed": list(TODO_PRIORITIES)},
        )
    return priority


def validate_due_date(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or parse_timestamp(value) is None:
        raise TaskboardError(
            "INVALID_DATE",
            "due_date must be an ISO date or date-time.",
            {"due_date": str(value)},
        )
    return value


def validate_attachment(attachment: Attachment) -> Attachment:
    if attachment.mime_type not in ALLOWED_ATTACHMENT_TYPES:
        raise TaskboardError(
            "INVALID_ATTACHMENT",
            "Attachment type is not allowed.",
            {"mime_type": attachment.mime_type},
        )
    if attachment.file_size < 0 or attachment.file_size > MAX_ATTACHMENT_SIZE:
        raise TaskboardError(
            "INVALID_ATTACHMENT",
            "Attachment exceeds the maximum size.",
            {"file_size": attachment.file_size, "max": MAX_ATTACHMENT_SIZE},
        )
    return attachment


def ensure_attachment_capacity(count: int) -> None:
    if count > MAX_ATTACHMENTS_PER_TODO:
        raise TaskboardError(
            "ATTACHMENT_LIMIT",
            "Too many attachments for one task.",
            {"count": count, "max": MAX_ATTACHMENTS_PER_TODO},
        )


def _invalid_field(key: str, message: str, value: Any) -> TaskboardError:
    return TaskboardError("INVALID_FIELD", message, {"field": key, "value": str(value)})


def _check_update_types(updates: Mapping[str, Any]) -> None:
    if "completed" in updates and not isinstance(updates["completed"], bool):
        raise _invalid_field("completed", "completed must be a boolean.", updates["completed"])
    for key in _OPTIONAL_STR_FIELDS:
        if key in updates and updates[key] is not None and not isinstance(updates[key], str):
            raise _invalid_field(key, f"{key} must be a string or null.", updates[key])
    if "display_order" in updates:
        value = updates["display_order"]
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise _invalid_field("display_order", "display_order must be an integer.", value)
    if "tag_ids" in updates:
        value = updates["tag_ids"]
        if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
            raise _invalid_field("tag_ids", "tag_ids must be a list of strings.", value)
    for key, record in _RECORD_LIST_FIELDS.items():
        if key not in updates:
            continue
        value = updates[key]
        if not isinstance(value, (list, tuple)) or not all(
            isinstance(item, (Mapping, record)) for item in value
        ):
            raise _invalid_field(key, f"{key} must be a list of objects.", value)


def validate_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial update before it reaches the store or datastore.

    Identity, ownership and tenancy fields cannot be changed this way.
    """
    immutable = sorted(set(updates) & IMMUTABLE_TODO_FIELDS)
    if immutable:
        raise TaskboardError(
            "INVALID_FIELD",
            "These todo fields cannot be updated.",
            {"fields": immutable},
        )
    _check_update_types(updates)
    try:
        coerced = coerce_updates(updates)
    except (TypeError, ValueError) as exc:
        raise TaskboardError(
            "INVALID_FIELD",
            "Subtask or attachment values have the wrong type.",
            {"reason": str(exc)},
        ) from exc
    if "text" in coerced:
        coerced["text"] = validate_text(coerced["text"])
    if "status" in coerced:
        validate_status(coerced["status"])
    if "priority" in coerced:
        validate_priority(coerced["priority"])
    if "due_date" in coerced:
        coerced["due_date"] = validate_due_date(coerced["due_date"])
    if "recurrence" in coerced and coerced["recurrence"] not in (None, *RECURRENCE_PATTERNS):
        raise TaskboardError(
            "INVALID_RECURRENCE",
            "Unsupported recurrence pattern.",
            {"recurrence": str(coerced["recurrence"])},
        )
    if "attachments" in coerced:
        ensure_attachment_capacity(len(coerced["attachments"]))
        for attachment in coerced["attachments"]:
            validate_attachment(attachment)
    return coerced


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO date or date-time into a naive datetime (UTC for aware input)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(value[:10]), datetime.min.time())
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
