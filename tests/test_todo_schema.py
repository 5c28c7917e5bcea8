from datetime import datetime

import pytest

from taskboard.errors import TaskboardError
from taskboard.todo_schema import (
    MAX_ATTACHMENT_SIZE,
    Attachment,
    Subtask,
    Todo,
    coerce_updates,
    ensure_attachment_capacity,
    parse_timestamp,
    updates_to_row,
    validate_attachment,
    validate_due_date,
    validate_priority,
    validate_status,
    validate_text,
    validate_updates,
)


def _attachment(mime_type="application/pdf", size=1024):
    return Attachment(
        id="a1",
        file_name="quote.pdf",
        file_type="pdf",
        file_size=size,
        storage_path="todos/t1/quote.pdf",
        mime_type=mime_type,
        uploaded_by="Derrick",
        uploaded_at="2026-01-05T10:00:00+00:00",
    )


def test_from_row_derives_status_from_completion():
    done = Todo.from_row({"id": "1", "text": "Call", "completed": True})
    open_ = Todo.from_row({"id": "2", "text": "Call"})

    assert done.status == "done"
    assert open_.status == "todo"
    assert open_.priority == "medium"
    assert open_.subtasks == ()


def test_row_round_trip_keeps_nested_records():
    row = {
        "id": "1",
        "text": "Renew policy",
        "created_at": "2026-01-05T10:00:00+00:00",
        "created_by": "Derrick",
        "subtasks": [
            {"id": "s1", "text": "Pull quote", "completed": False, "priority": "high",
             "estimatedMinutes": 15}
        ],
        "tag_ids": ["t1", "t2"],
        "display_order": "3",
    }

    todo = Todo.from_row(row)

    assert todo.subtasks == (Subtask("s1", "Pull quote", False, "high", 15),)
    assert todo.tag_ids == ("t1", "t2")
    assert todo.display_order == 3
    serialized = todo.to_row()
    assert serialized["subtasks"][0]["estimatedMinutes"] == 15
    assert serialized["tag_ids"] == ["t1", "t2"]


def test_with_updates_returns_new_record():
    todo = Todo(id="1", text="Call", created_at="", created_by="Derrick")

    updated = todo.with_updates({"priority": "urgent", "merged_from": ["2"]})

    assert updated.priority == "urgent"
    assert updated.merged_from == ("2",)
    assert todo.priority == "medium"


def test_coerce_updates_rejects_unknown_fields():
    with pytest.raises(TaskboardError) as excinfo:
        coerce_updates({"colour": "red"})

    assert excinfo.value.code == "UNKNOWN_FIELD"


def test_updates_to_row_serializes_subtasks():
    row = updates_to_row({"subtasks": [Subtask("s1", "x")], "tag_ids": ("a",)})

    assert row == {
        "subtasks": [{"id": "s1", "text": "x", "completed": False, "priority": "medium"}],
        "tag_ids": ["a"],
    }


@pytest.mark.parametrize(
    "validator, value, code",
    [
        (validate_text, "   ", "INVALID_TEXT"),
        (validate_status, "blocked", "INVALID_STATUS"),
        (validate_priority, "critical", "INVALID_PRIORITY"),
        (validate_due_date, "next tuesday", "INVALID_DATE"),
    ],
)
def test_validators_raise_codes(validator, value, code):
    with pytest.raises(TaskboardError) as excinfo:
        validator(value)

    assert excinfo.value.code == code


def test_validate_text_strips():
    assert validate_text("  Call back  ") == "Call back"


def test_validate_due_date_allows_empty():
    assert validate_due_date("") is None
    assert validate_due_date("2026-03-01") == "2026-03-01"


def test_validate_attachment_checks_type_and_size():
    assert validate_attachment(_attachment()).mime_type == "application/pdf"

    with pytest.raises(TaskboardError) as excinfo:
        validate_attachment(_attachment(mime_type="application/x-msdownload"))
    assert excinfo.value.code == "INVALID_ATTACHMENT"

    with pytest.raises(TaskboardError):
        validate_attachment(_attachment(size=MAX_ATTACHMENT_SIZE + 1))


def test_attachment_capacity():
    ensure_attachment_capacity(10)
    with pytest.raises(TaskboardError) as excinfo:
        ensure_attachment_capacity(11)

    assert excinfo.value.code == "ATTACHMENT_LIMIT"


def test_validate_updates_checks_recurrence():
    with pytest.raises(TaskboardError) as excinfo:
        validate_updates({"recurrence": "hourly"})

    assert excinfo.value.code == "INVALID_RECURRENCE"
    assert validate_updates({"recurrence": None, "text": " x "}) == {
        "recurrence": None,
        "text": "x",
    }


def test_parse_timestamp_normalizes_to_naive_utc():
    assert parse_timestamp("2026-01-05T10:00:00+02:00") == datetime(2026, 1, 5, 8, 0)
    assert parse_timestamp("2026-01-05") == datetime(2026, 1, 5)
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None


@pytest.mark.parametrize("field", ["id", "created_at", "created_by", "team_id", "merged_from"])
def test_validate_updates_rejects_immutable_fields(field):
    with pytest.raises(TaskboardError) as excinfo:
        validate_updates({field: "other", "notes": "x"})

    assert excinfo.value.code == "INVALID_FIELD"
    assert excinfo.value.error.details == {"fields": [field]}


@pytest.mark.parametrize(
    "updates",
    [
        {"completed": "yes"},
        {"notes": 5},
        {"assigned_to": ["Sefra"]},
        {"transcription": {"text": "hi"}},
        {"display_order": "3"},
        {"tag_ids": "tag-1"},
        {"subtasks": "call back"},
        {"subtasks": ["call back"]},
        {"attachments": [1, 2]},
        {"subtasks": [{"text": "Call", "estimatedMinutes": "soon"}]},
    ],
)
def test_validate_updates_rejects_wrong_types(updates):
    with pytest.raises(TaskboardError) as excinfo:
        validate_updates(updates)

    assert excinfo.value.code == "INVALID_FIELD"


def test_validate_updates_accepts_typed_values():
    changes = validate_updates(
        {
            "completed": True,
            "notes": None,
            "assigned_to": "Sefra",
            "display_order": 2,
            "tag_ids": ["tag-1"],
            "subtasks": [{"id": "s1", "text": "Call", "estimatedMinutes": 15}],
        }
    )

    assert changes["completed"] is True
    assert changes["tag_ids"] == ("tag-1",)
    assert changes["subtasks"] == (Subtask(id="s1", text="Call", estimated_minutes=15),)
