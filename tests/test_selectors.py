from datetime import date, datetime, timezone

from taskboard.selectors import (
    create_selector,
    filter_archived_todos,
    has_active_advanced_filters,
    is_due_today,
    is_overdue,
    select_archived_todos,
    select_filter_counts,
    select_filtered_todos,
    select_todo_stats,
    select_unique_customers,
    select_visible_todos,
    sort_todos,
)
from taskboard.store import DateRange, TodoFilters
from taskboard.todo_schema import Attachment, Todo

TODAY = date(2026, 1, 10)
NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


def _todo(todo_id, text="task", created_at="2026-01-01T09:00:00+00:00", **fields):
    return Todo(id=todo_id, text=text, created_at=created_at, created_by="Derrick", **fields)


def _attachment():
    return Attachment(
        id="a1",
        file_name="quote.pdf",
        file_type="pdf",
        file_size=10,
        storage_path="todos/quote.pdf",
        mime_type="application/pdf",
        uploaded_by="Derrick",
        uploaded_at="2026-01-01T09:00:00+00:00",
    )


def _ids(todos):
    return [todo.id for todo in todos]


def test_due_helpers():
    assert is_due_today("2026-01-10", TODAY) is True
    assert is_due_today(None, TODAY) is False
    assert is_overdue("2026-01-09", today=TODAY) is True
    assert is_overdue("2026-01-09", completed=True, today=TODAY) is False
    assert is_overdue("2026-01-10", today=TODAY) is False


def test_urgency_sort_orders_by_completion_priority_then_due():
    todos = [
        _todo("done", priority="urgent", completed=True),
        _todo("low", priority="low"),
        _todo("high-later", priority="high", due_date="2026-01-20"),
        _todo("high-overdue", priority="high", due_date="2026-01-05"),
        _todo("high-today", priority="high", due_date="2026-01-10"),
        _todo("high-none", priority="high"),
    ]

    result = sort_todos(todos, "urgency", today=TODAY)

    assert _ids(result) == [
        "high-overdue",
        "high-today",
        "high-later",
        "high-none",
        "low",
        "done",
    ]


def test_other_sort_options():
    todos = [
        _todo("b", text="beta", created_at="2026-01-02T00:00:00+00:00", due_date="2026-01-15"),
        _todo("a", text="Alpha", created_at="2026-01-03T00:00:00+00:00", priority="urgent"),
        _todo("c", text="gamma", created_at="2026-01-01T00:00:00+00:00", due_date="2026-01-12"),
    ]

    assert _ids(sort_todos(todos, "created")) == ["a", "b", "c"]
    assert _ids(sort_todos(todos, "alphabetical")) == ["a", "b", "c"]
    assert _ids(sort_todos(todos, "due_date")) == ["c", "b", "a"]
    assert _ids(sort_todos(todos, "priority")) == ["a", "b", "c"]
    assert _ids(sort_todos(todos, "custom", ["c", "a"])) == ["c", "a", "b"]
    assert _ids(sort_todos(todos, "custom")) == ["b", "a", "c"]


def test_search_matches_text_people_and_digits():
    todos = [
        _todo("1", text="Renewal for Acme", notes="policy 48213"),
        _todo("2", text="Call back", assigned_to="Sefra"),
        _todo("3", text="Unrelated"),
    ]

    assert _ids(select_filtered_todos(todos, TodoFilters(search_query="sefra"), "Derrick")) == ["2"]
    assert _ids(select_filtered_todos(todos, TodoFilters(search_query="4821"), "Derrick")) == ["1"]


def test_quick_filters():
    todos = [
        _todo("mine", assigned_to="Sefra", due_date="2026-01-10"),
        _todo("overdue", due_date="2026-01-01"),
        _todo("done-today", due_date="2026-01-10", completed=True),
    ]
    base = TodoFilters(sort_option="created", show_completed=True)

    def run(quick_filter):
        filters = TodoFilters(
            quick_filter=quick_filter, sort_option="created", show_completed=True
        )
        return set(_ids(select_filtered_todos(todos, filters, "Sefra", today=TODAY)))

    assert run("my_tasks") == {"mine"}
    assert run("due_today") == {"mine"}
    assert run("overdue") == {"overdue"}
    assert len(select_filtered_todos(todos, base, "Sefra", today=TODAY)) == 3


def test_completed_hidden_unless_requested():
    todos = [_todo("open"), _todo("done", completed=True)]

    assert _ids(select_filtered_todos(todos, TodoFilters(), "Derrick")) == ["open"]


def test_advanced_filters():
    todos = [
        _todo(
            "1",
            text="Acme renewal",
            status="in_progress",
            assigned_to="Sefra",
            due_date="2026-01-12",
            project_id="p1",
            tag_ids=("t1", "t2"),
            attachments=(_attachment(),),
        ),
        _todo("2", text="Acme claim", due_date="2026-02-01", tag_ids=("t1",)),
        _todo("3", text="Other"),
    ]
    filters = TodoFilters(
        sort_option="created",
        status_filter="in_progress",
        assigned_to_filter="Sefra",
        customer_filter="acme",
        has_attachments_filter=True,
        date_range_filter=DateRange(start="2026-01-11", end="2026-01-12"),
        project_filter="p1",
        tag_filter=("t1", "t2"),
    )

    assert _ids(select_filtered_todos(todos, filters, "Derrick")) == ["1"]
    assert has_active_advanced_filters(filters) is True
    assert has_active_advanced_filters(TodoFilters()) is False

    unassigned = TodoFilters(assigned_to_filter="unassigned", sort_option="created")
    assert set(_ids(select_filtered_todos(todos, unassigned, "Derrick"))) == {"2", "3"}

    no_attachments = TodoFilters(has_attachments_filter=False, sort_option="created")
    assert set(_ids(select_filtered_todos(todos, no_attachments, "Derrick"))) == {"2", "3"}


def test_high_priority_only():
    todos = [_todo("u", priority="urgent"), _todo("h", priority="high"), _todo("m")]

    result = select_filtered_todos(todos, TodoFilters(high_priority_only=True), "Derrick")

    assert _ids(result) == ["u", "h"]


def test_stats_and_counts():
    todos = [
        _todo("1", priority="urgent", due_date="2026-01-10", assigned_to="Sefra"),
        _todo("2", priority="high", due_date="2026-01-01"),
        _todo("3", completed=True),
    ]

    assert select_todo_stats(todos, TODAY) == {
        "total": 3,
        "completed": 1,
        "overdue": 1,
        "due_today": 1,
        "urgent": 2,
    }
    counts = select_filter_counts(todos, "Sefra", TODAY)
    assert counts["active"] == 2
    assert counts["my_tasks"] == 1
    assert counts["urgent"] == 1


def test_archive_window_and_search():
    todos = [
        _todo("old", text="Old renewal", completed=True, updated_at="2026-01-07T12:00:00+00:00"),
        _todo("older", text="Older claim", completed=True, updated_at="2026-01-05T12:00:00+00:00"),
        _todo("recent", completed=True, updated_at="2026-01-09T12:00:00+00:00"),
        _todo("open", created_at="2025-12-01T00:00:00+00:00"),
    ]

    archived = select_archived_todos(todos, NOW)

    assert _ids(archived) == ["old", "older"]
    assert _ids(select_visible_todos(todos, NOW)) == ["recent", "open"]
    assert _ids(filter_archived_todos(archived, "CLAIM")) == ["older"]
    assert _ids(filter_archived_todos(archived, "  ")) == ["old", "older"]


def test_unique_customers():
    todos = [_todo("1", text="renewal for John Smith"), _todo("2", text="review with Acme")]

    assert select_unique_customers(todos) == ["Acme", "John Smith"]


def test_create_selector_memoizes_on_identity():
    calls = []

    @create_selector
    def count(todos):
        calls.append(todos)
        return len(todos)

    todos = (_todo("1"),)
    assert count(todos) == 1
    assert count(todos) == 1
    assert count((_todo("1"), _todo("2"))) == 2
    assert count(todos) == 1
    assert len(calls) == 3
