"""Pure derivations over store state: filtering, sorting and counts."""

from __future__ import annotations

import functools
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Sequence

from taskboard.duplicates import extract_potential_names
from taskboard.store import TodoFilters
from taskboard.todo_schema import DEFAULT_PRIORITY, PRIORITY_ORDER, Todo, parse_timestamp

ARCHIVE_AFTER = timedelta(hours=48)

_DIGITS = re.compile(r"^\d+$")


def _today(today: date | None) -> date:
    return today or datetime.now(timezone.utc).date()


def _timestamp(value: str | None) -> datetime:
    return parse_timestamp(value) or datetime.min


def _priority_rank(todo: Todo) -> int:
    return PRIORITY_ORDER.get(todo.priority or DEFAULT_PRIORITY, PRIORITY_ORDER[DEFAULT_PRIORITY])


def is_due_today(due_date: str | None, today: date | None = None) -> bool:
    parsed = parse_timestamp(due_date)
    if parsed is None:
        return False
    return parsed.date() == _today(today)


def is_overdue(due_date: str | None, completed: bool = False, today: date | None = None) -> bool:
    if completed:
        return False
    parsed = parse_timestamp(due_date)
    if parsed is None:
        return False
    return parsed.date() < _today(today)


def _matches_search(todo: Todo, query: str) -> bool:
    lowered = query.lower()
    haystacks = (todo.text, todo.created_by, todo.assigned_to, todo.notes, todo.transcription)
    if any(value and lowered in value.lower() for value in haystacks):
        return True
    if _DIGITS.match(query):
        return any(value and query in value for value in (todo.text, todo.notes, todo.transcription))
    return False


def _in_date_range(todo: Todo, start: str, end: str) -> bool:
    due = parse_timestamp(todo.due_date)
    if due is None:
        return False
    if start:
        start_at = parse_timestamp(start)
        if start_at is not None and due < datetime.combine(start_at.date(), time.min):
            return False
    if end:
        end_at = parse_timestamp(end)
        if end_at is not None and due > datetime.combine(end_at.date(), time.max):
            return False
    return True


def _urgency_compare(a: Todo, b: Todo, today: date) -> int:
    if a.completed != b.completed:
        return 1 if a.completed else -1
    diff = _priority_rank(a) - _priority_rank(b)
    if diff:
        return diff
    a_overdue = is_overdue(a.due_date, a.completed, today)
    b_overdue = is_overdue(b.due_date, b.completed, today)
    if a_overdue != b_overdue:
        return -1 if a_overdue else 1
    a_today = is_due_today(a.due_date, today)
    b_today = is_due_today(b.due_date, today)
    if a_today != b_today:
        return -1 if a_today else 1
    if a.due_date and b.due_date:
        return _cmp(_timestamp(a.due_date), _timestamp(b.due_date))
    if a.due_date:
        return -1
    if b.due_date:
        return 1
    return _cmp(_timestamp(b.created_at), _timestamp(a.created_at))


def _due_date_compare(a: Todo, b: Todo) -> int:
    if not a.due_date and not b.due_date:
        return _cmp(_timestamp(b.created_at), _timestamp(a.created_at))
    if not a.due_date:
        return 1
    if not b.due_date:
        return -1
    return _cmp(_timestamp(a.due_date), _timestamp(b.due_date))


def _cmp(left: Any, right: Any) -> int:
    return (left > right) - (left < right)


def sort_todos(
    todos: Iterable[Todo],
    sort_option: str,
    custom_order: Sequence[str] = (),
    today: date | None = None,
) -> list[Todo]:
    result = list(todos)
    current = _today(today)
    if sort_option == "urgency":
        result.sort(key=functools.cmp_to_key(lambda a, b: _urgency_compare(a, b, current)))
    elif sort_option == "priority":
        result.sort(key=lambda todo: _timestamp(todo.created_at), reverse=True)
        result.sort(key=_priority_rank)
    elif sort_option == "due_date":
        result.sort(key=functools.cmp_to_key(_due_date_compare))
    elif sort_option == "created":
        result.sort(key=lambda todo: _timestamp(todo.created_at), reverse=True)
    elif sort_option == "alphabetical":
        result.sort(key=lambda todo: todo.text.casefold())
    elif sort_option == "custom" and custom_order:
        positions = {todo_id: index for index, todo_id in enumerate(custom_order)}
        result.sort(key=lambda todo: positions.get(todo.id, len(positions)))
    return result


def select_filtered_todos(
    todos: Iterable[Todo],
    filters: TodoFilters,
    user_name: str,
    custom_order: Sequence[str] = (),
    today: date | None = None,
) -> list[Todo]:
    """Apply search, quick and advanced filters, then the chosen sort."""
    current = _today(today)
    result = list(todos)

    if filters.search_query:
        result = [todo for todo in result if _matches_search(todo, filters.search_query)]

    if filters.quick_filter == "my_tasks":
        result = [
            todo
            for todo in result
            if todo.assigned_to == user_name or todo.created_by == user_name
        ]
    elif filters.quick_filter == "due_today":
        result = [
            todo for todo in result if is_due_today(todo.due_date, current) and not todo.completed
        ]
    elif filters.quick_filter == "overdue":
        result = [todo for todo in result if is_overdue(todo.due_date, todo.completed, current)]

    if filters.high_priority_only:
        result = [todo for todo in result if todo.priority in {"urgent", "high"}]

    if filters.status_filter != "all":
        result = [todo for todo in result if todo.status == filters.status_filter]

    if filters.assigned_to_filter == "unassigned":
        result = [todo for todo in result if not todo.assigned_to]
    elif filters.assigned_to_filter != "all":
        result = [todo for todo in result if todo.assigned_to == filters.assigned_to_filter]

    if filters.customer_filter != "all":
        customer = filters.customer_filter.lower()
        result = [
            todo for todo in result if customer in f"{todo.text} {todo.notes or ''}".lower()
        ]

    if filters.has_attachments_filter is True:
        result = [todo for todo in result if todo.attachments]
    elif filters.has_attachments_filter is False:
        result = [todo for todo in result if not todo.attachments]

    date_range = filters.date_range_filter
    if date_range.start or date_range.end:
        result = [
            todo for todo in result if _in_date_range(todo, date_range.start, date_range.end)
        ]

    if filters.project_filter is not None:
        result = [todo for todo in result if todo.project_id == filters.project_filter]

    if filters.tag_filter:
        required = set(filters.tag_filter)
        result = [todo for todo in result if required.issubset(todo.tag_ids)]

    if not filters.show_completed:
        result = [todo for todo in result if not todo.completed]

    return sort_todos(result, filters.sort_option, custom_order, current)


def select_todo_stats(todos: Iterable[Todo], today: date | None = None) -> dict[str, int]:
    current = _today(today)
    todos = list(todos)
    return {
        "total": len(todos),
        "completed": sum(1 for todo in todos if todo.completed),
        "overdue": sum(1 for todo in todos if is_overdue(todo.due_date, todo.completed, current)),
        "due_today": sum(
            1 for todo in todos if is_due_today(todo.due_date, current) and not todo.completed
        ),
        "urgent": sum(
            1 for todo in todos if todo.priority in {"urgent", "high"} and not todo.completed
        ),
    }


def _last_touched(todo: Todo) -> datetime | None:
    return parse_timestamp(todo.updated_at or todo.created_at)


def select_archived_todos(todos: Iterable[Todo], now: datetime | None = None) -> list[Todo]:
    """Completed tasks untouched for 48 hours, most recently touched first."""
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is not None:
        current = current.astimezone(timezone.utc).replace(tzinfo=None)
    cutoff = current - ARCHIVE_AFTER
    archived = []
    for todo in todos:
        if not todo.completed:
            continue
        touched = _last_touched(todo)
        if touched is not None and touched <= cutoff:
            archived.append(todo)
    archived.sort(key=lambda todo: _last_touched(todo) or datetime.min, reverse=True)
    return archived


def select_visible_todos(todos: Iterable[Todo], now: datetime | None = None) -> list[Todo]:
    todos = list(todos)
    archived_ids = {todo.id for todo in select_archived_todos(todos, now)}
    return [todo for todo in todos if todo.id not in archived_ids]


def filter_archived_todos(archived: Iterable[Todo], query: str) -> list[Todo]:
    lowered = query.strip().lower()
    archived = list(archived)
    if not lowered:
        return archived
    return [
        todo
        for todo in archived
        if any(
            value and lowered in value.lower()
            for value in (
                todo.text,
                todo.created_by,
                todo.assigned_to,
                todo.notes,
                todo.transcription,
            )
        )
    ]


def select_filter_counts(
    todos: Iterable[Todo], user_name: str, today: date | None = None
) -> dict[str, int]:
    current = _today(today)
    todos = list(todos)
    return {
        "all": len(todos),
        "active": sum(1 for todo in todos if not todo.completed),
        "completed": sum(1 for todo in todos if todo.completed),
        "my_tasks": sum(
            1 for todo in todos if todo.assigned_to == user_name or todo.created_by == user_name
        ),
        "due_today": sum(
            1 for todo in todos if is_due_today(todo.due_date, current) and not todo.completed
        ),
        "overdue": sum(1 for todo in todos if is_overdue(todo.due_date, todo.completed, current)),
        "urgent": sum(1 for todo in todos if todo.priority == "urgent" and not todo.completed),
    }


def has_active_advanced_filters(filters: TodoFilters) -> bool:
    return (
        filters.status_filter != "all"
        or filters.assigned_to_filter != "all"
        or filters.customer_filter != "all"
        or filters.has_attachments_filter is not None
        or filters.date_range_filter.start != ""
        or filters.date_range_filter.end != ""
        or filters.project_filter is not None
        or bool(filters.tag_filter)
    )


def select_unique_customers(todos: Iterable[Todo]) -> list[str]:
    customers: set[str] = set()
    for todo in todos:
        customers.update(extract_potential_names(f"{todo.text} {todo.notes or ''}"))
    return sorted(customers)


def create_selector(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Memoize ``fn`` on the identity of its positional arguments.

    Store snapshots replace objects on change, so identity is enough to know
    that nothing an input depends on has moved.
    """
    cache: dict[str, Any] = {}

    @functools.wraps(fn)
    def wrapper(*args: Any) -> Any:
        held = cache.get("args")
        if held is not None and len(held) == len(args) and all(
            previous is arg for previous, arg in zip(held, args)
        ):
            return cache["value"]
        value = fn(*args)
        cache.update(args=args, value=value)
        return value

    return wrapper
