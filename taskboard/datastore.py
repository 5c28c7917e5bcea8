"""Remote datastore abstraction: table queries and a row change feed.

Both backends share the fluent query builder and the channel hub. A backend
only implements ``_execute(query)``; writes it performs are published to the
channels whose table, event and filter match.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from taskboard.errors import NO_ROWS, UNDEFINED_TABLE, DatastoreError

logger = logging.getLogger(__name__)

CHANGE_EVENTS = {"INSERT", "UPDATE", "DELETE", "*"}
SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"


@dataclass(frozen=True)
class ChangeEvent:
    event_type: str
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def row(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        if self.op == "eq":
            return current == self.value
        if self.op == "neq":
            return current != self.value
        if self.op == "in":
            return current in self.value
        if self.op == "is":
            return current is self.value
        raise DatastoreError("PGRST100", f"Unsupported filter operator: {self.op}")


def row_matches(row: Mapping[str, Any], filters: Iterable[Filter]) -> bool:
    return all(item.matches(row) for item in filters)


@dataclass
class TableQuery:
    """Fluent query against one table, executed by its datastore."""

    datastore: "Datastore"
    table: str
    operation: str = "select"
    columns: str = "*"
    payload: Any = None
    filters: list[Filter] = field(default_factory=list)
    orders: list[tuple[str, bool]] = field(default_factory=list)
    row_limit: int | None = None
    expect_single: bool = False

    def select(self, columns: str = "*") -> "TableQuery":
        self.operation = "select"
        self.columns = columns
        return self

    def insert(self, rows: Mapping[str, Any] | list[Mapping[str, Any]]) -> "TableQuery":
        self.operation = "insert"
        self.payload = [dict(rows)] if isinstance(rows, Mapping) else [dict(row) for row in rows]
        return self

    def update(self, values: Mapping[str, Any]) -> "TableQuery":
        self.operation = "update"
        self.payload = dict(values)
        return self

    def delete(self) -> "TableQuery":
        self.operation = "delete"
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "eq", value))
        return self

    def neq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "neq", value))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        self.filters.append(Filter(column, "in", tuple(values)))
        return self

    def is_null(self, column: str) -> "TableQuery":
        self.filters.append(Filter(column, "is", None))
        return self

    def order(self, column: str, *, desc: bool = False) -> "TableQuery":
        self.orders.append((column, desc))
        return self

    def limit(self, count: int) -> "TableQuery":
        self.row_limit = count
        return self

    def single(self) -> "TableQuery":
        self.expect_single = True
        return self

    def execute(self) -> Any:
        if self.operation in {"update", "delete"} and not self.filters:
            raise DatastoreError(
                "21000",
                f"{self.operation.upper()} requires a filter.",
                {"table": self.table},
            )
        rows = self.datastore._execute(self)
        if not self.expect_single:
            return rows
        if len(rows) != 1:
            raise DatastoreError(
                NO_ROWS,
                "JSON object requested, multiple (or no) rows returned",
                {"table": self.table, "rows": len(rows)},
            )
        return rows[0]


ChangeCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[[str], None]


@dataclass
class _Binding:
    event: str
    table: str
    callback: ChangeCallback
    filter: tuple[str, Any] | None

    def matches(self, event: ChangeEvent) -> bool:
        if self.table != event.table:
            return False
        if self.event != "*" and self.event != event.event_type:
            return False
        if self.filter is None:
            return True
        column, value = self.filter
        return event.row.get(column) == value


class Channel:
    """A named subscription to row changes; created through ``Datastore.channel``."""

    def __init__(self, hub: "Datastore", name: str) -> None:
        self._hub = hub
        self.name = name
        self.state = CLOSED
        self._bindings: list[_Binding] = []
        self._status_callback: StatusCallback | None = None

    def on(
        self,
        event: str,
        table: str,
        callback: ChangeCallback,
        *,
        filter: tuple[str, Any] | None = None,
    ) -> "Channel":
        if event not in CHANGE_EVENTS:
            raise ValueError(f"Unsupported change event: {event}")
        self._bindings.append(_Binding(event, table, callback, filter))
        return self

    def subscribe(self, status_callback: StatusCallback | None = None) -> "Channel":
        self._status_callback = status_callback
        self._hub._join(self)
        return self

    def _set_state(self, state: str) -> None:
        self.state = state
        if self._status_callback is not None:
            self._status_callback(state)

    def _deliver(self, event: ChangeEvent) -> None:
        for binding in list(self._bindings):
            if self.state != SUBSCRIBED:
                return
            if not binding.matches(event):
                continue
            try:
                binding.callback(event)
            except Exception:
                logger.exception(
                    "Change handler failed on channel %s for %s %s",
                    self.name,
                    event.event_type,
                    event.table,
                )


class Datastore(ABC):
    """Row store with filtering and a change feed."""

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}
        self._channels_lock = threading.RLock()

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    @abstractmethod
    def _execute(self, query: TableQuery) -> list[dict[str, Any]]:
        """Run a query and return the affected or selected rows."""

    def channel(self, name: str) -> Channel:
        with self._channels_lock:
            existing = self._channels.get(name)
        if existing is not None:
            self.remove_channel(existing)
        return Channel(self, name)

    def _join(self, channel: Channel) -> None:
        with self._channels_lock:
            previous = self._channels.get(channel.name)
            self._channels[channel.name] = channel
        if previous is not None and previous is not channel:
            previous._set_state(CLOSED)
        channel._set_state(SUBSCRIBED)
        logger.debug("Channel %s subscribed", channel.name)

    def remove_channel(self, channel: Channel) -> None:
        with self._channels_lock:
            if self._channels.get(channel.name) is channel:
                del self._channels[channel.name]
        if channel.state != CLOSED:
            channel._set_state(CLOSED)
            logger.debug("Channel %s removed", channel.name)

    def open_channels(self) -> list[str]:
        with self._channels_lock:
            return sorted(self._channels)

    def publish(self, events: Iterable[ChangeEvent]) -> None:
        with self._channels_lock:
            channels = list(self._channels.values())
        for event in events:
            for channel in channels:
                channel._deliver(event)

    def close(self) -> None:
        with self._channels_lock:
            channels = list(self._channels.values())
        for channel in channels:
            self.remove_channel(channel)


def _sort_rows(rows: list[dict[str, Any]], orders: list[tuple[str, bool]]) -> list[dict[str, Any]]:
    # Postgres defaults: NULLS LAST ascending, NULLS FIRST descending.
    for column, desc in reversed(orders):
        present = [row for row in rows if row.get(column) is not None]
        missing = [row for row in rows if row.get(column) is None]
        present.sort(key=lambda row: row[column], reverse=desc)
        rows = missing + present if desc else present + missing
    return rows


class MemoryDatastore(Datastore):
    """In-process datastore used for development and tests.

    When ``tables`` is given only those tables exist and any other table
    raises ``DatastoreError`` with the undefined-table code.
    """

    def __init__(
        self,
        tables: Iterable[str] | None = None,
        seed: Mapping[str, list[Mapping[str, Any]]] | None = None,
    ) -> None:
        super().__init__()
        self._lock = threading.RLock()
        self._fixed_tables = set(tables) if tables is not None else None
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}
        for name in self._fixed_tables or ():
            self._tables[name] = {}
        for name, rows in (seed or {}).items():
            table = self._table(name)
            for row in rows:
                stored = copy.deepcopy(dict(row))
                stored.setdefault("id", str(uuid.uuid4()))
                table[str(stored["id"])] = stored

    def _table(self, name: str) -> dict[str, dict[str, Any]]:
        if name not in self._tables:
            if self._fixed_tables is not None:
                raise DatastoreError(
                    UNDEFINED_TABLE,
                    f'relation "public.{name}" does not exist',
                    {"table": name},
                )
            self._tables[name] = {}
        return self._tables[name]

    def rows(self, table: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._table(table).values()))

    def _execute(self, query: TableQuery) -> list[dict[str, Any]]:
        events: list[ChangeEvent] = []
        with self._lock:
            table = self._table(query.table)
            if query.operation == "select":
                result = [row for row in table.values() if row_matches(row, query.filters)]
                result = _sort_rows(result, query.orders)
                if query.row_limit is not None:
                    result = result[: query.row_limit]
            elif query.operation == "insert":
                result = []
                for row in query.payload:
                    stored = copy.deepcopy(row)
                    stored.setdefault("id", str(uuid.uuid4()))
                    key = str(stored["id"])
                    if key in table:
                        raise DatastoreError(
                            "23505",
                            "duplicate key value violates unique constraint",
                            {"table": query.table, "id": key},
                        )
                    result.append(stored)
                for stored in result:
                    table[str(stored["id"])] = stored
                    events.append(ChangeEvent("INSERT", query.table, new=copy.deepcopy(stored)))
            elif query.operation == "update":
                result = []
                for row in table.values():
                    if not row_matches(row, query.filters):
                        continue
                    old = copy.deepcopy(row)
                    row.update(copy.deepcopy(query.payload))
                    result.append(row)
                    events.append(
                        ChangeEvent("UPDATE", query.table, new=copy.deepcopy(row), old=old)
                    )
            elif query.operation == "delete":
                result = [row for row in table.values() if row_matches(row, query.filters)]
                for row in result:
                    del table[str(row["id"])]
                    events.append(ChangeEvent("DELETE", query.table, old=copy.deepcopy(row)))
            else:
                raise DatastoreError("PGRST100", f"Unsupported operation: {query.operation}")
            result = copy.deepcopy(result)
        self.publish(events)
        return result
