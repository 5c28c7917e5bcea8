"""Supabase (PostgREST) datastore backend over HTTP."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from taskboard.datastore import ChangeEvent, Datastore, Filter, TableQuery
from taskboard.errors import DatastoreError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_filter(item: Filter) -> tuple[str, str]:
    if item.op == "in":
        values = ",".join(json.dumps(_format_value(value)) for value in item.value)
        return item.column, f"in.({values})"
    if item.op == "is":
        return item.column, f"is.{_format_value(item.value)}"
    return item.column, f"{item.op}.{_format_value(item.value)}"


def build_params(query: TableQuery) -> list[tuple[str, str]]:
    """Translate a table query into PostgREST query-string parameters."""
    params: list[tuple[str, str]] = []
    if query.operation == "select":
        params.append(("select", query.columns))
    for item in query.filters:
        params.append(_format_filter(item))
    if query.orders:
        params.append(
            (
                "order",
                ",".join(
                    f"{column}.{'desc' if desc else 'asc'}" for column, desc in query.orders
                ),
            )
        )
    if query.row_limit is not None:
        params.append(("limit", str(query.row_limit)))
    return params


class SupabaseRestDatastore(Datastore):
    """Row CRUD against ``<url>/rest/v1``.

    The service is the write gateway for its tenants, so change events are
    published for the writes performed through this client.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__()
        self._http = httpx.Client(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        super().close()
        self._http.close()

    def _request(self, query: TableQuery) -> httpx.Response:
        params = build_params(query)
        path = f"/{query.table}"
        prefer = {"Prefer": "return=representation"}
        if query.operation == "select":
            return self._http.get(path, params=params)
        if query.operation == "insert":
            return self._http.post(path, params=params, json=query.payload, headers=prefer)
        if query.operation == "update":
            return self._http.patch(path, params=params, json=query.payload, headers=prefer)
        if query.operation == "delete":
            return self._http.delete(path, params=params, headers=prefer)
        raise DatastoreError("PGRST100", f"Unsupported operation: {query.operation}")

    def _execute(self, query: TableQuery) -> list[dict[str, Any]]:
        try:
            response = self._request(query)
        except httpx.HTTPError as exc:
            logger.error("Datastore request failed for %s: %s", query.table, exc)
            raise DatastoreError(
                "NETWORK_ERROR",
                "Datastore request failed.",
                {"table": query.table, "error": str(exc)},
            ) from exc

        if response.status_code >= 400:
            raise self._error_from_response(query, response)

        rows = response.json() if response.content else []
        if isinstance(rows, dict):
            rows = [rows]

        if query.operation == "insert":
            self.publish(ChangeEvent("INSERT", query.table, new=row) for row in rows)
        elif query.operation == "update":
            self.publish(ChangeEvent("UPDATE", query.table, new=row) for row in rows)
        elif query.operation == "delete":
            self.publish(ChangeEvent("DELETE", query.table, old=row) for row in rows)
        return rows

    @staticmethod
    def _error_from_response(query: TableQuery, response: httpx.Response) -> DatastoreError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = str(body.get("code") or f"HTTP_{response.status_code}")
        message = str(body.get("message") or response.reason_phrase or "Request failed")
        return DatastoreError(
            code,
            message,
            {
                "table": query.table,
                "status": response.status_code,
                "hint": body.get("hint"),
            },
        )
