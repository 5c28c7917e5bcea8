import json

import httpx
import pytest

from taskboard.datastore import MemoryDatastore
from taskboard.errors import DatastoreError
from taskboard.rest_datastore import SupabaseRestDatastore, build_params


def _datastore(handler):
    return SupabaseRestDatastore(
        "https://example.supabase.co/",
        "anon-key",
        transport=httpx.MockTransport(handler),
    )


def test_build_params_translates_filters():
    query = (
        MemoryDatastore()
        .table("todos")
        .select("name, color")
        .eq("team_id", "t1")
        .eq("is_active", True)
        .in_("id", ["a", "b"])
        .is_null("project_id")
        .order("created_at", desc=True)
        .limit(5)
    )

    assert build_params(query) == [
        ("select", "name, color"),
        ("team_id", "eq.t1"),
        ("is_active", "eq.true"),
        ("id", 'in.("a","b")'),
        ("project_id", "is.null"),
        ("order", "created_at.desc"),
        ("limit", "5"),
    ]


def test_select_sends_auth_headers_and_params():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        return httpx.Response(200, json=[{"id": "1", "text": "a"}])

    ds = _datastore(handler)
    rows = ds.table("todos").select().eq("team_id", "t1").execute()

    assert rows == [{"id": "1", "text": "a"}]
    assert seen["url"].startswith("https://example.supabase.co/rest/v1/todos?")
    assert "team_id=eq.t1" in seen["url"]
    assert seen["headers"]["apikey"] == "anon-key"
    assert seen["headers"]["authorization"] == "Bearer anon-key"


def test_insert_posts_rows_and_publishes_events():
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["prefer"] = request.headers.get("prefer")
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json=[{"id": "9", "text": "new", "team_id": "t1"}])

    ds = _datastore(handler)
    events = []
    ds.channel("todos").on("INSERT", "todos", events.append).subscribe()

    rows = ds.table("todos").insert({"id": "9", "text": "new"}).execute()

    assert captured == {
        "method": "POST",
        "prefer": "return=representation",
        "body": [{"id": "9", "text": "new"}],
    }
    assert rows[0]["id"] == "9"
    assert [event.new["id"] for event in events] == ["9"]


def test_update_and_delete_use_patch_and_delete():
    methods = []

    def handler(request):
        methods.append((request.method, request.url.params.get("id")))
        return httpx.Response(200, json=[{"id": "1"}])

    ds = _datastore(handler)
    ds.table("todos").update({"text": "x"}).eq("id", "1").execute()
    ds.table("todos").delete().in_("id", ["1"]).execute()

    assert methods == [("PATCH", "eq.1"), ("DELETE", 'in.("1")')]


def test_http_error_carries_postgrest_code():
    def handler(request):
        return httpx.Response(
            404,
            json={"code": "42P01", "message": 'relation "public.team_members" does not exist'},
        )

    with pytest.raises(DatastoreError) as excinfo:
        _datastore(handler).table("team_members").select().execute()

    assert excinfo.value.code == "42P01"
    assert excinfo.value.details["status"] == 404


def test_single_with_no_rows_raises_no_rows():
    ds = _datastore(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(DatastoreError) as excinfo:
        ds.table("teams").select().eq("id", "x").single().execute()

    assert excinfo.value.code == "PGRST116"


def test_network_failure_becomes_datastore_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DatastoreError) as excinfo:
        _datastore(handler).table("todos").select().execute()

    assert excinfo.value.code == "NETWORK_ERROR"
