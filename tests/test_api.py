import httpx
from fastapi.testclient import TestClient

from taskboard.activity import ACTIVITY_TABLE
from taskboard.ai_parse import AnthropicClient
from taskboard.config import AppConfig
from taskboard.datastore import MemoryDatastore
from taskboard.errors import DatastoreError
from taskboard.main import create_app
from taskboard.user_scope import USER_ID_HEADER, USER_NAME_HEADER

OWNER = {USER_ID_HEADER: "owner-1", USER_NAME_HEADER: "Derrick"}
MEMBER = {USER_ID_HEADER: "member-1", USER_NAME_HEADER: "Sefra"}


class _FlakyDatastore(MemoryDatastore):
    """Memory datastore that fails chosen ``(table, operation)`` pairs."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = set()

    def _execute(self, query):
        if (query.table, query.operation) in self.failures:
            raise DatastoreError("XX000", "write failed", {"table": query.table})
        return super()._execute(query)


def _seed():
    return {
        "teams": [
            {"id": "t1", "name": "Bealer Agency", "slug": "bealer-agency", "is_active": True},
            {"id": "t2", "name": "Second Office", "slug": "second-office", "is_active": True},
        ],
        "team_members": [
            {"id": "m1", "user_id": "owner1", "team_id": "t1", "role": "owner",
             "status": "active", "is_default_team": True},
            {"id": "m2", "user_id": "owner1", "team_id": "t2", "role": "owner",
             "status": "active"},
            {"id": "m3", "user_id": "member1", "team_id": "t1", "role": "member",
             "status": "active"},
        ],
        "todos": [
            {"id": "1", "text": "Quote for John Smith 555-123-4567", "created_by": "Derrick",
             "team_id": "t1", "priority": "high", "created_at": "2026-01-01T09:00:00+00:00"},
            {"id": "2", "text": "Renew Acme policy", "created_by": "Sefra", "team_id": "t1",
             "created_at": "2026-01-02T09:00:00+00:00"},
            {"id": "3", "text": "Second office task", "created_by": "Derrick",
             "team_id": "t2", "created_at": "2026-01-03T09:00:00+00:00"},
            {"id": "4", "text": "Old finished claim", "created_by": "Derrick", "team_id": "t1",
             "completed": True, "created_at": "2025-12-01T09:00:00+00:00",
             "updated_at": "2025-12-02T09:00:00+00:00"},
        ],
    }


def _app(datastore=None, **config):
    datastore = datastore if datastore is not None else MemoryDatastore(seed=_seed())
    return create_app(config=AppConfig(**config), datastore=datastore)


def _post(client, path, payload=None, headers=OWNER):
    return client.post(path, headers=headers, json=payload or {})


def _ids(response):
    return [todo["id"] for todo in response.json()["data"]["todos"]]


def test_list_todos_is_team_scoped_and_hides_archive():
    with TestClient(_app()) as client:
        response = _post(client, "/todos:list")

    assert response.status_code == 200
    data = response.json()["data"]
    assert _ids(response) == ["1", "2"]
    assert data["connected"] is True
    assert data["counts"]["my_tasks"] == 1
    assert data["filters"]["quick_filter"] == "all"


def test_list_rejects_unknown_fields():
    with TestClient(_app()) as client:
        response = _post(client, "/todos:list", {"page": 2})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "UNKNOWN_FIELD"


def test_filters_apply_to_listing():
    with TestClient(_app()) as client:
        filtered = _post(client, "/todos:filters", {"search_query": "acme", "status_filter": "todo"})
        listing = _post(client, "/todos:list")
        bad = _post(client, "/todos:filters", {"sort_option": "random"})
        reset = _post(client, "/todos:filters", {"reset": True})

    assert filtered.json()["data"]["has_active_advanced_filters"] is True
    assert "John Smith" in filtered.json()["data"]["customers"]
    assert _ids(listing) == ["2"]
    assert bad.json()["error"]["code"] == "INVALID_FILTER"
    assert reset.json()["data"]["filters"]["search_query"] == ""


def test_create_update_toggle_and_delete():
    datastore = MemoryDatastore(seed=_seed())
    with TestClient(_app(datastore)) as client:
        created = _post(client, "/todos:create", {"text": "Call Pat", "priority": "urgent"})
        todo_id = created.json()["data"]["todo"]["id"]
        updated = _post(
            client, "/todos:update", {"id": todo_id, "fields": {"notes": "left voicemail"}}
        )
        toggled = _post(client, "/todos:toggle", {"id": todo_id})
        deleted = _post(client, "/todos:delete", {"id": todo_id})
        missing = _post(client, "/todos:update", {"id": "nope", "fields": {"notes": "x"}})

    assert created.status_code == 200
    assert created.json()["data"]["todo"]["team_id"] == "t1"
    assert updated.json()["data"]["todo"]["notes"] == "left voicemail"
    assert updated.json()["data"]["todo"]["updated_by"] == "Derrick"
    assert toggled.json()["data"]["todo"]["completed"] is True
    assert deleted.json()["data"] == {"id": todo_id, "deleted": True}
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "TODO_NOT_FOUND"
    actions = [row["action"] for row in datastore.rows(ACTIVITY_TABLE)]
    assert actions == ["task_created", "task_completed", "task_deleted"]


def test_create_requires_text():
    with TestClient(_app()) as client:
        response = _post(client, "/todos:create", {"priority": "high"})

    assert response.json()["error"]["code"] == "MISSING_FIELDS"


def test_datastore_failure_returns_rolled_back_error():
    datastore = _FlakyDatastore(seed=_seed())
    with TestClient(_app(datastore)) as client:
        datastore.failures.add(("todos", "insert"))
        response = _post(client, "/todos:create", {"text": "Will not stick"})
        listing = _post(client, "/todos:list")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "DATASTORE_ERROR"
    assert _ids(listing) == ["1", "2"]


def test_member_cannot_delete():
    with TestClient(_app()) as client:
        response = _post(client, "/todos:delete", {"id": "2"}, headers=MEMBER)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PERMISSION_DENIED"


def test_reorder_stats_archive_and_duplicates():
    with TestClient(_app()) as client:
        reordered = _post(client, "/todos:reorder", {"id": "2", "direction": "up"})
        stats = _post(client, "/todos:stats")
        archived = _post(client, "/todos:archived", {"query": "claim"})
        duplicates = _post(client, "/todos:duplicates", {"text": "Call John Smith at 555-123-4567"})
        plain = _post(client, "/todos:duplicates", {"text": "buy milk"})

    assert reordered.json()["data"]["order"][0] == "2"
    assert stats.json()["data"]["stats"]["total"] == 2
    assert _ids(archived) == ["4"]
    matches = duplicates.json()["data"]["matches"]
    assert matches[0]["todo"]["id"] == "1"
    assert "Same phone number" in matches[0]["match_reasons"]
    assert plain.json()["data"] == {"checked": False, "matches": []}


def test_bulk_flow():
    datastore = MemoryDatastore(seed=_seed())
    with TestClient(_app(datastore)) as client:
        empty = _post(client, "/bulk:complete")
        selected = _post(client, "/bulk:select_all", {"ids": ["1", "2"]})
        unconfirmed = _post(client, "/bulk:delete")
        priority = _post(client, "/bulk:set_priority", {"priority": "low"})
        _post(client, "/bulk:select", {"id": "1"})
        _post(client, "/bulk:select", {"id": "2", "selected": True})
        rescheduled = _post(client, "/bulk:reschedule", {"due_date": "2026-02-01"})
        _post(client, "/bulk:select_all", {"ids": ["1", "2"]})
        merged = _post(client, "/bulk:merge", {"primary_id": "1"})

    assert empty.json()["error"]["code"] == "EMPTY_SELECTION"
    assert selected.json()["data"]["selected_count"] == 2
    assert unconfirmed.json()["error"]["code"] == "CONFIRMATION_REQUIRED"
    assert priority.json()["data"]["selected_count"] == 0
    assert rescheduled.json()["data"]["applied"] is True
    todo = merged.json()["data"]["todo"]
    assert todo["text"].endswith("[+1 merged]")
    assert todo["due_date"] == "2026-02-01"
    remote_ids = sorted(row["id"] for row in datastore.rows("todos"))
    assert remote_ids == ["1", "3", "4"]


def test_bulk_delete_with_confirmation():
    with TestClient(_app()) as client:
        _post(client, "/bulk:select_all", {"ids": ["2"]})
        deleted = _post(client, "/bulk:delete", {"confirm": True})
        listing = _post(client, "/todos:list")

    assert deleted.json()["data"]["applied"] is True
    assert _ids(listing) == ["1"]


def test_team_endpoints_switch_scope():
    with TestClient(_app()) as client:
        teams = _post(client, "/teams:list")
        switched = _post(client, "/teams:switch", {"team_id": "t2"})
        listing = _post(client, "/todos:list")
        refused = _post(client, "/teams:switch", {"team_id": "t9"})
        refreshed = _post(client, "/teams:refresh", {"retry": True})

    assert [team["team_id"] for team in teams.json()["data"]["teams"]] == ["t1", "t2"]
    assert switched.json()["data"]["current_team_id"] == "t2"
    assert _ids(listing) == ["3"]
    assert refused.status_code == 404
    assert refused.json()["error"]["code"] == "TEAM_NOT_FOUND"
    assert refreshed.json()["data"]["current_team_id"] == "t2"


def test_activity_endpoint():
    with TestClient(_app()) as client:
        _post(client, "/todos:toggle", {"id": "2"})
        response = _post(client, "/activity:list", {"limit": 5, "todo_id": "2"})
        bad = _post(client, "/activity:list", {"limit": 0})

    entries = response.json()["data"]["entries"]
    assert [entry["action"] for entry in entries] == ["task_completed"]
    assert entries[0]["team_id"] == "t1"
    assert bad.json()["error"]["code"] == "INVALID_TYPE"


def test_parse_subtasks_fallback_without_ai_key():
    with TestClient(_app()) as client:
        response = _post(
            client,
            "/ai:parse_subtasks",
            {"content": "Send the quote to Pat.\nConfirm the new VIN", "content_type": "email"},
        )
        short = _post(client, "/ai:parse_subtasks", {"content": "hi"})

    assert [item["text"] for item in response.json()["data"]["subtasks"]] == [
        "Send the quote to Pat",
        "Confirm the new VIN",
    ]
    assert short.json()["error"]["code"] == "CONTENT_TOO_SHORT"


def test_parse_subtasks_uses_ai_client():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "content": [
                    {"type": "text",
                     "text": '{"subtasks": [{"text": "Email Pat", "priority": "high"}], '
                             '"summary": "Follow up"}'}
                ]
            },
        )

    app = _app()
    with TestClient(app) as client:
        app.state.workspaces.ai_client = AnthropicClient(
            "sk-test", transport=httpx.MockTransport(handler)
        )
        response = _post(client, "/ai:parse_subtasks", {"content": "Please email Pat today"})

    assert response.json()["data"] == {
        "subtasks": [{"text": "Email Pat", "priority": "high"}],
        "summary": "Follow up",
    }


def test_user_without_team_sees_nothing():
    outsider = {USER_ID_HEADER: "mallory", USER_NAME_HEADER: "Mallory"}
    with TestClient(_app()) as client:
        listing = _post(client, "/todos:list", headers=outsider)
        created = _post(client, "/todos:create", {"text": "Global task"}, headers=outsider)
        activity = _post(client, "/activity:list", headers=outsider)

    assert _ids(listing) == []
    assert listing.json()["data"]["connected"] is False
    assert created.status_code == 404
    assert created.json()["error"]["code"] == "TEAM_NOT_FOUND"
    assert activity.json()["data"]["entries"] == []


def test_wrong_typed_filter_is_rejected_and_listing_still_works():
    with TestClient(_app()) as client:
        bad = _post(client, "/todos:filters", {"search_query": 5})
        also_bad = _post(client, "/todos:filters", {"show_completed": "yes"})
        listing = _post(client, "/todos:list")

    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "INVALID_FILTER"
    assert also_bad.json()["error"]["code"] == "INVALID_FILTER"
    assert listing.status_code == 200
    assert _ids(listing) == ["1", "2"]


def test_update_rejects_immutable_and_wrong_typed_fields():
    datastore = MemoryDatastore(seed=_seed())
    with TestClient(_app(datastore)) as client:
        renamed = _post(client, "/todos:update", {"id": "1", "fields": {"id": "new"}})
        moved = _post(client, "/todos:update", {"id": "1", "fields": {"team_id": "t2"}})
        typed = _post(client, "/todos:update", {"id": "1", "fields": {"completed": "yes"}})
        subtasks = _post(client, "/todos:update", {"id": "1", "fields": {"subtasks": "call"}})
        deleted = _post(client, "/todos:delete", {"id": "1"})

    for response in (renamed, moved, typed, subtasks):
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_FIELD"
    assert deleted.json()["data"] == {"id": "1", "deleted": True}
    remaining = {row["id"]: row["team_id"] for row in datastore.rows("todos")}
    assert remaining == {"2": "t1", "3": "t2", "4": "t1"}


def test_activity_read_failure_returns_envelope():
    datastore = _FlakyDatastore(seed=_seed())
    with TestClient(_app(datastore)) as client:
        datastore.failures.add(("activity_log", "select"))
        response = _post(client, "/activity:list")

    assert response.status_code == 502
    assert response.json()["ok"] is False
    assert response.json()["error"]["code"] == "DATASTORE_ERROR"
