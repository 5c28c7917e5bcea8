from taskboard.config import AppConfig
from taskboard.datastore import MemoryDatastore
from taskboard.main import build_datastore, create_app
from taskboard.rest_datastore import SupabaseRestDatastore


def _get_health_route(app):
    for route in app.routes:
        if getattr(route, "path", None) == "/health" and "GET" in getattr(
            route, "methods", set()
        ):
            return route
    raise AssertionError("Health route not registered")


def test_health_endpoint():
    app = create_app(config=AppConfig(), datastore=MemoryDatastore())

    route = _get_health_route(app)

    assert route.status_code == 200
    assert route.endpoint() == {"status": "ok"}


def test_build_datastore_selects_backend():
    memory = build_datastore(AppConfig())
    remote = build_datastore(
        AppConfig(
            datastore_backend="supabase",
            supabase_url="https://example.supabase.co",
            supabase_key="anon-key",
        )
    )

    assert isinstance(memory, MemoryDatastore)
    assert isinstance(remote, SupabaseRestDatastore)
    remote.close()
