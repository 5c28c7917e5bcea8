"""FastAPI entrypoint for the taskboard service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskboard.api import register_api_handlers
from taskboard.config import AppConfig, load_config
from taskboard.datastore import Datastore, MemoryDatastore
from taskboard.errors import (
    DatastoreError,
    ErrorResponse,
    TaskboardError,
    error_response,
    status_for_error,
)
from taskboard.logging_setup import setup_logging
from taskboard.rest_datastore import SupabaseRestDatastore
from taskboard.user_scope import (
    AUTH_EXEMPT_PATHS,
    SERVICE_TOKEN_HEADER,
    USER_ID_HEADER,
    normalize_user_id,
)
from taskboard.workspace import WorkspaceRegistry

logger = logging.getLogger(__name__)


def build_datastore(config: AppConfig) -> Datastore:
    if config.datastore_backend == "supabase":
        return SupabaseRestDatastore(config.supabase_url, config.supabase_key)
    return MemoryDatastore()


def create_app(
    config: AppConfig | None = None, datastore: Datastore | None = None
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = config or load_config()
        setup_logging(resolved.log_level, resolved.log_file)
        store = datastore or build_datastore(resolved)
        app.state.config = resolved
        app.state.datastore = store
        app.state.workspaces = WorkspaceRegistry(store, resolved)
        logger.info(
            "Taskboard started with %s datastore (multi-tenancy %s)",
            resolved.datastore_backend,
            "on" if resolved.multi_tenancy else "off",
        )
        try:
            yield
        finally:
            app.state.workspaces.close()
            store.close()
            logger.info("Taskboard stopped")

    app = FastAPI(lifespan=lifespan)

    @app.middleware("http")
    async def enforce_request_identity(request: Request, call_next):
        path = request.url.path
        if path in AUTH_EXEMPT_PATHS:
            return await call_next(request)

        config = getattr(request.app.state, "config", None)
        require_user_header = bool(getattr(config, "require_user_header", True))
        service_token = getattr(config, "service_token", None)

        raw_user_id = request.headers.get(USER_ID_HEADER)
        if require_user_header and raw_user_id is None:
            error = ErrorResponse(
                code="AUTH_REQUIRED",
                message="Missing required user identity header.",
                details={"header": USER_ID_HEADER},
            )
            return JSONResponse(status_code=401, content=error_response(error))
        if raw_user_id is not None:
            try:
                request.state.user_id = normalize_user_id(raw_user_id)
            except TaskboardError as exc:
                return JSONResponse(status_code=401, content=error_response(exc.error))

        if service_token:
            supplied_token = request.headers.get(SERVICE_TOKEN_HEADER)
            if supplied_token != service_token:
                error = ErrorResponse(
                    code="AUTH_FORBIDDEN",
                    message="Invalid service token.",
                    details={"header": SERVICE_TOKEN_HEADER},
                )
                return JSONResponse(status_code=403, content=error_response(error))

        return await call_next(request)

    @app.exception_handler(TaskboardError)
    def handle_taskboard_error(request: Request, exc: TaskboardError) -> JSONResponse:
        return JSONResponse(
            status_code=status_for_error(exc.error), content=error_response(exc.error)
        )

    @app.exception_handler(DatastoreError)
    def handle_datastore_error(request: Request, exc: DatastoreError) -> JSONResponse:
        logger.error("Unhandled datastore error on %s: %s", request.url.path, exc)
        error = ErrorResponse(
            code="DATASTORE_ERROR",
            message="The datastore request failed.",
            details={"code": exc.code},
        )
        return JSONResponse(status_code=status_for_error(error), content=error_response(error))

    @app.get("/health", status_code=200)
    def health() -> dict[str, str]:
        return {"status": "ok"}

    register_api_handlers(app)
    return app


app = create_app()
