"""SQLite-backed HTTP service: user management, diagnostics and admin reports."""

from __future__ import annotations

import logging
import platform
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import anyio
from fastapi import FastAPI, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from .config import Settings, load_settings
from .database import (
    Database,
    StorageError,
    StorageUnavailable,
    UniqueConstraintViolation,
)
from .diagnostics import (
    api_info,
    duplicate_email_response,
    echo_payload,
    health_info,
    memory_usage_mb,
    missing_fields_response,
    parse_user_id,
    read_user_payload,
    register_not_found_handler,
    status_info,
    user_not_found_response,
)
from .middleware import ActivityLoggingMiddleware

logger = logging.getLogger("userdesk.service")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SERVER_NAME = "FastAPI"

ENDPOINTS: List[str] = [
    "GET /",
    "GET /health",
    "GET /api",
    "GET /status",
    "POST /echo",
    "GET /users",
    "GET /users-form",
    "POST /users",
    "GET /users/:id",
    "PUT /users/:id",
    "DELETE /users/:id",
    "GET /admin/logs",
    "GET /admin/stats",
    "GET /api/logs",
    "GET /api/stats",
]


def _template_environment() -> Jinja2Templates:
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["format_datetime"] = lambda value: value.strftime("%Y-%m-%d %H:%M:%S %Z")
    return templates


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create the persistent service.

    The database is opened (schema and seed included) during application
    startup and closed on shutdown, so no request can reach the repositories
    before the tables exist.
    """

    if settings is None:
        settings = load_settings()
    if database is None:
        database = Database(settings.database_path, seed=settings.seed_on_startup)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await anyio.to_thread.run_sync(database.open)
        logger.info("Database ready at %s", database.path)
        try:
            yield
        finally:
            database.close()

    app = FastAPI(
        title="Userdesk",
        description="User management with persistent activity logging",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.activity_log_failures = 0
    app.add_middleware(ActivityLoggingMiddleware)

    templates = _template_environment()
    register_not_found_handler(app, ENDPOINTS)

    @app.exception_handler(UniqueConstraintViolation)
    async def _duplicate_handler(request: Request, exc: UniqueConstraintViolation) -> JSONResponse:
        return duplicate_email_response()

    @app.exception_handler(StorageUnavailable)
    async def _unavailable_handler(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error("Storage unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(
            {"success": False, "message": "Service unavailable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    @app.exception_handler(StorageError)
    async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure while serving %s: %s", request.url.path, exc)
        return JSONResponse(
            {"success": False, "message": "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        return templates.TemplateResponse(request, "index.html", {"endpoints": ENDPOINTS})

    @app.get("/health", response_class=HTMLResponse)
    async def health(request: Request) -> HTMLResponse:
        info = health_info(app.state.started_at)
        return templates.TemplateResponse(
            request,
            "health.html",
            {"info": info, "memory_mb": memory_usage_mb()},
        )

    @app.get("/api")
    async def api_index() -> Dict[str, object]:
        return api_info(ENDPOINTS)

    @app.get("/status", response_class=HTMLResponse)
    async def server_status(request: Request) -> HTMLResponse:
        info = status_info(SERVER_NAME)
        return templates.TemplateResponse(
            request,
            "status.html",
            {"info": info, "implementation": platform.python_implementation()},
        )

    @app.post("/echo")
    async def echo(request: Request) -> Dict[str, object]:
        return await echo_payload(request)

    @app.get("/users", response_class=HTMLResponse)
    async def list_users(request: Request) -> HTMLResponse:
        users = await anyio.to_thread.run_sync(database.get_all_users)
        return templates.TemplateResponse(request, "users.html", {"users": users})

    @app.get("/users-form", response_class=HTMLResponse)
    async def users_form(request: Request) -> HTMLResponse:
        return templates.TemplateResponse(request, "users_form.html", {})

    @app.post("/users", response_class=HTMLResponse, status_code=status.HTTP_201_CREATED)
    async def create_user(request: Request):
        payload = await read_user_payload(request)
        if payload is None:
            return missing_fields_response()
        user = await anyio.to_thread.run_sync(
            database.create_user, payload.name, payload.email, payload.resolved_role()
        )
        logger.info("Created user #%s <%s>", user.id, user.email)
        return templates.TemplateResponse(
            request,
            "user_created.html",
            {"user": user},
            status_code=status.HTTP_201_CREATED,
        )

    @app.get("/users/{raw_id}")
    async def read_user(raw_id: str):
        user_id = parse_user_id(raw_id)
        if user_id is None:
            return user_not_found_response()
        user = await anyio.to_thread.run_sync(database.get_user_by_id, user_id)
        if user is None:
            return user_not_found_response()
        return {"success": True, "data": user.to_dict()}

    @app.put("/users/{raw_id}")
    async def update_user(raw_id: str, request: Request):
        user_id = parse_user_id(raw_id)
        if user_id is None:
            return user_not_found_response()
        payload = await read_user_payload(request)
        if payload is None:
            return missing_fields_response()
        user = await anyio.to_thread.run_sync(
            database.update_user, user_id, payload.name, payload.email, payload.resolved_role()
        )
        if user is None:
            return user_not_found_response()
        return {"success": True, "message": "User updated successfully", "data": user.to_dict()}

    @app.delete("/users/{raw_id}")
    async def delete_user(raw_id: str):
        user_id = parse_user_id(raw_id)
        if user_id is None:
            return user_not_found_response()
        deleted = await anyio.to_thread.run_sync(database.delete_user, user_id)
        if not deleted:
            return user_not_found_response()
        return {"success": True, "message": "User deleted successfully"}

    @app.get("/admin/logs", response_class=HTMLResponse)
    async def admin_logs(request: Request, limit: Optional[int] = Query(default=None)) -> HTMLResponse:
        page_size = limit if limit is not None else settings.log_page_size
        logs = await anyio.to_thread.run_sync(database.get_logs, page_size)
        return templates.TemplateResponse(request, "admin_logs.html", {"logs": logs, "limit": page_size})

    @app.get("/admin/stats", response_class=HTMLResponse)
    async def admin_stats(request: Request) -> HTMLResponse:
        stats = await anyio.to_thread.run_sync(database.get_stats)
        return templates.TemplateResponse(
            request,
            "admin_stats.html",
            {"stats": stats, "failures": app.state.activity_log_failures},
        )

    @app.get("/api/logs")
    async def api_logs(limit: Optional[int] = Query(default=None)) -> Dict[str, object]:
        page_size = limit if limit is not None else settings.log_page_size
        logs = await anyio.to_thread.run_sync(database.get_logs, page_size)
        return {"success": True, "data": [entry.to_dict() for entry in logs], "count": len(logs)}

    @app.get("/api/stats")
    async def api_stats() -> Dict[str, object]:
        stats = await anyio.to_thread.run_sync(database.get_stats)
        return {"success": True, "data": stats.to_dict()}

    return app


__all__ = ["ENDPOINTS", "create_app"]
