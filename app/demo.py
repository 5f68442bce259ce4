"""JSON-only demo service backed by an in-memory user repository."""

from __future__ import annotations

import time
from typing import Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from .database import UniqueConstraintViolation
from .diagnostics import (
    api_info,
    duplicate_email_response,
    echo_payload,
    health_info,
    missing_fields_response,
    parse_user_id,
    read_user_payload,
    register_not_found_handler,
    status_info,
    user_not_found_response,
)
from .memory import InMemoryUserRepository

ENDPOINTS: List[str] = [
    "GET /",
    "GET /health",
    "GET /api",
    "GET /users",
    "POST /users",
    "GET /users/:id",
    "PUT /users/:id",
    "DELETE /users/:id",
    "GET /status",
    "POST /echo",
]


def create_demo_app(*, repository: Optional[InMemoryUserRepository] = None) -> FastAPI:
    """Create the demo service. State lives only as long as the process."""

    if repository is None:
        repository = InMemoryUserRepository()

    app = FastAPI(title="Userdesk Demo", version="1.0.0")
    app.state.repository = repository
    app.state.started_at = time.monotonic()
    register_not_found_handler(app, ENDPOINTS)

    @app.exception_handler(UniqueConstraintViolation)
    async def _duplicate_handler(request: Request, exc: UniqueConstraintViolation) -> JSONResponse:
        return duplicate_email_response()

    @app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return "Hello from the Userdesk demo server!"

    @app.get("/health")
    async def health() -> Dict[str, object]:
        return health_info(app.state.started_at)

    @app.get("/api")
    async def api_index() -> Dict[str, object]:
        return api_info(ENDPOINTS)

    @app.get("/status")
    async def server_status() -> Dict[str, object]:
        return status_info("FastAPI")

    @app.post("/echo")
    async def echo(request: Request) -> Dict[str, object]:
        return await echo_payload(request)

    @app.get("/users")
    async def list_users() -> Dict[str, object]:
        users = repository.get_all_users()
        return {"success": True, "data": [user.to_dict() for user in users], "count": len(users)}

    @app.post("/users", status_code=status.HTTP_201_CREATED)
    async def create_user(request: Request):
        payload = await read_user_payload(request)
        if payload is None:
            return missing_fields_response()
        user = repository.create_user(payload.name, payload.email, payload.resolved_role())
        return {"success": True, "message": "User created successfully", "data": user.to_dict()}

    @app.get("/users/{raw_id}")
    async def read_user(raw_id: str):
        user_id = parse_user_id(raw_id)
        if user_id is None:
            return user_not_found_response()
        user = repository.get_user_by_id(user_id)
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
        user = repository.update_user(user_id, payload.name, payload.email, payload.resolved_role())
        if user is None:
            return user_not_found_response()
        return {"success": True, "message": "User updated successfully", "data": user.to_dict()}

    @app.delete("/users/{raw_id}")
    async def delete_user(raw_id: str):
        user_id = parse_user_id(raw_id)
        if user_id is None:
            return user_not_found_response()
        if not repository.delete_user(user_id):
            return user_not_found_response()
        return {"success": True, "message": "User deleted successfully"}

    return app


__all__ = ["ENDPOINTS", "create_demo_app"]
