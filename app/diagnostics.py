"""Diagnostic endpoints and request helpers shared by both service variants."""

from __future__ import annotations

import os
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import DEFAULT_ROLE

API_VERSION = "1.0.0"

MISSING_FIELDS_MESSAGE = "Name and email are required"

MAX_USER_ID = 2**63 - 1


class UserPayload(BaseModel):
    """Body accepted when creating or replacing a user."""

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    role: Optional[str] = None

    @field_validator("name", "email", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    def resolved_role(self) -> str:
        role = (self.role or "").strip()
        return role or DEFAULT_ROLE


async def read_body(request: Request) -> object:
    """Return the parsed JSON or form body, or an empty mapping."""

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return await request.json()
    except ValueError:
        return {}


async def read_user_payload(request: Request) -> Optional[UserPayload]:
    data = await read_body(request)
    if not isinstance(data, dict):
        return None
    try:
        return UserPayload.model_validate(data)
    except ValidationError:
        return None


def parse_user_id(raw_id: str) -> Optional[int]:
    """Return the numeric user id in a path segment, or None if it is not one."""

    try:
        user_id = int(raw_id)
    except ValueError:
        return None
    if user_id < 0 or user_id > MAX_USER_ID:
        return None
    return user_id


def missing_fields_response() -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": MISSING_FIELDS_MESSAGE},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def user_not_found_response() -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": "User not found"},
        status_code=status.HTTP_404_NOT_FOUND,
    )


def duplicate_email_response() -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": "A user with that email already exists"},
        status_code=status.HTTP_409_CONFLICT,
    )


def memory_usage_mb() -> float:
    """Peak resident memory of this process in megabytes."""

    try:
        import resource
    except ImportError:
        # Not available on Windows.
        return 0.0

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is reported in bytes on macOS and kilobytes elsewhere.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 1)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def health_info(started_at: float) -> Dict[str, object]:
    return {
        "status": "healthy",
        "timestamp": utc_timestamp(),
        "uptime": round(time.monotonic() - started_at, 2),
        "version": API_VERSION,
    }


def status_info(server: str) -> Dict[str, object]:
    return {
        "server": server,
        "status": "running",
        "environment": os.getenv("USERDESK_ENV", "development"),
        "memory": {"peak": f"{memory_usage_mb()} MB"},
        "pid": os.getpid(),
        "platform": sys.platform,
        "python_version": platform.python_version(),
    }


def api_info(endpoints: Sequence[str]) -> Dict[str, object]:
    return {
        "message": "Userdesk API Server",
        "version": API_VERSION,
        "endpoints": list(endpoints),
    }


async def echo_payload(request: Request) -> Dict[str, object]:
    return {
        "message": "Echo response",
        "receivedData": await read_body(request),
        "timestamp": utc_timestamp(),
        "method": request.method,
        "headers": dict(request.headers),
    }


def register_not_found_handler(app: FastAPI, endpoints: List[str]) -> None:
    """Answer unmatched routes with a JSON description of what exists."""

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return JSONResponse(
                {
                    "success": False,
                    "message": "Endpoint not found",
                    "requestedPath": request.url.path,
                    "method": request.method,
                    "availableEndpoints": endpoints,
                },
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return JSONResponse(
            {"success": False, "message": str(exc.detail)},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )


__all__ = [
    "API_VERSION",
    "MISSING_FIELDS_MESSAGE",
    "UserPayload",
    "api_info",
    "duplicate_email_response",
    "echo_payload",
    "health_info",
    "memory_usage_mb",
    "missing_fields_response",
    "parse_user_id",
    "read_body",
    "read_user_payload",
    "register_not_found_handler",
    "status_info",
    "user_not_found_response",
]
