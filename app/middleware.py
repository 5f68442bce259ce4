"""Request middleware that records every inbound request in the activity log."""

from __future__ import annotations

import logging

import anyio
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .database import Database

logger = logging.getLogger("userdesk.middleware")


class ActivityLoggingMiddleware(BaseHTTPMiddleware):
    """Write one log row per request before it is dispatched.

    Logging is best effort: a failing write is reported through the standard
    logger, counted on ``app.state.activity_log_failures`` and otherwise
    ignored so the request itself is always served.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        database: Database = request.app.state.database
        path = request.url.path
        client_ip = request.client.host if request.client else None
        try:
            await anyio.to_thread.run_sync(
                database.log_activity,
                "INFO",
                f"{request.method} {path}",
                path,
                request.headers.get("user-agent"),
                client_ip,
            )
        except Exception:
            request.app.state.activity_log_failures = getattr(request.app.state, "activity_log_failures", 0) + 1
            logger.exception("Failed to record activity for %s %s", request.method, path)

        return await call_next(request)


__all__ = ["ActivityLoggingMiddleware"]
