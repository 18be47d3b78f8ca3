"""API middleware for authentication and request logging."""

import hmac
import logging
import re
import time
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

_WORKSPACE_PATH = re.compile(r"^/api/v1/workspaces/([^/]+)")


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _workspace(request: Request) -> Optional[str]:
    match = _WORKSPACE_PATH.match(request.url.path)
    return match.group(1) if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request, tagged with the workspace when there is one."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        workspace = _workspace(request)
        logger.info(
            "%s %s status=%s duration=%.3fs client=%s%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            _client(request),
            f" workspace={workspace}" if workspace else "",
        )
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        return response


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Requires the configured key as ``Authorization: Bearer`` or ``X-API-Key``.

    Health probes and the OpenAPI docs stay open.
    """

    open_prefixes = ("/health", "/docs", "/redoc", "/openapi.json")

    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    def _provided_key(self, request: Request) -> Optional[str]:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header[len("Bearer "):]
        return request.headers.get("X-API-Key")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.open_prefixes):
            return await call_next(request)

        provided = self._provided_key(request)
        if not provided or not hmac.compare_digest(provided, self.api_key):
            logger.warning(
                "Unauthorized request: %s %s client=%s",
                request.method, request.url.path, _client(request),
            )
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "detail": "Invalid or missing API key"},
            )

        return await call_next(request)
