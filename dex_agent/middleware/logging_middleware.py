"""
HTTP request logging middleware.

Binds a request id (and the conversation id for ``/chat/{id}/...`` routes) to
the structlog context so every orchestrator event of a request carries them,
then logs one ``http_request`` line per request.
"""

import re
import time
import uuid
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("dex_agent.http")

_CONVERSATION_PATH_RE = re.compile(r"^/chat/([^/]+)/(?:cancel|reset)$")
_QUIET_PATHS = frozenset({"/healthz"})


def _conversation_id(path: str) -> Optional[str]:
    match = _CONVERSATION_PATH_RE.match(path)
    return match.group(1) if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with timing, status and conversation context."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        conversation_id = _conversation_id(path)
        if conversation_id:
            structlog.contextvars.bind_contextvars(conversation_id=conversation_id)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            fields = {
                "method": request.method,
                "path": path,
                "status": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            }
            if status_code >= 500:
                logger.error("http_request", **fields)
            elif status_code >= 400:
                logger.warning("http_request", **fields)
            elif path in _QUIET_PATHS:
                logger.debug("http_request", **fields)
            else:
                logger.info("http_request", **fields)
