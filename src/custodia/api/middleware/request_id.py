"""Request correlation IDs.

The gateway (or the client) may send X-Request-ID; otherwise one is minted.
The ID is echoed on every response, attached to error envelopes and stamped
on log records through RequestIDLogFilter.
"""

import logging
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    """Request ID being served, or None outside a request."""
    return request_id_ctx.get()


def _incoming_request_id(request: Request) -> str | None:
    value = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if not value or len(value) > MAX_REQUEST_ID_LENGTH:
        return None
    return value


class RequestIDLogFilter(logging.Filter):
    """Adds ``request_id`` to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id() or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds a request ID to the request context and response headers."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = _incoming_request_id(request) or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
