"""Uniform JSON error envelope.

    {"error": "<code>", "message": "...", "request_id": "...", "detail": {...}}

Domain errors raised by the services carry their own ``code``; the HTTP
status is looked up in CUSTODY_ERROR_STATUS. ``request_id`` and ``detail``
are omitted when empty.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from custodia.api.middleware.request_id import get_request_id
from custodia.services.errors import CustodyError

logger = logging.getLogger(__name__)

CUSTODY_ERROR_STATUS: dict[str, int] = {
    "validation_error": 400,
    "not_found": 404,
    "invalid_transition": 409,
    "segregation_violation": 403,
    "insufficient_stock": 409,
    "conflict": 409,
    "persistence_unavailable": 503,
}


class APIError(Exception):
    """Error rendered as-is into the envelope."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    @classmethod
    def from_custody_error(cls, exc: CustodyError) -> "APIError":
        """Wrap a domain error, keeping its code and detail."""
        detail = dict(exc.detail)
        if exc.retryable:
            detail["retryable"] = True
        return cls(
            error=exc.code,
            message=exc.message,
            status_code=CUSTODY_ERROR_STATUS.get(exc.code, 400),
            detail=detail or None,
        )

    def to_response(self) -> JSONResponse:
        return build_error_response(self.error, self.message, self.status_code, self.detail)


class AuthenticationError(APIError):
    """Missing or malformed actor identity (401)."""

    def __init__(
        self, message: str = "Actor identity required", detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__("unauthorized", message, status_code=401, detail=detail)


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    """Render the error envelope for the current request."""
    body: dict[str, Any] = {"error": error, "message": message}
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def _as_api_error(exc: Exception) -> APIError | None:
    if isinstance(exc, APIError):
        return exc
    if isinstance(exc, CustodyError):
        return APIError.from_custody_error(exc)
    if isinstance(exc, HTTPException):
        return APIError("http_error", str(exc.detail), status_code=exc.status_code)
    if isinstance(exc, ValidationError):
        return APIError(
            "validation_error",
            "Request validation failed",
            status_code=422,
            detail={"errors": exc.errors(include_url=False)},
        )
    return None


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns exceptions escaping the routers into error envelopes.

    Known errors (APIError, domain errors, HTTPException, pydantic
    ValidationError) keep their code. Anything else is logged with its
    traceback and rendered as a 500 ``internal_error``.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            api_error = _as_api_error(exc)
            if api_error is None:
                logger.exception(
                    "Unhandled error on %s %s",
                    request.method,
                    request.url.path,
                )
                api_error = APIError("internal_error", "An internal error occurred", 500)
            elif api_error.status_code >= 500:
                logger.error(
                    "Request failed: %s %s -> %s",
                    request.method,
                    request.url.path,
                    api_error.error,
                    extra={"detail": api_error.detail},
                )
            return api_error.to_response()
