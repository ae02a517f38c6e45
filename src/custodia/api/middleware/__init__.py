"""Custodia API middleware components.

This module provides:
- Request ID tracking for request correlation
- Consistent error response formatting
- Actor identity from gateway headers
"""

from custodia.api.middleware.auth import ActorContext, CurrentActor, require_actor
from custodia.api.middleware.errors import (
    APIError,
    AuthenticationError,
    ErrorHandlerMiddleware,
    build_error_response,
)
from custodia.api.middleware.request_id import RequestIDMiddleware, get_request_id

__all__ = [
    "APIError",
    "ActorContext",
    "AuthenticationError",
    "CurrentActor",
    "ErrorHandlerMiddleware",
    "RequestIDMiddleware",
    "build_error_response",
    "get_request_id",
    "require_actor",
]
