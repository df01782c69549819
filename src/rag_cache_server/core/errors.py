"""
Error Taxonomy and Global Error Handling

This module defines the exceptions shared by every layer of the service and
the application-wide FastAPI handlers that turn them into HTTP responses.

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
- Keep the taxonomy small: callers degrade on BackendUnavailable and
  treat ConfigMissing as fatal
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class ConfigError(ValueError):
    """Raised when a component is configured with inconsistent values."""


class ConfigMissing(RuntimeError):
    """Raised when a required endpoint or credential is not configured."""

    def __init__(self, *names: str) -> None:
        self.names = names
        super().__init__(f"Missing required configuration: {', '.join(names)}")


class InvalidPayload(ValueError):
    """Raised when a request payload fails validation."""

    def __init__(self, message: str, issues: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.issues = issues or []


class BackendUnavailable(RuntimeError):
    """Raised when a remote backend (vector, key-value, model) fails."""


class RateLimited(BackendUnavailable):
    """
    Raised when a backend throttles a request.

    `upserted` carries the number of records already committed when the
    limit was hit, so callers can report partial progress.
    """

    def __init__(self, message: str = "Rate limit exceeded", upserted: int = 0) -> None:
        super().__init__(message)
        self.upserted = upserted


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def config_missing_handler(request: Request, exc: ConfigMissing) -> JSONResponse:
    logger.error(
        "Configuration missing during request %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "config_missing", "detail": str(exc)},
    )


async def invalid_payload_handler(request: Request, exc: InvalidPayload) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "Invalid payload", "issues": exc.issues},
    )


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Report body validation failures as 400 with field-level detail.

    FastAPI's default is 422; clients of this service expect 400 together
    with the list of issues.
    """
    issues = [
        {
            "path": [str(part) for part in err.get("loc", ())],
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "Invalid payload", "issues": issues},
    )


async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    logger.warning(
        "Backend rate limit hit on %s after %d records",
        request.url.path,
        exc.upserted,
    )
    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "error": "Rate limit exceeded",
            "message": "Vector backend rate limit reached. Please wait a moment and try again.",
            "upserted": exc.upserted,
        },
    )


async def backend_unavailable_handler(
    request: Request,
    exc: BackendUnavailable,
) -> JSONResponse:
    logger.error(
        "Backend unavailable during request %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return JSONResponse(
        status_code=502,
        content={"error": "backend_unavailable", "detail": "Upstream backend unavailable"},
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Last-resort handler: log the traceback, answer with an opaque 500.

    Registered for `Exception`, so it only sees what no handler above
    claimed. The response body never carries exception text.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "detail": "Internal server error"},
    )
