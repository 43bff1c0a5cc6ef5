"""
JudgeSync - Error Handling

Error taxonomy for the sync core and the FastAPI handlers that turn it into
consistent JSON responses.

HTTP-facing:
    ValidationError       400  malformed input, no side effect
    AuthError             401  missing/invalid key or signature (message never varies)
    RateLimitExceeded     429  with a reset hint
    RateLimiterUnavailable 503 counter store down while failing closed
    FatalSyncFailure      500  run aborted before completion

Upstream (raised inside sync runs, never returned to HTTP callers directly):
    TransientUpstreamError  5xx / 429 / transport errors, retried per item
    AuthenticationError     upstream rejected our token, aborts the run
    MappingError            one record could not be mapped, item is skipped
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

ERROR_VALIDATION = "validation_error"
ERROR_UNAUTHORIZED = "unauthorized"
ERROR_RATE_LIMITED = "rate_limit_exceeded"
ERROR_SERVICE_UNAVAILABLE = "service_unavailable"
ERROR_SYNC_FAILED = "sync_failed"
ERROR_INTERNAL = "internal_error"


# =============================================================================
# Error Response Model
# =============================================================================


class ErrorDetail(BaseModel):
    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error body returned by every handler below."""

    success: bool = False
    error: str
    message: str
    status_code: int
    timestamp: str
    reset: int | None = None
    details: list[ErrorDetail] | None = None


# =============================================================================
# Exceptions
# =============================================================================


class JudgeSyncError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = ERROR_INTERNAL

    def __init__(self, message: str = "Internal error"):
        super().__init__(message)
        self.message = message


class ValidationError(JudgeSyncError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ERROR_VALIDATION

    def __init__(self, message: str = "Invalid request", details: list[ErrorDetail] | None = None):
        super().__init__(message)
        self.details = details


class AuthError(JudgeSyncError):
    """Authentication failed. The message is fixed so callers learn nothing."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = ERROR_UNAUTHORIZED

    def __init__(self) -> None:
        super().__init__("Unauthorized")


class RateLimitExceeded(JudgeSyncError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = ERROR_RATE_LIMITED

    def __init__(self, reset: int, limit: int | None = None):
        super().__init__("Rate limit exceeded")
        self.reset = reset
        self.limit = limit


class RateLimiterUnavailable(JudgeSyncError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = ERROR_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Rate limiting service unavailable"):
        super().__init__(message)


class FatalSyncFailure(JudgeSyncError):
    """A sync run aborted before completion. The audit row has been written."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = ERROR_SYNC_FAILED

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class UpstreamError(Exception):
    """Base class for failures talking to CourtListener."""


class TransientUpstreamError(UpstreamError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class CircuitOpenError(TransientUpstreamError):
    def __init__(self, endpoint: str):
        super().__init__(f"Circuit open for upstream endpoint '{endpoint}'")
        self.endpoint = endpoint


class AuthenticationError(UpstreamError):
    """Upstream rejected our credentials (401/403)."""


class MappingError(Exception):
    def __init__(self, message: str, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail] | None = None,
    reset: int | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    body = ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        timestamp=datetime.now(timezone.utc).isoformat(),
        reset=reset,
        details=details,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


async def judgesync_exception_handler(request: Request, exc: JudgeSyncError) -> JSONResponse:
    headers: dict[str, str] | None = None
    reset: int | None = None

    if isinstance(exc, RateLimitExceeded):
        reset = exc.reset
        retry_after = max(0, int((exc.reset - _now_ms()) / 1000) + 1)
        headers = {"Retry-After": str(retry_after)}

    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.message}",
            extra={"status": exc.status_code},
        )

    return create_error_response(
        status_code=exc.status_code,
        error=exc.code,
        message=exc.message,
        details=getattr(exc, "details", None),
        reset=reset,
        headers=headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body/query validation failures are plain 400s."""
    details = []
    for error in exc.errors():
        loc = error.get("loc", [])
        details.append(
            ErrorDetail(
                field=".".join(str(x) for x in loc) if loc else None,
                message=error.get("msg", "Validation error"),
                code=error.get("type", "validation"),
            )
        )

    logger.warning(f"Validation error on {request.url.path}: {len(details)} errors")

    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        error=ERROR_VALIDATION,
        message="Request validation failed",
        details=details,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the traceback, return a generic 500."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=ERROR_INTERNAL,
        message="An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(JudgeSyncError, judgesync_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
