"""Global error handling for consistent error responses.

Services raise the ``APIError`` subclasses below; they are rendered into
the standard ``ErrorResponse`` envelope by ``api_error_handler`` and the
catch-all ``error_handler_middleware``.
"""

import logging
import time
import traceback
from enum import Enum
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Domain error codes returned in the ``error`` field."""

    INVALID_TRANSITION = "INVALID_TRANSITION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    UNVERIFIED_PAYMENT = "UNVERIFIED_PAYMENT"
    DEPENDENCY_DEGRADED = "DEPENDENCY_DEGRADED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class APIError(Exception):
    """Base exception for API errors.

    Raise subclasses of this to return an application-specific error to
    the client with a specific status code and error code.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = ErrorCode.INTERNAL_ERROR.value,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error code for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type=ErrorCode.NOT_FOUND.value,
            details=details,
        )


class ValidationError(APIError):
    """Request validation error."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type=ErrorCode.VALIDATION_ERROR.value,
            details=details,
        )


class PermissionDeniedError(APIError):
    """Actor is not allowed to perform the requested transition."""

    def __init__(self, message: str = "Permission denied", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_type=ErrorCode.PERMISSION_DENIED.value,
            details=details,
        )


class InvalidTransitionError(APIError):
    """Requested state transition is not allowed from the current state."""

    def __init__(self, entity: str, current: str, requested: str) -> None:
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(
            message=f"Cannot move {entity} from '{current}' to '{requested}'",
            status_code=status.HTTP_409_CONFLICT,
            error_type=ErrorCode.INVALID_TRANSITION.value,
            details=[
                {
                    "msg": "transition not allowed",
                    "type": "invalid_transition",
                    "context": {"entity": entity, "current": current, "requested": requested},
                }
            ],
        )


class ConflictError(APIError):
    """The resource already exists or was changed concurrently."""

    def __init__(self, message: str = "Conflict", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_type=ErrorCode.CONFLICT.value,
            details=details,
        )


class RateLimitError(APIError):
    """Rate limit exceeded error."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 60,
        limit: int | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type=ErrorCode.RATE_LIMITED.value,
            details=details,
        )
        self.retry_after = retry_after
        self.limit = limit


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error code for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


def _render_api_error(e: APIError, request_id: str | None) -> JSONResponse:
    if isinstance(e, RateLimitError):
        logger.warning("Rate limit exceeded: %s (retry after %ss)", e.message, e.retry_after)
        response = create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )
        response.headers["Retry-After"] = str(e.retry_after)
        if e.limit is not None:
            response.headers["X-RateLimit-Limit"] = str(e.limit)
        response.headers["X-RateLimit-Remaining"] = "0"
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + e.retry_after)
        return response

    logger.warning("API error: %s - %s", e.error_type, e.message)
    return create_error_response(
        error_type=e.error_type,
        message=e.message,
        status_code=e.status_code,
        details=e.details,
        request_id=request_id,
    )


async def api_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler registered on the app for ``APIError``."""
    assert isinstance(exc, APIError)
    return _render_api_error(exc, request.headers.get("X-Request-ID"))


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Logs full stack traces for debugging while returning safe messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        response = await call_next(request)
        return response

    except APIError as e:
        return _render_api_error(e, request_id)

    except HTTPException as e:
        logger.warning("HTTP exception: %s - %s", e.status_code, e.detail)
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error("Unhandled exception: %s\n%s", str(e), traceback.format_exc())
        return create_error_response(
            error_type=ErrorCode.INTERNAL_ERROR.value,
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
