"""Global error handling middleware for consistent error responses."""

import logging
import time
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error category/type for client handling.
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
            error_type="not_found",
            details=details,
        )


class ValidationError(APIError):
    """Malformed input or missing required fields."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="validation_error",
            details=details,
        )


class AuthenticationError(APIError):
    """Authentication failure error."""

    def __init__(self, message: str = "Authentication required", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="authentication_error",
            details=details,
        )


class AuthorizationError(APIError):
    """Authorization failure error."""

    def __init__(self, message: str = "Access denied", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_type="authorization_error",
            details=details,
        )


class RateLimitError(APIError):
    """Rate limit exceeded error."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 60,
        details: list[dict[str, Any]] | None = None,
        error_type: str = "rate_limit_exceeded",
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type=error_type,
            details=details,
        )
        self.retry_after = retry_after


class TooSoonError(RateLimitError):
    """A code was requested while the previous one is still fresh."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            message=f"Please wait {retry_after} seconds before requesting a new code",
            retry_after=retry_after,
            error_type="too_soon",
        )


class CodeExpiredError(APIError):
    """Verification code is past its expiry."""

    def __init__(self, message: str = "Verification code has expired. Please request a new one.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_410_GONE,
            error_type="code_expired",
        )


class TooManyAttemptsError(APIError):
    """Attempt ceiling reached; the code has been purged."""

    def __init__(self, message: str = "Too many failed attempts. Please request a new code.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type="too_many_attempts",
        )


class InvalidCodeError(APIError):
    """Submitted code does not match."""

    def __init__(self, remaining_attempts: int) -> None:
        plural = "" if remaining_attempts == 1 else "s"
        super().__init__(
            message=f"Invalid verification code. {remaining_attempts} attempt{plural} remaining.",
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="invalid_code",
            details=[{"loc": ["code"], "msg": str(remaining_attempts), "type": "remaining_attempts"}],
        )
        self.remaining_attempts = remaining_attempts


class ConflictError(APIError):
    """The resource already exists."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_type="conflict",
        )


class InvalidTransitionError(APIError):
    """Order state machine rejected a status change."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            message=f"Cannot move order from '{current}' to '{requested}'",
            status_code=status.HTTP_409_CONFLICT,
            error_type="invalid_transition",
        )
        self.current = current
        self.requested = requested


class ExternalServiceError(APIError):
    """An outbound provider (SMS, email, payments) failed."""

    def __init__(self, service: str, message: str, transient: bool = False) -> None:
        super().__init__(
            message=f"{service} error: {message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_type="external_service_error",
        )
        self.service = service
        self.transient = transient


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
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


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Logs full stack traces for unexpected errors while returning safe
    messages to clients.

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

    except RateLimitError as e:
        logger.warning(
            "Rate limit exceeded: %s",
            e.message,
            extra={"request_id": request_id, "retry_after": e.retry_after},
        )
        response = create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )
        response.headers["Retry-After"] = str(e.retry_after)
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + e.retry_after)
        return response

    except InvalidTransitionError as e:
        # Integration bug rather than user error
        logger.error(
            "Rejected order transition %s -> %s on %s",
            e.current,
            e.requested,
            request.url.path,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            request_id=request_id,
        )

    except APIError as e:
        logger.warning(
            "API error: %s - %s",
            e.error_type,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
