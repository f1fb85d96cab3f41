"""Error types and handlers producing the standard ErrorResponse body."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for errors returned to the storefront.

    Subclasses set ``status_code``, ``error_type`` and ``default_message``;
    the message passed in must already be safe to show a shopper.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "api_error"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, details: list[dict[str, Any]] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"
    default_message = "Resource not found"


class ValidationError(APIError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_type = "validation_error"
    default_message = "Validation error"


class AuthenticationError(APIError):
    """Signature or credential check failed on an inbound request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "authentication_error"
    default_message = "Authentication required"


class ConfigurationError(APIError):
    """Admin API credentials missing or rejected; retrying will not help."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "configuration_error"
    default_message = "Service is not configured"


class CheckoutError(APIError):
    """A checkout step failed with a classified, user-safe message."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "checkout_error"
    default_message = "Checkout failed"


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


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Convert request parsing errors, dropping the leading ``body``/``query`` segment."""
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        if loc and loc[0] in ("body", "query", "header", "cookie", "path"):
            loc = loc[1:]
        details.append(
            {
                "loc": loc or None,
                "msg": error.get("msg", "Invalid value"),
                "type": error.get("type", "value_error"),
            }
        )
    return details


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Format body/query parsing failures like the orchestrator's field errors."""
    details = _validation_details(exc)
    logger.info("Request validation failed on %s: %d error(s)", request.url.path, len(details))
    return create_error_response(
        error_type=ValidationError.error_type,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details=details,
        request_id=request.headers.get("X-Request-ID"),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Format HTTPException raised by routes (webhook payload errors)."""
    logger.warning("HTTP exception on %s: %s - %s", request.url.path, exc.status_code, exc.detail)
    return create_error_response(
        error_type="http_error",
        message=str(exc.detail),
        status_code=exc.status_code,
        request_id=request.headers.get("X-Request-ID"),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Configuration errors are logged at error level since they need an
    operator; other API errors at warning. Unexpected exceptions are
    logged with their stack trace and returned as a generic 500.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    # Extract request ID if present (can be set by upstream middleware/load balancer)
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except APIError as e:
        log = logger.error if isinstance(e, ConfigurationError) else logger.warning
        log(
            "API error on %s: %s - %s",
            request.url.path,
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

    except Exception as e:
        logger.error(
            "Unhandled exception on %s: %s\n%s",
            request.url.path,
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
