"""Global exception handlers for consistent error responses.

- QuotaExceededError → 429 with the same body the middleware renders
- AppError subclasses → appropriate HTTP status (400, 403, 500)
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from governor.core.errors import (
    AppError,
    AuthenticationAppError,
    InvalidPolicyConfigurationError,
    QuotaExceededError,
    StoreUnavailableError,
)
from governor.core.logging import get_request_id

logger = logging.getLogger(__name__)


async def quota_exceeded_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
    """Render a quota denial raised from a route dependency.

    The body matches the one produced for middleware denials:
    ``{"success": false, "message": ..., "retryAfter": ...}``.
    """

    retry_after = exc.decision.retry_after_seconds or 0
    headers: dict[str, str] = {}
    if request.app.state.settings.rate_limit.include_headers:
        headers = exc.decision.headers()

    return JSONResponse(
        status_code=429,
        content={"success": False, "message": exc.message, "retryAfter": retry_after},
        headers=headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - AuthenticationAppError → 403 Forbidden
    - InvalidPolicyConfigurationError, StoreUnavailableError → 500
    - anything else → 400 Bad Request

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, (InvalidPolicyConfigurationError, StoreUnavailableError)):
        status_code = 500

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure and returns a generic message without implementation
    details.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Specific handlers are registered before the general fallback.

    Example:
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(QuotaExceededError)(quota_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
