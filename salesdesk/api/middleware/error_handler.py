"""Error handling middleware and exception handlers."""

import logging
from datetime import datetime

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Operational error carrying an HTTP status and a machine-readable code."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class AuthenticationError(AppError):
    """Credentials missing, wrong, or unverifiable."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"


class ErrorResponse:
    """Standardized error response format."""

    @staticmethod
    def create(
        error_type: str,
        message: str,
        details: str | dict | list | None = None,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    ) -> JSONResponse:
        """Create error response.

        Args:
            error_type: Error type identifier
            message: Human-readable error message
            details: Additional error details
            status_code: HTTP status code

        Returns:
            JSONResponse with error information
        """
        content = {
            "error": {
                "type": error_type,
                "message": message,
            }
        }

        if details:
            content["error"]["details"] = details

        return JSONResponse(
            status_code=status_code,
            content=content,
        )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render route-level HTTP errors.

    A string detail becomes ``{"error": detail}``; a dict detail is returned
    as the response body unchanged.
    """
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle operational errors raised by services.

    Args:
        request: FastAPI request
        exc: Application error

    Returns:
        JSON error response
    """
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {"message": exc.message, "code": exc.code},
            "timestamp": datetime.utcnow().isoformat(),
        },
        headers={"Cache-Control": "no-cache"},
    )


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic validation errors.

    Args:
        request: FastAPI request
        exc: Validation error

    Returns:
        JSON error response
    """
    logger.warning(f"Validation error: {exc}")

    return ErrorResponse.create(
        error_type="validation_error",
        message="Request validation failed",
        details=exc.errors(include_url=False, include_context=False),
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors that escaped a route.

    Args:
        request: FastAPI request
        exc: SQLAlchemy error

    Returns:
        JSON error response with a user-friendly message
    """
    logger.error(f"Database error: {exc}")

    if isinstance(exc, IntegrityError):
        return ErrorResponse.create(
            error_type="duplicate_error",
            message="A record with this information already exists",
            status_code=status.HTTP_409_CONFLICT,
        )
    if isinstance(exc, OperationalError):
        return ErrorResponse.create(
            error_type="database_unavailable",
            message="Database connection failed",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return ErrorResponse.create(
        error_type="database_error",
        message="Database operation failed",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def permission_exception_handler(request: Request, exc: PermissionError) -> JSONResponse:
    """Handle permission errors.

    Args:
        request: FastAPI request
        exc: Permission error

    Returns:
        JSON error response
    """
    logger.warning(f"Permission denied: {exc}")

    return ErrorResponse.create(
        error_type="permission_denied",
        message=str(exc),
        status_code=status.HTTP_403_FORBIDDEN,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Args:
        request: FastAPI request
        exc: Any exception

    Returns:
        JSON error response
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    return ErrorResponse.create(
        error_type="internal_error",
        message="An unexpected error occurred. Please try again later.",
        details=str(exc) if logger.isEnabledFor(logging.DEBUG) else None,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
