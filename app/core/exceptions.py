from typing import Dict, Any, Optional
from datetime import datetime
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)


class BaseCustomException(Exception):
    """Base class for workboard errors.

    Subclasses pick the HTTP status and the default error code; callers only
    supply the message and, where useful, structured details.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal error"
    default_error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.error_code = error_code or self.default_error_code
        super().__init__(self.message)


class ValidationError(BaseCustomException):
    """Missing mandatory fields or malformed input"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Validation failed"
    default_error_code = "VALIDATION_ERROR"


class AuthenticationError(BaseCustomException):
    """Missing or unusable caller credentials"""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"
    default_error_code = "AUTHENTICATION_ERROR"


class AuthorizationError(BaseCustomException):
    """Caller's role may not act on the requested test category"""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"
    default_error_code = "AUTHORIZATION_ERROR"


class NotFoundError(BaseCustomException):
    """Resource absent, or absent within the caller's hospital"""
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"
    default_error_code = "NOT_FOUND_ERROR"


class ConflictError(BaseCustomException):
    """Current status no longer satisfies the operation's precondition"""
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource conflict"
    default_error_code = "CONFLICT_ERROR"


class DatabaseError(BaseCustomException):
    default_message = "Database operation failed"
    default_error_code = "DATABASE_ERROR"


class ExternalServiceError(BaseCustomException):
    """A collaborator (template catalog, notifier) could not be reached"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "External service error"
    default_error_code = "EXTERNAL_SERVICE_ERROR"


class ErrorResponse(BaseModel):
    """Body returned for every workboard error"""
    error: str
    message: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None
    request_id: Optional[str] = None


def create_error_response(
    exception: BaseCustomException,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    response = ErrorResponse(
        error=exception.__class__.__name__.replace("Error", " Error"),
        message=exception.message,
        error_code=exception.error_code,
        details=exception.details or None,
        timestamp=datetime.utcnow().isoformat(),
        request_id=request_id,
    )
    return response.model_dump(exclude_none=True)


def handle_database_error(error: Exception, operation: str = "database operation") -> DatabaseError:
    """Wrap a driver failure without leaking SQL to the client"""
    logger.error(f"Database error during {operation}: {error}")

    message = "Database operation failed"
    if "connection" in str(error).lower():
        message = "Database connection failed"
    elif "timeout" in str(error).lower():
        message = "Database operation timed out"

    return DatabaseError(message=message, details={"operation": operation})


def handle_external_service_error(
    error: Exception,
    service_name: str,
    operation: str = "request"
) -> ExternalServiceError:
    """Wrap a collaborator failure so callers can log it uniformly"""
    logger.error(f"External service error for {service_name}: {error}")

    return ExternalServiceError(
        message=f"External service {service_name} unavailable",
        details={
            "service_name": service_name,
            "operation": operation,
            "original_error": str(error)
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every workboard error as an ErrorResponse body"""

    @app.exception_handler(BaseCustomException)
    async def custom_exception_handler(request: Request, exc: BaseCustomException):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(exc, request.headers.get("X-Request-ID")),
            headers=headers,
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        error = handle_database_error(exc, f"{request.method} {request.url.path}")
        return JSONResponse(
            status_code=error.status_code,
            content=create_error_response(error, request.headers.get("X-Request-ID")),
        )
