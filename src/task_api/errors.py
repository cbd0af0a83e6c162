from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Mapping, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .settings import Settings

logger = logging.getLogger(__name__)

FieldError = Dict[str, str]


# PUBLIC_INTERFACE
class AppError(Exception):
    """
    Base class for every failure the API reports to clients.

    Each subclass fixes an HTTP status; the terminal translator renders all of
    them with the same failure envelope.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[List[FieldError]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        self.headers = dict(headers) if headers else None
        super().__init__(self.message)


class ValidationFailure(AppError):
    """One or more field-level violations."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"

    def __init__(self, details: List[FieldError], message: Optional[str] = None) -> None:
        super().__init__(message, details=list(details))

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailure":
        return cls([{"field": field, "message": message}])


class Unauthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authorized"

    def __init__(self, message: Optional[str] = None, *, reason: str = "invalid_token") -> None:
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})
        self.reason = reason


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Conflict(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Resource already exists"


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests, please try again later"

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 0) -> None:
        headers = {"Retry-After": str(retry_after)} if retry_after > 0 else None
        super().__init__(message, headers=headers)
        self.retry_after = retry_after


class MalformedPayload(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid JSON payload"


class Internal(AppError):
    pass


# PUBLIC_INTERFACE
def error_body(message: str, details: Optional[List[FieldError]] = None, **extra: Any) -> Dict[str, Any]:
    """
    Build the failure envelope shared by every error response:

        {"success": false, "error": {"message": ..., "details"?: [...], ...}}
    """
    error: Dict[str, Any] = {"message": message}
    if details:
        error["details"] = details
    error.update(extra)
    return {"success": False, "error": error}


def _field_path(loc: Any) -> str:
    return ".".join(str(part) for part in loc)


# PUBLIC_INTERFACE
def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Install the terminal error translator on the app.

    Known AppErrors keep their status, framework errors are mapped onto the same
    envelope, and anything else becomes a 500 whose body carries a stack trace
    only outside production.
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.details),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [{"field": _field_path(e.get("loc", ())), "message": e.get("msg", "")} for e in exc.errors()]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(ValidationFailure.default_message, details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            message = f"Route not found: {request.method} {request.url.path}"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        extra: Dict[str, Any] = {}
        if not settings.is_production:
            extra["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(Internal.default_message, **extra),
        )
