"""Global exception handlers for the local API.

Every error leaves as the same envelope:
{"success": false, "error": {"code", "message", "details"?}}.
Internal details are only exposed when DEBUG is on.
"""

import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from inspection_sync.config import settings
from inspection_sync.services.remote import RemoteServiceError

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: list | None = None,
) -> JSONResponse:
    body: dict = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
        },
    }
    if details:
        body["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _field_errors(errors: list[dict]) -> list[dict]:
    return [
        {
            "field": " -> ".join(str(part) for part in err.get("loc", [])),
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "value_error"),
        }
        for err in errors
    ]


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Routes raise these for session state errors (409) and remote failures (502)."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_response(
        status_code=exc.status_code,
        code=f"HTTP_{exc.status_code}",
        message=detail,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies and query parameters."""
    return _error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        message="Request validation failed. Check the details for specific field errors.",
        details=_field_errors(exc.errors()),
    )


async def value_validation_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """A response value or remote payload that does not fit its schema.

    Raised inside the services rather than while parsing the request, so it
    would otherwise be reported as a plain ValueError.
    """
    logger.info("Rejected %s on %s %s", exc.title, request.method, request.url.path)
    return _error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="INVALID_VALUE",
        message=f"Invalid {exc.title} value.",
        details=_field_errors(exc.errors()),
    )


async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """Misuse of the session: no active inspection, unknown item, edit after submit."""
    return _error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        code="BAD_REQUEST",
        message=str(exc),
    )


async def remote_service_error_handler(
    request: Request, exc: RemoteServiceError
) -> JSONResponse:
    """A remote call that escaped the controller.

    Unreachable service -> 503, missing remote record -> 404, anything the
    remote rejected -> 502 carrying its status.
    """
    logger.warning(
        "Remote service error on %s %s (status %s): %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
    )
    if exc.status_code is None:
        return _error_response(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="REMOTE_UNAVAILABLE",
            message=exc.message,
        )
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return _error_response(
            status_code=status.HTTP_404_NOT_FOUND,
            code="REMOTE_NOT_FOUND",
            message=exc.message,
        )
    return _error_response(
        status_code=status.HTTP_502_BAD_GATEWAY,
        code="REMOTE_ERROR",
        message=exc.message,
        details=[{"remote_status": exc.status_code}],
    )


async def local_cache_error_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """The on-device cache could not be read or written."""
    logger.error(
        "Local cache error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    message = "The local cache could not be read or written."
    if settings.DEBUG:
        message = f"Database error: {exc}"
    return _error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="DATABASE_ERROR",
        message=message,
    )


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s %s:\n%s",
        request.method,
        request.url.path,
        traceback.format_exc(),
    )
    message = "An unexpected error occurred."
    if settings.DEBUG:
        message = f"Internal error: {exc}"
    return _error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        message=message,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register the envelope handlers. Lookup follows the exception MRO."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, value_validation_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(RemoteServiceError, remote_service_error_handler)
    app.add_exception_handler(SQLAlchemyError, local_cache_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
