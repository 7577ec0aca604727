# app/logging/exception_handlers.py

import json
import logging
import traceback
from datetime import datetime
from typing import Any, Dict

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import ResponseValidationError, RequestValidationError

from app.core.exceptions import NotFoundError, TqueryFatalError, TqueryValidationError
from app.logging.middleware import request_log_fields, write_log

logger = logging.getLogger(__name__)


def safe_json_dumps(obj):
    def default(o):
        if isinstance(o, (datetime, Exception)):
            return str(o)
        return str(o)
    return json.dumps(obj, indent=2, default=default)


def _log_error(request: Request, status_code: int, exc: Exception, response_body: Any) -> None:
    """Write the error to the request log. The middleware skips requests logged here."""
    fields = request_log_fields(request)
    fields.update(
        status_code=status_code,
        error_type=type(exc).__name__,
        response_body=safe_json_dumps(response_body),
    )
    write_log(fields)
    request.state.error_logged = True


def _error_response(request: Request, status_code: int, exc: Exception, content: Dict[str, Any],
                    logged_body: Any = None) -> JSONResponse:
    _log_error(request, status_code, exc, content if logged_body is None else logged_body)
    return JSONResponse(status_code=status_code, content=content)


async def tquery_validation_exception_handler(request: Request, exc: TqueryValidationError):
    """Invalid data request: all field errors at once."""
    return _error_response(request, 422, exc, {"detail": exc.errors})


async def tquery_fatal_exception_handler(request: Request, exc: TqueryFatalError):
    """Query engine failure. The SQL is only returned in debug mode."""
    content: Dict[str, Any] = {"detail": str(exc)}
    if exc.sql is not None:
        content["sql"] = exc.sql
    cause = exc.__cause__
    return _error_response(request, 500, exc, content, logged_body={
        **content,
        "cause": repr(cause) if cause is not None else None,
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    })


async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return _error_response(request, 404, exc, {"detail": exc.detail})


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and log them to database"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(request, 500, exc, {"detail": "Internal Server Error"}, logged_body={
        "error": str(exc),
        "type": type(exc).__name__,
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    })


async def response_validation_exception_handler(request: Request, exc: ResponseValidationError):
    return _error_response(
        request, 500, exc, {"detail": "Internal Server Error: Response validation failed."},
        logged_body=exc.errors(),
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors, reported like data request validation errors"""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": str(error["msg"]),
            "type": str(error["type"]),
        }
        for error in exc.errors()
    ]
    return _error_response(request, 422, exc, {"detail": errors})


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions and log 4xx/5xx errors"""
    content = {"detail": exc.detail}
    if exc.status_code >= 400:
        _log_error(request, exc.status_code, exc, {"detail": exc.detail, "headers": getattr(exc, "headers", None)})
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))
