"""FastAPI application entry point for the facility tquery service."""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import ResponseValidationError, RequestValidationError

from app.core.database import init_db
from app.core.exceptions import NotFoundError, TqueryFatalError, TqueryValidationError
from app.core.router import register_routes
from app.logging.middleware import LoggingMiddleware
from app.logging.exception_handlers import (
    general_exception_handler,
    http_exception_handler,
    not_found_exception_handler,
    request_validation_exception_handler,
    response_validation_exception_handler,
    tquery_fatal_exception_handler,
    tquery_validation_exception_handler,
)


def create_app() -> FastAPI:

    app = FastAPI(
        title="Facility Tquery",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    init_db()

    # Add request logger middleware
    app.add_middleware(LoggingMiddleware)

    # Query engine errors
    app.add_exception_handler(TqueryValidationError, tquery_validation_exception_handler)
    app.add_exception_handler(TqueryFatalError, tquery_fatal_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_exception_handler)

    # Capture 500 response validation errors (these aren't captured by middleware)
    app.add_exception_handler(ResponseValidationError, response_validation_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with specific origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    return app
