import time
import os
import re
import getpass
import logging
import platform
import socket
from typing import Any, Callable, Dict, Optional

from datetime import datetime
from fastapi import Request
from starlette.background import BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.config import APPLICATION_ID
from app.core.database import SessionLocal
from app.logging.models import Log

logger = logging.getLogger(__name__)

# Paths of tquery requests: facility-scoped and admin entities.
_TQUERY_PATH = re.compile(r"^/api/(?:facility/(?P<facility_id>[^/]+)|admin)/(?P<entity>[^/]+)/tquery")

# Paths whose requests are not logged
EXCLUDED_PATHS = ["/api/admin/logs", "/api/docs", "/api/openapi.json", "/static"]


def get_username() -> str:
    try:
        return os.environ.get("USER") or os.environ.get("USERNAME") or getpass.getuser() or "unknown_user"
    except Exception:
        return "unknown_user"


def get_hostname() -> str:
    try:
        return socket.gethostname() or platform.node() or "unknown_host"
    except Exception:
        return "unknown_host"


def request_log_fields(request: Request) -> Dict[str, Any]:
    """Log columns describing the request itself."""
    path = str(request.url.path)
    match = _TQUERY_PATH.match(path)
    return {
        "timestamp": datetime.now(),
        "method": request.method,
        "path": path,
        "facility_id": match.group("facility_id") if match else None,
        "entity": match.group("entity") if match else None,
        "client_ip": request.client.host if request.client else None,
        "request_body": getattr(request.state, "body", None),
        "user_agent": request.headers.get("user-agent"),
        "application_id": APPLICATION_ID,
    }


def write_log(fields: Dict[str, Any]) -> None:
    """Insert a log row in its own session."""
    with SessionLocal() as session:
        try:
            session.add(Log(username=get_username(), hostname=get_hostname(), **fields))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Error writing request log: {str(e)}")


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        logger.info(f"Logging middleware initialized on host: {get_hostname()}, App ID: {APPLICATION_ID}")

    async def dispatch(self, request: Request, call_next: Callable):
        # Only API requests are logged
        path = request.url.path
        if not path.startswith("/api") or any(path.startswith(excluded) for excluded in EXCLUDED_PATHS):
            return await call_next(request)

        start_time = time.time()

        # Keep the body for the exception handlers, then reconstruct the stream
        body_bytes = await request.body()
        request.state.body = body_bytes.decode("utf-8", errors="ignore")

        async def receive() -> dict:
            return {"type": "http.request", "body": body_bytes}

        request = Request(request.scope, receive=receive)
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        fields = request_log_fields(request)
        fields["status_code"] = response.status_code
        fields["processing_time"] = duration_ms

        response_body: Optional[bytes] = getattr(response, "body", None)
        if response_body is None and hasattr(response, "body_iterator"):
            # Buffer streamed bodies so that they can be logged
            original_iterator = response.body_iterator
            chunks = []

            async def buffer_iterator():
                async for chunk in original_iterator:
                    chunks.append(chunk)
                    yield chunk

            response.body_iterator = buffer_iterator()
        else:
            chunks = [response_body or b""]

        content_type = response.headers.get("content-type", "")

        def log_to_db():
            if getattr(request.state, "error_logged", False):
                return
            # Exported files are not logged, only their size
            body = b"".join(chunks)
            if "json" in content_type or "text/plain" in content_type:
                fields["response_body"] = body.decode("utf-8", errors="ignore")
            else:
                fields["response_body"] = f"[{content_type or 'binary'} content, {len(body)} bytes]"
            write_log(fields)

        # Runs after any task the endpoint already attached to the response
        tasks = BackgroundTasks()
        existing = getattr(response, "background", None)
        if existing is not None:
            tasks.tasks.append(existing)
        tasks.add_task(log_to_db)
        response.background = tasks
        return response
