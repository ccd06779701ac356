"""
Request/response logging middleware for tracking API interactions.
"""
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable

from app.core.logging_config import request_id_context

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to assign a request id and log each request/response pair.

    Logs:
    - Request method and path
    - Response status code and duration
    - Caller identity (student id or grader email header, if present)

    Answer bodies are never logged.
    """

    SKIP_PATHS = ("/metrics",)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Generate or extract request ID for correlation
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_context.set(request_id)
        request.state.request_id = request_id

        start_time = time.time()
        method = request.method
        path = str(request.url.path)

        caller = "anonymous"
        if request.headers.get("X-Student-Id"):
            caller = f"student:{request.headers['X-Student-Id']}"
        elif request.headers.get("X-User-Email"):
            caller = f"grader:{request.headers['X-User-Email']}"

        try:
            response = await call_next(request)
        finally:
            request_id_context.reset(token)

        # Add request_id header to response for client-side correlation
        response.headers["X-Request-ID"] = request_id

        if path in self.SKIP_PATHS:
            return response

        duration_ms = round((time.time() - start_time) * 1000, 2)
        status_code = response.status_code
        extra_fields = {
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "caller": caller,
            "request_id": request_id,
        }

        if status_code >= 500:
            logger.error("Server error response", extra=extra_fields)
        elif status_code >= 400:
            logger.warning("Client error response", extra=extra_fields)
        else:
            logger.info("Request completed", extra=extra_fields)

        return response
