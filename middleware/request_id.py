"""
Request ID middleware for tracking requests across the application.

Every HTTP request gets an id (the client's X-Request-ID if it sent one),
stored on request.state, bound to the logging context for the duration of
the request and echoed back in the response headers.
"""

import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.logging_config import request_id_var


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        # Client-provided id wins (useful for distributed tracing)
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            response: Response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)


def get_request_id(request: Request) -> str:
    """
    Request ID of the current request, or "no-request-id" outside the middleware.
    """
    return getattr(request.state, "request_id", "no-request-id")
