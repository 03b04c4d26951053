"""Middleware for request ID generation and propagation.

The request ID is taken from the X-Request-ID header when present, otherwise
generated. It is set in the logging context so every log line emitted while
handling the request carries it, and echoed in the response headers.
"""

import uuid
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from detective.core.logging import set_request_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware that generates and propagates request IDs."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        # 8-character UUID prefix if the client did not send one
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

        request.state.request_id = request_id
        set_request_id(request_id)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            set_request_id(None)
