"""HTTP middleware for request correlation and request context.

``request_id_middleware``:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for log correlation
- Echoes it back with the total request duration

``request_context_middleware`` exposes the current ``Request`` through a
context variable so code without a request parameter (action-style
functions) can still be rate limited.

Usage:
    app.middleware("http")(request_context_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid
from contextvars import ContextVar

from fastapi import Request, Response

from devevents.core.config import settings
from devevents.core.logging import clear_request_id, set_request_id

_current_request_var: ContextVar[Request | None] = ContextVar("current_request", default=None)


def get_current_request() -> Request | None:
    """Return the request being handled in this context, if any."""
    return _current_request_var.get()


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id and duration header to every response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response with X-Request-ID and X-Request-Duration-ms
            headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def request_context_middleware(request: Request, call_next) -> Response:
    token = _current_request_var.set(request)
    try:
        return await call_next(request)
    finally:
        _current_request_var.reset(token)
