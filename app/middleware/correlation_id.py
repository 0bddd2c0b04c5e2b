"""
Correlation ID propagation for request tracing.

Reads X-Correlation-ID from the incoming request or generates a UUID, and keeps it in a
contextvar so system events written while handling the request (or a job run) carry
the same id.
"""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

HEADER_CORRELATION_ID = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 128

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id(request: Request | None = None) -> str | None:
    """Prefers request.state, then the contextvar. None if neither is set."""
    if request is not None and getattr(request.state, "correlation_id", None):
        return request.state.correlation_id
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set (or generate) the correlation id outside a request - jobs, background work."""
    cid = correlation_id or str(uuid.uuid4())
    _correlation_id_var.set(cid)
    return cid


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        incoming = (request.headers.get(HEADER_CORRELATION_ID) or "").strip()
        cid = incoming if incoming and len(incoming) <= MAX_CORRELATION_ID_LENGTH else str(uuid.uuid4())
        request.state.correlation_id = cid
        token = _correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            _correlation_id_var.reset(token)
        response.headers[HEADER_CORRELATION_ID] = cid
        return response
