"""
Correlation IDs for requests and the dispatch jobs they enqueue.

A submission's crisis alerts run on the dispatch queue after the HTTP
response is gone, so the IDs live in context variables: the middleware binds
them per request, DispatchQueue captures them with snapshot_context() at
enqueue time and the worker re-binds them with restore_context().

Headers:
- X-Correlation-ID: client-supplied session ID, generated when absent
- X-Request-ID: per-request ID, generated when absent
"""

import uuid
import logging
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_HEADER = "X-Request-ID"

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def generate_id() -> str:
    """Short random ID, readable in log lines."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> str:
    return correlation_id_ctx.get() or "unknown"


def get_request_id() -> str:
    return request_id_ctx.get() or "unknown"


def snapshot_context() -> dict[str, str]:
    """Capture the tracing IDs so a background job can log under them."""
    return {
        "correlation_id": correlation_id_ctx.get(),
        "request_id": request_id_ctx.get(),
    }


def restore_context(snapshot: dict[str, str]) -> None:
    """Re-apply IDs captured with snapshot_context() in the current task."""
    correlation_id_ctx.set(snapshot.get("correlation_id", ""))
    request_id_ctx.set(snapshot.get("request_id", ""))


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds both IDs for the duration of the request and echoes them back."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_id()
        request_id = request.headers.get(REQUEST_HEADER) or generate_id()

        correlation_token = correlation_id_ctx.set(correlation_id)
        request_token = request_id_ctx.set(request_id)
        request.state.correlation_id = correlation_id
        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(correlation_token)
            request_id_ctx.reset(request_token)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers[REQUEST_HEADER] = request_id
        return response


class CorrelationLogFilter(logging.Filter):
    """Adds correlation_id and request_id attributes to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.request_id = get_request_id()
        return True
