"""
Request correlation for logs and problem responses.

Each request gets a request id (taken from ``X-Request-ID`` when the caller
sends one) and a correlation id (``X-Correlation-ID``) that webhook senders
can reuse across retries of the same delivery. Timer runs started by the
scheduler have no request, so they open their own scope with
``correlation_scope("timers")`` and their log lines carry a ``timers-...`` id.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_HEADER = "X-Request-ID"
UNKNOWN = "unknown"


def generate_id(prefix: str = "") -> str:
    short = uuid.uuid4().hex[:12]
    return f"{prefix}-{short}" if prefix else short


@contextmanager
def correlation_scope(
    prefix: str = "",
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Iterator[tuple[str, str]]:
    """Bind ids for the enclosed block and restore the previous ones afterwards."""
    bound = (correlation_id or generate_id(prefix), request_id or generate_id(prefix))
    tokens = (correlation_id_ctx.set(bound[0]), request_id_ctx.set(bound[1]))
    try:
        yield bound
    finally:
        correlation_id_ctx.reset(tokens[0])
        request_id_ctx.reset(tokens[1])


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds ids for the duration of a request and echoes them on the response."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        with correlation_scope(
            correlation_id=request.headers.get(CORRELATION_HEADER),
            request_id=request.headers.get(REQUEST_HEADER),
        ) as (correlation_id, request_id):
            request.state.correlation_id = correlation_id
            request.state.request_id = request_id
            response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers[REQUEST_HEADER] = request_id
        return response


def get_correlation_id() -> str:
    return correlation_id_ctx.get() or UNKNOWN


def get_request_id() -> str:
    return request_id_ctx.get() or UNKNOWN


class CorrelationLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.request_id = get_request_id()
        return True
