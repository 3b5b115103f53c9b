"""
Middleware for the journey engine API.

- Correlation ID tracking so webhook deliveries can be traced through logs
"""

from app.middleware.correlation import (
    CorrelationIdMiddleware,
    CorrelationLogFilter,
    correlation_scope,
    get_correlation_id,
    get_request_id,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationLogFilter",
    "correlation_scope",
    "get_correlation_id",
    "get_request_id",
]
