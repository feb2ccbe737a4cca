"""Health checks and structured JSON logging for the marketplace service."""

from .health import ServiceHealth, HealthStatus
from .logging_config import (
    setup_logging,
    get_logger,
    RequestLoggingMiddleware,
    RedactionFilter,
    set_request_context,
)

__all__ = [
    "ServiceHealth",
    "HealthStatus",
    "setup_logging",
    "get_logger",
    "RequestLoggingMiddleware",
    "RedactionFilter",
    "set_request_context",
]
