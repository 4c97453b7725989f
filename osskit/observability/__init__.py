"""
Observability module: transfer metrics and structured logging.
"""

from osskit.observability.metrics import TransferMetrics
from osskit.observability.logging import (
    JsonFormatter,
    LogLevel,
    current_log_context,
    log_context,
    setup_logging,
)

__all__ = [
    "TransferMetrics",
    "JsonFormatter",
    "LogLevel",
    "current_log_context",
    "log_context",
    "setup_logging",
]
