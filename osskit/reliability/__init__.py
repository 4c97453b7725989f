"""
Reliability module: per-request retry with exponential backoff.
"""

from osskit.reliability.retry import RetryPolicy, RetryStats, calculate_backoff, retry_with_backoff

__all__ = [
    "RetryPolicy",
    "RetryStats",
    "calculate_backoff",
    "retry_with_backoff",
]
