"""
Resilience Patterns

Retry with backoff for connection-level storage failures.
"""

from src.common.resilience.retry import RetryConfig, retry_with_backoff

__all__ = [
    "retry_with_backoff",
    "RetryConfig",
]
