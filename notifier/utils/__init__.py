"""Utilities package - helper functions and tools."""
from notifier.utils.datetime_utils import utcnow, after_ms
from notifier.utils.rate_limiter import RateLimiter

__all__ = [
    "utcnow",
    "after_ms",
    "RateLimiter",
]
