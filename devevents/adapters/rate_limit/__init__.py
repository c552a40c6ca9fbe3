"""Rate limit counting backends.

The limiter talks to a shared Redis sliding-window counter and falls back to
an in-process fixed-window counter when the store is missing or failing.
"""

from devevents.adapters.rate_limit.base import CountingBackend, WindowResult
from devevents.adapters.rate_limit.in_memory import InMemoryFixedWindowBackend
from devevents.adapters.rate_limit.redis_sliding import RedisSlidingWindowBackend

__all__ = [
    "CountingBackend",
    "InMemoryFixedWindowBackend",
    "RedisSlidingWindowBackend",
    "WindowResult",
]
