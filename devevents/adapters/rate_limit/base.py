"""Counting backend interfaces.

The rate limiter depends on this abstraction (not the concrete store) so the
distributed Redis backend and the in-process fallback are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowResult:
    """Outcome of one check against a window counter.

    Attributes:
        allowed: Whether this hit was admitted.
        count: Hits counted in the current window, including this one.
        reset_at_ms: UNIX epoch milliseconds when quota next frees up.
    """

    allowed: bool
    count: int
    reset_at_ms: int


class CountingBackend(ABC):
    """Interface for window counters keyed by partition key."""

    name: str = "backend"

    @abstractmethod
    async def check(self, key: str, *, limit: int, window_seconds: int) -> WindowResult:
        """Record one hit for ``key`` and report whether it fits the window.

        Args:
            key: Partition key built by the rate limiter.
            limit: Maximum admissions per window.
            window_seconds: Window length in seconds.

        Returns:
            WindowResult describing whether the hit was allowed.

        Raises:
            BackendUnavailableError: If the store cannot answer.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release connections or background tasks held by the backend."""
        return None
