"""In-memory fixed-window counter used when the shared store is unavailable.

Notes:
- Per-process only: running multiple workers multiplies the effective limit,
  and counters reset on restart.
- Fixed windows are aligned to ``floor(now / window)``, so up to twice the
  limit can pass across a window boundary.
- Thread-safe: a lock guards the counter map; no await happens while held.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from devevents.adapters.rate_limit.base import CountingBackend, WindowResult

logger = logging.getLogger(__name__)


@dataclass
class _WindowState:
    window_index: int
    reset_at_ms: int
    count: int


class InMemoryFixedWindowBackend(CountingBackend):
    """Fixed-window counter per partition key.

    One instance is created per process and shared by every rate limiter, so
    keys from different rules live in the same map. A periodic sweep drops
    entries whose window has ended.
    """

    name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the fallback backend.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._state_by_key: dict[str, _WindowState] = {}
        self._sweeper: asyncio.Task[None] | None = None
        self._swept_total = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check(self, key: str, *, limit: int, window_seconds: int) -> WindowResult:
        if not key:
            raise ValueError("key must be a non-empty string")

        window_ms = window_seconds * 1000
        now_ms = self._now_ms()
        window_index = now_ms // window_ms
        reset_at_ms = (window_index + 1) * window_ms

        with self._lock:
            state = self._state_by_key.get(key)
            if state is None or state.window_index != window_index:
                state = _WindowState(window_index=window_index, reset_at_ms=reset_at_ms, count=0)
                self._state_by_key[key] = state
            state.count += 1
            count = state.count

        return WindowResult(allowed=count <= limit, count=count, reset_at_ms=reset_at_ms)

    def sweep(self) -> int:
        """Remove counters whose window has already ended.

        Returns:
            Number of entries removed.
        """
        now_ms = self._now_ms()
        with self._lock:
            expired = [key for key, state in self._state_by_key.items() if state.reset_at_ms <= now_ms]
            for key in expired:
                del self._state_by_key[key]
            self._swept_total += len(expired)
        if expired:
            logger.debug("rate_limit.sweep", extra={"removed": len(expired)})
        return len(expired)

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start the periodic sweep task on the running event loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(interval_seconds),
            name="rate-limit-sweeper",
        )

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"entries": len(self._state_by_key), "swept": self._swept_total}

    async def aclose(self) -> None:
        await self.stop_sweeper()
