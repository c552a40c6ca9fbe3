"""Distributed sliding-window counter backed by Redis.

Each partition key maps to a sorted set of admission timestamps. A single Lua
script trims entries that left the trailing window, counts the rest, and
records the new admission only when it fits, so every process in the fleet
sees one atomic increment-and-evaluate per check. The admission is committed
by the time the reply is read, so a cancelled caller cannot leave the counter
half-updated.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError

from devevents.adapters.rate_limit.base import CountingBackend, WindowResult
from devevents.core.config import RedisSettings
from devevents.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


# KEYS[1] = sorted set key
# ARGV = now_ms, window_ms, limit, member
SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
  redis.call('ZADD', key, now, ARGV[4])
  count = count + 1
  allowed = 1
end
redis.call('PEXPIRE', key, window)

local reset = now + window
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
  reset = tonumber(oldest[2]) + window
end
return {allowed, count, reset}
"""


class RedisSlidingWindowBackend(CountingBackend):
    """Sliding-log rate limit counter shared by every process."""

    name = "redis"

    def __init__(
        self,
        client: Redis,
        *,
        prefix: str = "ratelimit",
        timeout_seconds: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._timeout = timeout_seconds
        self._clock = clock
        self._script = client.register_script(SLIDING_WINDOW_LUA)

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> "RedisSlidingWindowBackend | None":
        """Build the backend from settings, or None when no store is configured."""
        if not redis_settings.url:
            logger.warning(
                "rate_limit.fallback_mode",
                extra={"reason": "redis_url_not_configured"},
            )
            return None

        client = Redis.from_url(
            redis_settings.url,
            password=redis_settings.token,
            socket_timeout=redis_settings.timeout_seconds,
            socket_connect_timeout=redis_settings.timeout_seconds,
            retry_on_timeout=False,
            retry=Retry(NoBackoff(), 0),
            decode_responses=True,
        )
        logger.info("rate_limit.redis_configured", extra={"key_prefix": redis_settings.key_prefix})
        return cls(
            client,
            prefix=redis_settings.key_prefix,
            timeout_seconds=redis_settings.timeout_seconds,
        )

    def _redis_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    @staticmethod
    def _parse_reply(reply: Any) -> WindowResult:
        allowed, count, reset_at_ms = reply
        return WindowResult(
            allowed=bool(int(allowed)),
            count=int(count),
            reset_at_ms=int(float(reset_at_ms)),
        )

    async def check(self, key: str, *, limit: int, window_seconds: int) -> WindowResult:
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex}"
        args = [now_ms, window_seconds * 1000, limit, member]

        try:
            reply = await asyncio.wait_for(
                self._script(keys=[self._redis_key(key)], args=args),
                timeout=self._timeout,
            )
            return self._parse_reply(reply)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise BackendUnavailableError(
                code="rate_limit_store_unavailable",
                message=f"Redis rate limit check failed: {type(exc).__name__}",
                details={"backend": self.name},
            ) from exc
        except (TypeError, ValueError) as exc:
            raise BackendUnavailableError(
                code="rate_limit_store_bad_reply",
                message="Redis rate limit script returned an unexpected reply",
                details={"backend": self.name},
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
