"""Rate limiting rules, partition keys, and the limiter orchestrator.

A ``RateLimiter`` resolves the caller identity, builds a partition key, and
asks the distributed backend for a decision. When the shared store fails for
any reason the same key is counted by the in-process fallback instead.

``RateLimitService`` is the composition root: one instance per process owns
the fallback counter map, the optional Redis backend, and the presets.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

from devevents.adapters.rate_limit.base import CountingBackend, WindowResult
from devevents.adapters.rate_limit.in_memory import InMemoryFixedWindowBackend
from devevents.core.errors import RateLimitConfigError
from devevents.core.identity import DEFAULT_SESSION_COOKIES, RequestLike, resolve_identity
from devevents.core.logging import hash_key

if TYPE_CHECKING:
    from devevents.core.config import Settings
    from devevents.core.presets import RateLimitPresets

logger = logging.getLogger(__name__)

KEY_DELIMITER = ":"


class PartitionMode(str, enum.Enum):
    """How callers are grouped into counting buckets."""

    IP = "ip"
    USER = "user"
    USER_OR_IP = "user_or_ip"

    @property
    def prefers_user(self) -> bool:
        return self in (PartitionMode.USER, PartitionMode.USER_OR_IP)

    @property
    def uses_ip(self) -> bool:
        return self in (PartitionMode.IP, PartitionMode.USER_OR_IP)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


@dataclass(frozen=True)
class RuleConfig:
    """A named limit: at most ``limit`` admissions per ``window_seconds``.

    Attributes:
        identifier: Rule name, first segment of every partition key.
        limit: Maximum admissions per window.
        window_seconds: Window length.
        partition_by: Whether callers are counted per IP, per user, or per
            user with IP as the anonymous fallback.
        backend: Optional distributed backend overriding the service default.

    Raises:
        RateLimitConfigError: On a missing identifier or a limit/window that
            is not a positive integer.
    """

    identifier: str
    limit: int
    window_seconds: int
    partition_by: PartitionMode = PartitionMode.IP
    backend: CountingBackend | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.identifier:
            raise RateLimitConfigError(
                code="rate_limit_identifier_missing",
                message="Rate limit rule needs a non-empty identifier",
            )
        if not _is_positive_int(self.limit):
            raise RateLimitConfigError(
                code="rate_limit_invalid_limit",
                message=f"Rate limit rule {self.identifier!r} needs an integer limit >= 1",
                details={"identifier": self.identifier},
            )
        if not _is_positive_int(self.window_seconds):
            raise RateLimitConfigError(
                code="rate_limit_invalid_window",
                message=f"Rate limit rule {self.identifier!r} needs an integer window >= 1 second",
                details={"identifier": self.identifier},
            )
        if not isinstance(self.partition_by, PartitionMode):
            object.__setattr__(self, "partition_by", PartitionMode(self.partition_by))

    def with_(self, **changes: Any) -> "RuleConfig":
        """Copy of this rule with some fields replaced (e.g. a call-site identifier)."""
        return dataclasses.replace(self, **changes)


def build_key(rule: RuleConfig, ip: str, user_id: str | None) -> str:
    """Partition key for ``rule`` and the resolved identity.

    A rule that prefers users counts an authenticated caller by user even
    when IP partitioning is also enabled.
    """
    parts = [rule.identifier]
    if rule.partition_by.prefers_user and user_id:
        parts.extend(("user", user_id))
    elif rule.partition_by.uses_ip:
        parts.extend(("ip", ip))
    return KEY_DELIMITER.join(parts)


@dataclass(frozen=True)
class Decision:
    """Outcome of one rate limit check.

    Attributes:
        success: Whether the request may proceed.
        limit: The rule limit that produced this decision.
        remaining: Admissions left in the window (never negative).
        reset_at: When quota next frees up (UTC).
        retry_after_seconds: Seconds to wait; None when allowed.
        key: Partition key, for diagnostics.
    """

    success: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after_seconds: int | None
    key: str


class RateLimiter:
    """Applies one RuleConfig using a distributed backend with local fallback."""

    def __init__(
        self,
        rule: RuleConfig,
        *,
        fallback: CountingBackend,
        distributed: CountingBackend | None = None,
        clock: Callable[[], float] = time.time,
        session_cookies: Iterable[str] = DEFAULT_SESSION_COOKIES,
    ) -> None:
        if rule is None:
            raise RateLimitConfigError(
                code="rate_limit_rule_missing",
                message="RateLimiter requires a rule",
            )
        self.rule = rule
        self._fallback = fallback
        self._distributed = rule.backend or distributed
        self._clock = clock
        self._session_cookies = tuple(session_cookies)

    async def _count(self, key: str) -> WindowResult:
        rule = self.rule
        if self._distributed is not None:
            try:
                return await self._distributed.check(
                    key, limit=rule.limit, window_seconds=rule.window_seconds
                )
            except Exception as exc:
                logger.warning(
                    "rate_limit.backend_failed",
                    extra={
                        "rule": rule.identifier,
                        "backend": self._distributed.name,
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                        "key_hash": hash_key(key),
                    },
                )
        return await self._fallback.check(
            key, limit=rule.limit, window_seconds=rule.window_seconds
        )

    def _decide(self, key: str, result: WindowResult) -> Decision:
        retry_after: int | None = None
        if not result.allowed:
            now_ms = self._clock() * 1000
            retry_after = max(1, math.ceil((result.reset_at_ms - now_ms) / 1000))
        return Decision(
            success=result.allowed,
            limit=self.rule.limit,
            remaining=max(0, self.rule.limit - result.count),
            reset_at=datetime.fromtimestamp(result.reset_at_ms / 1000, tz=timezone.utc),
            retry_after_seconds=retry_after,
            key=key,
        )

    async def check(self, request: RequestLike) -> Decision:
        """Count this request against the rule and return the decision."""
        identity = resolve_identity(request, self._session_cookies)
        key = build_key(self.rule, identity.client_ip, identity.user_id)
        decision = self._decide(key, await self._count(key))

        log_extra = {
            "rule": self.rule.identifier,
            "key_hash": hash_key(key),
            "partition": self.rule.partition_by.value,
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_s": self.rule.window_seconds,
        }
        if decision.success:
            logger.debug("rate_limit.allowed", extra=log_extra)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )
        return decision

    @staticmethod
    async def check_multiple(
        request: RequestLike, limiters: Sequence["RateLimiter"]
    ) -> Decision:
        """All limiters must pass.

        Limiters run in order and the first denial is returned immediately.
        When everything passes the decision with the least remaining quota
        is returned, since that rule binds first.
        """
        if not limiters:
            raise ValueError("check_multiple needs at least one limiter")

        strictest = await limiters[0].check(request)
        if not strictest.success:
            return strictest
        for limiter in limiters[1:]:
            decision = await limiter.check(request)
            if not decision.success:
                return decision
            if decision.remaining < strictest.remaining:
                strictest = decision
        return strictest


class RateLimitService:
    """Process-wide owner of counting backends and presets."""

    def __init__(
        self,
        *,
        fallback: InMemoryFixedWindowBackend,
        presets: "RateLimitPresets",
        distributed: CountingBackend | None = None,
        clock: Callable[[], float] = time.time,
        session_cookies: Iterable[str] = DEFAULT_SESSION_COOKIES,
        sweep_interval_seconds: float = 300,
        enabled: bool = True,
        include_headers: bool = True,
    ) -> None:
        self.fallback = fallback
        self.distributed = distributed
        self.presets = presets
        self._clock = clock
        self._session_cookies = tuple(session_cookies)
        self._sweep_interval = sweep_interval_seconds
        self.enabled = enabled
        self.include_headers = include_headers
        self._limiters: dict[RuleConfig, RateLimiter] = {}

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RateLimitService":
        from devevents.adapters.rate_limit.redis_sliding import RedisSlidingWindowBackend
        from devevents.core.presets import build_presets

        return cls(
            fallback=InMemoryFixedWindowBackend(),
            presets=build_presets(settings.rate_limit),
            distributed=RedisSlidingWindowBackend.from_settings(settings.redis),
            session_cookies=settings.rate_limit.session_cookie_names,
            sweep_interval_seconds=settings.rate_limit.sweep_interval_seconds,
            enabled=settings.app.rate_limit_enabled,
            include_headers=settings.app.rate_limit_include_headers,
        )

    @property
    def mode(self) -> str:
        return "distributed" if self.distributed is not None else "fallback"

    def limiter(self, rule: RuleConfig) -> RateLimiter:
        limiter = self._limiters.get(rule)
        if limiter is None or limiter.rule.backend is not rule.backend:
            limiter = RateLimiter(
                rule,
                fallback=self.fallback,
                distributed=self.distributed,
                clock=self._clock,
                session_cookies=self._session_cookies,
            )
            self._limiters[rule] = limiter
        return limiter

    async def check(self, request: RequestLike, rule: RuleConfig) -> Decision:
        return await self.limiter(rule).check(request)

    async def check_multiple(
        self, request: RequestLike, rules: Sequence[RuleConfig]
    ) -> Decision:
        return await RateLimiter.check_multiple(request, [self.limiter(rule) for rule in rules])

    def start(self) -> None:
        """Start the fallback sweeper; call from inside the running event loop."""
        self.fallback.start_sweeper(self._sweep_interval)
        logger.info(
            "rate_limit.started",
            extra={"mode": self.mode, "sweep_interval_s": self._sweep_interval},
        )

    async def aclose(self) -> None:
        await self.fallback.aclose()
        if self.distributed is not None:
            await self.distributed.aclose()
