"""HTTP wiring for rate limit decisions.

Turns a ``Decision`` into ``X-RateLimit-*`` / ``Retry-After`` headers and
the 429 payload, and provides three ways to guard code:

- ``with_rate_limit``: wrap a request handler ``async (Request) -> Response``.
- ``with_rate_limit_action``: wrap an action that may not receive the raw
  request. Enforcement is skipped, and reported as such, when no request is
  available.
- ``enforce_rate_limit``: FastAPI dependency factory for route decorators.
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette import status

from devevents.core.errors import RateLimitConfigError, RateLimitExceededError
from devevents.core.middleware import get_current_request
from devevents.core.presets import RateLimitPresets
from devevents.core.rate_limit import Decision, RateLimiter, RateLimitService, RuleConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOO_MANY_REQUESTS = "Too many requests"


def format_reset(decision: Decision) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2026-01-01T00:01:00.000Z``."""
    return decision.reset_at.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": format_reset(decision),
    }
    if not decision.success and decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def rejection_payload(decision: Decision) -> dict[str, Any]:
    retry_after = decision.retry_after_seconds or 0
    return {
        "error": TOO_MANY_REQUESTS,
        "message": f"Rate limit exceeded. Please try again in {retry_after} seconds.",
        "retryAfter": retry_after,
    }


def rate_limit_exceeded_response(decision: Decision) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=rejection_payload(decision),
        headers=rate_limit_headers(decision),
    )


def with_rate_limit(
    limiter: RateLimiter,
    handler: Callable[[Request], Awaitable[Response]],
) -> Callable[[Request], Awaitable[Response]]:
    """Run ``limiter`` before ``handler`` and put quota headers on the result.

    Usage:
        get_events = with_rate_limit(service.limiter(rule), get_events)
    """

    @functools.wraps(handler)
    async def wrapper(request: Request) -> Response:
        decision = await limiter.check(request)
        if not decision.success:
            return rate_limit_exceeded_response(decision)

        response = await handler(request)
        response.headers.update(rate_limit_headers(decision))
        return response

    return wrapper


class Enforcement(str, enum.Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    NOT_ENFORCED = "not_enforced"


@dataclass(frozen=True)
class ActionResult(Generic[T]):
    """Outcome of a rate-limited action.

    ``NOT_ENFORCED`` means no request was reachable, so the action ran without
    a check.
    """

    enforcement: Enforcement
    value: T | None = None
    decision: Decision | None = None

    @property
    def rejection(self) -> dict[str, Any] | None:
        if self.enforcement is not Enforcement.DENIED or self.decision is None:
            return None
        return {
            "success": False,
            **rejection_payload(self.decision),
            "status": status.HTTP_429_TOO_MANY_REQUESTS,
        }


def _find_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Request | None:
    if args and isinstance(args[0], Request):
        return args[0]
    candidate = kwargs.get("request")
    if isinstance(candidate, Request):
        return candidate
    return get_current_request()


def with_rate_limit_action(
    limiter: RateLimiter,
    action: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[ActionResult[T]]]:
    """Guard an action that may be called outside a request handler.

    The request is taken from the first positional argument, a ``request``
    keyword, or the context set by ``request_context_middleware``.
    """

    @functools.wraps(action)
    async def wrapper(*args: Any, **kwargs: Any) -> ActionResult[T]:
        request = _find_request(args, kwargs)
        if request is None:
            logger.warning(
                "rate_limit.not_enforced",
                extra={"rule": limiter.rule.identifier, "reason": "no_request_context"},
            )
            return ActionResult(Enforcement.NOT_ENFORCED, value=await action(*args, **kwargs))

        decision = await limiter.check(request)
        if not decision.success:
            return ActionResult(Enforcement.DENIED, decision=decision)
        return ActionResult(Enforcement.ALLOWED, value=await action(*args, **kwargs), decision=decision)

    return wrapper


def get_rate_limit_service(request: Request) -> RateLimitService:
    return request.app.state.rate_limits


def enforce_rate_limit(rule: RuleConfig | str) -> Callable[[Request, Response], Awaitable[Decision | None]]:
    """FastAPI dependency enforcing ``rule`` (a RuleConfig or a preset name).

    Whether limits apply and whether quota headers are added is decided by
    the ``RateLimitService`` the app was built with.

    Usage:
        @router.post("/payments/orders", dependencies=[Depends(enforce_rate_limit("payment"))])

    Raises:
        RateLimitConfigError: When declared with an unknown preset name.
        RateLimitExceededError: Rendered as HTTP 429 by the exception handlers.
    """
    if isinstance(rule, str) and rule not in RateLimitPresets.names():
        raise RateLimitConfigError(
            code="rate_limit_unknown_preset",
            message=f"Unknown rate limit preset {rule!r}",
            details={"preset": rule, "known": sorted(RateLimitPresets.names())},
        )

    async def dependency(request: Request, response: Response) -> Decision | None:
        service = get_rate_limit_service(request)
        if not service.enabled:
            return None

        resolved = service.presets.get(rule) if isinstance(rule, str) else rule
        decision = await service.check(request, resolved)
        if not decision.success:
            raise RateLimitExceededError(decision)

        if service.include_headers:
            response.headers.update(rate_limit_headers(decision))
        return decision

    return dependency
