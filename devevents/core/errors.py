"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from devevents.core.rate_limit import Decision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    backend: str
    identifier: str
    limit: int
    window_seconds: int
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class RateLimitConfigError(ValidationAppError):
    """Raised when a rate limit rule is missing or has an invalid limit/window."""


class BackendUnavailableError(AppError):
    """Raised when the shared counter store cannot answer a check."""


class RateLimitExceededError(AppError):
    """Raised by HTTP dependencies when a caller is over quota."""

    def __init__(self, decision: "Decision") -> None:
        super().__init__(
            code="rate_limited",
            message="Too many requests",
            details={
                "limit": decision.limit,
                "retry_after": decision.retry_after_seconds or 0,
            },
        )
        self.decision = decision
