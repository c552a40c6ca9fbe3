"""Caller identity resolution for rate limiting.

Derives a client IP and an optional user identifier from request headers.
Resolution never raises: missing or malformed headers degrade to the
``"unknown"`` IP and a ``None`` user, which means such callers share one
partition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol

UNKNOWN_IP = "unknown"
BEARER_PREFIX = "bearer:"

DEFAULT_SESSION_COOKIES: tuple[str, ...] = (
    "next-auth.session-token",
    "__Secure-next-auth.session-token",
)

# Most trusted first: CDN edge, then reverse proxy, then generic forwarding chain
IP_HEADERS: tuple[str, ...] = (
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
)


class HeaderSource(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...


class RequestLike(Protocol):
    """Anything exposing ``headers.get``; plain dicts must use lower-case names."""

    @property
    def headers(self) -> HeaderSource: ...


@dataclass(frozen=True)
class Identity:
    client_ip: str
    user_id: str | None


def _header(headers: HeaderSource, name: str) -> str | None:
    value = headers.get(name)
    if not isinstance(value, str):
        return None
    return value


def resolve_client_ip(headers: HeaderSource) -> str:
    """Return the caller IP from proxy headers, or ``UNKNOWN_IP``.

    For comma-separated chains (``X-Forwarded-For``) the first hop is the
    original client.
    """
    for name in IP_HEADERS:
        value = _header(headers, name)
        if not value:
            continue
        ip = value.split(",")[0].strip()
        if ip and ip.lower() != UNKNOWN_IP:
            return ip
    return UNKNOWN_IP


def _session_from_cookie(cookie_header: str, cookie_names: Iterable[str]) -> str | None:
    names = set(cookie_names)
    for part in cookie_header.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name in names and value:
            return value
    return None


def resolve_user_id(
    headers: HeaderSource,
    session_cookies: Iterable[str] = DEFAULT_SESSION_COOKIES,
) -> str | None:
    """Return a session token from cookies, else ``bearer:<token>``, else None.

    The bearer prefix keeps header-derived ids from colliding with cookie ones.
    """
    cookie_header = _header(headers, "cookie")
    if cookie_header:
        session = _session_from_cookie(cookie_header, session_cookies)
        if session:
            return session

    authorization = _header(headers, "authorization")
    if authorization:
        scheme, _, token = authorization.strip().partition(" ")
        token = token.strip()
        if scheme.lower() == "bearer" and token:
            return f"{BEARER_PREFIX}{token}"

    return None


def resolve_identity(
    request: RequestLike,
    session_cookies: Iterable[str] = DEFAULT_SESSION_COOKIES,
) -> Identity:
    headers = getattr(request, "headers", None)
    if headers is None:
        return Identity(client_ip=UNKNOWN_IP, user_id=None)
    return Identity(
        client_ip=resolve_client_ip(headers),
        user_id=resolve_user_id(headers, session_cookies),
    )
