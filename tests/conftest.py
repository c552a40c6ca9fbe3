"""Pytest configuration and fixtures shared across all test modules.

Environment is pinned before any module loads settings: no .env file, no
shared store, so every test starts in fallback mode unless it injects a
backend itself.
"""

import os
from types import SimpleNamespace
from typing import Callable
from unittest.mock import Mock

import pytest
from starlette.datastructures import Headers

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_TOKEN", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def make_request() -> Callable[..., SimpleNamespace]:
    """Build a minimal request descriptor with case-insensitive headers."""

    def _make(headers: dict[str, str] | None = None) -> SimpleNamespace:
        return SimpleNamespace(headers=Headers(headers or {}))

    return _make


@pytest.fixture
def clock() -> Mock:
    """Deterministic time source, UNIX seconds."""
    return Mock(return_value=1_000.0)
