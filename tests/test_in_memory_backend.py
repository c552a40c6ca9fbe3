"""Unit tests for the in-memory fixed-window fallback backend."""

import asyncio
from unittest.mock import Mock

import pytest

from devevents.adapters.rate_limit.in_memory import InMemoryFixedWindowBackend


@pytest.mark.asyncio
async def test_allows_up_to_limit_in_same_window(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)

    results = [await backend.check("k", limit=3, window_seconds=60) for _ in range(3)]

    assert [r.allowed for r in results] == [True, True, True]
    assert [r.count for r in results] == [1, 2, 3]


@pytest.mark.asyncio
async def test_blocks_when_over_limit(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)

    await backend.check("k", limit=2, window_seconds=60)
    await backend.check("k", limit=2, window_seconds=60)
    blocked = await backend.check("k", limit=2, window_seconds=60)

    assert blocked.allowed is False
    assert blocked.count == 3


@pytest.mark.asyncio
async def test_reset_is_start_of_next_aligned_window(clock: Mock) -> None:
    clock.return_value = 1_000.5
    backend = InMemoryFixedWindowBackend(clock=clock)

    result = await backend.check("k", limit=1, window_seconds=60)

    # floor(1_000_500 / 60_000) = 16 -> next window starts at 17 * 60_000
    assert result.reset_at_ms == 1_020_000


@pytest.mark.asyncio
async def test_resets_on_new_window(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)

    assert (await backend.check("k", limit=1, window_seconds=10)).allowed is True
    assert (await backend.check("k", limit=1, window_seconds=10)).allowed is False

    clock.return_value = 1_010.0
    result = await backend.check("k", limit=1, window_seconds=10)
    assert result.allowed is True
    assert result.count == 1


@pytest.mark.asyncio
async def test_boundary_can_admit_twice_the_limit(clock: Mock) -> None:
    clock.return_value = 1_019.9
    backend = InMemoryFixedWindowBackend(clock=clock)
    assert (await backend.check("k", limit=1, window_seconds=60)).allowed is True

    clock.return_value = 1_020.0
    assert (await backend.check("k", limit=1, window_seconds=60)).allowed is True


@pytest.mark.asyncio
async def test_isolated_by_key(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)

    assert (await backend.check("k1", limit=1, window_seconds=60)).allowed is True
    assert (await backend.check("k1", limit=1, window_seconds=60)).allowed is False
    assert (await backend.check("k2", limit=1, window_seconds=60)).allowed is True


@pytest.mark.asyncio
async def test_empty_key_rejected() -> None:
    backend = InMemoryFixedWindowBackend()

    with pytest.raises(ValueError):
        await backend.check("", limit=1, window_seconds=60)


@pytest.mark.asyncio
async def test_concurrent_checks_do_not_lose_updates(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)

    results = await asyncio.gather(
        *(backend.check("k", limit=10, window_seconds=60) for _ in range(25))
    )

    assert sum(r.allowed for r in results) == 10
    assert sorted(r.count for r in results) == list(range(1, 26))


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_windows(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)
    await backend.check("short", limit=5, window_seconds=10)
    await backend.check("long", limit=5, window_seconds=3600)

    clock.return_value = 1_015.0
    removed = backend.sweep()

    assert removed == 1
    assert backend.stats() == {"entries": 1, "swept": 1}


@pytest.mark.asyncio
async def test_sweeper_task_runs_periodically(clock: Mock) -> None:
    backend = InMemoryFixedWindowBackend(clock=clock)
    await backend.check("k", limit=5, window_seconds=1)
    clock.return_value = 1_002.0

    backend.start_sweeper(0.01)
    backend.start_sweeper(0.01)
    assert backend.sweeper_running is True

    for _ in range(50):
        if backend.stats()["entries"] == 0:
            break
        await asyncio.sleep(0.01)

    await backend.aclose()
    assert backend.stats()["entries"] == 0
    assert backend.sweeper_running is False
