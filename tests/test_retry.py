from __future__ import annotations

import pytest

from vbus2mqtt.core.retry import RetryPolicy, retry_with_backoff


def test_timeouts_grow_linearly() -> None:
    policy = RetryPolicy(timeout=0.5, increment=0.25, attempts=3)
    assert list(policy.timeouts()) == [0.5, 0.75, 1.0]


def test_at_least_one_attempt() -> None:
    assert list(RetryPolicy(timeout=1, attempts=0).timeouts()) == [1]


@pytest.mark.asyncio
async def test_returns_first_result() -> None:
    seen = []

    async def attempt(timeout):
        seen.append(timeout)
        return "ok" if len(seen) == 2 else None

    result, tries = await retry_with_backoff(attempt, RetryPolicy(1, 1, 5))

    assert (result, tries) == ("ok", 2)
    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_exhausted_policy_returns_none() -> None:
    async def attempt(timeout):
        return None

    assert await retry_with_backoff(attempt, RetryPolicy(0.1, 0, 4)) == (None, 4)
