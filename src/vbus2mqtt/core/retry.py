"""Retry-with-backoff shared by bus acquisition and value exchanges."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, TypeVar


T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded attempts with a linearly growing timeout (seconds)."""

    timeout: float
    increment: float = 0.0
    attempts: int = 1

    def timeouts(self) -> Iterator[float]:
        for i in range(max(1, self.attempts)):
            yield self.timeout + i * self.increment


async def retry_with_backoff(
    attempt: Callable[[float], Awaitable[T | None]],
    policy: RetryPolicy,
    *,
    description: str = "operation",
) -> tuple[T | None, int]:
    """Call `attempt(timeout)` until it returns a non-None result.

    Returns the result (or None once the policy is exhausted) together with
    the number of attempts made. Exceptions raised by `attempt` propagate.
    """
    tries = 0
    for timeout in policy.timeouts():
        tries += 1
        result = await attempt(timeout)
        if result is not None:
            return result, tries
        logger.debug("%s: attempt %d/%d failed", description, tries, policy.attempts)
    return None, tries
