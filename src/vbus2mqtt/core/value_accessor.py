"""Get/set exchanges against a controller over a held bus lease (Python 3.12).

Values travel on the bus as integers in protocol units. A configured
precision `p` maps them to physical values: ``physical = raw / 10**p``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .arbiter import BusLease
from .constants import (
    DEFAULT_VALUE_TIMEOUT,
    DEFAULT_VALUE_TIMEOUT_INCR,
    DEFAULT_VALUE_TRIES,
)
from .exceptions import NoResponse
from .field_map import ValueConfig
from .interfaces import BusConnection, Datagram
from .retry import RetryPolicy, retry_with_backoff


logger = logging.getLogger(__name__)

DEFAULT_VALUE_POLICY = RetryPolicy(
    timeout=DEFAULT_VALUE_TIMEOUT,
    increment=DEFAULT_VALUE_TIMEOUT_INCR,
    attempts=DEFAULT_VALUE_TRIES,
)


def to_physical(raw: int, precision: int | None) -> float | int:
    if not precision:
        return raw
    return raw / 10**precision


def to_raw(physical: float, precision: int | None) -> int:
    return round(physical * 10 ** (precision or 0))


def format_value(value: float | int, precision: int | None) -> str:
    return f"{value:.{precision or 0}f}"


class ValueAccessor:
    def __init__(
        self, connection: BusConnection, policy: RetryPolicy = DEFAULT_VALUE_POLICY
    ) -> None:
        self.connection = connection
        self.policy = policy

    async def _exchange(
        self,
        request: Callable[[float], Awaitable[Datagram | None]],
        value_id: int,
        policy: RetryPolicy | None,
        description: str,
    ) -> Datagram:
        async def attempt(timeout: float) -> Datagram | None:
            try:
                return await asyncio.wait_for(request(timeout), timeout)
            except asyncio.TimeoutError:
                return None

        datagram, tries = await retry_with_backoff(
            attempt, policy or self.policy, description=description
        )
        if datagram is None:
            raise NoResponse(value_id, tries)
        if datagram.error:
            raise NoResponse(value_id, tries, reason=datagram.error)
        return datagram

    async def get(
        self, lease: BusLease, value_id: int, policy: RetryPolicy | None = None
    ) -> Datagram:
        """Read one raw value; raises NoResponse once the policy is exhausted."""
        _check_lease(lease)
        return await self._exchange(
            lambda timeout: self.connection.get_value_by_id(
                lease.master_address, value_id, timeout=timeout
            ),
            value_id,
            policy,
            f"get value {value_id}",
        )

    async def set(
        self,
        lease: BusLease,
        value_id: int,
        raw_value: int,
        policy: RetryPolicy | None = None,
        *,
        save: bool = False,
    ) -> Datagram:
        """Write one raw value; `save` asks the controller to persist it."""
        _check_lease(lease)
        logger.debug("Setting value %s to raw %s (save=%s)", value_id, raw_value, save)
        return await self._exchange(
            lambda timeout: self.connection.set_value_by_id(
                lease.master_address, value_id, raw_value, timeout=timeout, save=save
            ),
            value_id,
            policy,
            f"set value {value_id}",
        )

    async def read_value(
        self, lease: BusLease, config: ValueConfig, policy: RetryPolicy | None = None
    ) -> float | int:
        datagram = await self.get(lease, config.value_id, policy)
        if datagram.value is None:
            raise NoResponse(config.value_id, reason="datagram without value")
        return to_physical(datagram.value, config.precision)


def _check_lease(lease: BusLease) -> None:
    if not lease.active:
        raise RuntimeError("Bus lease already released")
