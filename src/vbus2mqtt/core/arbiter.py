"""Cooperative arbitration of the shared half-duplex bus (Python 3.12).

The bus permits one active requester at a time. `BusArbiter` owns the busy
flag together with the connection; it is built once at startup and handed to
every component that needs to talk on the bus.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from .constants import BUS_HANDSHAKE_TIMEOUT, BUS_POLL_ATTEMPTS, BUS_POLL_INTERVAL
from .exceptions import BusTimeout
from .interfaces import BusConnection
from .retry import RetryPolicy, retry_with_backoff


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BusLease:
    """Exclusive ownership of the bus for one request/response cycle."""

    master_address: int
    active: bool = True


class BusArbiter:
    """Binary semaphore polled at a fixed interval.

    There is no lock object and no waiter queue: each waiter re-checks the
    flag every `poll_interval` seconds and the first one to see it free wins.
    """

    def __init__(
        self,
        connection: BusConnection,
        *,
        poll_interval: float = BUS_POLL_INTERVAL,
        attempts: int = BUS_POLL_ATTEMPTS,
        handshake_timeout: float = BUS_HANDSHAKE_TIMEOUT,
    ) -> None:
        self.connection = connection
        self.handshake_timeout = handshake_timeout
        self.policy = RetryPolicy(timeout=poll_interval, increment=0, attempts=attempts)
        self._busy = False

    @property
    def is_free(self) -> bool:
        return not self._busy

    async def _claim(self, interval: float) -> bool | None:
        # check and set without an await in between
        if not self._busy:
            self._busy = True
            return True
        await asyncio.sleep(interval)
        return None

    async def acquire(self) -> BusLease:
        """Wait for the flag, then claim bus mastership on the connection.

        Raises BusTimeout if the flag stays busy for the whole poll budget or
        the free-bus handshake yields no datagram within `handshake_timeout`.
        """
        claimed, tries = await retry_with_backoff(
            self._claim, self.policy, description="bus acquire"
        )
        if not claimed:
            raise BusTimeout("Bus still busy", attempts=tries)

        try:
            datagram = await asyncio.wait_for(
                self.connection.wait_for_free_bus(), self.handshake_timeout
            )
        except asyncio.TimeoutError:
            self._busy = False
            raise BusTimeout(
                f"No free-bus datagram within {self.handshake_timeout}s"
            ) from None
        except BaseException:
            self._busy = False
            raise
        if datagram is None:
            self._busy = False
            raise BusTimeout("No free-bus datagram received")

        logger.debug("Bus acquired, master address 0x%04X", datagram.source_address)
        return BusLease(master_address=datagram.source_address)

    async def release(self, lease: BusLease) -> None:
        """Hand mastership back; the flag is freed whatever the handshake does."""
        try:
            if lease.active:
                await asyncio.wait_for(
                    self.connection.release_bus(lease.master_address),
                    self.handshake_timeout,
                )
        except asyncio.TimeoutError:
            logger.warning(
                "No release acknowledgement within %ss, freeing bus anyway",
                self.handshake_timeout,
            )
        finally:
            lease.active = False
            self._busy = False
            logger.debug("Bus released")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BusLease]:
        lease = await self.acquire()
        try:
            yield lease
        finally:
            await self.release(lease)
