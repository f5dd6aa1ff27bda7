from __future__ import annotations

import asyncio

import pytest

from vbus2mqtt.core.arbiter import BusArbiter
from vbus2mqtt.core.exceptions import BusTimeout

from conftest import MASTER_ADDRESS


@pytest.mark.asyncio
async def test_session_claims_and_releases_bus(connection) -> None:
    arbiter = BusArbiter(connection)

    async with arbiter.session() as lease:
        assert lease.master_address == MASTER_ADDRESS
        assert not arbiter.is_free
        assert connection.count("wait_for_free_bus") == 1

    assert arbiter.is_free
    assert not lease.active
    assert ("release_bus", MASTER_ADDRESS) in connection.calls


@pytest.mark.asyncio
async def test_concurrent_sessions_are_mutually_exclusive(connection) -> None:
    arbiter = BusArbiter(connection, poll_interval=0.005, attempts=200)
    holders = 0
    max_holders = 0

    async def worker() -> None:
        nonlocal holders, max_holders
        async with arbiter.session():
            holders += 1
            max_holders = max(max_holders, holders)
            await asyncio.sleep(0.02)
            holders -= 1

    await asyncio.gather(worker(), worker(), worker())

    assert max_holders == 1
    assert connection.count("wait_for_free_bus") == 3
    assert connection.count("release_bus") == 3
    assert arbiter.is_free


@pytest.mark.asyncio
async def test_busy_bus_times_out_and_leaves_flag(connection) -> None:
    arbiter = BusArbiter(connection, poll_interval=0.001, attempts=3)
    lease = await arbiter.acquire()

    with pytest.raises(BusTimeout) as exc_info:
        await arbiter.acquire()

    assert exc_info.value.attempts == 3
    assert not arbiter.is_free
    assert connection.count("wait_for_free_bus") == 1

    await arbiter.release(lease)
    assert arbiter.is_free


@pytest.mark.asyncio
async def test_missing_free_bus_datagram_frees_flag(connection) -> None:
    connection.free_bus = None
    arbiter = BusArbiter(connection)

    with pytest.raises(BusTimeout):
        await arbiter.acquire()

    assert arbiter.is_free


@pytest.mark.asyncio
async def test_release_runs_when_body_fails(connection) -> None:
    arbiter = BusArbiter(connection)

    with pytest.raises(RuntimeError):
        async with arbiter.session():
            raise RuntimeError("exchange failed")

    assert arbiter.is_free
    assert connection.count("release_bus") == 1


@pytest.mark.asyncio
async def test_flag_freed_even_if_release_handshake_fails(connection) -> None:
    connection.release_error = OSError("bus gone")
    arbiter = BusArbiter(connection)
    lease = await arbiter.acquire()

    with pytest.raises(OSError):
        await arbiter.release(lease)

    assert arbiter.is_free


@pytest.mark.asyncio
async def test_hanging_free_bus_handshake_times_out(connection) -> None:
    connection.handshake_hang = True
    arbiter = BusArbiter(connection, handshake_timeout=0.05)

    with pytest.raises(BusTimeout):
        await asyncio.wait_for(arbiter.acquire(), 1)

    assert arbiter.is_free


@pytest.mark.asyncio
async def test_hanging_release_still_frees_bus(connection) -> None:
    arbiter = BusArbiter(connection, handshake_timeout=0.05)
    lease = await arbiter.acquire()
    connection.handshake_hang = True

    await asyncio.wait_for(arbiter.release(lease), 1)

    assert arbiter.is_free
    assert not lease.active
    connection.handshake_hang = False
    async with arbiter.session():
        assert not arbiter.is_free
