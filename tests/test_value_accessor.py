from __future__ import annotations

import pytest

from vbus2mqtt.core.arbiter import BusLease
from vbus2mqtt.core.exceptions import NoResponse
from vbus2mqtt.core.field_map import ReadonlyValue
from vbus2mqtt.core.interfaces import Datagram
from vbus2mqtt.core.retry import RetryPolicy
from vbus2mqtt.core.value_accessor import (
    ValueAccessor,
    format_value,
    to_physical,
    to_raw,
)

from conftest import MASTER_ADDRESS


FAST = RetryPolicy(timeout=0.01, increment=0.01, attempts=2)


@pytest.fixture
def lease() -> BusLease:
    return BusLease(master_address=MASTER_ADDRESS)


def test_unit_conversion() -> None:
    assert to_physical(550, 1) == 55.0
    assert to_physical(42, None) == 42
    assert to_raw(55.0, 1) == 550
    assert to_raw(21.46, 2) == 2146
    assert format_value(55.0, 1) == "55.0"
    assert format_value(42, None) == "42"


def test_raw_physical_round_trip() -> None:
    for precision in (0, 1, 2, 3):
        for raw in (-32768, -1234, -1, 0, 1, 555, 9999, 65535):
            assert abs(to_raw(to_physical(raw, precision), precision) - raw) <= 1


@pytest.mark.asyncio
async def test_get_retries_with_growing_timeout_then_fails(connection, lease) -> None:
    connection.hang = True
    accessor = ValueAccessor(connection)

    with pytest.raises(NoResponse) as exc_info:
        await accessor.get(lease, 8227, RetryPolicy(timeout=0.05, increment=0.1, attempts=2))

    assert exc_info.value.attempts == 2
    assert connection.get_timeouts == pytest.approx([0.05, 0.15])


@pytest.mark.asyncio
async def test_get_returns_datagram(connection, lease) -> None:
    connection.values[8227] = 42
    datagram = await ValueAccessor(connection, FAST).get(lease, 8227)
    assert datagram.value == 42
    assert len(connection.get_timeouts) == 1


@pytest.mark.asyncio
async def test_get_succeeds_on_retry(connection, lease) -> None:
    class Flaky(type(connection)):
        async def get_value_by_id(self, master_address, value_id, *, timeout):
            self.get_timeouts.append(timeout)
            if len(self.get_timeouts) < 2:
                return None
            return Datagram(value_id=value_id, value=7)

    flaky = Flaky()
    datagram = await ValueAccessor(flaky, FAST).get(lease, 1)

    assert datagram.value == 7
    assert len(flaky.get_timeouts) == 2


@pytest.mark.asyncio
async def test_error_datagram_raises(connection, lease) -> None:
    class Rejecting(type(connection)):
        async def get_value_by_id(self, master_address, value_id, *, timeout):
            return Datagram(value_id=value_id, error="unknown value id")

    with pytest.raises(NoResponse) as exc_info:
        await ValueAccessor(Rejecting(), FAST).get(lease, 1)
    assert exc_info.value.reason == "unknown value id"


@pytest.mark.asyncio
async def test_set_sends_raw_value_and_save_flag(connection, lease) -> None:
    datagram = await ValueAccessor(connection, FAST).set(lease, 4110, 550, save=True)

    assert datagram.value == 550
    assert connection.set_requests == [(4110, 550, True)]


@pytest.mark.asyncio
async def test_read_value_scales(connection, lease) -> None:
    connection.values[4110] = 553
    value = await ValueAccessor(connection, FAST).read_value(
        lease, ReadonlyValue("boilerTempTarget", 4110, precision=1)
    )
    assert value == pytest.approx(55.3)


@pytest.mark.asyncio
async def test_released_lease_is_rejected(connection, lease) -> None:
    lease.active = False
    with pytest.raises(RuntimeError):
        await ValueAccessor(connection, FAST).get(lease, 1)
