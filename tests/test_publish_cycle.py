from __future__ import annotations

import json

import pytest

from vbus2mqtt.core.arbiter import BusArbiter
from vbus2mqtt.core.bridge import MqttBridge
from vbus2mqtt.core.consolidator import ConsolidationEngine
from vbus2mqtt.core.field_map import parse_field_map
from vbus2mqtt.core.interfaces import PacketField
from vbus2mqtt.core.publish_cycle import PublishCycle
from vbus2mqtt.core.retry import RetryPolicy
from vbus2mqtt.core.value_accessor import ValueAccessor

from conftest import FakeSpecification, make_header


FAST = RetryPolicy(timeout=0.01, increment=0.01, attempts=2)
TEMP1 = "00_0010_7E11_10_0100_000_2_0"

FIELD_MAP = {
    "values": {
        "counter": {"id": 8227},
        "boilerTempTarget": {
            "id": 4110,
            "type": {"precision": 1, "min": 30, "max": 85},
            "writeable": True,
        },
        "missing": {"id": 9999},
        "temp1": {"id": 1234},
    },
    "header": {"temp1": TEMP1},
}


def make_cycle(connection, publisher, interval=5) -> PublishCycle:
    connection.values.update({8227: 42, 4110: 553, 1234: 0})
    engine = ConsolidationEngine(10, 60)
    engine.add_header(make_header(timestamp=engine.clock()))
    specification = FakeSpecification(
        [
            PacketField(TEMP1, "Temperature sensor 1", 21.5, 1, " °C"),
            PacketField("00_0010_7E11_10_0100_002_2_0", "Temperature sensor 2", None, 1),
        ]
    )
    arbiter = BusArbiter(connection, poll_interval=0.001, attempts=3)
    accessor = ValueAccessor(connection, FAST)
    bridge = MqttBridge(publisher, parse_field_map(FIELD_MAP), arbiter, accessor)
    return PublishCycle(engine, specification, bridge, arbiter, accessor, interval, policy=FAST)


@pytest.mark.asyncio
async def test_tick_publishes_passive_then_polled_values(connection, publisher) -> None:
    cycle = make_cycle(connection, publisher)

    result = await cycle.tick()

    assert result.params == {"temp1": "21.5"}
    assert result.polled == {"counter": "42", "boilerTempTarget": "55.3"}
    assert result.failed == ["missing"]
    root = json.loads(publisher.values_for("")[0])
    assert root["temp1"] == "21.5"
    assert "heartbeat" in root
    assert publisher.values_for("temp1") == ["21.5"]
    assert publisher.values_for("counter") == ["42"]
    assert publisher.values_for("boilerTempTarget") == ["55.3"]
    assert publisher.values_for("missing") == []
    assert cycle.arbiter.is_free
    assert connection.count("wait_for_free_bus") == 1
    assert connection.count("release_bus") == 1


@pytest.mark.asyncio
async def test_values_covered_by_headers_are_not_polled(connection, publisher) -> None:
    cycle = make_cycle(connection, publisher)
    await cycle.tick()
    # 8227, 4110 once each, 9999 twice; 1234 (temp1) never
    assert len(connection.get_timeouts) == 4


@pytest.mark.asyncio
async def test_busy_bus_skips_active_poll(connection, publisher) -> None:
    cycle = make_cycle(connection, publisher)
    lease = await cycle.arbiter.acquire()

    result = await cycle.tick()

    assert result.bus_skipped
    assert result.params == {"temp1": "21.5"}
    assert result.polled == {}
    assert connection.get_timeouts == []
    await cycle.arbiter.release(lease)


@pytest.mark.asyncio
async def test_bus_timeout_ends_tick_quietly(connection, publisher) -> None:
    connection.free_bus = None
    cycle = make_cycle(connection, publisher)

    result = await cycle.tick()

    assert result.bus_skipped
    assert cycle.arbiter.is_free


@pytest.mark.asyncio
async def test_zero_interval_disables_cycle(connection, publisher) -> None:
    cycle = make_cycle(connection, publisher, interval=0)
    assert not cycle.enabled
    await cycle.run()
    assert publisher.published == []
