from __future__ import annotations

import asyncio
from typing import Any, Iterable

import pytest

from vbus2mqtt.core.header_set import Header, HeaderKey
from vbus2mqtt.core.interfaces import ConnectionState, Datagram, PacketField


MASTER_ADDRESS = 0x7E11


def make_header(
    command: int = 0x0100,
    source: int = MASTER_ADDRESS,
    destination: int = 0x0010,
    timestamp: float = 0.0,
    payload: bytes = b"",
) -> Header:
    return Header(HeaderKey(0, destination, source, 0x10, command), payload, timestamp)


class FakeConnection:
    """In-memory bus: answers get/set from `values`, silent for unknown ids."""

    def __init__(self, values: dict[int, int] | None = None) -> None:
        self.values: dict[int, int] = dict(values or {})
        self.events_list: list[Header | ConnectionState] = []
        self.free_bus: Datagram | None = Datagram(source_address=MASTER_ADDRESS)
        self.hang = False
        self.handshake_hang = False
        self.keep_open = False
        self.release_error: Exception | None = None
        self.calls: list[tuple[Any, ...]] = []
        self.get_timeouts: list[float] = []
        self.set_requests: list[tuple[int, int, bool]] = []

    async def connect(self) -> None:
        self.calls.append(("connect",))

    async def disconnect(self) -> None:
        self.calls.append(("disconnect",))

    async def events(self):
        for event in self.events_list:
            yield event
            await asyncio.sleep(0)
        if self.keep_open:
            await asyncio.sleep(3600)

    async def wait_for_free_bus(self) -> Datagram | None:
        self.calls.append(("wait_for_free_bus",))
        if self.handshake_hang:
            await asyncio.sleep(3600)
        return self.free_bus

    async def release_bus(self, master_address: int) -> Datagram | None:
        self.calls.append(("release_bus", master_address))
        if self.handshake_hang:
            await asyncio.sleep(3600)
        if self.release_error is not None:
            raise self.release_error
        return Datagram(source_address=master_address)

    async def get_value_by_id(
        self, master_address: int, value_id: int, *, timeout: float
    ) -> Datagram | None:
        self.get_timeouts.append(timeout)
        if self.hang:
            await asyncio.sleep(3600)
        if value_id not in self.values:
            return None
        return Datagram(value_id=value_id, value=self.values[value_id])

    async def set_value_by_id(
        self,
        master_address: int,
        value_id: int,
        raw_value: int,
        *,
        timeout: float,
        save: bool = False,
    ) -> Datagram | None:
        self.set_requests.append((value_id, raw_value, save))
        if self.hang:
            await asyncio.sleep(3600)
        self.values[value_id] = raw_value
        return Datagram(value_id=value_id, value=raw_value)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeSpecification:
    def __init__(
        self,
        packet_fields: Iterable[PacketField] = (),
        block_type_fields: Iterable[PacketField] = (),
    ) -> None:
        self.packet_fields = list(packet_fields)
        self.block_type_fields = list(block_type_fields)
        self.requested: list[list[Header]] = []

    def get_packet_fields_for_headers(self, headers):
        self.requested.append(list(headers))
        return list(self.packet_fields)

    def get_block_type_fields_for_headers(self, headers):
        return list(self.block_type_fields)


class FakePublisher:
    def __init__(self, base_topic: str = "resol") -> None:
        self.base_topic = base_topic
        self.published: list[tuple[str, str]] = []
        self.subscribed: list[str] = []
        self.connected = True
        self.inbound = None
        self.lost: asyncio.Future[str] | None = None

    def topic(self, topic: str = "") -> str:
        return f"{self.base_topic}/{topic}" if topic else self.base_topic

    def publish(self, topic: str, value, *, retain: bool = False) -> None:
        self.published.append((topic, str(value)))

    def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    def attach_inbound(self, loop, queue) -> None:
        self.inbound = queue
        self.lost = loop.create_future()

    async def wait_for_loss(self) -> str:
        return await self.lost

    def lose(self, reason: str) -> None:
        self.connected = False
        self.lost.set_result(reason)

    def is_connected(self) -> bool:
        return self.connected

    def values_for(self, topic: str) -> list[str]:
        return [value for t, value in self.published if t == topic]


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()
